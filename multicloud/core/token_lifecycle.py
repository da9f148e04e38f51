"""Keeps OAuth access tokens valid around provider calls.

Every adapter call made on behalf of an account goes through
``TokenLifecycleExecutor.execute``. Before the call the token is refreshed
proactively when it is close to expiry. If the provider still rejects it, the
executor refreshes once more and retries the call exactly once.

Token fields on ``Account`` are written only here, through a compare-and-swap
on ``token_version``, so two requests racing to refresh the same account
cannot silently drop a rotated refresh token.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional

import aiohttp

from multicloud.config import settings
from multicloud.core.exceptions import (
    AuthExpiredError,
    AuthRevokedError,
    GatewayError,
    TokenRefreshConflictError,
    TransientNetworkError,
    UnsupportedOperationError,
    error_from_status,
)
from multicloud.db.models import Account, Provider, as_utc, utcnow
from multicloud.db.repositories.account_repository import AccountRepository
from multicloud.monitoring.errors import record_error
from multicloud.monitoring.logger import log
from multicloud.providers.base import StorageProviderAdapter, TokenGrant

Operation = Callable[[str], Awaitable[Any]]


def classify(exc: BaseException) -> GatewayError:
    """Map any exception to a GatewayError. Classified errors pass through."""
    if isinstance(exc, GatewayError):
        return exc
    text = str(exc)
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        classified = error_from_status(getattr(exc, "status", None), text, "Provider call")
        if isinstance(classified, AuthExpiredError):
            return classified
        return TransientNetworkError(f"Provider call failed: {text or exc!r}")
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    return error_from_status(status if isinstance(status, int) else None, text, "Provider call")


@dataclass
class Outcome:
    """Result of one attempt: either a value or the exception it raised."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self):
        if self.ok:
            return self.value
        classified = classify(self.error)
        if classified is self.error:
            raise classified
        raise classified from self.error


async def _attempt(operation: Operation, token: str) -> Outcome:
    try:
        return Outcome(value=await operation(token))
    except Exception as exc:
        return Outcome(error=exc)


class TokenLifecycleExecutor:
    def __init__(
        self,
        accounts: AccountRepository,
        adapters: Mapping[Provider, StorageProviderAdapter],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.accounts = accounts
        self.adapters = adapters
        self.clock = clock

    def adapter_for(self, account: Account) -> StorageProviderAdapter:
        adapter = self.adapters.get(account.provider)
        if adapter is None:
            raise UnsupportedOperationError(f"No adapter configured for {account.provider}")
        return adapter

    def needs_refresh(self, account: Account) -> bool:
        if not account.refresh_token:
            return False
        expiry = as_utc(account.token_expiry)
        if expiry is None:
            return True
        return expiry <= self.clock() + timedelta(seconds=settings.TOKEN_REFRESH_SKEW_SECONDS)

    def expiry_for(self, expires_in) -> datetime:
        now = self.clock()
        try:
            ttl = int(expires_in)
        except (TypeError, ValueError):
            return now + timedelta(seconds=settings.DEFAULT_TOKEN_TTL_SECONDS)
        return now + timedelta(seconds=max(ttl - settings.TOKEN_EXPIRY_BUFFER_SECONDS, 0))

    async def store_grant(self, account: Account, grant: TokenGrant) -> Account:
        # Providers that do not rotate refresh tokens omit them from the response
        refresh_token = grant.refresh_token or account.refresh_token
        swapped = await self.accounts.swap_tokens(
            account, grant.access_token, refresh_token, self.expiry_for(grant.expires_in)
        )
        if not swapped:
            log("WARNING", "Concurrent token refresh detected", component="token_lifecycle", account_id=account.id)
            raise TokenRefreshConflictError(f"Token for account {account.id} was refreshed concurrently; retry the request")
        return account

    async def link_account(self, user_id: int, provider: Provider, email: str, grant: TokenGrant) -> Account:
        """Create the account for a fresh grant, or store the grant on the existing one."""
        account = await self.accounts.get_by_identity(user_id, provider, email)
        if account is None:
            return await self.accounts.create(
                user_id=user_id,
                provider=provider,
                account_email=email,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_expiry=self.expiry_for(grant.expires_in),
                token_version=0,
                is_active=True,
                connected_at=self.clock(),
            )
        return await self.store_grant(account, grant)

    async def refresh(self, account: Account) -> Account:
        adapter = self.adapter_for(account)
        try:
            grant = await adapter.refresh_access_token(account.refresh_token)
        except Exception as exc:
            classified = classify(exc)
            if isinstance(classified, TransientNetworkError):
                raise classified from exc
            await record_error(
                component="token_lifecycle",
                function="refresh",
                message=f"Refresh token rejected for {account.provider.value} account {account.id}",
                details={"error": classified.message},
                user_id=account.user_id,
                account_id=account.id,
                db=self.accounts.db,
            )
            raise AuthRevokedError("Access to this account was revoked or expired. Please reconnect the account.") from exc
        return await self.store_grant(account, grant)

    async def execute(self, account: Account, operation: Operation):
        """Run ``operation(access_token)`` with proactive and single reactive refresh."""
        if self.needs_refresh(account):
            log("INFO", "Refreshing access token before expiry", component="token_lifecycle", account_id=account.id)
            await self.refresh(account)

        outcome = await _attempt(operation, account.access_token)
        if outcome.ok:
            return outcome.value

        if isinstance(classify(outcome.error), AuthExpiredError) and account.refresh_token:
            log("WARNING", "Provider rejected access token, refreshing once", component="token_lifecycle", account_id=account.id)
            await self.refresh(account)
            outcome = await _attempt(operation, account.access_token)
        return outcome.unwrap()
