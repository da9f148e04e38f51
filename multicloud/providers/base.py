"""Provider adapter contract shared by the Drive, Graph and Dropbox adapters.

Adapters are stateless with respect to credentials: every call receives the
bearer access token explicitly, so one adapter instance can serve any number
of accounts. Results are plain dataclasses, never raw provider payloads.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from multicloud.config import settings
from multicloud.core.exceptions import (
    GatewayError,
    TransientNetworkError,
    UnsupportedOperationError,
    error_from_status,
)
from multicloud.db.models import Provider
from multicloud.monitoring.logger import log

FOLDER_MIME_TYPE = "folder"
DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class ProviderFile:
    provider_file_id: str
    name: str
    mime_type: Optional[str] = None
    size: Optional[int] = None
    is_folder: bool = False
    parent_id: Optional[str] = None
    path: Optional[str] = None
    web_view_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None


@dataclass
class StorageQuota:
    total: Optional[int] = None
    used: Optional[int] = None


@dataclass
class TokenGrant:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[Any] = None


@dataclass(frozen=True)
class ExportProfile:
    mime_type: str
    extension: str


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class StorageProviderAdapter(ABC):
    """Uniform capability interface over one provider's wire protocol."""

    provider: Provider

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: Optional[float] = None):
        self._external_session = session
        self._timeout = timeout or settings.PROVIDER_HTTP_TIMEOUT_SECONDS

    async def _request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        *,
        expect: str = "json",
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        """Perform one provider round trip with its own timeout.

        expect: "json", "bytes" or "none".
        """
        hdrs = dict(headers or {})
        if token:
            hdrs["Authorization"] = f"Bearer {token}"
        session = self._external_session or aiohttp.ClientSession()
        created_local = self._external_session is None
        context = f"{self.provider.value} {method}"
        try:
            async with session.request(
                method, url, headers=hdrs, timeout=aiohttp.ClientTimeout(total=self._timeout), **kwargs
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    log("WARNING", f"{context} returned {resp.status}", component="providers", provider=self.provider.value, status=resp.status)
                    raise error_from_status(resp.status, text, context)
                if expect == "bytes":
                    return await resp.read()
                if expect == "none" or resp.status == 204:
                    return None
                return await resp.json(content_type=None)
        except GatewayError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientNetworkError(f"{context} failed: {e!r}") from e
        finally:
            if created_local:
                await session.close()

    async def _token_request(self, url: str, data: Dict[str, str], auth: Optional[aiohttp.BasicAuth] = None) -> TokenGrant:
        payload = await self._request("POST", url, data=data, auth=auth)
        payload = payload or {}
        access_token = payload.get("access_token")
        if not access_token:
            reason = payload.get("error_description") or payload.get("error") or "no error given"
            raise error_from_status(None, f"token response missing access_token: {reason}", f"{self.provider.value} token")
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
        )

    def export_profile(self, mime_type: Optional[str]) -> Optional[ExportProfile]:
        """Return the export target for provider-native documents, else None."""
        return None

    async def export_file(self, token: str, file_id: str, mime_type: str) -> bytes:
        raise UnsupportedOperationError(f"Export is not supported for {self.provider.value}")

    async def move_file(self, token: str, file_id: str, new_path: str) -> ProviderFile:
        raise UnsupportedOperationError(f"Move is not supported for {self.provider.value}")

    @abstractmethod
    async def list_files(self, token: str, folder_id: Optional[str] = None) -> List[ProviderFile]:
        ...

    @abstractmethod
    async def upload_file(self, token: str, content: bytes, name: str, mime_type: str, folder_id: Optional[str] = None) -> ProviderFile:
        ...

    @abstractmethod
    async def download_file(self, token: str, file_id: str) -> bytes:
        ...

    @abstractmethod
    async def delete_file(self, token: str, file_id: str) -> None:
        ...

    @abstractmethod
    async def rename_file(self, token: str, file_id: str, new_name: str) -> ProviderFile:
        ...

    @abstractmethod
    async def create_folder(self, token: str, name: str, parent_id: Optional[str] = None) -> ProviderFile:
        ...

    @abstractmethod
    async def get_storage_quota(self, token: str) -> StorageQuota:
        ...

    @abstractmethod
    async def resolve_web_link(self, token: str, file_id: str, stored_url: Optional[str] = None) -> Optional[str]:
        """Return a URL the user can open in a browser, or None."""
        ...

    @abstractmethod
    async def get_user_email(self, token: str) -> str:
        ...

    @abstractmethod
    async def exchange_authorization_code(self, code: str, redirect_uri: Optional[str] = None) -> TokenGrant:
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        ...
