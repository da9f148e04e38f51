"""Exception hierarchy for gateway operations.

Every failure that leaves a gateway operation is one of these classes, so the
web layer can map ``kind`` to a response without inspecting provider payloads.
"""
from typing import Optional


class GatewayError(Exception):
    """Base class for classified gateway failures."""

    kind = "provider_error"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__
        super().__init__(self.message)


class AuthExpiredError(GatewayError):
    """The provider rejected the access token."""

    kind = "auth_expired"


class AuthRevokedError(GatewayError):
    """The refresh token was rejected; the account must be reconnected."""

    kind = "auth_revoked"


class NotFoundError(GatewayError):
    """Account or file not found."""

    kind = "not_found"


class UnsupportedOperationError(GatewayError):
    """Operation is not supported for this provider or item."""

    kind = "unsupported"


class TransientNetworkError(GatewayError):
    """Network failure talking to the provider."""

    kind = "transient_network"
    retryable = True


class QuotaExceededError(GatewayError):
    """The provider reports insufficient storage."""

    kind = "quota_exceeded"


class ValidationError(GatewayError):
    """Invalid input."""

    kind = "validation"


class PermissionDeniedError(GatewayError):
    """The requesting user does not own the resource."""

    kind = "permission_denied"


class TokenRefreshConflictError(GatewayError):
    """Another request refreshed this account's token concurrently."""

    kind = "conflict"
    retryable = True


class ProviderError(GatewayError):
    """Unexpected non-success response from a provider."""

    kind = "provider_error"

    def __init__(self, message: Optional[str] = None, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


# Lowercased substrings that mark a rejected or expired access token.
AUTH_ERROR_MARKERS = frozenset({
    "invalid_grant",
    "token has expired",
    "token expired",
    "expired token",
    "expired_access_token",
    "invalid_access_token",
    "invalid access token",
    "unauthorized",
    "access token has been revoked",
    "does not support refreshing the access token",
})

QUOTA_ERROR_MARKERS = frozenset({
    "storagequotaexceeded",
    "quotalimitreached",
    "insufficient_space",
    "insufficient_quota",
})


def error_from_status(status: Optional[int], text: str, context: str = "Provider call") -> GatewayError:
    """Map a provider status code and body to a classified error."""
    lowered = (text or "").lower()
    message = f"{context} failed: {status} {text}" if status else f"{context} failed: {text}"
    if status == 507 or any(marker in lowered for marker in QUOTA_ERROR_MARKERS):
        return QuotaExceededError(message)
    if status in (401, 403) or any(marker in lowered for marker in AUTH_ERROR_MARKERS):
        return AuthExpiredError(message)
    return ProviderError(message, status=status)
