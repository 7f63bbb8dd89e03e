"""
Exception taxonomy for outbound integrations.

Callers branch on these types:
- CircuitOpenError: the breaker refused the call, the dependency was never contacted
- RemoteCallError subclasses: the dependency was contacted and the call failed
- TokenRefreshError / InvalidGrantError: OAuth refresh failed (transient / permanent)
"""

from typing import Optional


class AgencyOpsError(Exception):
    """Base class for all errors raised by this package."""


class CircuitOpenError(AgencyOpsError):
    """Raised by a circuit breaker that short-circuits a call."""

    def __init__(self, name: str, retry_after: Optional[float] = None):
        self.name = name
        self.retry_after = retry_after
        message = f"Circuit breaker '{name}' is OPEN. Service unavailable."
        if retry_after is not None:
            message += f" Retry in {max(0.0, retry_after):.0f}s."
        super().__init__(message)


class RemoteCallError(AgencyOpsError):
    """A call reached (or tried to reach) a remote service and failed."""

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(f"{service}: {message}")


class RemoteAPIError(RemoteCallError):
    """Non-2xx HTTP response."""

    def __init__(self, service: str, status_code: int, reason: str = ""):
        self.status_code = status_code
        self.reason = reason
        super().__init__(service, f"API Error: {status_code} {reason}".rstrip())

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class RemoteTimeoutError(RemoteCallError):
    """The call exceeded its hard timeout and was cancelled."""

    def __init__(self, service: str, timeout: float):
        self.timeout = timeout
        super().__init__(service, f"timeout after {timeout:.1f}s")


class RemoteTransportError(RemoteCallError):
    """Connection-level failure (DNS, refused, reset)."""


class RemoteResponseError(RemoteCallError):
    """The response body could not be decoded as JSON."""


class TokenRefreshError(AgencyOpsError):
    """Refresh-token exchange failed; retried on the next scheduled pass."""


class InvalidGrantError(TokenRefreshError):
    """Refresh token rejected by the identity provider; the link needs re-authentication."""

    def __init__(self, description: str = ""):
        message = "invalid_grant"
        if description:
            message = f"{message}: {description}"
        super().__init__(message)


def is_invalid_grant(exc: BaseException) -> bool:
    """Whether a refresh failure is a permanent auth rejection."""
    return isinstance(exc, InvalidGrantError) or "invalid_grant" in str(exc)
