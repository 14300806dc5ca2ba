"""Error taxonomy for the TrueNAS app control client."""

from enum import StrEnum


class TruenasError(Exception):
    """Base class for every error raised by the TrueNAS client."""


class ConfigurationError(TruenasError):
    """Invalid URL, API key, app name or action. Raised before any network I/O."""


class TruenasConnectionError(TruenasError):
    """The channel could not be opened, was rejected, or was lost."""


class AuthFailureKind(StrEnum):
    INVALID = "invalid"
    EXPIRED = "expired"
    OTHER = "other"


class AuthenticationError(TruenasConnectionError):
    """The server rejected the API key."""

    def __init__(self, message: str, kind: AuthFailureKind = AuthFailureKind.OTHER) -> None:
        super().__init__(message)
        self.kind = kind


class MethodError(TruenasError):
    """The server answered a correlated call with an error."""

    def __init__(
        self,
        method: str,
        reason: str,
        errno: int | None = None,
        error_type: str | None = None,
    ) -> None:
        super().__init__(f"Method call {method} failed: {reason}")
        self.method = method
        self.reason = reason
        self.errno = errno
        self.error_type = error_type


class TruenasTimeoutError(TruenasError):
    """A bounded wait elapsed."""


class CallTimeoutError(TruenasTimeoutError):
    """No response carrying the call's id arrived in time."""


class AppNotFoundError(TruenasError):
    """The named app does not exist (or its status cannot be read)."""

    def __init__(self, app_name: str) -> None:
        super().__init__(f"App '{app_name}' not found")
        self.app_name = app_name


class OperationFailedError(TruenasError):
    """A stop/start job failed or did not finish before the timeout."""
