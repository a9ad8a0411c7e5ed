"""
Defines custom exceptions for the library to allow for more specific error handling.

Every error raised by craftkit derives from `CraftkitError`. Transient faults
are retried internally; whatever escapes a public operation carries enough
structure for the caller to decide what to do next.
"""

from typing import Optional, Sequence


class CraftkitError(Exception):
    """Base exception for all library-specific errors."""


class ConfigurationError(CraftkitError):
    """Raised for issues related to configuration loading or validation."""


# Network & integrity


class NetworkError(CraftkitError):
    """
    Raised when an HTTP exchange fails.

    `retryable` tells whether the failure was transient (connection reset,
    timeout, 5xx, 429) or definitive (404, 403, ...).
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.url = url
        self.status = status
        self.retryable = retryable


class CircuitOpenError(NetworkError):
    """Raised when the metadata circuit breaker refuses a request."""


class IntegrityError(CraftkitError):
    """Raised when a downloaded artifact does not match its expected digest or size."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        url: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ):
        super().__init__(message)
        self.path = path
        self.url = url
        self.expected = expected
        self.actual = actual


# Manifest resolution


class ManifestError(CraftkitError):
    """Raised when a version descriptor cannot be resolved."""

    def __init__(self, message: str, version_id: Optional[str] = None):
        super().__init__(message)
        self.version_id = version_id


class VersionNotFound(ManifestError):
    """Raised when no descriptor exists for the requested version id."""


class CycleDetected(ManifestError):
    """Raised when an inheritance chain refers back to a version already visited."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(
            f"Inheritance cycle detected: {' -> '.join(self.chain)}",
            version_id=self.chain[0] if self.chain else None,
        )


class MissingField(ManifestError):
    """Raised when a required field or launch placeholder cannot be resolved."""

    def __init__(self, field: str, version_id: Optional[str] = None):
        self.field = field
        where = f" in '{version_id}'" if version_id else ""
        super().__init__(f"Missing required field '{field}'{where}.", version_id)


# Authentication


class AuthError(CraftkitError):
    """
    Raised when a step of the account authentication chain fails.

    `hop` names the failing exchange (e.g. "device_code", "xbox_live", "xsts",
    "game_service", "profile").
    """

    def __init__(self, message: str, hop: Optional[str] = None):
        super().__init__(message)
        self.hop = hop


class InvalidGrant(AuthError):
    """Raised when the identity provider rejects a code or refresh token."""


class ExpiredDeviceCode(AuthError):
    """Raised when the user did not complete the device-code flow in time."""


class UserDeclined(AuthError):
    """Raised when the user explicitly declined the authorization request."""


class RefreshFailed(AuthError):
    """Raised when a stored session could not be renewed and was discarded."""


class NotAuthenticated(AuthError):
    """Raised when a session is requested but none is available."""


# Loader installation


class LoaderInstallError(CraftkitError):
    """Raised when a loader variant cannot be layered onto a base version."""

    def __init__(self, message: str, variant: Optional[str] = None):
        super().__init__(message)
        self.variant = variant


class UnsupportedVersionCombination(LoaderInstallError):
    """Raised when no loader version matches the requested game version."""


class ProcessorFailed(LoaderInstallError):
    """Raised when an installation step exits abnormally or misses its outputs."""

    def __init__(
        self,
        step_index: int,
        exit_code: Optional[int],
        reason: str = "",
        variant: Optional[str] = None,
    ):
        self.step_index = step_index
        self.exit_code = exit_code
        self.reason = reason
        message = f"Installation step {step_index} failed (exit code {exit_code})"
        if reason:
            message += f": {reason}"
        super().__init__(message, variant)


# Local filesystem & runtime


class ExtractionError(CraftkitError):
    """Raised when a native library archive cannot be unpacked."""

    def __init__(self, message: str, library: Optional[str] = None):
        super().__init__(message)
        self.library = library


class RuntimeRequirementError(CraftkitError):
    """Raised when the configured Java runtime is older than the version requires."""


class ModMetadataError(CraftkitError):
    """Raised when a mod jar carries metadata that cannot be read."""

    def __init__(self, message: str, file: Optional[str] = None):
        super().__init__(message)
        self.file = file
