"""Domain errors for rdsconnect."""

from typing import List, Optional

from rdsconnect.constants import (
    EXIT_AUTHORIZATION_EXPIRED,
    EXIT_CACHE_UNAVAILABLE,
    EXIT_CORRUPT_CREDENTIAL_FILE,
    EXIT_FAILURE,
    EXIT_IDENTITY_MISSING,
    EXIT_SELECTOR_NOT_FOUND,
)


class ConnectError(RuntimeError):
    """Raised when an operation cannot continue safely."""

    exit_code = EXIT_FAILURE


class IdentityContextMissingError(ConnectError):
    exit_code = EXIT_IDENTITY_MISSING


class AuthorizationExpiredError(ConnectError):
    """The identity layer rejected the request; the caller must re-authenticate."""

    exit_code = EXIT_AUTHORIZATION_EXPIRED


class SelectorNotFoundError(ConnectError):
    """A cluster or endpoint selector did not match anything in the cache."""

    exit_code = EXIT_SELECTOR_NOT_FOUND

    def __init__(self, message: str, available: Optional[List[str]] = None):
        super().__init__(message)
        self.available = list(available or [])


class CacheUnavailableError(ConnectError):
    exit_code = EXIT_CACHE_UNAVAILABLE


class DiscoveryFailedError(CacheUnavailableError):
    """Every configured region failed during discovery."""


class CorruptCredentialFileError(ConnectError):
    exit_code = EXIT_CORRUPT_CREDENTIAL_FILE


class RenewalError(ConnectError):
    """A single renewal cycle failed; the daemon backs off and retries."""
