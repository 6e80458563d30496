"""
Error taxonomy for transit key operations.

Callers receive exactly one terminal error per logical operation, of a
distinguishable kind:

- ValidationError: bad input, raised before any RPC
- AuthenticationError: credential or permission problem (never retried)
- ConnectivityError: transport failure, timeout or 5xx (retried by the client)
- KeyNotFoundError: subject key absent, the expected state after erasure
- InvalidContextError: malformed or mismatched encryption context
- CryptoError: malformed response, rejected request or key-size mismatch

KeyNotFoundError is a sibling of ConnectivityError and CryptoError, never a
subclass of either.
"""
from typing import Optional


class TransitError(Exception):
    """Base exception for transit key operations."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(TransitError, ValueError):
    """Raised when caller input is invalid. Never retried."""

    pass


class AuthenticationError(TransitError):
    """Raised on 401/403 responses."""

    pass


class ConnectivityError(TransitError):
    """Raised on transport failures, timeouts and 5xx responses. Retryable."""

    pass


class CryptoError(TransitError):
    """Raised on malformed responses, other 4xx responses and key-size mismatches."""

    pass


class KeyNotFoundError(TransitError):
    """Raised when a subject's key does not exist (e.g. after GDPR erasure)."""

    def __init__(
        self,
        message: str,
        subject_id: Optional[str] = None,
        key_name: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.subject_id = subject_id
        self.key_name = key_name


class InvalidContextError(TransitError):
    """Raised when an encryption context fails strict validation."""

    def __init__(self, message: str, encryption_context: Optional[str] = None):
        super().__init__(message)
        self.encryption_context = encryption_context


def is_retryable(error: BaseException) -> bool:
    """Only connectivity failures are worth another attempt."""
    return isinstance(error, ConnectivityError)
