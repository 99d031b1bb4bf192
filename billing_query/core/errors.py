"""
Error taxonomy for billing queries.

Every failure a query can produce is one of these classified errors.
Each carries an HTTP-status-equivalent code for response shaping.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of a failed billing query."""
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    CANCELLED = 408
    STORAGE_FAILURE = 500


class BillingQueryError(Exception):
    """Base class for all classified billing query failures."""
    kind: ErrorKind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status(self) -> int:
        """HTTP-status-equivalent code for this error."""
        return self.kind.value


class BadRequestError(BillingQueryError):
    """Raised when raw input is malformed or inconsistent."""
    kind = ErrorKind.BAD_REQUEST

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class UnauthorizedError(BillingQueryError):
    """Raised when a credential is invalid or cannot be validated."""
    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(BillingQueryError):
    """Raised when the authenticated owner differs from the requested owner."""
    kind = ErrorKind.FORBIDDEN

    def __init__(self, authenticated_owner: str, requested_owner: str):
        super().__init__(
            f"owner '{authenticated_owner}' may not query billing data of '{requested_owner}'"
        )
        self.authenticated_owner = authenticated_owner
        self.requested_owner = requested_owner


class StorageFailureError(BillingQueryError):
    """Raised when the billing store fails to answer a query."""
    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        detail = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"{operation} failed: {detail}")
        self.operation = operation
        self.cause = cause


class QueryCancelledError(BillingQueryError):
    """Raised when a caller-supplied timeout or cancel signal fires first."""
    kind = ErrorKind.CANCELLED
