"""Custom exception classes for the application."""


class BaseAppException(Exception):
    """Base exception class for all application exceptions."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedError(BaseAppException):
    """Raised when the caller has no valid session."""
    status_code = 401
    kind = "unauthorized"


class ForbiddenError(BaseAppException):
    """Raised when the caller's role may not perform the operation."""
    status_code = 403
    kind = "forbidden"


class InvalidArgumentError(BaseAppException):
    """Raised for a non-positive magnitude or a malformed action."""
    status_code = 400
    kind = "invalid_argument"


class NotFoundError(BaseAppException):
    """Raised when a product or barcode does not exist."""
    status_code = 404
    kind = "not_found"


class StoreFailureError(BaseAppException):
    """Raised when a read, write or subscribe against the ledger fails."""
    status_code = 500
    kind = "store_failure"


class WriteConflictError(StoreFailureError):
    """Raised when a conditional quantity write lost a race."""
    kind = "conflict"


class SessionTokenError(UnauthorizedError):
    """Raised when session token validation fails."""
    kind = "invalid_session"


class ConfigurationError(BaseAppException):
    """Raised when there's a configuration error."""
    kind = "configuration"
