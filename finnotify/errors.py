"""
Error taxonomy for the notification subsystem.
"""


class FinnotifyError(Exception):
    """Base class for notification subsystem errors."""

    pass


class StoreUnavailable(FinnotifyError):
    """Raised when the document store cannot be reached or fails."""

    pass


class PermissionDenied(FinnotifyError):
    """Raised when the store rejects an operation for the current user."""

    pass


class NotFound(FinnotifyError):
    """Raised when a document no longer exists in the store."""

    pass


class ValidationError(FinnotifyError):
    """Raised when settings fall outside their declared bounds."""

    pass


class ConfigValidationError(FinnotifyError):
    """Raised when configuration is invalid."""

    pass
