"""Custom exception hierarchy."""


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class UnsupportedFilterError(ValidationError):
    """Raised when a filter uses an operator or shape the store cannot compile."""
    pass


class InvalidUpdateError(ValidationError):
    """Raised when an update specification is malformed or unsupported."""
    pass


class InvalidDocumentError(ValidationError):
    """Raised when a document cannot be stored as given."""
    pass


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""
    pass


class CursorStateError(AppError):
    """Raised when a cursor is reconfigured after it has been materialized."""
    pass
