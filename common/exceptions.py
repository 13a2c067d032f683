"""Domain-specific exceptions for the expense tracker core services."""

class ValidationError(ValueError):
    """Raised when provided data does not meet validation requirements."""


class AuthenticationError(Exception):
    """Raised when a credential is missing, invalid, or names an unknown user."""


class PermissionDeniedError(Exception):
    """Raised when an authenticated caller may not touch the requested record."""


class RecordNotFoundError(LookupError):
    """Raised when an expense or user record cannot be located."""


class PersistenceError(IOError):
    """Raised when the persistence layer encounters unrecoverable issues."""
