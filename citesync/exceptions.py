"""Custom exceptions for citesync."""


class CitesyncError(Exception):
    """Base exception for all citesync errors."""

    pass


class ConfigurationError(CitesyncError):
    """Raised when configuration or style-format data is invalid or missing."""

    pass


class ValidationError(CitesyncError):
    """Raised when input validation fails."""

    pass


class ChangeLogError(CitesyncError):
    """Raised when the change log cannot record or find a change."""

    pass


class StorageError(CitesyncError):
    """Raised when the original document cannot be fetched."""

    def __init__(self, message: str, path: str = "", backend: str = ""):
        super().__init__(message)
        self.path = path
        self.backend = backend


class ApplyError(CitesyncError):
    """Raised when a patch pass over a document container fails."""

    pass

