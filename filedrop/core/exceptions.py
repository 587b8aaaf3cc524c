"""
Application-specific exceptions to keep error handling consistent.
"""

class AppError(Exception):
    """Base app error. Carries the HTTP status used by the REST handlers."""
    status_code = 500

class InvalidArguments(AppError):
    """Raised when a request or tool call is missing a required argument."""
    status_code = 400

class FileMissing(AppError):
    """Raised when a stored file does not exist."""
    status_code = 404

    def __init__(self, message: str = "File not found") -> None:
        super().__init__(message)

class UnknownTool(AppError):
    """Raised when a tool name is not in the catalog."""
    status_code = 404

class UploadTooLarge(AppError):
    """Raised when an uploaded part exceeds the configured size limit."""
    status_code = 413

class StorageError(AppError):
    """Raised when the upload directory cannot be read or written."""
    pass

class TransportError(Exception):
    """Raised by a channel transport whose write failed (closed or full)."""
    pass
