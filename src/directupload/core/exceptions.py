"""Error taxonomy for upload sessions and storage operations."""


class UploadError(Exception):
    """Base exception for the upload service."""

    kind = "upload_error"


class ValidationError(UploadError):
    """Exception raised when request fields are missing or malformed."""

    kind = "validation_error"


class NotFoundError(UploadError):
    """Exception raised when a session or storage object does not exist."""

    kind = "not_found"


class InvalidStateError(UploadError):
    """Exception raised when an operation is not valid for the session status."""

    kind = "invalid_state"


class IntegrityError(UploadError):
    """Exception raised when storage rejects or cannot confirm uploaded content."""

    kind = "integrity_error"


class StorageError(UploadError):
    """Exception raised when a storage backend call fails unexpectedly."""

    kind = "storage_error"


class TransportError(UploadError):
    """Exception raised when a part or object PUT fails on the client."""

    kind = "transport_error"

    def __init__(self, message: str, part_number: int | None = None, status_code: int | None = None):
        super().__init__(message)
        self.part_number = part_number
        self.status_code = status_code
