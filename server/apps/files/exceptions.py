"""Exceptions for files app."""

from uuid import UUID


class FileServiceError(Exception):
    """Base class for every error raised by the files app."""


class InvalidInputError(FileServiceError):
    """Raised when an upload request is malformed or not allowed."""


class UploadInterruptedError(InvalidInputError):
    """Raised when the client stream fails before the upload completes."""


class PayloadTooLargeError(InvalidInputError):
    """Raised when an upload stream exceeds the configured size limit."""

    def __init__(self, limit_bytes: int) -> None:
        """Initialize PayloadTooLargeError.

        Args:
            limit_bytes: Maximum accepted upload size in bytes.
        """
        self.limit_bytes = limit_bytes
        super().__init__(
            f'File exceeds maximum upload size of {limit_bytes} bytes',
        )


class RecordNotFoundError(FileServiceError):
    """Raised when no file record (or no thumbnail) exists for an id."""

    def __init__(self, file_id: UUID | str, detail: str = 'File not found') -> None:
        """Initialize RecordNotFoundError.

        Args:
            file_id: Identifier that was looked up.
            detail: Human-readable reason.
        """
        self.file_id = file_id
        super().__init__(detail)


class BlobNotFoundError(FileServiceError):
    """Raised by a storage backend when a key holds no blob."""

    def __init__(self, key: str) -> None:
        """Initialize BlobNotFoundError.

        Args:
            key: Storage key that was requested.
        """
        self.key = key
        super().__init__(f'Blob not found: {key}')


class BackendUnavailableError(FileServiceError):
    """Raised when a storage backend fails with an I/O or network error."""

    def __init__(self, operation: str, key: str) -> None:
        """Initialize BackendUnavailableError.

        Args:
            operation: Storage operation that failed (put, get, delete...).
            key: Storage key involved.
        """
        self.operation = operation
        self.key = key
        super().__init__(f'Storage backend unavailable during {operation}: {key}')


class DedupConflictError(FileServiceError):
    """Raised when a record with the same checksum was committed first.

    Never reaches clients: the ingestion pipeline resolves it by returning
    the record that won the race.
    """

    def __init__(self, checksum: str) -> None:
        """Initialize DedupConflictError.

        Args:
            checksum: Content checksum both uploads share.
        """
        self.checksum = checksum
        super().__init__(f'Record with checksum {checksum} already exists')


class ThumbnailFailedError(FileServiceError):
    """Raised when a preview cannot be produced for an image upload."""


class StorageInconsistencyError(FileServiceError):
    """Raised when a record exists but its blob is missing from storage."""

    def __init__(self, file_id: UUID, key: str, storage_type: str) -> None:
        """Initialize StorageInconsistencyError.

        Args:
            file_id: Record whose blob is missing.
            key: Storage key recorded for the blob.
            storage_type: Backend the record points to.
        """
        self.file_id = file_id
        self.key = key
        self.storage_type = storage_type
        super().__init__(
            f'File {file_id} references missing blob {key} '
            f'in {storage_type} storage',
        )
