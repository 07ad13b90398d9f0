"""Blob storage backends: local filesystem and S3-compatible."""

import logging
import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, BinaryIO, Final, Protocol, final, override

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError
from django.conf import settings
from django.core.exceptions import SuspiciousFileOperation
from django.core.files.storage import FileSystemStorage, storages
from storages.backends.s3 import S3Storage
from storages.utils import clean_name

from server.apps.files.exceptions import (
    BackendUnavailableError,
    BlobNotFoundError,
    InvalidInputError,
)

logger = logging.getLogger(__name__)

STORAGE_TYPES: Final = frozenset(('local', 's3'))

# Suffix of in-progress local writes, never visible under a final key
_PARTIAL_SUFFIX: Final = '.part'
_DEFAULT_CHUNK_SIZE: Final = 64 * 1024
_S3_MISSING_CODES: Final = frozenset(('404', 'NoSuchKey', 'NotFound'))


@dataclass(frozen=True, slots=True)
class StoredBlob:
    """A blob found while listing a backend."""

    key: str
    modified_at: datetime


class BlobStorage(Protocol):
    """Capability shared by every blob backend."""

    storage_type: str

    def put(
        self,
        key: str,
        stream: BinaryIO,
        content_type: str | None = None,
    ) -> int:
        """Write a stream under key, returning the number of bytes written."""

    def get(self, key: str) -> BinaryIO:
        """Open the blob at key for reading."""

    def delete(self, key: str) -> bool:
        """Remove key; return False if it was already absent."""

    def exists(self, key: str) -> bool:
        """Check whether key holds a blob."""

    def iter_blobs(self) -> Iterator[StoredBlob]:
        """Yield every blob stored in the backend."""

    def rollback_upload(self, key: str, reason: str | None = None) -> None:
        """Best-effort delete of a blob no record will point at."""


def _rollback(storage: BlobStorage, key: str, reason: str | None = None) -> None:
    """Delete a blob nothing will reference, logging instead of raising.

    If deletion fails the blob stays in storage with no record pointing
    at it; the orphan sweep reclaims it later.

    Args:
        storage: Backend holding the blob.
        key: Storage key to delete.
        reason: Why an intact blob is discarded (e.g. duplicate content).
            Without one the blob belongs to a failed operation.
    """
    try:
        if reason is None:
            logger.warning('Rolling back upload, deleting blob: %s', key)
        else:
            logger.info('Discarding blob (%s): %s', reason, key)
        storage.delete(key)
    except Exception:
        logger.exception('Failed to rollback upload, orphaned blob: %s', key)


@final
class LocalBlobStorage(FileSystemStorage):
    """Blob backend writing under a directory on the local filesystem.

    Writes go to a hidden temp file next to the target and are renamed
    into place, so a crash never leaves a truncated file under a final key.
    """

    storage_type = 'local'

    def __init__(self, chunk_size: int = _DEFAULT_CHUNK_SIZE, **kwargs: Any) -> None:
        """Initialize storage.

        Args:
            chunk_size: Bytes read from upload streams per iteration.
            kwargs: FileSystemStorage options (location, base_url...).
        """
        super().__init__(**kwargs)
        self.chunk_size = chunk_size

    def put(
        self,
        key: str,
        stream: BinaryIO,
        content_type: str | None = None,
    ) -> int:
        """Stream content to ``key`` atomically.

        Args:
            key: Storage key (relative path under the storage root).
            stream: Readable stream with the content.
            content_type: Ignored, the filesystem keeps no content type.

        Returns:
            Number of bytes written.

        Raises:
            BackendUnavailableError: If the filesystem write fails.
        """
        full_path = Path(self._resolve(key))
        written = 0
        temp_path: str | None = None
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=full_path.parent,
                prefix=f'.{full_path.name}.',
                suffix=_PARTIAL_SUFFIX,
            )
            with os.fdopen(fd, 'wb') as temp_file:
                for chunk in iter(lambda: stream.read(self.chunk_size), b''):
                    temp_file.write(chunk)
                    written += len(chunk)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            os.replace(temp_path, full_path)
            temp_path = None
        except OSError as error:
            logger.exception('Failed to write blob to local storage: %s', key)
            raise BackendUnavailableError('put', key) from error
        finally:
            if temp_path is not None:
                # Failed or interrupted before the rename
                Path(temp_path).unlink(missing_ok=True)

        logger.info('Stored blob locally: %s (%d bytes)', key, written)
        return written

    def get(self, key: str) -> BinaryIO:
        """Open the blob at ``key``.

        Args:
            key: Storage key.

        Returns:
            Binary file object; the caller closes it.

        Raises:
            BlobNotFoundError: If no file exists at the key.
            BackendUnavailableError: On any other I/O error.
        """
        try:
            return open(self._resolve(key), 'rb')  # noqa: SIM115
        except FileNotFoundError as error:
            raise BlobNotFoundError(key) from error
        except OSError as error:
            logger.exception('Failed to open local blob: %s', key)
            raise BackendUnavailableError('get', key) from error

    @override
    def delete(self, key: str) -> bool:  # type: ignore[override]
        """Delete the blob at ``key``; missing keys are not an error.

        Args:
            key: Storage key.

        Returns:
            True if a file was removed, False if it was already absent.

        Raises:
            BackendUnavailableError: If the filesystem refuses the delete.
        """
        full_path = Path(self._resolve(key))
        try:
            full_path.unlink()
        except FileNotFoundError:
            logger.debug('Blob already absent: %s', key)
            return False
        except OSError as error:
            logger.exception('Failed to delete local blob: %s', key)
            raise BackendUnavailableError('delete', key) from error
        logger.info('Deleted local blob: %s', key)
        return True

    @override
    def exists(self, key: str) -> bool:
        """Check whether a file exists at ``key``."""
        return Path(self._resolve(key)).is_file()

    def iter_blobs(self) -> Iterator[StoredBlob]:
        """Walk the storage root.

        Temp files of writes in progress are listed too: their mtime moves
        with every chunk, so the sweep grace period keeps live ones, and
        ones left by a crashed process age into orphans.

        Yields:
            Every stored file with its modification time.
        """
        root = Path(self.location)
        if not root.is_dir():
            return
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                full_path = Path(dirpath) / filename
                yield StoredBlob(
                    key=full_path.relative_to(root).as_posix(),
                    modified_at=datetime.fromtimestamp(
                        full_path.stat().st_mtime,
                        tz=UTC,
                    ),
                )

    def rollback_upload(self, key: str, reason: str | None = None) -> None:
        """Best-effort delete of a blob no record will point at."""
        _rollback(self, key, reason)

    def _resolve(self, key: str) -> str:
        try:
            return self.path(key)
        except SuspiciousFileOperation as error:
            raise InvalidInputError(f'Invalid storage key: {key}') from error


@final
class S3BlobStorage(S3Storage):
    """Blob backend on an S3-compatible bucket (AWS S3, MinIO, R2).

    Extends django-storages S3Storage with:
    - Streaming uploads through boto3 managed transfers
    - Distinct errors for missing keys and unreachable backends
    - Enhanced error logging
    """

    storage_type = 's3'

    def put(self, key: str, stream: BinaryIO, content_type: str | None = None) -> int:
        """Stream content to ``key``.

        ``upload_fileobj`` reads the stream in parts and switches to a
        multipart upload for large bodies, so the object is never held
        in memory as a whole.

        Args:
            key: Object key.
            stream: Readable stream with the content.
            content_type: Optional Content-Type stored with the object.

        Returns:
            Number of bytes written.

        Raises:
            BackendUnavailableError: If S3 rejects or cannot receive the upload.
        """
        counter = _CountingReader(stream)
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args['ContentType'] = content_type
        try:
            logger.info('Uploading blob to S3: %s', key)
            self.bucket.upload_fileobj(
                counter,
                self._object_name(key),
                ExtraArgs=extra_args or None,
            )
        except (BotoCoreError, ClientError, S3UploadFailedError) as error:
            logger.exception('Failed to upload blob to S3: %s', key)
            raise BackendUnavailableError('put', key) from error

        logger.info('Stored blob in S3: %s (%d bytes)', key, counter.bytes_read)
        return counter.bytes_read

    def get(self, key: str) -> BinaryIO:
        """Open a streaming body for the object at ``key``.

        Args:
            key: Object key.

        Returns:
            botocore StreamingBody; the caller closes it.

        Raises:
            BlobNotFoundError: If the object does not exist.
            BackendUnavailableError: On network or service errors.
        """
        try:
            response = self.bucket.Object(self._object_name(key)).get()
        except ClientError as error:
            if _is_missing(error):
                raise BlobNotFoundError(key) from error
            logger.exception('Failed to fetch blob from S3: %s', key)
            raise BackendUnavailableError('get', key) from error
        except BotoCoreError as error:
            logger.exception('Failed to fetch blob from S3: %s', key)
            raise BackendUnavailableError('get', key) from error
        return response['Body']

    @override
    def delete(self, key: str) -> bool:  # type: ignore[override]
        """Delete the object at ``key``; missing keys are not an error.

        Args:
            key: Object key.

        Returns:
            True if the object existed before the delete.

        Raises:
            BackendUnavailableError: On network or service errors.
        """
        existed = self.exists(key)
        try:
            logger.info('Deleting blob from S3: %s', key)
            self.bucket.Object(self._object_name(key)).delete()
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to delete blob from S3: %s', key)
            raise BackendUnavailableError('delete', key) from error
        return existed

    @override
    def exists(self, key: str) -> bool:
        """Check whether an object exists at ``key``.

        Raises:
            BackendUnavailableError: On network or service errors.
        """
        try:
            self.bucket.Object(self._object_name(key)).load()
        except ClientError as error:
            if _is_missing(error):
                return False
            raise BackendUnavailableError('exists', key) from error
        except BotoCoreError as error:
            raise BackendUnavailableError('exists', key) from error
        return True

    def iter_blobs(self) -> Iterator[StoredBlob]:
        """List every object under the configured location.

        Yields:
            Every stored blob with its last-modified time.
        """
        prefix = self._object_name('') if self.location else ''
        try:
            for summary in self.bucket.objects.filter(Prefix=prefix):
                key = summary.key[len(prefix):] if prefix else summary.key
                yield StoredBlob(key=key, modified_at=summary.last_modified)
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to list blobs in S3 bucket: %s', self.bucket_name)
            raise BackendUnavailableError('list', prefix) from error

    def rollback_upload(self, key: str, reason: str | None = None) -> None:
        """Best-effort delete of a blob no record will point at."""
        _rollback(self, key, reason)

    def _object_name(self, key: str) -> str:
        return self._normalize_name(clean_name(key))


@final
class _CountingReader:
    """Counts bytes handed to boto3, which does not report them."""

    def __init__(self, source: BinaryIO) -> None:
        self._source = source
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._source.read(size)
        self.bytes_read += len(chunk)
        return chunk

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False


def _is_missing(error: ClientError) -> bool:
    code = str(error.response.get('Error', {}).get('Code', ''))
    return code in _S3_MISSING_CODES


def get_blob_storage(storage_type: str | None = None) -> BlobStorage:
    """Return the backend for a storage type.

    Args:
        storage_type: ``local`` or ``s3``. Defaults to the backend new
            uploads are written to (``FILE_STORAGE_BACKEND``).

    Returns:
        Configured backend instance (cached by Django's storage handler).

    Raises:
        ValueError: If the storage type is unknown.
    """
    alias = storage_type or settings.FILE_STORAGE_BACKEND
    if alias not in STORAGE_TYPES:
        raise ValueError(f'Unknown storage type: {alias}')
    return storages[alias]  # type: ignore[return-value]
