"""Business logic for reading and deleting stored files."""

import logging
from typing import BinaryIO, final
from uuid import UUID

from django.db import transaction

from server.apps.files.config import FileServiceConfig
from server.apps.files.exceptions import (
    BlobNotFoundError,
    RecordNotFoundError,
    StorageInconsistencyError,
)
from server.apps.files.infrastructure.storage import get_blob_storage
from server.apps.files.models import FileRecord

logger = logging.getLogger(__name__)


@final
class RetrievalService:
    """Resolves file ids to metadata and blob streams.

    Every existence check goes through the database; storage is only
    consulted for records that exist. Blobs are read from the backend named
    by each record's ``storage_type``, whatever backend new uploads use.
    """

    def __init__(self, config: FileServiceConfig) -> None:
        """Initialize service.

        Args:
            config: Service configuration.
        """
        self._config = config

    def get_record(self, file_id: UUID) -> FileRecord:
        """Get a file record by id.

        Raises:
            RecordNotFoundError: If no record exists.
        """
        try:
            return FileRecord.objects.get(id=file_id)
        except FileRecord.DoesNotExist as error:
            raise RecordNotFoundError(file_id) from error

    def open_original(self, file_id: UUID) -> tuple[FileRecord, BinaryIO]:
        """Open the original bytes of a file.

        Args:
            file_id: Record id.

        Returns:
            Tuple of (record, readable stream). The caller closes the stream.

        Raises:
            RecordNotFoundError: If no record exists.
            StorageInconsistencyError: If the record's blob is missing.
            BackendUnavailableError: If storage cannot be reached.
        """
        record = self.get_record(file_id)
        return record, self._open_blob(record, record.file_path)

    def open_thumbnail(self, file_id: UUID) -> tuple[FileRecord, BinaryIO]:
        """Open the preview of a file.

        Missing previews are expected (non-images, failed renders) and
        reported as not found, not as an inconsistency.

        Args:
            file_id: Record id.

        Returns:
            Tuple of (record, readable PNG stream).

        Raises:
            RecordNotFoundError: If no record or no thumbnail exists.
            StorageInconsistencyError: If the recorded preview blob is missing.
        """
        record = self.get_record(file_id)
        if not record.thumbnail_path:
            raise RecordNotFoundError(file_id, 'Thumbnail not found')
        return record, self._open_blob(record, record.thumbnail_path)

    def list_recent(self, limit: int | None = None) -> list[FileRecord]:
        """List the most recently uploaded files, newest first.

        Args:
            limit: Maximum records; capped at the configured page size.

        Returns:
            List of FileRecord objects.
        """
        page_size = self._config.recent_limit
        if limit is not None:
            page_size = max(0, min(limit, page_size))
        return list(FileRecord.objects.order_by('-uploaded_at')[:page_size])

    def delete(self, file_id: UUID) -> None:
        """Delete a file record and its blobs.

        The row goes first, so the file stops being visible even if blob
        removal fails. Blobs are removed after commit by the post_delete
        handler in signals.py, which logs failures as orphans instead of
        raising.

        Args:
            file_id: Record id.

        Raises:
            RecordNotFoundError: If no record exists.
        """
        with transaction.atomic():
            record = (
                FileRecord.objects
                .select_for_update()
                .filter(id=file_id)
                .first()
            )
            if record is None:
                raise RecordNotFoundError(file_id)
            record.delete()

        logger.info('File record deleted: %s (%s)', file_id, record.file_path)

    def _open_blob(self, record: FileRecord, key: str) -> BinaryIO:
        storage = get_blob_storage(record.storage_type)
        try:
            return storage.get(key)
        except BlobNotFoundError as error:
            logger.error(
                'Record %s points at missing %s blob: %s',
                record.id,
                record.storage_type,
                key,
            )
            raise StorageInconsistencyError(
                record.id,
                key,
                record.storage_type,
            ) from error


def get_retrieval_service() -> RetrievalService:
    """Build a retrieval service from settings."""
    return RetrievalService(FileServiceConfig.from_settings())
