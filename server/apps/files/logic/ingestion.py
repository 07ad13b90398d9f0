"""Business logic for file ingestion.

An upload runs through a strict sequence:

1. validate the request (no side effects)
2. stream bytes to storage while hashing and counting them
3. look up an existing record with the same checksum
4. render a thumbnail for images
5. insert the record

Storage and database share no transaction. The pipeline only ever leaves
orphan blobs behind (reclaimed by the sweep), never a record without its
blob: the row is inserted last, and every failure before or during the
insert deletes what was written.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import BinaryIO, final

from django.db import IntegrityError, transaction

from server.apps.files.config import FileServiceConfig
from server.apps.files.exceptions import (
    DedupConflictError,
    InvalidInputError,
    ThumbnailFailedError,
)
from server.apps.files.infrastructure.checksum import ChecksumReader
from server.apps.files.infrastructure.metadata import (
    build_storage_filename,
    detect_mime_type,
    get_file_extension,
    is_valid_mime_type,
)
from server.apps.files.infrastructure.storage import BlobStorage, get_blob_storage
from server.apps.files.infrastructure.thumbnails import ThumbnailGenerator
from server.apps.files.models import FileRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IncomingFile:
    """One file part of a multipart upload.

    Attributes:
        stream: Readable stream with the file bytes.
        original_filename: Name the client attached to the part.
        content_type: Declared MIME type of the part, if any.
        requested_filename: Optional name the client asked to store under.
        declared_size: Client-declared length; advisory only.
    """

    stream: BinaryIO
    original_filename: str
    content_type: str | None = None
    requested_filename: str | None = None
    declared_size: int | None = None


@dataclass(frozen=True, slots=True)
class IngestionResult:
    """Outcome of an ingestion.

    Attributes:
        record: Canonical record for the uploaded content.
        deduplicated: True when the content was already stored and
            ``record`` is the pre-existing one.
    """

    record: FileRecord
    deduplicated: bool


@final
class IngestionPipeline:
    """Turns an incoming upload into a committed FileRecord."""

    def __init__(
        self,
        storage: BlobStorage,
        config: FileServiceConfig,
        thumbnails: ThumbnailGenerator | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            storage: Backend new blobs are written to.
            config: Service configuration.
            thumbnails: Preview generator; defaults to one on ``storage``.
        """
        self._storage = storage
        self._config = config
        self._thumbnails = thumbnails or ThumbnailGenerator(
            storage,
            config.thumbnail_max_dimension,
        )

    def ingest(self, incoming: IncomingFile) -> IngestionResult:
        """Store an upload and commit its metadata.

        Identical content uploaded twice yields the same record: the second
        copy is deleted from storage and the first record is returned as if
        it had just been created.

        Args:
            incoming: Upload to ingest.

        Returns:
            IngestionResult with the canonical record.

        Raises:
            InvalidInputError: If the upload is rejected (includes interrupted
                and oversized streams).
            BackendUnavailableError: If storage fails during the write.
        """
        mime_type = self._validate(incoming)

        # Step 1: Identity and storage key
        file_id = uuid.uuid4()
        chosen_name = incoming.requested_filename or incoming.original_filename
        filename = build_storage_filename(file_id, chosen_name)

        # Step 2: Stream to storage, hashing on the way
        checksum, file_size = self._write(filename, incoming, mime_type)

        # Step 3: Deduplicate against committed records
        existing = FileRecord.objects.filter(checksum=checksum).first()
        if existing is not None:
            logger.info(
                'Duplicate content %s, reusing file %s',
                checksum,
                existing.id,
            )
            self._discard(filename, reason='duplicate content')
            return IngestionResult(record=existing, deduplicated=True)

        # Step 4: Optional preview
        thumbnail_path = self._make_thumbnail(filename, mime_type)

        # Step 5: Commit metadata
        record = FileRecord(
            id=file_id,
            filename=filename,
            original_filename=incoming.original_filename,
            file_path=filename,
            file_size=file_size,
            mime_type=mime_type,
            storage_type=self._storage.storage_type,
            checksum=checksum,
            thumbnail_path=thumbnail_path,
        )
        try:
            self._commit(record)
        except DedupConflictError as conflict:
            return self._resolve_conflict(conflict, filename, thumbnail_path)
        except Exception:
            logger.exception(
                'Database insert failed, rolling back storage upload: %s',
                filename,
            )
            self._discard(filename, thumbnail_path)
            raise

        logger.info(
            'File uploaded: %s (%d bytes, %s)',
            record.id,
            record.file_size,
            record.mime_type,
        )
        return IngestionResult(record=record, deduplicated=False)

    def _validate(self, incoming: IncomingFile) -> str:
        """Check the request and resolve its MIME type.

        Returns:
            MIME type to store.

        Raises:
            InvalidInputError: If the upload cannot be accepted.
        """
        if not incoming.original_filename:
            raise InvalidInputError('No file provided')

        extension = get_file_extension(incoming.original_filename)
        allowed = self._config.allowed_extensions
        if allowed and extension not in allowed:
            raise InvalidInputError(
                f'File extension .{extension} is not allowed'
                if extension else 'Invalid file extension',
            )

        mime_type = detect_mime_type(
            incoming.content_type,
            incoming.original_filename,
        )
        if not is_valid_mime_type(mime_type):
            raise InvalidInputError(f'Invalid content type: {mime_type}')
        return mime_type

    def _write(
        self,
        filename: str,
        incoming: IncomingFile,
        mime_type: str,
    ) -> tuple[str, int]:
        """Write the stream to storage and finalize its checksum.

        Returns:
            Tuple of (hex checksum, bytes written).
        """
        reader = ChecksumReader(
            incoming.stream,
            max_bytes=self._config.max_upload_size,
        )
        try:
            written = self._storage.put(filename, reader, mime_type)
        except Exception:
            logger.warning('Upload aborted, no record created: %s', filename)
            self._storage.rollback_upload(filename)
            raise

        if incoming.declared_size is not None and incoming.declared_size != written:
            logger.info(
                'Declared size %d differs from %d bytes written: %s',
                incoming.declared_size,
                written,
                filename,
            )
        return reader.hexdigest(), written

    def _make_thumbnail(self, filename: str, mime_type: str) -> str | None:
        if not self._thumbnails.supports(mime_type):
            return None
        try:
            return self._thumbnails.generate(filename, mime_type)
        except ThumbnailFailedError as error:
            logger.warning(
                'Thumbnail skipped for %s: %s',
                filename,
                error,
                exc_info=error.__cause__ is not None,
            )
            return None

    def _commit(self, record: FileRecord) -> None:
        """Insert the record.

        Raises:
            DedupConflictError: If another upload committed the same
                checksum after our dedup lookup.
        """
        try:
            with transaction.atomic():
                record.save(force_insert=True)
        except IntegrityError as error:
            if FileRecord.objects.filter(checksum=record.checksum).exists():
                raise DedupConflictError(record.checksum) from error
            raise

    def _resolve_conflict(
        self,
        conflict: DedupConflictError,
        filename: str,
        thumbnail_path: str | None,
    ) -> IngestionResult:
        logger.warning(
            'Concurrent upload of %s won the race, discarding %s',
            conflict.checksum,
            filename,
        )
        self._discard(filename, thumbnail_path, reason='lost concurrent upload')
        winner = FileRecord.objects.get(checksum=conflict.checksum)
        return IngestionResult(record=winner, deduplicated=True)

    def _discard(self, *keys: str | None, reason: str | None = None) -> None:
        for key in keys:
            if key:
                self._storage.rollback_upload(key, reason)


def get_ingestion_pipeline() -> IngestionPipeline:
    """Build a pipeline writing to the configured storage backend."""
    config = FileServiceConfig.from_settings()
    return IngestionPipeline(get_blob_storage(config.storage_type), config)
