"""Database models for files app."""

import uuid
from typing import Final, final, override

from django.db import models
from django.urls import reverse

# Constants for field max lengths
_FILENAME_MAX_LENGTH: Final = 255
_PATH_MAX_LENGTH: Final = 500
_MIME_TYPE_MAX_LENGTH: Final = 100
_STORAGE_TYPE_MAX_LENGTH: Final = 50
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length


class StorageType(models.TextChoices):
    """Backends a blob can live in."""

    LOCAL = 'local', 'Local filesystem'
    S3 = 's3', 'S3-compatible object store'


@final
class FileRecord(models.Model):
    """Metadata of an ingested file; the source of truth for what exists.

    Rows are created only after the blob (and optional thumbnail) were
    written to storage, so every row points at bytes that exist in the
    backend named by ``storage_type``. The reverse does not hold: a blob
    may exist without a row (orphan) until the sweep reclaims it.
    """

    id = models.UUIDField(
        primary_key=True,
        default=uuid.uuid4,
        editable=False,
    )

    filename = models.CharField(
        max_length=_FILENAME_MAX_LENGTH,
        help_text='Storage-facing name: {id}_{sanitized name}',
    )

    original_filename = models.CharField(
        max_length=_FILENAME_MAX_LENGTH,
        help_text='Name supplied by the client at upload time',
    )

    file_path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        help_text='Backend-specific storage key of the original',
    )

    file_size = models.PositiveBigIntegerField(
        help_text='Bytes written to storage',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
    )

    storage_type = models.CharField(
        max_length=_STORAGE_TYPE_MAX_LENGTH,
        choices=StorageType.choices,
        default=StorageType.LOCAL,
    )

    checksum = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        unique=True,
        help_text='SHA256 of the content, used for deduplication',
    )

    thumbnail_path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        null=True,
        blank=True,
        help_text='Storage key of the PNG preview, same backend as the file',
    )

    # Timestamps
    uploaded_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        db_table = 'files'
        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['-uploaded_at']

        indexes = [
            models.Index(fields=['filename'], name='idx_files_filename'),
            models.Index(fields=['uploaded_at'], name='idx_files_uploaded_at'),
            models.Index(fields=['mime_type'], name='idx_files_mime_type'),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.storage_type}:{self.file_path}'

    def has_thumbnail(self) -> bool:
        """Check whether a preview was stored for this file."""
        return bool(self.thumbnail_path)

    def get_url(self) -> str:
        """Get metadata URL for file."""
        return reverse('files:detail', kwargs={'file_id': self.id})

    def get_download_url(self) -> str:
        """Get URL streaming the original bytes."""
        return reverse('files:download', kwargs={'file_id': self.id})

    def get_thumbnail_url(self) -> str | None:
        """Get URL streaming the preview.

        Returns:
            Thumbnail URL, or None when no preview exists.
        """
        if not self.has_thumbnail():
            return None
        return reverse('files:thumbnail', kwargs={'file_id': self.id})
