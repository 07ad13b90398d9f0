"""Process-wide configuration handed to files components."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Self

from django.conf import settings


@dataclass(frozen=True, slots=True)
class FileServiceConfig:
    """Immutable settings snapshot passed to component constructors.

    Attributes:
        storage_type: Backend new uploads are written to.
        max_upload_size: Upload size limit in bytes.
        allowed_extensions: Accepted extensions of the original filename.
        chunk_size: Bytes per read when streaming blobs.
        thumbnail_max_dimension: Longest edge of previews, in pixels.
        recent_limit: Size of the recent files listing.
        orphan_grace: Minimum blob age before the sweep may delete it.
    """

    storage_type: str
    max_upload_size: int
    allowed_extensions: tuple[str, ...]
    chunk_size: int
    thumbnail_max_dimension: int
    recent_limit: int
    orphan_grace: timedelta

    @classmethod
    def from_settings(cls) -> Self:
        """Build the configuration from Django settings."""
        return cls(
            storage_type=settings.FILE_STORAGE_BACKEND,
            max_upload_size=settings.FILE_MAX_UPLOAD_SIZE,
            allowed_extensions=tuple(settings.FILE_ALLOWED_EXTENSIONS),
            chunk_size=settings.FILE_UPLOAD_CHUNK_SIZE,
            thumbnail_max_dimension=settings.THUMBNAIL_MAX_DIMENSION,
            recent_limit=settings.FILE_RECENT_LIMIT,
            orphan_grace=timedelta(minutes=settings.FILE_ORPHAN_GRACE_MINUTES),
        )
