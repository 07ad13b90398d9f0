"""Preview generation for image uploads."""

import logging
from io import BytesIO
from typing import Final, final

from PIL import Image, ImageOps

from server.apps.files.exceptions import (
    BackendUnavailableError,
    BlobNotFoundError,
    ThumbnailFailedError,
)
from server.apps.files.infrastructure.metadata import is_image_mime_type
from server.apps.files.infrastructure.storage import BlobStorage

logger = logging.getLogger(__name__)

THUMBNAIL_SUFFIX: Final = '.thumb.png'
THUMBNAIL_MIME_TYPE: Final = 'image/png'
_THUMBNAIL_FORMAT: Final = 'PNG'

# Modes PNG can store directly; anything else is converted
_PNG_MODES: Final = frozenset(('1', 'L', 'LA', 'P', 'RGB', 'RGBA', 'I;16'))


def thumbnail_key(key: str) -> str:
    """Derive the storage key of a preview from its original's key.

    Example: 'abc_photo.jpg' -> 'abc_photo.jpg.thumb.png'
    """
    return f'{key}{THUMBNAIL_SUFFIX}'


@final
class ThumbnailGenerator:
    """Renders bounded PNG previews of stored images."""

    def __init__(self, storage: BlobStorage, max_dimension: int) -> None:
        """Initialize generator.

        Args:
            storage: Backend holding originals; previews go to the same one.
            max_dimension: Longest edge of a preview, in pixels.
        """
        self._storage = storage
        self._max_dimension = max_dimension

    def supports(self, mime_type: str) -> bool:
        """Check whether previews can be generated for a MIME type."""
        return is_image_mime_type(mime_type)

    def generate(self, key: str, mime_type: str) -> str:
        """Render and store a preview of the blob at ``key``.

        The image is shrunk so neither side exceeds ``max_dimension``,
        keeping the aspect ratio; small images are never enlarged. The
        preview is always PNG whatever the input format.

        Args:
            key: Storage key of the original.
            mime_type: MIME type of the original.

        Returns:
            Storage key of the stored preview.

        Raises:
            ThumbnailFailedError: If the type is unsupported, the image cannot
                be decoded, or the preview cannot be stored.
        """
        if not self.supports(mime_type):
            raise ThumbnailFailedError(f'Unsupported image type: {mime_type}')

        preview = self._render(key)
        preview_key = thumbnail_key(key)
        try:
            self._storage.put(preview_key, preview, THUMBNAIL_MIME_TYPE)
        except BackendUnavailableError as error:
            self._storage.rollback_upload(preview_key)
            raise ThumbnailFailedError(
                f'Failed to store thumbnail for {key}',
            ) from error

        logger.info('Thumbnail generated: %s', preview_key)
        return preview_key

    def _render(self, key: str) -> BytesIO:
        try:
            stream = self._storage.get(key)
        except (BlobNotFoundError, BackendUnavailableError) as error:
            raise ThumbnailFailedError(f'Cannot read original {key}') from error

        try:
            # Most decoders need to seek, so the original is read fully
            source = BytesIO(stream.read())
        except OSError as error:
            raise ThumbnailFailedError(f'Cannot read original {key}') from error
        finally:
            stream.close()

        try:
            with Image.open(source) as image:
                # Multi-frame images render their first frame
                image.seek(0)
                frame = ImageOps.exif_transpose(image)
                frame.thumbnail(
                    (self._max_dimension, self._max_dimension),
                    Image.Resampling.LANCZOS,
                )
                if frame.mode not in _PNG_MODES:
                    frame = frame.convert('RGBA' if 'A' in frame.getbands() else 'RGB')
                output = BytesIO()
                frame.save(output, format=_THUMBNAIL_FORMAT, optimize=True)
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as error:
            # UnidentifiedImageError is an OSError
            raise ThumbnailFailedError(f'Cannot decode image {key}') from error

        output.seek(0)
        return output
