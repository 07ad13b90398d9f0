"""Metadata helpers for uploads: names, extensions, MIME types."""

import mimetypes
import re
from pathlib import PurePosixPath, PureWindowsPath
from typing import Final
from uuid import UUID

from django.core.exceptions import SuspiciousFileOperation
from django.utils.text import get_valid_filename

DEFAULT_MIME_TYPE: Final = 'application/octet-stream'

# Image types Pillow can decode into a preview
IMAGE_MIME_TYPES: Final = frozenset((
    'image/png',
    'image/jpeg',
    'image/jpg',
    'image/gif',
    'image/webp',
    'image/bmp',
    'image/tiff',
))

_FILENAME_MAX_LENGTH: Final = 255
_MIME_TYPE_PATTERN: Final = re.compile(
    r'^[a-z0-9][a-z0-9!#$&^_.+-]*/[a-z0-9][a-z0-9!#$&^_.+-]*$',
)
_FALLBACK_NAME: Final = 'file'


def detect_mime_type(declared: str | None, filename: str) -> str:
    """Resolve the MIME type stored for an upload.

    The type declared in the multipart part wins. When the client sends
    nothing (or the generic octet-stream), the type is guessed from the
    filename extension.

    Args:
        declared: Content type from the multipart part, may be None.
        filename: Original filename with extension.

    Returns:
        Lowercase MIME type without parameters (e.g., 'image/png').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    if declared:
        mime_type = declared.split(';', 1)[0].strip().lower()
        if mime_type and mime_type != DEFAULT_MIME_TYPE:
            return mime_type

    guessed, _ = mimetypes.guess_type(filename)
    if guessed is None:
        return DEFAULT_MIME_TYPE
    return guessed


def is_valid_mime_type(mime_type: str) -> bool:
    """Check that a MIME type has the ``type/subtype`` shape."""
    return bool(_MIME_TYPE_PATTERN.match(mime_type))


def is_image_mime_type(mime_type: str) -> bool:
    """Check whether previews can be generated for a MIME type."""
    return mime_type.lower() in IMAGE_MIME_TYPES


def get_file_extension(filename: str) -> str:
    """Get file extension from filename.

    Args:
        filename: Filename (e.g., 'document.pdf').

    Returns:
        Extension without dot, lowercase (e.g., 'pdf').
        Returns empty string if no extension.
    """
    extension = PurePosixPath(filename).suffix
    return extension.lstrip('.').lower()


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied name to a safe single path component.

    Directory parts (POSIX or Windows style) are dropped, then Django's
    ``get_valid_filename`` removes anything outside ``[-\\w.]``.

    Args:
        filename: Raw name from the client.

    Returns:
        Safe filename, never empty.
    """
    basename = PureWindowsPath(PurePosixPath(filename).name).name
    try:
        cleaned = get_valid_filename(basename)
    except SuspiciousFileOperation:
        return _FALLBACK_NAME
    # No hidden files under the storage root
    cleaned = cleaned.lstrip('.')
    return cleaned or _FALLBACK_NAME


def build_storage_filename(file_id: UUID, chosen_name: str) -> str:
    """Build the id-prefixed name used as storage key and ``filename``.

    Args:
        file_id: Identifier of the new record.
        chosen_name: Requested name, or the original one.

    Returns:
        ``{id}_{sanitized name}``, at most 255 characters long.
    """
    prefix = f'{file_id}_'
    safe_name = sanitize_filename(chosen_name)
    budget = _FILENAME_MAX_LENGTH - len(prefix)
    if len(safe_name) > budget:
        # Keep the extension, trim the stem
        suffix = PurePosixPath(safe_name).suffix[:budget]
        safe_name = safe_name[:budget - len(suffix)] + suffix
    return f'{prefix}{safe_name}'
