"""File ingestion and retrieval settings."""

from server.settings.components import config

# Hard limit on bytes counted while streaming an upload to storage
FILE_MAX_UPLOAD_SIZE = config(
    'FILE_MAX_UPLOAD_SIZE',
    cast=int,
    default=10 * 1024 * 1024,
)

# Extensions (lowercase, without dot) accepted for the original filename
FILE_ALLOWED_EXTENSIONS = config(
    'FILE_ALLOWED_EXTENSIONS',
    cast=lambda raw: tuple(
        extension.strip().lower().lstrip('.')
        for extension in raw.split(',')
        if extension.strip()
    ),
    default='jpg,jpeg,png,gif,pdf,doc,docx,txt',
)

# Longest edge of generated previews, in pixels
THUMBNAIL_MAX_DIMENSION = config('THUMBNAIL_MAX_DIMENSION', cast=int, default=200)

# Size of the "recent files" listing
FILE_RECENT_LIMIT = config('FILE_RECENT_LIMIT', cast=int, default=100)

# Blobs younger than this are never treated as orphans by the sweep
FILE_ORPHAN_GRACE_MINUTES = config(
    'FILE_ORPHAN_GRACE_MINUTES',
    cast=int,
    default=60,
)
