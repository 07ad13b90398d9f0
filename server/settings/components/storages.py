"""Django storage configuration for blob backends.

Two aliases are always defined:
- ``local``: files under ``FILE_STORAGE_ROOT`` on the local filesystem
- ``s3``: an S3-compatible bucket (AWS S3, MinIO, R2)

``FILE_STORAGE_BACKEND`` picks the alias new uploads are written to. It is
read once at startup; existing records keep using the alias stored in their
``storage_type`` column.
"""

from typing import Any, Final

from botocore.config import Config

from server.settings.components import BASE_DIR, config

FILE_STORAGE_BACKEND = config(
    'FILE_STORAGE_BACKEND',
    default='local',
)

# Chunk size used when streaming uploads to disk and downloads to clients
FILE_UPLOAD_CHUNK_SIZE = config(
    'FILE_UPLOAD_CHUNK_SIZE',
    cast=int,
    default=64 * 1024,
)

_LOCAL_STORAGE: Final[dict[str, Any]] = {
    'BACKEND': 'server.apps.files.infrastructure.storage.LocalBlobStorage',
    'OPTIONS': {
        'location': config(
            'FILE_STORAGE_ROOT',
            default=str(BASE_DIR.joinpath('uploads')),
        ),
        'chunk_size': FILE_UPLOAD_CHUNK_SIZE,
    },
}

_S3_STORAGE: Final[dict[str, Any]] = {
    'BACKEND': 'server.apps.files.infrastructure.storage.S3BlobStorage',
    'OPTIONS': {
        'bucket_name': config(
            'AWS_STORAGE_BUCKET_NAME',
            default='file-service',
        ),
        'access_key': config('AWS_ACCESS_KEY_ID', default=None),
        'secret_key': config('AWS_SECRET_ACCESS_KEY', default=None),
        'endpoint_url': config(
            'AWS_S3_ENDPOINT_URL',
            default=None,
        ),
        'region_name': config(
            'AWS_S3_REGION_NAME',
            default='us-east-1',
        ),
        'client_config': Config(
            connect_timeout=config('AWS_S3_CONNECT_TIMEOUT', cast=int, default=5),
            read_timeout=config('AWS_S3_READ_TIMEOUT', cast=int, default=30),
            retries={'max_attempts': 3, 'mode': 'standard'},
            s3={
                # MinIO needs 'path'
                'addressing_style': config(
                    'AWS_S3_ADDRESSING_STYLE',
                    default='auto',
                ),
            },
        ),
        'file_overwrite': True,  # Keys are id-prefixed, never reused
        'default_acl': None,  # Inherit bucket ACL
    },
}

STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': _S3_STORAGE if FILE_STORAGE_BACKEND == 's3' else _LOCAL_STORAGE,
    'local': _LOCAL_STORAGE,
    's3': _S3_STORAGE,
    'staticfiles': {
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
