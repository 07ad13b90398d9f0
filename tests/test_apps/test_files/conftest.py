"""Shared fixtures for files app tests."""

import dataclasses
import os
import time
from io import BytesIO

import boto3
import pytest
from moto import mock_aws
from PIL import Image

from server.apps.files.config import FileServiceConfig
from server.apps.files.infrastructure.storage import get_blob_storage
from server.apps.files.logic.ingestion import IngestionPipeline
from server.apps.files.models import FileRecord

_TEST_BUCKET = 'file-service'


@pytest.fixture
def local_storage(settings, tmp_path):
    """Point the ``local`` alias at a temporary directory.

    Returns:
        LocalBlobStorage writing under ``tmp_path / 'uploads'``.
    """
    storages = dict(settings.STORAGES)
    storages['local'] = {
        'BACKEND': 'server.apps.files.infrastructure.storage.LocalBlobStorage',
        'OPTIONS': {'location': str(tmp_path / 'uploads')},
    }
    settings.STORAGES = storages
    settings.FILE_STORAGE_BACKEND = 'local'
    return get_blob_storage('local')


@pytest.fixture
def mock_s3():
    """Mock S3 service with file-service bucket.

    Yields:
        boto3 S3 resource with file-service bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_TEST_BUCKET)
        yield conn


@pytest.fixture
def s3_storage(settings, mock_s3):
    """Point the ``s3`` alias at the mocked bucket.

    Returns:
        S3BlobStorage backed by moto.
    """
    storages = dict(settings.STORAGES)
    storages['s3'] = {
        'BACKEND': 'server.apps.files.infrastructure.storage.S3BlobStorage',
        'OPTIONS': {
            'bucket_name': _TEST_BUCKET,
            'access_key': 'testing',
            'secret_key': 'testing',
            'region_name': 'us-east-1',
            'file_overwrite': True,
            'default_acl': None,
        },
    }
    settings.STORAGES = storages
    return get_blob_storage('s3')


@pytest.fixture
def file_config(settings, local_storage):
    """Service configuration with small, test-friendly limits.

    Returns:
        FileServiceConfig built from settings.
    """
    settings.FILE_MAX_UPLOAD_SIZE = 1024 * 1024
    settings.THUMBNAIL_MAX_DIMENSION = 200
    return FileServiceConfig.from_settings()


@pytest.fixture
def pipeline(local_storage, file_config):
    """Ingestion pipeline writing to local storage.

    Returns:
        IngestionPipeline instance.
    """
    return IngestionPipeline(local_storage, file_config)


@pytest.fixture
def make_pipeline(local_storage, file_config):
    """Factory for pipelines with overridden configuration.

    Returns:
        Callable taking config overrides and returning a pipeline.
    """

    def factory(storage=None, **overrides):
        config = dataclasses.replace(file_config, **overrides)
        return IngestionPipeline(storage or local_storage, config)

    return factory


def _render_image(size=(400, 300), image_format='PNG', mode='RGB'):
    output = BytesIO()
    Image.new(mode, size).save(output, format=image_format)
    return output.getvalue()


@pytest.fixture
def make_image():
    """Factory rendering solid images with Pillow.

    Returns:
        Callable taking size, image_format and mode, returning encoded bytes.
    """
    return _render_image


@pytest.fixture
def png_bytes():
    """A 400x300 PNG image.

    Returns:
        PNG bytes.
    """
    return _render_image()


@pytest.fixture
def text_bytes():
    """Plain text content for non-image uploads.

    Returns:
        Text bytes.
    """
    return b'test file content\n'


@pytest.fixture
def make_record(db):
    """Factory for file records that point at arbitrary keys.

    Returns:
        Callable creating FileRecord rows.
    """
    counter = iter(range(1, 10_000))

    def factory(**fields):
        number = next(counter)
        defaults = {
            'filename': f'record_{number}.txt',
            'original_filename': f'record_{number}.txt',
            'file_path': f'record_{number}.txt',
            'file_size': 10,
            'mime_type': 'text/plain',
            'storage_type': 'local',
            'checksum': f'{number:064x}',
        }
        defaults.update(fields)
        return FileRecord.objects.create(**defaults)

    return factory


@pytest.fixture
def age_blob():
    """Factory moving the modification time of a local blob into the past.

    Returns:
        Callable taking (storage, key, seconds).
    """

    def age(storage, key, seconds):
        past = time.time() - seconds
        os.utime(storage.path(key), (past, past))

    return age
