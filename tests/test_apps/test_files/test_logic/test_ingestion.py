"""Tests for the ingestion pipeline."""

import hashlib
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from io import BytesIO

import pytest
from django.db import DatabaseError, connections

from server.apps.files.exceptions import (
    BackendUnavailableError,
    InvalidInputError,
    PayloadTooLargeError,
    UploadInterruptedError,
)
from server.apps.files.infrastructure.thumbnails import thumbnail_key
from server.apps.files.logic.ingestion import IncomingFile
from server.apps.files.models import FileRecord


class _DroppedConnection:
    """Client stream that dies after the first chunk."""

    def __init__(self):
        self._sent = False

    def read(self, size=-1):
        if self._sent:
            raise OSError('connection reset by peer')
        self._sent = True
        return b'some bytes'


def _incoming(content, name, content_type=None, **kwargs):
    return IncomingFile(
        stream=BytesIO(content),
        original_filename=name,
        content_type=content_type,
        **kwargs,
    )


def _stored_keys(storage):
    return sorted(blob.key for blob in storage.iter_blobs())


@pytest.mark.django_db
class TestIngest:
    """Tests for successful ingestion."""

    def test_text_file(self, pipeline, local_storage, text_bytes):
        """Test a non-image upload creates a record pointing at its blob."""
        result = pipeline.ingest(_incoming(text_bytes, 'notes.txt', 'text/plain'))

        record = result.record
        assert not result.deduplicated
        assert record.original_filename == 'notes.txt'
        assert record.filename == f'{record.id}_notes.txt'
        assert record.file_path == record.filename
        assert record.file_size == len(text_bytes)
        assert record.mime_type == 'text/plain'
        assert record.storage_type == 'local'
        assert record.checksum == hashlib.sha256(text_bytes).hexdigest()
        assert record.thumbnail_path is None
        with local_storage.get(record.file_path) as stream:
            assert stream.read() == text_bytes

    def test_image_with_requested_filename(self, pipeline, local_storage, png_bytes):
        """Test images get a thumbnail and honour the requested name."""
        result = pipeline.ingest(
            _incoming(
                png_bytes,
                'IMG_0001.png',
                'image/png',
                requested_filename='holiday.png',
            ),
        )

        record = result.record
        assert record.filename == f'{record.id}_holiday.png'
        assert record.original_filename == 'IMG_0001.png'
        assert record.thumbnail_path == thumbnail_key(record.file_path)
        assert local_storage.exists(record.thumbnail_path)

    def test_mime_type_guessed_from_name(self, pipeline, text_bytes):
        """Test missing content types are guessed from the extension."""
        result = pipeline.ingest(_incoming(text_bytes, 'readme.txt'))

        assert result.record.mime_type == 'text/plain'

    def test_empty_file(self, pipeline, local_storage):
        """Test empty uploads are stored."""
        result = pipeline.ingest(_incoming(b'', 'empty.txt', 'text/plain'))

        assert result.record.file_size == 0
        assert local_storage.exists(result.record.file_path)

    def test_declared_size_is_advisory(self, pipeline, text_bytes):
        """Test the stored size is the counted one, not the declared one."""
        result = pipeline.ingest(
            _incoming(text_bytes, 'notes.txt', declared_size=999),
        )

        assert result.record.file_size == len(text_bytes)

    def test_s3_backend(self, make_pipeline, s3_storage, mock_s3, text_bytes):
        """Test records remember the backend they were written to."""
        result = make_pipeline(storage=s3_storage, storage_type='s3').ingest(
            _incoming(text_bytes, 'remote.txt', 'text/plain'),
        )

        assert result.record.storage_type == 's3'
        stored = mock_s3.Object('file-service', result.record.file_path).get()
        assert stored['ContentType'] == 'text/plain'


@pytest.mark.django_db
class TestDeduplication:
    """Tests for content deduplication."""

    def test_same_content_different_names(self, pipeline, local_storage, text_bytes):
        """Test identical content yields one record and one blob."""
        first = pipeline.ingest(_incoming(text_bytes, 'a.txt'))
        second = pipeline.ingest(_incoming(text_bytes, 'b.txt'))

        assert second.deduplicated
        assert second.record.id == first.record.id
        assert second.record.original_filename == 'a.txt'
        assert FileRecord.objects.count() == 1
        assert _stored_keys(local_storage) == [first.record.file_path]

    def test_different_content(self, pipeline):
        """Test different content yields different records."""
        first = pipeline.ingest(_incoming(b'one', 'same.txt'))
        second = pipeline.ingest(_incoming(b'two', 'same.txt'))

        assert first.record.id != second.record.id
        assert FileRecord.objects.count() == 2

    def test_concurrent_commit_resolves_to_winner(
        self,
        pipeline,
        local_storage,
        make_record,
        png_bytes,
        monkeypatch,
    ):
        """Test losing a commit race returns the winner and drops our blobs."""
        checksum = hashlib.sha256(png_bytes).hexdigest()
        winners = []

        def racing_thumbnail(filename, mime_type):
            # Another upload of the same bytes commits after our lookup
            winners.append(make_record(checksum=checksum, file_path='winner.png'))
            return None

        monkeypatch.setattr(pipeline, '_make_thumbnail', racing_thumbnail)

        result = pipeline.ingest(_incoming(png_bytes, 'photo.png', 'image/png'))

        assert result.deduplicated
        assert result.record.id == winners[0].id
        assert FileRecord.objects.count() == 1
        assert _stored_keys(local_storage) == []

    def test_concurrent_commit_drops_thumbnail(
        self,
        pipeline,
        local_storage,
        make_record,
        png_bytes,
        monkeypatch,
    ):
        """Test the loser's preview is removed along with its original."""
        checksum = hashlib.sha256(png_bytes).hexdigest()
        original_commit = pipeline._commit

        def racing_commit(record):
            make_record(checksum=checksum, file_path='winner.png')
            original_commit(record)

        monkeypatch.setattr(pipeline, '_commit', racing_commit)

        result = pipeline.ingest(_incoming(png_bytes, 'photo.png', 'image/png'))

        assert result.deduplicated
        assert result.record.file_path == 'winner.png'
        assert _stored_keys(local_storage) == []


@pytest.mark.django_db
class TestRejectedUploads:
    """Tests for uploads that must leave no trace."""

    def test_missing_filename(self, pipeline, local_storage):
        """Test parts without a name are rejected before any write."""
        with pytest.raises(InvalidInputError, match='No file provided'):
            pipeline.ingest(_incoming(b'data', ''))

        assert _stored_keys(local_storage) == []

    @pytest.mark.parametrize('name', ['script.exe', 'archive.tar.gz', 'noext'])
    def test_extension_not_allowed(self, pipeline, local_storage, name):
        """Test names outside the allow-list are rejected."""
        with pytest.raises(InvalidInputError):
            pipeline.ingest(_incoming(b'data', name))

        assert FileRecord.objects.count() == 0
        assert _stored_keys(local_storage) == []

    def test_invalid_content_type(self, pipeline):
        """Test malformed declared content types are rejected."""
        with pytest.raises(InvalidInputError, match='Invalid content type'):
            pipeline.ingest(_incoming(b'data', 'a.txt', 'garbage'))

    def test_too_large(self, make_pipeline, local_storage):
        """Test oversized streams are aborted and removed."""
        with pytest.raises(PayloadTooLargeError):
            make_pipeline(max_upload_size=10).ingest(
                _incoming(b'x' * 11, 'big.txt'),
            )

        assert FileRecord.objects.count() == 0
        assert _stored_keys(local_storage) == []

    def test_interrupted_stream(self, pipeline, local_storage):
        """Test a dropped client connection leaves no blob and no record."""
        incoming = IncomingFile(
            stream=_DroppedConnection(),
            original_filename='cut.txt',
        )

        with pytest.raises(UploadInterruptedError):
            pipeline.ingest(incoming)

        assert FileRecord.objects.count() == 0
        assert _stored_keys(local_storage) == []

    def test_storage_unavailable(self, pipeline, local_storage, monkeypatch):
        """Test backend failures propagate without creating a record."""

        def failing_put(key, stream, content_type=None):
            raise BackendUnavailableError('put', key)

        monkeypatch.setattr(local_storage, 'put', failing_put)

        with pytest.raises(BackendUnavailableError):
            pipeline.ingest(_incoming(b'data', 'a.txt'))

        assert FileRecord.objects.count() == 0

    def test_database_failure_removes_blobs(
        self,
        pipeline,
        local_storage,
        png_bytes,
        monkeypatch,
    ):
        """Test a failed insert deletes both the blob and its thumbnail."""

        def failing_commit(record):
            raise DatabaseError('database is locked')

        monkeypatch.setattr(pipeline, '_commit', failing_commit)

        with pytest.raises(DatabaseError):
            pipeline.ingest(_incoming(png_bytes, 'photo.png', 'image/png'))

        assert _stored_keys(local_storage) == []


@pytest.mark.django_db
def test_thumbnail_failure_is_not_fatal(pipeline, local_storage):
    """Test undecodable images are stored without a thumbnail."""
    result = pipeline.ingest(_incoming(b'not a png', 'broken.png', 'image/png'))

    assert result.record.thumbnail_path is None
    assert _stored_keys(local_storage) == [result.record.file_path]


@pytest.mark.django_db(transaction=True)
def test_parallel_identical_uploads(pipeline, local_storage, text_bytes):
    """Test clients uploading the same bytes at once share one record and blob."""
    clients = 8
    barrier = threading.Barrier(clients)

    def upload(number):
        try:
            barrier.wait()
            result = pipeline.ingest(_incoming(text_bytes, f'copy_{number}.txt'))
            return result.record.id
        finally:
            connections.close_all()

    with ThreadPoolExecutor(max_workers=clients) as executor:
        ids = list(executor.map(upload, range(clients)))

    assert len(ids) == clients
    assert len(set(ids)) == 1
    record = FileRecord.objects.get()
    assert record.id == ids[0]
    assert _stored_keys(local_storage) == [record.file_path]


@pytest.mark.django_db
def test_duplicate_discard_is_not_a_failure(pipeline, text_bytes, caplog, monkeypatch):
    """Test dropping a duplicate blob logs at info, not as a rollback."""
    monkeypatch.setattr(logging.getLogger('server'), 'propagate', True)
    pipeline.ingest(_incoming(text_bytes, 'a.txt'))

    with caplog.at_level(logging.INFO, logger='server'):
        pipeline.ingest(_incoming(text_bytes, 'b.txt'))

    storage_records = [
        record for record in caplog.records
        if record.name == 'server.apps.files.infrastructure.storage'
    ]
    assert all(record.levelno < logging.WARNING for record in storage_records)
    assert any(
        'duplicate content' in record.getMessage() for record in storage_records
    )
