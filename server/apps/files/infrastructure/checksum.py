"""Single-pass checksum computation for streamed uploads."""

import hashlib
from typing import BinaryIO, Final, final

from server.apps.files.exceptions import (
    PayloadTooLargeError,
    UploadInterruptedError,
)

CHECKSUM_ALGORITHM: Final = 'sha256'


@final
class ChecksumReader:
    """Read-only stream that hashes and counts bytes as they pass through.

    Storage backends read from this object instead of the raw upload, so
    the digest covers exactly the bytes handed to storage and the upload
    is never read twice.

    The reader is non-seekable, so boto3 managed transfers upload it part
    by part instead of trying to rewind it.
    """

    def __init__(self, source: BinaryIO, max_bytes: int | None = None) -> None:
        """Wrap a source stream.

        Args:
            source: Upload stream to read from.
            max_bytes: Optional limit; exceeding it aborts the read.
        """
        self._source = source
        self._max_bytes = max_bytes
        self._digest = hashlib.new(CHECKSUM_ALGORITHM)
        self._bytes_read = 0
        self._finalized = False

    @property
    def bytes_read(self) -> int:
        """Number of bytes passed through so far."""
        return self._bytes_read

    def read(self, size: int = -1) -> bytes:
        """Read from the source, updating the digest and byte count.

        Args:
            size: Maximum bytes to read, -1 for everything remaining.

        Returns:
            Bytes read, empty at end of stream.

        Raises:
            UploadInterruptedError: If the source stream fails.
            PayloadTooLargeError: If the size limit is exceeded.
            ValueError: If the reader was already finalized.
        """
        if self._finalized:
            raise ValueError('Checksum already finalized, stream is closed')

        try:
            chunk = self._source.read(size)
        except OSError as error:
            raise UploadInterruptedError(
                'Upload stream ended unexpectedly',
            ) from error

        if not chunk:
            return b''

        self._bytes_read += len(chunk)
        if self._max_bytes is not None and self._bytes_read > self._max_bytes:
            raise PayloadTooLargeError(self._max_bytes)

        self._digest.update(chunk)
        return chunk

    def readable(self) -> bool:
        """Readers are always readable."""
        return True

    def seekable(self) -> bool:
        """Readers never rewind."""
        return False

    def hexdigest(self) -> str:
        """Finalize and return the hex digest.

        Call only after storage confirmed the write; no reads are allowed
        afterwards.

        Returns:
            Lowercase hex digest (64 characters for SHA-256).
        """
        self._finalized = True
        return self._digest.hexdigest()
