"""Django upload handlers for the files API."""

from typing import final, override

from django.core.files.uploadhandler import FileUploadHandler
from django.http import HttpRequest

from server.apps.files.exceptions import PayloadTooLargeError


@final
class MaxSizeUploadHandler(FileUploadHandler):
    """Aborts multipart parsing once a file part passes the size limit.

    Installed first in ``request.upload_handlers``, it sees every chunk
    before the memory or temp-file handlers buffer it, so an oversized
    body is never spooled in full. Chunks below the limit are passed on
    untouched; the file object is built by the next handler.
    """

    def __init__(self, max_bytes: int, request: HttpRequest | None = None) -> None:
        """Initialize handler.

        Args:
            max_bytes: Largest accepted file part, in bytes.
            request: Request being parsed.
        """
        super().__init__(request)
        self.max_bytes = max_bytes

    @override
    def receive_data_chunk(self, raw_data: bytes, start: int) -> bytes:
        """Pass a chunk on, or stop the upload past the limit.

        Raises:
            PayloadTooLargeError: If the file part exceeds ``max_bytes``.
        """
        if start + len(raw_data) > self.max_bytes:
            raise PayloadTooLargeError(self.max_bytes)
        return raw_data

    @override
    def file_complete(self, file_size: int) -> None:
        """Leave building the uploaded file to the next handler."""
        return None
