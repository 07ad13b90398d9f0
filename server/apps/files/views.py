"""JSON API views for uploading, reading and deleting files."""

import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, Final
from uuid import UUID

from django.http import (
    FileResponse,
    HttpRequest,
    HttpResponse,
    JsonResponse,
)
from django.http.multipartparser import MultiPartParserError
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_http_methods

from server.apps.files.config import FileServiceConfig
from server.apps.files.exceptions import (
    BackendUnavailableError,
    FileServiceError,
    InvalidInputError,
    PayloadTooLargeError,
    RecordNotFoundError,
    StorageInconsistencyError,
)
from server.apps.files.infrastructure.thumbnails import THUMBNAIL_MIME_TYPE
from server.apps.files.infrastructure.upload_handlers import MaxSizeUploadHandler
from server.apps.files.logic.ingestion import IncomingFile, get_ingestion_pipeline
from server.apps.files.logic.retrieval import get_retrieval_service
from server.apps.files.models import FileRecord

logger = logging.getLogger(__name__)

_UPLOAD_FIELD: Final = 'file'
_FILENAME_FIELD: Final = 'filename'

# Most specific first: PayloadTooLargeError is an InvalidInputError
_ERROR_STATUS: Final[tuple[tuple[type[FileServiceError], int], ...]] = (
    (PayloadTooLargeError, 413),
    (InvalidInputError, 400),
    (RecordNotFoundError, 404),
    (BackendUnavailableError, 502),
    (StorageInconsistencyError, 500),
)

_View = Callable[..., HttpResponse]


def error_response(message: str, status: int) -> JsonResponse:
    """Build the JSON error body every endpoint returns."""
    return JsonResponse({'error': message}, status=status)


def translate_errors(view: _View) -> _View:
    """Map files app exceptions raised by a view to JSON error responses.

    Errors without a mapping are logged and returned as 500.
    """

    @wraps(view)
    def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> HttpResponse:
        try:
            return view(request, *args, **kwargs)
        except FileServiceError as error:
            for error_type, status in _ERROR_STATUS:
                if isinstance(error, error_type):
                    return error_response(str(error), status)
            logger.exception('Unmapped files error in %s', view.__name__)
            return error_response('Internal server error', 500)

    return wrapper


def serialize_record(record: FileRecord) -> dict[str, Any]:
    """Project a record to its public JSON representation."""
    return {
        'id': str(record.id),
        'filename': record.filename,
        'original_filename': record.original_filename,
        'size': record.file_size,
        'mime_type': record.mime_type,
        'uploaded_at': record.uploaded_at.isoformat(),
        'download_url': record.get_download_url(),
        'thumbnail_url': record.get_thumbnail_url(),
    }


@require_GET
def health(request: HttpRequest) -> JsonResponse:
    """Liveness probe."""
    return JsonResponse({'status': 'ok'})


@csrf_exempt
@require_http_methods(['POST'])
@translate_errors
def upload(request: HttpRequest) -> HttpResponse:
    """Ingest the ``file`` part of a multipart upload.

    An optional ``filename`` field overrides the name the blob is stored
    under; ``original_filename`` always keeps the client's part name.
    """
    max_bytes = FileServiceConfig.from_settings().max_upload_size
    request.upload_handlers.insert(0, MaxSizeUploadHandler(max_bytes, request))
    try:
        uploaded = request.FILES.get(_UPLOAD_FIELD)
        requested_filename = request.POST.get(_FILENAME_FIELD) or None
    except MultiPartParserError as error:
        logger.warning('Malformed multipart upload: %s', error)
        return error_response('Malformed multipart body', 400)

    if uploaded is None:
        return error_response('No file provided', 400)

    incoming = IncomingFile(
        stream=uploaded,
        original_filename=uploaded.name or '',
        content_type=uploaded.content_type,
        requested_filename=requested_filename,
        declared_size=uploaded.size,
    )
    try:
        result = get_ingestion_pipeline().ingest(incoming)
    finally:
        uploaded.close()

    record = result.record
    return JsonResponse(
        {
            'id': str(record.id),
            'filename': record.filename,
            'url': record.get_url(),
            'size': record.file_size,
            'mime_type': record.mime_type,
        },
        status=201,
    )


@require_GET
def file_list(request: HttpRequest) -> JsonResponse:
    """List the most recent uploads, newest first."""
    records = get_retrieval_service().list_recent()
    return JsonResponse([serialize_record(record) for record in records], safe=False)


@csrf_exempt
@require_http_methods(['GET', 'DELETE'])
@translate_errors
def file_detail(request: HttpRequest, file_id: UUID) -> HttpResponse:
    """Return the metadata of a file, or delete it."""
    service = get_retrieval_service()
    if request.method == 'DELETE':
        service.delete(file_id)
        return HttpResponse(status=204)
    return JsonResponse(serialize_record(service.get_record(file_id)))


@require_GET
@translate_errors
def download(request: HttpRequest, file_id: UUID) -> HttpResponse:
    """Stream the original bytes as an attachment."""
    record, stream = get_retrieval_service().open_original(file_id)
    response = FileResponse(
        stream,
        as_attachment=True,
        filename=record.original_filename,
        content_type=record.mime_type,
    )
    response.block_size = FileServiceConfig.from_settings().chunk_size
    # Streams without a local path (S3 bodies) get no automatic length
    response['Content-Length'] = str(record.file_size)
    return response


@require_GET
@translate_errors
def thumbnail(request: HttpRequest, file_id: UUID) -> HttpResponse:
    """Stream the PNG preview of an image upload."""
    _, stream = get_retrieval_service().open_thumbnail(file_id)
    response = FileResponse(stream, content_type=THUMBNAIL_MIME_TYPE)
    response.block_size = FileServiceConfig.from_settings().chunk_size
    return response
