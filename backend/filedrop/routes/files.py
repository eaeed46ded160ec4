"""Files API routes: upload, streamed download, metadata, admin delete."""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response, StreamingResponse

from filedrop.errors import NoPayload, NotFound, TooLarge
from filedrop.schemas.common import DeleteResponse, ErrorResponse
from filedrop.schemas.file import FileMetadata, UploadResponse
from filedrop.services.ingest_validator import describe_size
from filedrop.services.multipart_stream import MultipartUpload
from filedrop.services.upload_pipeline import public_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])

# Room for multipart boundaries and part headers on top of the payload itself.
MULTIPART_OVERHEAD = 64 * 1024

_error_responses = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    416: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _base_url(request: Request) -> str:
    return request.app.state.settings.PUBLIC_BASE_URL or str(request.base_url)


@router.post("/upload", response_model=UploadResponse, responses=_error_responses)
async def upload_file(request: Request):
    """Upload a single file (multipart field `file`) and return its public URL."""
    settings = request.app.state.settings
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit():
        if int(content_length) > settings.MAX_FILE_SIZE + MULTIPART_OVERHEAD:
            logger.info(f"Rejected upload up front: Content-Length {content_length}")
            raise TooLarge(f"File is too large. Maximum size is {describe_size(settings.MAX_FILE_SIZE)}.")

    upload = MultipartUpload(
        request.headers.get("content-type"),
        request.stream(),
        max_overhead=MULTIPART_OVERHEAD,
    )
    part = await upload.open_file()
    if part is None:
        raise NoPayload("No file uploaded.")
    filename, content_type = part
    record = await request.app.state.pipeline.handle_stream(filename, content_type, upload.file_chunks())

    return UploadResponse(file_url=public_url(record, _base_url(request)))


@router.api_route("/files/{name}", methods=["GET", "HEAD"], responses=_error_responses)
async def download_file(name: str, request: Request):
    """Stream a stored file. Honors single `Range: bytes=start-end` requests."""
    retrieval = request.app.state.retrieval
    record = await retrieval.resolve(name)
    served = await retrieval.serve(
        record,
        request.headers.get("range"),
        with_body=request.method != "HEAD",
    )
    if served.body is None:
        return Response(status_code=served.status_code, headers=served.headers)
    return StreamingResponse(served.body, status_code=served.status_code, headers=served.headers)


@router.get("/api/files/{name}", response_model=FileMetadata, responses=_error_responses)
async def get_file_metadata(name: str, request: Request):
    """Get file metadata by public name."""
    record = await request.app.state.retrieval.resolve(name)
    return FileMetadata(
        id=record.id,
        extension=record.original_extension,
        content_type=record.content_type,
        size_bytes=record.size_bytes,
        created_at=record.created_at,
        file_url=public_url(record, _base_url(request)),
    )


@router.delete("/api/files/{name}", response_model=DeleteResponse, responses=_error_responses)
async def delete_file(name: str, request: Request):
    """Delete a file and its record. Disabled unless ADMIN_DELETE_ENABLED is set."""
    if not request.app.state.settings.ADMIN_DELETE_ENABLED:
        raise NotFound("Not found")
    record = await request.app.state.retrieval.resolve(name)
    await request.app.state.catalog.delete_file(record)
    return DeleteResponse(deleted=True, id=record.id)
