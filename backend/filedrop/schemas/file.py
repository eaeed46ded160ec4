"""File request/response schemas."""
from datetime import datetime
from filedrop.schemas.base import CamelModel


class UploadResponse(CamelModel):
    file_url: str


class FileMetadata(CamelModel):
    """Public view of a FileRecord. The storage location is never included."""
    id: str
    extension: str
    content_type: str
    size_bytes: int
    created_at: datetime
    file_url: str
