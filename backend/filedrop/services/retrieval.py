"""Retrieval: resolve a public name to a record and stream its bytes.

Range handling follows a small state machine:

    no Range header            -> 200, whole object
    bytes=<start>-[<end>]      -> 206, end defaults/clamps to size - 1
    anything else / bad bounds -> 416, Content-Range: bytes */<size>
"""
import logging
import re
from dataclasses import dataclass, field
from typing import AsyncIterator
from urllib.parse import quote

from filedrop.errors import FileDropError, NotFound, RangeNotSatisfiable
from filedrop.models.file_record import FileRecord
from filedrop.services.file_catalog import FileCatalog

logger = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"^bytes=(\d+)-(\d*)$")


@dataclass
class ServedFile:
    status_code: int
    headers: dict[str, str]
    body: AsyncIterator[bytes] | None = field(default=None, repr=False)


def parse_range(header: str | None, size: int) -> tuple[int, int] | None:
    """Return the inclusive (start, end) to serve, or None for a full response.

    Raises RangeNotSatisfiable for malformed headers and unsatisfiable bounds.
    """
    if header is None:
        return None
    match = _RANGE_RE.match(header.strip())
    if not match:
        raise RangeNotSatisfiable(size)
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else size - 1
    if start > end or start >= size:
        raise RangeNotSatisfiable(size)
    return start, min(end, size - 1)


async def _primed(stream: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    """Pull the first chunk now so open-time failures surface before headers are sent."""
    try:
        first = await anext(stream)
    except StopAsyncIteration:
        first = None

    async def chained():
        try:
            if first is not None:
                yield first
            async for chunk in stream:
                yield chunk
        except FileDropError as e:
            # Headers are already on the wire; all we can do is drop the connection.
            logger.error(f"Stream aborted mid-response: {e.message}")
            raise
        finally:
            await stream.aclose()

    return chained()


class RetrievalService:
    def __init__(self, catalog: FileCatalog):
        self.catalog = catalog
        self.storage = catalog.storage

    async def resolve(self, name: str) -> FileRecord:
        """`name` is either "<id>" or "<id><ext>"; the extension must match."""
        file_id, dot, ext = name.partition(".")
        if not file_id:
            raise NotFound("File not found")
        record = await self.catalog.get(file_id)
        if dot and f".{ext.lower()}" != record.original_extension:
            raise NotFound("File not found")
        return record

    def _base_headers(self, record: FileRecord) -> dict[str, str]:
        filename = record.original_name or record.public_name
        return {
            "Content-Type": record.content_type,
            "Accept-Ranges": "bytes",
            "Content-Disposition": f"inline; filename*=UTF-8''{quote(filename)}",
        }

    async def serve(self, record: FileRecord, range_header: str | None = None, *, with_body: bool = True) -> ServedFile:
        size = record.size_bytes
        byte_range = parse_range(range_header, size)
        headers = self._base_headers(record)

        if byte_range is None:
            status = 200
            headers["Content-Length"] = str(size)
            stream = await self.storage.get_full(record.location) if with_body else None
        else:
            start, end = byte_range
            status = 206
            headers["Content-Range"] = f"bytes {start}-{end}/{size}"
            headers["Content-Length"] = str(end - start + 1)
            stream = await self.storage.get_range(record.location, start, end) if with_body else None

        if stream is None:
            # HEAD: still confirm the bytes exist so an orphaned record reads as 404.
            await self.storage.size(record.location)
            return ServedFile(status, headers)
        return ServedFile(status, headers, await _primed(stream))
