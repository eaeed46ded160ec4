"""Incremental multipart/form-data reader for the upload route.

The request body is fed to python-multipart's push parser one network chunk
at a time, so the file part reaches the pipeline as it arrives and nothing is
spooled before the size ceiling has been checked.
"""
import logging
from collections import deque
from typing import AsyncIterator

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from filedrop.errors import NoPayload, TooLarge, ValidationError

logger = logging.getLogger(__name__)

_HEADERS, _DATA, _END = "headers", "data", "end"


def _disposition(headers: dict[bytes, bytes]) -> tuple[str, str | None]:
    """(field name, filename or None) from a part's Content-Disposition."""
    _, params = parse_options_header(headers.get(b"content-disposition", b""))
    name = params.get(b"name", b"").decode("utf-8", errors="replace")
    filename = params.get(b"filename")
    return name, filename.decode("utf-8", errors="replace") if filename is not None else None


class MultipartUpload:
    """Reads a single file field out of a streamed multipart body.

    `max_overhead` bounds everything that is not file payload (boundaries,
    part headers, other fields). File payload is bounded by the caller, which
    stops pulling from `file_chunks()` once it has seen too much.
    """

    def __init__(
        self,
        content_type: str | None,
        body: AsyncIterator[bytes],
        *,
        field_name: str = "file",
        max_overhead: int = 64 * 1024,
    ):
        mime, params = parse_options_header(content_type or "")
        boundary = params.get(b"boundary")
        if mime != b"multipart/form-data" or not boundary:
            raise NoPayload("Expected a multipart/form-data upload with a `file` field.")

        self.field_name = field_name
        self.max_overhead = max_overhead
        self.bytes_received = 0
        self.file_bytes = 0
        self._file_seen = False
        self._in_file = False
        self._body = body.__aiter__()
        self._body_done = False
        self._events: deque = deque()
        self._header_field = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
            },
        )

    # Parser callbacks run synchronously inside write(); they only queue events.

    def _on_part_begin(self) -> None:
        self._headers = {}

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        name, filename = _disposition(self._headers)
        self._in_file = not self._file_seen and name == self.field_name and filename is not None
        self._file_seen = self._file_seen or self._in_file
        self._events.append((_HEADERS, self._headers))

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        chunk = bytes(data[start:end])
        if self._in_file:
            self.file_bytes += len(chunk)
        self._events.append((_DATA, chunk))

    def _on_part_end(self) -> None:
        self._in_file = False
        self._events.append((_END, None))

    def _feed(self, chunk: bytes | None) -> None:
        try:
            if chunk is None:
                self._parser.finalize()
            else:
                self._parser.write(chunk)
        except MultipartParseError as e:
            logger.info(f"Rejected malformed multipart body: {e}")
            raise ValidationError("Malformed multipart body.") from e
        if self.bytes_received - self.file_bytes > self.max_overhead:
            raise TooLarge("Too much form data besides the file.")

    async def _next_event(self):
        while not self._events:
            if self._body_done:
                return None
            try:
                chunk = await anext(self._body)
            except StopAsyncIteration:
                self._body_done = True
                self._feed(None)
                continue
            if chunk:
                self.bytes_received += len(chunk)
                self._feed(chunk)
        return self._events.popleft()

    async def _skip_part(self) -> None:
        while (event := await self._next_event()) is not None:
            if event[0] == _END:
                return

    async def open_file(self) -> tuple[str, str] | None:
        """Advance to the file field and return its (filename, content type).

        Other fields are read past and discarded. Returns None when the body
        ends without a file field.
        """
        while (event := await self._next_event()) is not None:
            kind, headers = event
            if kind != _HEADERS:
                continue
            name, filename = _disposition(headers)
            if name != self.field_name or filename is None:
                await self._skip_part()
                continue
            return filename, headers.get(b"content-type", b"").decode("latin-1")
        return None

    async def file_chunks(self) -> AsyncIterator[bytes]:
        """Yield the open file part's bytes, then check the rest of the body.

        A second file part in the same request is rejected, and so is a body
        that stops before the part is complete.
        """
        while True:
            event = await self._next_event()
            if event is None:
                raise ValidationError("Upload ended before the file was complete.")
            kind, payload = event
            if kind == _END:
                break
            if kind == _DATA:
                yield payload

        while (event := await self._next_event()) is not None:
            kind, headers = event
            if kind == _HEADERS and _disposition(headers)[1] is not None:
                raise ValidationError("Only one file may be uploaded per request.")
