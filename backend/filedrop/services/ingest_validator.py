"""Upload admission policy: size ceiling and extension/MIME allow-list."""
import logging
import mimetypes
import re
from pathlib import PurePosixPath

from filedrop.errors import NoPayload, TooLarge, TypeNotAllowed

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r"^\.[a-z0-9]{1,16}$")
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def describe_size(num_bytes: int) -> str:
    """Human-readable size limit: "10MB", "512KB" or "100 bytes"."""
    if num_bytes >= 1024 * 1024:
        return f"{num_bytes / (1024 * 1024):g}MB"
    if num_bytes >= 1024:
        return f"{num_bytes / 1024:g}KB"
    return f"{num_bytes} bytes"


def normalize_extension(filename: str | None) -> str:
    """Lower-cased extension with leading dot, or "" if unusable.

    Only the final suffix of the base name is kept and it must be short and
    alphanumeric, so nothing from the client can reach a storage path.
    """
    if not filename:
        return ""
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lower()
    return suffix if _EXTENSION_RE.match(suffix) else ""


def normalize_mime(mime: str | None) -> str:
    if not mime:
        return ""
    return mime.split(";", 1)[0].strip().lower()


class IngestValidator:
    """Decides whether an upload may be persisted.

    With filtering on, the extension and the declared MIME type must form one
    allow-list pair. The declared MIME type is client-supplied.
    """

    def __init__(
        self,
        max_file_size: int,
        allowed_types: set[tuple[str, str]] | None = None,
        type_filter_enabled: bool = True,
    ):
        self.max_file_size = max_file_size
        self.allowed_types = allowed_types or set()
        self.type_filter_enabled = type_filter_enabled

    @classmethod
    def from_settings(cls, settings) -> "IngestValidator":
        return cls(
            max_file_size=settings.MAX_FILE_SIZE,
            allowed_types=settings.allowed_type_pairs(),
            type_filter_enabled=settings.TYPE_FILTER_ENABLED,
        )

    def check_declared(self, declared_name: str | None, declared_mime: str | None) -> None:
        """Checks that only need the multipart part headers."""
        if not declared_name:
            raise NoPayload("No file uploaded.")
        if not self.type_filter_enabled:
            return
        pair = (normalize_extension(declared_name), normalize_mime(declared_mime))
        if pair not in self.allowed_types:
            logger.info(f"Rejected upload type ext={pair[0]!r} mime={pair[1]!r}")
            allowed = ", ".join(sorted({ext for ext, _ in self.allowed_types}))
            raise TypeNotAllowed(f"File type not allowed. Allowed: {allowed}")

    def check_size(self, streamed_byte_count: int) -> None:
        """Called after every received chunk so oversized uploads stop early."""
        if streamed_byte_count > self.max_file_size:
            raise TooLarge(f"File is too large. Maximum size is {describe_size(self.max_file_size)}.")

    def validate(self, declared_name: str | None, declared_mime: str | None, streamed_byte_count: int) -> None:
        self.check_declared(declared_name, declared_mime)
        self.check_size(streamed_byte_count)
        if streamed_byte_count == 0:
            raise NoPayload("Uploaded file is empty.")

    def resolve_content_type(self, declared_name: str | None, declared_mime: str | None) -> str:
        mime = normalize_mime(declared_mime)
        if mime and mime != DEFAULT_CONTENT_TYPE:
            return mime
        guessed, _ = mimetypes.guess_type(declared_name or "")
        return guessed or DEFAULT_CONTENT_TYPE
