"""Upload pipeline: validate -> stage -> generate id -> persist -> record.

From the caller's side the pipeline is all-or-nothing: either a committed
FileRecord comes back, or an error is raised and neither a record nor stored
bytes are left behind.
"""
import logging
import uuid
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Iterable

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from filedrop.errors import FileDropError, StorageConflict, StorageIOError
from filedrop.models.file_record import FileRecord
from filedrop.services.file_catalog import FileCatalog
from filedrop.services.identifiers import generate_identifier
from filedrop.services.ingest_validator import IngestValidator, normalize_extension

logger = logging.getLogger(__name__)

PostProcessHook = Callable[[FileRecord], Awaitable[None]]


def public_url(record: FileRecord, base_url: str) -> str:
    """Fully-qualified retrieval URL for a record."""
    return f"{base_url.rstrip('/')}/files/{record.public_name}"


class UploadPipeline:
    def __init__(
        self,
        catalog: FileCatalog,
        validator: IngestValidator,
        staging_path: str | Path,
        *,
        id_length: int = 10,
        id_alphabet: str = "base62",
        max_attempts: int = 5,
        chunk_size: int = 64 * 1024,
        hooks: Iterable[PostProcessHook] = (),
    ):
        self.catalog = catalog
        self.storage = catalog.storage
        self.validator = validator
        self.staging_path = Path(staging_path)
        self.id_length = id_length
        self.id_alphabet = id_alphabet
        self.max_attempts = max_attempts
        self.chunk_size = chunk_size
        self.hooks = list(hooks)

    @classmethod
    def from_settings(cls, catalog: FileCatalog, settings, hooks: Iterable[PostProcessHook] = ()) -> "UploadPipeline":
        return cls(
            catalog,
            IngestValidator.from_settings(settings),
            settings.FILE_STAGING_PATH,
            id_length=settings.ID_LENGTH,
            id_alphabet=settings.ID_ALPHABET,
            max_attempts=settings.ID_MAX_ATTEMPTS,
            chunk_size=settings.STREAM_CHUNK_SIZE,
            hooks=hooks,
        )

    async def prepare(self) -> None:
        """Create the staging directory and clear files left by a previous crash."""
        await aiofiles.os.makedirs(self.staging_path, exist_ok=True)
        for entry in await aiofiles.os.listdir(self.staging_path):
            try:
                await aiofiles.os.unlink(self.staging_path / entry)
            except FileNotFoundError:
                pass

    async def handle(self, upload: UploadFile) -> FileRecord:
        """Store an already-received form file."""
        return await self.handle_stream(upload.filename, upload.content_type, self._upload_chunks(upload))

    async def handle_stream(self, name: str | None, content_type: str | None, chunks: AsyncIterator[bytes]) -> FileRecord:
        """Store a file whose bytes are still arriving.

        `chunks` is pulled only while the running total is within the size
        ceiling; it is closed on every exit path.
        """
        self.validator.check_declared(name, content_type)

        staged = self.staging_path / f"{uuid.uuid4().hex}.upload"
        try:
            async with aclosing(chunks):
                size = await self._stage(chunks, staged)
            self.validator.validate(name, content_type, size)
            record = await self._persist(
                staged,
                size,
                extension=normalize_extension(name),
                original_name=Path(name.replace("\\", "/")).name,
                content_type=self.validator.resolve_content_type(name, content_type),
            )
        finally:
            try:
                await aiofiles.os.unlink(staged)
            except FileNotFoundError:
                pass

        logger.info(f"Stored upload {record.public_name} ({record.size_bytes} bytes, {record.content_type})")
        await self._run_hooks(record)
        return record

    async def _upload_chunks(self, upload: UploadFile) -> AsyncIterator[bytes]:
        while chunk := await upload.read(self.chunk_size):
            yield chunk

    async def _stage(self, chunks: AsyncIterator[bytes], staged: Path) -> int:
        """Write incoming chunks to the staging area, enforcing the size ceiling per chunk."""
        size = 0
        try:
            async with aiofiles.open(staged, "wb") as f:
                async for chunk in chunks:
                    size += len(chunk)
                    self.validator.check_size(size)
                    await f.write(chunk)
        except OSError as e:
            logger.error(f"Failed to stage upload at {staged}: {e}")
            raise StorageIOError("Failed to receive upload") from e
        return size

    async def _staged_chunks(self, staged: Path) -> AsyncIterator[bytes]:
        async with aiofiles.open(staged, "rb") as f:
            while chunk := await f.read(self.chunk_size):
                yield chunk

    async def _persist(self, staged: Path, size: int, *, extension: str, original_name: str, content_type: str) -> FileRecord:
        for attempt in range(1, self.max_attempts + 1):
            file_id = generate_identifier(self.id_length, self.id_alphabet)
            try:
                location = await self.storage.put(f"{file_id}{extension}", self._staged_chunks(staged), size)
            except StorageConflict:
                logger.warning(f"Identifier collision on {file_id} in storage (attempt {attempt}/{self.max_attempts})")
                continue

            record = FileRecord(
                id=file_id,
                original_extension=extension,
                original_name=original_name[:500],
                content_type=content_type,
                size_bytes=size,
                storage_backend=self.storage.name,
                location=location,
            )
            try:
                return await self.catalog.add(record)
            except StorageConflict:
                logger.warning(f"Identifier collision on {file_id} in catalog (attempt {attempt}/{self.max_attempts})")
                await self._discard(location)
            except BaseException:
                await self._discard(location)
                raise

        raise StorageConflict(f"Could not allocate a unique file id after {self.max_attempts} attempts")

    async def _discard(self, location: str) -> None:
        try:
            await self.storage.delete(location)
        except FileDropError:
            logger.error(f"Failed to remove unreferenced object at {location}")

    async def _run_hooks(self, record: FileRecord) -> None:
        for hook in self.hooks:
            try:
                await hook(record)
            except Exception as e:
                logger.error(f"Post-processing hook {getattr(hook, '__name__', hook)} failed for {record.id}: {e}")
