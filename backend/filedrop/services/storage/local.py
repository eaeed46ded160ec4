"""Filesystem storage backend."""
import asyncio
import logging
import os
import uuid
from pathlib import Path, PurePosixPath
from typing import AsyncIterator

import aiofiles
import aiofiles.os

from filedrop.errors import NotFound, StorageConflict, StorageIOError
from filedrop.services.storage.base import StorageBackend, check_range

logger = logging.getLogger(__name__)


class LocalFileStorage(StorageBackend):
    """Stores payloads as plain files under `base_path`.

    Layout: ``<base>/<first two chars>/<name>``. Writes land in ``<base>/.tmp``
    first and are published with a hard link, which refuses to replace an
    existing file.
    """

    name = "local"

    def __init__(self, base_path: str | Path, chunk_size: int = 64 * 1024):
        super().__init__(chunk_size)
        self.base_path = Path(base_path)
        self.temp_path = self.base_path / ".tmp"

    async def open(self) -> None:
        await aiofiles.os.makedirs(self.temp_path, exist_ok=True)
        files_removed = 0
        for entry in await aiofiles.os.listdir(self.temp_path):
            try:
                await aiofiles.os.unlink(self.temp_path / entry)
                files_removed += 1
            except FileNotFoundError:
                pass
        logger.info(f"Local storage ready at {self.base_path} (removed {files_removed} stale temp file(s))")

    def _path(self, location: str) -> Path:
        rel = PurePosixPath(location)
        if rel.is_absolute() or ".." in rel.parts or not rel.parts:
            raise StorageIOError(f"Invalid storage location: {location}")
        return self.base_path.joinpath(*rel.parts)

    async def put(self, name: str, chunks: AsyncIterator[bytes], size_hint: int | None = None) -> str:
        location = f"{name[:2]}/{name}"
        target = self._path(location)
        if await aiofiles.os.path.exists(target):
            raise StorageConflict(f"Storage location already exists: {location}")

        temp = self.temp_path / f"{uuid.uuid4().hex}.part"
        try:
            written = 0
            async with aiofiles.open(temp, "wb") as f:
                async for chunk in chunks:
                    await f.write(chunk)
                    written += len(chunk)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())
            if size_hint is not None and written != size_hint:
                raise StorageIOError(f"Short write for {location}: {written} of {size_hint} bytes")

            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            try:
                await aiofiles.os.link(temp, target)
            except FileExistsError:
                raise StorageConflict(f"Storage location already exists: {location}")
        except OSError as e:
            logger.error(f"Failed to write {location}: {e}")
            raise StorageIOError(f"Failed to write {location}") from e
        finally:
            try:
                await aiofiles.os.unlink(temp)
            except FileNotFoundError:
                pass
        return location

    async def size(self, location: str) -> int:
        try:
            stat = await aiofiles.os.stat(self._path(location))
        except FileNotFoundError:
            raise NotFound(f"No stored object at {location}")
        except OSError as e:
            raise StorageIOError(f"Failed to stat {location}") from e
        return stat.st_size

    async def get_full(self, location: str) -> AsyncIterator[bytes]:
        size = await self.size(location)
        return self._read(location, 0, size)

    async def get_range(self, location: str, start: int, end: int) -> AsyncIterator[bytes]:
        size = await self.size(location)
        end = check_range(start, end, size)
        return self._read(location, start, end - start + 1)

    async def _read(self, location: str, start: int, length: int) -> AsyncIterator[bytes]:
        # An already-open file keeps reading after a concurrent unlink.
        remaining = length
        try:
            async with aiofiles.open(self._path(location), "rb") as f:
                if start:
                    await f.seek(start)
                while remaining > 0:
                    chunk = await f.read(min(self.chunk_size, remaining))
                    if not chunk:
                        break
                    remaining -= len(chunk)
                    yield chunk
        except FileNotFoundError:
            raise NotFound(f"No stored object at {location}")
        except OSError as e:
            logger.error(f"Failed to read {location}: {e}")
            raise StorageIOError(f"Failed to read {location}") from e
        if remaining > 0:
            raise StorageIOError(f"Object {location} ended {remaining} byte(s) early")

    async def delete(self, location: str) -> None:
        try:
            await aiofiles.os.unlink(self._path(location))
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to delete {location}: {e}")
            raise StorageIOError(f"Failed to delete {location}") from e
