"""Relational storage backend: payloads split into rows of ``file_chunks``.

All rows of one object are inserted in a single transaction, so the commit is
the publish step and a rollback discards a partial upload. Each row records
its byte offset, which lets range reads fetch only the rows they need.
"""
import logging
from typing import AsyncIterator

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filedrop.errors import NotFound, StorageConflict, StorageIOError
from filedrop.models.file_chunk import FileChunk
from filedrop.services.storage.base import StorageBackend, check_range, rechunk

logger = logging.getLogger(__name__)


class DatabaseBlobStorage(StorageBackend):
    name = "database"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], chunk_size: int = 256 * 1024):
        super().__init__(chunk_size)
        self._session_factory = session_factory

    async def put(self, name: str, chunks: AsyncIterator[bytes], size_hint: int | None = None) -> str:
        location = name
        async with self._session_factory() as db:
            try:
                existing = await db.scalar(
                    select(FileChunk.seq).where(FileChunk.location == location).limit(1)
                )
                if existing is not None:
                    raise StorageConflict(f"Storage location already exists: {location}")

                seq = 0
                offset = 0
                async for piece in rechunk(chunks, self.chunk_size):
                    row = FileChunk(location=location, seq=seq, offset=offset, size=len(piece), data=piece)
                    db.add(row)
                    await db.flush()
                    # Flushed rows stay in the transaction; drop them from the identity map.
                    db.expunge(row)
                    seq += 1
                    offset += len(piece)
                if seq == 0:
                    db.add(FileChunk(location=location, seq=0, offset=0, size=0, data=b""))
                if size_hint is not None and offset != size_hint:
                    raise StorageIOError(f"Short write for {location}: {offset} of {size_hint} bytes")
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise StorageConflict(f"Storage location already exists: {location}")
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to write {location}: {e}")
                raise StorageIOError(f"Failed to write {location}") from e
        return location

    async def size(self, location: str) -> int:
        try:
            async with self._session_factory() as db:
                row = (await db.execute(
                    select(func.count(FileChunk.seq), func.coalesce(func.sum(FileChunk.size), 0))
                    .where(FileChunk.location == location)
                )).one()
        except SQLAlchemyError as e:
            raise StorageIOError(f"Failed to read size of {location}") from e
        count, total = row
        if not count:
            raise NotFound(f"No stored object at {location}")
        return int(total)

    async def get_full(self, location: str) -> AsyncIterator[bytes]:
        size = await self.size(location)
        return self._read(location, 0, size - 1)

    async def get_range(self, location: str, start: int, end: int) -> AsyncIterator[bytes]:
        size = await self.size(location)
        end = check_range(start, end, size)
        return self._read(location, start, end)

    async def _read(self, location: str, start: int, end: int) -> AsyncIterator[bytes]:
        """Yield the rows covering [start, end].

        No session is open while a chunk is with the consumer.
        """
        if end < start:
            return
        try:
            async with self._session_factory() as db:
                spans = (await db.execute(
                    select(FileChunk.seq, FileChunk.offset)
                    .where(
                        FileChunk.location == location,
                        FileChunk.offset <= end,
                        FileChunk.offset + FileChunk.size > start,
                    )
                    .order_by(FileChunk.seq)
                )).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to read {location}: {e}")
            raise StorageIOError(f"Failed to read {location}") from e

        for seq, offset in spans:
            try:
                async with self._session_factory() as db:
                    data = await db.scalar(
                        select(FileChunk.data).where(FileChunk.location == location, FileChunk.seq == seq)
                    )
            except SQLAlchemyError as e:
                logger.error(f"Failed to read {location} chunk {seq}: {e}")
                raise StorageIOError(f"Failed to read {location}") from e
            if data is None:
                raise NotFound(f"No stored object at {location}")
            lo = max(start - offset, 0)
            hi = min(end - offset + 1, len(data))
            yield bytes(data[lo:hi])

    async def delete(self, location: str) -> None:
        try:
            async with self._session_factory() as db:
                await db.execute(delete(FileChunk).where(FileChunk.location == location))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to delete {location}: {e}")
            raise StorageIOError(f"Failed to delete {location}") from e
