"""FileCatalog - the `files` table plus the one delete path everything uses."""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from filedrop.errors import NotFound, StorageConflict, StorageIOError
from filedrop.models.file_record import FileRecord
from filedrop.services.storage import StorageBackend

logger = logging.getLogger(__name__)


class FileCatalog:
    def __init__(self, storage: StorageBackend, session_factory: async_sessionmaker[AsyncSession]):
        self.storage = storage
        self._session_factory = session_factory

    async def add(self, record: FileRecord) -> FileRecord:
        """Insert a new record. Raises StorageConflict if the id is taken."""
        async with self._session_factory() as db:
            db.add(record)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise StorageConflict(f"File id already exists: {record.id}")
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to insert file record {record.id}: {e}")
                raise StorageIOError("Failed to save file record") from e
        return record

    async def get(self, file_id: str) -> FileRecord:
        try:
            async with self._session_factory() as db:
                record = await db.get(FileRecord, file_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to look up file record {file_id}: {e}")
            raise StorageIOError("Failed to look up file") from e
        if record is None:
            raise NotFound("File not found")
        return record

    async def list_expired(self, cutoff: datetime, limit: int = 500) -> list[FileRecord]:
        """Records created before `cutoff`, oldest first."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(FileRecord)
                .where(FileRecord.created_at < cutoff)
                .order_by(FileRecord.created_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def delete_file(self, record: FileRecord) -> None:
        """Delete stored bytes, then the record.

        If the bytes cannot be removed the record is kept so a later attempt
        can retry. Both steps are idempotent.
        """
        try:
            await self.storage.delete(record.location)
        except StorageIOError:
            logger.error(f"Keeping record {record.id}: bytes at {record.location} could not be deleted")
            raise

        try:
            async with self._session_factory() as db:
                existing = await db.get(FileRecord, record.id)
                if existing is not None:
                    await db.delete(existing)
                    await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Bytes for {record.id} deleted but record removal failed: {e}")
            raise StorageIOError(f"Failed to delete file record {record.id}") from e
        logger.info(f"Deleted file {record.id} ({record.size_bytes} bytes)")
