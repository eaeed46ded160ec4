"""Retention sweeper - deletes files older than the retention period.

Runs as an asyncio task owned by the app lifespan. Stopping it waits for a
sweep that is already running instead of cancelling it half-way.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from filedrop.errors import FileDropError
from filedrop.services.file_catalog import FileCatalog

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    deleted: int = 0
    failed: int = 0


class RetentionSweeper:
    def __init__(self, catalog: FileCatalog, retention_period: timedelta, interval: float, batch_size: int = 500):
        self.catalog = catalog
        self.retention_period = retention_period
        self.interval = interval
        self.batch_size = batch_size
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def sweep_once(self, now: datetime | None = None) -> SweepReport:
        """Delete every record created before now - retention_period.

        A record that fails to delete is logged and left in place for the next
        sweep; it never stops the rest of the sweep.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.retention_period
        report = SweepReport()
        skipped: set[str] = set()

        while True:
            batch = [
                r for r in await self.catalog.list_expired(cutoff, limit=self.batch_size + len(skipped))
                if r.id not in skipped
            ]
            if not batch:
                break
            for record in batch:
                try:
                    await self.catalog.delete_file(record)
                    report.deleted += 1
                except FileDropError as e:
                    report.failed += 1
                    skipped.add(record.id)
                    logger.error(f"Retention: failed to delete {record.id} at {record.location}: {e.message}")

        if report.deleted or report.failed:
            logger.info(f"Retention sweep: deleted={report.deleted} failed={report.failed} cutoff={cutoff.isoformat()}")
        return report

    async def run(self) -> None:
        """Sweep immediately, then every `interval` seconds until stopped."""
        logger.info(f"Retention sweeper started (retention={self.retention_period}, interval={self.interval}s)")
        while True:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Retention sweep error: {e}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
        logger.info("Retention sweeper stopped")

    def start(self) -> asyncio.Task:
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        await self._task
        self._task = None
