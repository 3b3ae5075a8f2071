"""Durable append-only queue of committed log records."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from smart_time_tracker.core.models import LogRecord
from smart_time_tracker.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueSnapshot:
    """Records pending at one instant, plus the position they end at."""

    records: list[LogRecord]
    last_id: int

    def __len__(self) -> int:
        return len(self.records)


class LogQueue:
    """Ordered records awaiting upload, stored in the ``log_queue`` table.

    Appending is the only mutation the tracker performs. Records leave the
    queue only through ``acknowledge``, which the sync engine calls after the
    server accepted a whole snapshot.
    """

    def __init__(self, db: Database):
        self._db = db

    async def append(self, record: LogRecord) -> int:
        """Append a record and return its queue position."""
        return await self._db.insert(
            "log_queue",
            {
                "domain": record.domain,
                "start_time": record.start_time,
                "duration": record.duration,
            },
        )

    async def snapshot(self) -> QueueSnapshot:
        """Return every pending record in append order."""
        rows = await self._db.fetch_all(
            "SELECT id, domain, start_time, duration FROM log_queue ORDER BY id"
        )
        records = [
            LogRecord(domain=row["domain"], start_time=row["start_time"], duration=row["duration"])
            for row in rows
        ]
        last_id = rows[-1]["id"] if rows else 0
        return QueueSnapshot(records=records, last_id=last_id)

    async def acknowledge(self, snapshot: QueueSnapshot) -> int:
        """Drop exactly the records covered by an acknowledged snapshot.

        Records appended after the snapshot was taken stay queued.
        """
        if not snapshot.records:
            return 0
        async with self._db.transaction():
            await self._db.execute("DELETE FROM log_queue WHERE id <= ?", (snapshot.last_id,))
        logger.debug(f"Acknowledged {len(snapshot)} queued records")
        return len(snapshot)

    async def pending_count(self) -> int:
        row = await self._db.fetch_one("SELECT COUNT(*) AS count FROM log_queue")
        return row["count"] if row else 0
