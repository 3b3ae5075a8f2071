"""Durable storage collaborator for ingested activity logs (SQLAlchemy)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Protocol

from sqlalchemy import Column, DateTime, Index, Integer, String, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from smart_time_tracker.core.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

Base = declarative_base()


class ActivityLog(Base):
    """Time spent on one domain, as uploaded by a tracker client."""

    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(255), nullable=False, index=True)
    domain = Column(String(255), nullable=False)
    duration = Column(Integer, nullable=False)  # seconds
    start_time = Column(String(64), nullable=True)  # client-reported ISO-8601
    created_at = Column(DateTime, nullable=False)  # naive UTC

    __table_args__ = (
        Index("idx_activity_user_created", "user_id", "created_at"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "domain": self.domain,
            "duration": self.duration,
            "start_time": self.start_time,
            "created_at": self.created_at.isoformat() + "Z" if self.created_at else None,
        }


@dataclass(frozen=True)
class NormalizedLog:
    """A log entry that passed ingestion checks."""

    user_id: str
    domain: str
    duration: int
    start_time: str | None
    created_at: datetime


class LogStorage(Protocol):
    """What the ingestion endpoint needs from a storage backend."""

    def insert(self, records: list[NormalizedLog]) -> None:
        """Persist all records or none; raises ``StorageError``."""
        ...

    def query(
        self,
        user_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        """Stored records, newest first."""
        ...


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_day(value: str, field: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except ValueError as e:
        raise ValidationError(f"Invalid {field}") from e


class SqlLogStorage:
    """``LogStorage`` backed by any SQLAlchemy database URL."""

    def __init__(self, database_url: str):
        kwargs: dict[str, Any] = {}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(bind=self.engine)

    def insert(self, records: list[NormalizedLog]) -> None:
        try:
            with self._session_factory.begin() as db:
                db.add_all(
                    ActivityLog(
                        user_id=r.user_id,
                        domain=r.domain,
                        duration=r.duration,
                        start_time=r.start_time,
                        created_at=_naive_utc(r.created_at),
                    )
                    for r in records
                )
        except SQLAlchemyError as e:
            logger.error(f"Storage insert failed: {e}")
            raise StorageError(str(e.__cause__ or e), details={"type": type(e).__name__}) from e

    def query(
        self,
        user_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 200,
    ) -> list[dict[str, Any]]:
        try:
            with self._session_factory() as db:
                q = db.query(ActivityLog)
                if user_id:
                    q = q.filter(ActivityLog.user_id == user_id)
                if start_date:
                    day = _parse_day(start_date, "start_date")
                    q = q.filter(ActivityLog.created_at >= datetime.combine(day, time.min))
                if end_date:
                    day = _parse_day(end_date, "end_date")
                    q = q.filter(ActivityLog.created_at <= datetime.combine(day, time.max))
                rows = q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
                return [row.to_dict() for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Storage query failed: {e}")
            raise StorageError(str(e.__cause__ or e), details={"type": type(e).__name__}) from e

    def close(self) -> None:
        self.engine.dispose()
