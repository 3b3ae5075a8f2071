"""Session and log record value types."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Timezone-aware current UTC time; the default tracker clock."""
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    """Round with halves going up, like JavaScript's ``Math.round``."""
    return math.floor(value + 0.5)


def isoformat_z(value: datetime) -> str:
    """Render an aware datetime as ISO-8601 with millisecond precision and ``Z``."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class Session:
    """An open span of time attributed to one domain."""

    domain: str
    start_time: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted slot representation."""
        return {"domain": self.domain, "startTime": self.start_time.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session | None:
        """Rebuild a session from its slot; ``None`` for incomplete slots."""
        domain = data.get("domain")
        start = data.get("startTime")
        if not domain or not start:
            return None
        start_time = datetime.fromisoformat(start)
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        return cls(domain=domain, start_time=start_time)

    def duration_until(self, now: datetime) -> float:
        """Seconds elapsed between the session start and ``now``."""
        return (now - self.start_time).total_seconds()


@dataclass(frozen=True)
class LogRecord:
    """A closed, immutable record of time spent on one domain."""

    domain: str
    start_time: str
    duration: float

    @classmethod
    def from_session(cls, session: Session, duration: float) -> LogRecord:
        return cls(
            domain=session.domain,
            start_time=isoformat_z(session.start_time),
            duration=duration,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire format accepted by ``POST /api/logs``."""
        return {
            "domain": self.domain,
            "startTime": self.start_time,
            "duration": self.duration,
        }
