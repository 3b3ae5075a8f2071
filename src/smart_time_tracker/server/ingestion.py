"""Log ingestion: caller identity resolution and entry normalization."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from smart_time_tracker.core.errors import InvalidOrExpired, Unauthorized, ValidationError
from smart_time_tracker.core.models import round_half_up, utcnow
from smart_time_tracker.server.pairing import TokenService, normalize_string
from smart_time_tracker.server.storage import LogStorage, NormalizedLog

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def extract_bearer_token(header: str | None) -> str:
    """Token from an ``Authorization: Bearer ...`` header, or empty string."""
    value = normalize_string(header)
    if not value:
        return ""
    match = _BEARER_RE.match(value)
    return normalize_string(match.group(1)) if match else ""


def _coerce_number(value: Any) -> float:
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip()) if value.strip() else 0.0
        except ValueError:
            number = 0.0
    else:
        number = 0.0
    return number if math.isfinite(number) else 0.0


def normalize_entry(entry: Any, user_id: str, created_at: datetime) -> NormalizedLog | None:
    """Validated storage row for one raw entry, or ``None`` to drop it."""
    if not isinstance(entry, dict):
        return None

    domain = normalize_string(entry.get("domain"))
    duration = round_half_up(_coerce_number(entry.get("duration")))
    if not domain or duration <= 0:
        return None

    return NormalizedLog(
        user_id=user_id,
        domain=domain,
        duration=duration,
        start_time=normalize_string(entry.get("startTime")) or None,
        created_at=created_at,
    )


class LegacyIdentityResolver:
    """Untrusted legacy identity: a ``user_id`` taken from the request body as-is.

    Nothing verifies that the caller owns this id. Kept for clients that
    predate pairing; disable it to require bearer tokens.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def resolve(self, raw_user_id: Any) -> str:
        if not self.enabled:
            return ""
        return normalize_string(raw_user_id)


class IngestionService:
    """Accepts log batches from tracker clients."""

    def __init__(
        self,
        tokens: TokenService,
        storage: LogStorage,
        *,
        legacy: LegacyIdentityResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
        list_limit: int = 200,
        list_limit_with_dates: int = 2000,
    ):
        self.tokens = tokens
        self.storage = storage
        self.legacy = legacy or LegacyIdentityResolver()
        self._clock = clock
        self.list_limit = list_limit
        self.list_limit_with_dates = list_limit_with_dates

    def resolve_user(self, bearer_token: str, legacy_user_id: Any) -> str:
        """A presented token always wins; the legacy id is only a fallback."""
        if bearer_token:
            try:
                return self.tokens.validate(bearer_token)
            except InvalidOrExpired as e:
                raise Unauthorized() from e

        user_id = self.legacy.resolve(legacy_user_id)
        if not user_id:
            raise ValidationError("Missing identity (token or user_id)")
        return user_id

    def ingest(self, logs: Any, bearer_token: str = "", legacy_user_id: Any = None) -> int:
        """Store the valid entries of ``logs``; returns how many were inserted."""
        if not isinstance(logs, list):
            raise ValidationError("Invalid format: logs must be an array")

        user_id = self.resolve_user(bearer_token, legacy_user_id)

        created_at = self._clock()
        records = [r for r in (normalize_entry(e, user_id, created_at) for e in logs) if r is not None]
        if not records:
            return 0

        self.storage.insert(records)
        logger.info(f"Saved {len(records)} logs for user {user_id}")
        return len(records)

    def list_logs(
        self,
        user_id: Any = None,
        start_date: Any = None,
        end_date: Any = None,
    ) -> list[dict[str, Any]]:
        """Stored logs newest first; a date filter raises the row cap."""
        user_id = normalize_string(user_id)
        start_date = normalize_string(start_date)
        end_date = normalize_string(end_date)
        limit = self.list_limit_with_dates if (start_date or end_date) else self.list_limit
        return self.storage.query(
            user_id=user_id or None,
            start_date=start_date or None,
            end_date=end_date or None,
            limit=limit,
        )
