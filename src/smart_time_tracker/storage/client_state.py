"""Persisted client-side keys: active session slot and credentials."""

from __future__ import annotations

import json
import logging
from typing import Any

from smart_time_tracker.core.models import Session
from smart_time_tracker.storage.database import Database

logger = logging.getLogger(__name__)

ACTIVE_SESSION_KEY = "active_session"
TOKEN_KEY = "extension_token"
USER_ID_KEY = "user_id"
TOKEN_USER_ID_KEY = "token_user_id"


def normalize_string(value: Any) -> str:
    """Trimmed string, or empty string for anything that is not a string."""
    return value.strip() if isinstance(value, str) else ""


class ClientState:
    """Key/value view over the ``client_state`` table."""

    def __init__(self, db: Database):
        self._db = db

    async def get(self, key: str, default: Any = None) -> Any:
        row = await self._db.fetch_one("SELECT value FROM client_state WHERE key = ?", (key,))
        if row is None:
            return default
        return json.loads(row["value"])

    async def set(self, key: str, value: Any) -> None:
        await self._db.execute(
            """INSERT INTO client_state (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP""",
            (key, json.dumps(value)),
        )

    async def remove(self, *keys: str) -> None:
        for key in keys:
            await self._db.execute("DELETE FROM client_state WHERE key = ?", (key,))

    # Active session slot
    async def get_active_session(self) -> Session | None:
        data = await self.get(ACTIVE_SESSION_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return Session.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable session slot: {e}")
            return None

    async def set_active_session(self, session: Session | None) -> None:
        if session is None:
            await self.remove(ACTIVE_SESSION_KEY)
        else:
            await self.set(ACTIVE_SESSION_KEY, session.to_dict())

    # Credentials
    async def get_token(self) -> str:
        return normalize_string(await self.get(TOKEN_KEY))

    async def get_user_id(self) -> str:
        return normalize_string(await self.get(USER_ID_KEY))

    async def get_token_user_id(self) -> str:
        return normalize_string(await self.get(TOKEN_USER_ID_KEY))

    async def store_token(self, token: str, user_id: str) -> None:
        async with self._db.transaction():
            await self.set(TOKEN_KEY, token)
            await self.set(TOKEN_USER_ID_KEY, user_id)

    async def store_user_id(self, user_id: str) -> None:
        await self.set(USER_ID_KEY, user_id)

    async def clear_credentials(self) -> None:
        async with self._db.transaction():
            await self.remove(TOKEN_KEY, TOKEN_USER_ID_KEY, USER_ID_KEY)
