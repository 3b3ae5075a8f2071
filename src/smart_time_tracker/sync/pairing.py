"""Client side of pairing: redeem a code, manage stored credentials."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from smart_time_tracker.core.config import SyncConfig
from smart_time_tracker.core.errors import NotFoundOrExpired, TransientTransportFailure, ValidationError
from smart_time_tracker.storage.client_state import ClientState, normalize_string

logger = logging.getLogger(__name__)

PAIR_FINISH_PATH = "/api/extension/pair/finish"


@dataclass(frozen=True)
class PairingResult:
    user_id: str
    token_expires_in_seconds: int


class PairingClient:
    """Exchanges a dashboard pairing code for a token and keeps credentials."""

    def __init__(
        self,
        config: SyncConfig,
        state: ClientState,
        *,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self._state = state
        self._session_factory = session_factory

    async def finish(self, pair_code: str) -> PairingResult:
        """Redeem ``pair_code`` and store the issued token."""
        code = normalize_string(pair_code)
        if not code:
            raise ValidationError("Missing pair_code")

        try:
            async with self._session_factory() as session:
                async with session.post(
                    f"{self.api_url}{PAIR_FINISH_PATH}",
                    json={"pair_code": code},
                ) as resp:
                    data = await resp.json(content_type=None)
                    status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            raise TransientTransportFailure(f"Pairing request failed: {e}") from e

        if status == 400:
            raise NotFoundOrExpired(_error_message(data, "Invalid or expired pair_code"))
        if status != 200:
            raise TransientTransportFailure(_error_message(data, f"Server responded {status}"), status=status)

        if not isinstance(data, dict):
            raise TransientTransportFailure("Server returned a malformed pairing response", status=status)

        token = normalize_string(data.get("extension_token"))
        user_id = normalize_string(data.get("user_id"))
        if len(token) < self.config.min_token_length or not user_id:
            raise TransientTransportFailure("Server returned a malformed pairing response", status=status)

        expires_in = data.get("token_expires_in_seconds")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            expires_in = 0

        await self._state.store_token(token, user_id)
        logger.info(f"Paired with server as user {user_id}")
        return PairingResult(user_id=user_id, token_expires_in_seconds=int(expires_in))

    async def set_user_id(self, user_id: str) -> str:
        """Store a legacy user id used when no token is available."""
        value = normalize_string(user_id)
        if len(value) < self.config.min_user_id_length:
            raise ValidationError("Invalid user_id")
        await self._state.store_user_id(value)
        logger.info(f"User ID updated: {value}")
        return value

    async def sign_out(self) -> None:
        """Forget the token and the legacy user id."""
        await self._state.clear_credentials()
        logger.info("Signed out")


def _error_message(data: object, default: str) -> str:
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return default
