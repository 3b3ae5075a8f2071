"""Upload of queued log records to the ingestion server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import aiohttp

from smart_time_tracker.core.config import SyncConfig
from smart_time_tracker.core.errors import TransientTransportFailure
from smart_time_tracker.core.models import utcnow
from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.log_queue import LogQueue, QueueSnapshot

logger = logging.getLogger(__name__)

LOGS_PATH = "/api/logs"


class SyncOutcome(str, Enum):
    """What a single sync tick did."""

    SYNCED = "synced"
    EMPTY = "empty"
    NO_CREDENTIALS = "no_credentials"
    BUSY = "busy"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncResult:
    outcome: SyncOutcome
    count: int = 0
    error: str | None = None


@dataclass(frozen=True)
class Identity:
    """Credentials for one batch: a bearer token or an untrusted legacy user id."""

    token: str | None = None
    user_id: str | None = None

    @property
    def uses_token(self) -> bool:
        return self.token is not None


def resolve_identity(
    token: str,
    user_id: str,
    min_token_length: int = 20,
    min_user_id_length: int = 6,
) -> Identity | None:
    """Prefer a well-formed token, fall back to a legacy user id."""
    token = token.strip()
    user_id = user_id.strip()
    if len(token) >= min_token_length:
        return Identity(token=token)
    if len(user_id) >= min_user_id_length:
        return Identity(user_id=user_id)
    return None


def build_request(snapshot: QueueSnapshot, identity: Identity) -> tuple[dict[str, str], dict[str, Any]]:
    """Headers and JSON body for one batch; token auth and body identity never mix."""
    headers = {"Content-Type": "application/json"}
    body: dict[str, Any] = {"logs": [record.to_dict() for record in snapshot.records]}
    if identity.uses_token:
        headers["Authorization"] = f"Bearer {identity.token}"
    else:
        body["user_id"] = identity.user_id
    return headers, body


class SyncEngine:
    """Drains the local log queue to ``POST /api/logs``.

    Runs on a fixed timer plus a short-delay trigger after each commit.
    Each tick sends the whole queue as one batch and removes it only when
    the server answered with a success status. Batches never overlap: a
    tick that fires while one is in flight does nothing.
    """

    def __init__(
        self,
        config: SyncConfig,
        queue: LogQueue,
        state: ClientState,
        *,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self._queue = queue
        self._state = state
        self._session_factory = session_factory
        self._clock = clock

        self._running = False
        self._in_flight = False
        self._task: asyncio.Task | None = None
        self._trigger_handle: asyncio.TimerHandle | None = None
        self._triggered: set[asyncio.Task] = set()
        self._last_sync: datetime | None = None
        self._last_result: SyncResult | None = None

    async def start(self) -> None:
        """Start periodic sync."""
        if not self.config.enabled:
            logger.info("Sync is disabled")
            return
        if self._running:
            return

        self._running = True
        logger.info(f"Starting sync to {self.api_url} (every {self.config.interval_seconds}s)")
        self._task = asyncio.create_task(self._sync_loop())

    async def stop(self) -> None:
        """Stop periodic sync."""
        self._running = False

        if self._trigger_handle:
            self._trigger_handle.cancel()
            self._trigger_handle = None

        tasks = [t for t in [self._task, *self._triggered] if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._triggered.clear()
        logger.info("Sync stopped")

    async def _sync_loop(self) -> None:
        """Main sync loop."""
        while self._running:
            try:
                await self.sync_now()
            except Exception as e:
                logger.error(f"Sync error: {e}")
            await asyncio.sleep(self.config.interval_seconds)

    def trigger(self, *_: Any) -> None:
        """Schedule a sync shortly; repeated calls before it runs coalesce."""
        if not self._running:
            return
        if self._trigger_handle is not None:
            return

        loop = asyncio.get_running_loop()
        self._trigger_handle = loop.call_later(self.config.trigger_delay_seconds, self._fire_trigger)

    def _fire_trigger(self) -> None:
        self._trigger_handle = None
        task = asyncio.create_task(self._triggered_sync())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)

    async def _triggered_sync(self) -> None:
        try:
            await self.sync_now()
        except Exception as e:
            logger.error(f"Sync error: {e}")

    async def sync_now(self) -> SyncResult:
        """Perform one sync tick."""
        if self._in_flight:
            logger.debug("Sync already in flight, skipping tick")
            return SyncResult(SyncOutcome.BUSY)

        self._in_flight = True
        try:
            result = await self._sync_once()
        finally:
            self._in_flight = False

        self._last_result = result
        return result

    async def _sync_once(self) -> SyncResult:
        snapshot = await self._queue.snapshot()
        if not snapshot.records:
            return SyncResult(SyncOutcome.EMPTY)

        identity = resolve_identity(
            await self._state.get_token(),
            await self._state.get_user_id(),
            self.config.min_token_length,
            self.config.min_user_id_length,
        )
        if identity is None:
            logger.warning(
                "No valid extension token (and no valid legacy user id); "
                "skipping sync and keeping logs locally"
            )
            return SyncResult(SyncOutcome.NO_CREDENTIALS)

        if not identity.uses_token:
            logger.warning("No valid extension token yet; falling back to legacy user id upload")

        try:
            await self._post_batch(snapshot, identity)
        except TransientTransportFailure as e:
            logger.warning(f"Sync failed, keeping {len(snapshot)} logs to retry: {e}")
            return SyncResult(SyncOutcome.FAILED, error=str(e))

        await self._queue.acknowledge(snapshot)
        self._last_sync = self._clock()
        logger.info(f"Synced {len(snapshot)} logs to server")
        return SyncResult(SyncOutcome.SYNCED, count=len(snapshot))

    async def _post_batch(self, snapshot: QueueSnapshot, identity: Identity) -> None:
        headers, body = build_request(snapshot, identity)
        try:
            async with self._session_factory() as session:
                async with session.post(f"{self.api_url}{LOGS_PATH}", json=body, headers=headers) as resp:
                    if not 200 <= resp.status < 300:
                        text = await resp.text()
                        raise TransientTransportFailure(
                            f"Server responded {resp.status}: {text[:200]}", status=resp.status
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransientTransportFailure(f"Network error: {e}") from e

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def status(self) -> dict[str, Any]:
        """Get sync status."""
        return {
            "enabled": self.config.enabled,
            "api_url": self.api_url,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_outcome": self._last_result.outcome.value if self._last_result else None,
            "in_flight": self._in_flight,
            "running": self._running,
        }
