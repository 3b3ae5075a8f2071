"""Session tracker turning tab and idle events into committed log records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from urllib.parse import urlsplit

from smart_time_tracker.core.errors import TabUnavailable
from smart_time_tracker.core.models import LogRecord, Session, utcnow
from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.database import Database
from smart_time_tracker.storage.log_queue import LogQueue
from smart_time_tracker.trackers.events import (
    CloseSession,
    IdleChanged,
    IdleState,
    TabChanged,
    TabResolver,
    TrackerEvent,
)

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_PREFIXES = ("chrome://", "edge://", "about:")

_STOP = object()


def domain_from_url(url: str | None, ignored_prefixes: Iterable[str] = DEFAULT_IGNORED_PREFIXES) -> str | None:
    """Host component of a web URL, or ``None`` for internal and non-web pages."""
    if not url:
        return None
    if any(url.startswith(prefix) for prefix in ignored_prefixes):
        return None
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    return host or None


class SessionTracker:
    """Owns the single active session.

    Two logical states: Idle (empty slot) and Tracking(domain). Events are
    consumed one at a time from an inbox, so a close always completes before
    the next event is looked at. The slot lives in the client database; a
    close appends the record and empties the slot in one transaction.
    """

    def __init__(
        self,
        db: Database,
        resolver: TabResolver,
        *,
        state: ClientState | None = None,
        queue: LogQueue | None = None,
        min_session_seconds: float = 1.0,
        ignored_url_prefixes: Iterable[str] = DEFAULT_IGNORED_PREFIXES,
        clock: Callable[[], datetime] = utcnow,
        on_commit: Callable[[LogRecord], None] | None = None,
    ):
        self._db = db
        self._resolver = resolver
        self._state = state or ClientState(db)
        self._queue = queue or LogQueue(db)
        self._min_session_seconds = min_session_seconds
        self._ignored_prefixes = tuple(ignored_url_prefixes)
        self._clock = clock
        self._on_commit = on_commit

        self._inbox: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._running = False

    def set_commit_callback(self, callback: Callable[[LogRecord], None] | None) -> None:
        """Set the hook fired after each committed record."""
        self._on_commit = callback

    # Lifecycle

    async def start(self) -> None:
        """Discard any leftover slot and start consuming events."""
        if self._running:
            return

        await self.discard_stale_session()

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Session tracker started")

    async def stop(self) -> None:
        """Drain queued events, then commit the open session."""
        if not self._running:
            return

        self._running = False
        await self._inbox.put(_STOP)
        if self._task:
            await self._task
            self._task = None

        await self.close()
        logger.info("Session tracker stopped")

    async def discard_stale_session(self) -> None:
        """Drop a slot left by a previous process; its end time is unknown."""
        try:
            session = await self._state.get_active_session()
            if session is not None:
                logger.warning(
                    f"Discarding session left from previous run: {session.domain} "
                    f"(started {session.start_time.isoformat()})"
                )
                await self._state.set_active_session(None)
        except Exception as e:
            logger.error(f"Failed to inspect session slot: {e}")

    def submit(self, event: TrackerEvent) -> None:
        """Queue an event for the consumer loop."""
        self._inbox.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._inbox.get()
            if event is _STOP:
                break
            try:
                await self.handle(event)
            except Exception as e:
                logger.error(f"Error handling {event!r}: {e}")

    # Transitions

    async def handle(self, event: TrackerEvent) -> None:
        """Apply one event to the state machine."""
        if isinstance(event, TabChanged):
            await self.handle_tab_changed(event.tab_id)
        elif isinstance(event, IdleChanged):
            await self.handle_idle_changed(event.state)
        elif isinstance(event, CloseSession):
            await self.close()
        else:
            logger.warning(f"Ignoring unknown event: {event!r}")

    async def handle_tab_changed(self, tab_id: str) -> Session | None:
        """Close the current session, then open one for the tab if it is a web page."""
        await self.close()

        try:
            tab = await self._resolver.get_tab(tab_id)
        except TabUnavailable as e:
            logger.debug(f"Tab {tab_id} unavailable: {e}")
            return None
        except Exception as e:
            logger.error(f"Error accessing tab {tab_id}: {e}")
            return None

        domain = domain_from_url(tab.url, self._ignored_prefixes)
        if domain is None:
            logger.debug(f"Not tracking tab {tab_id} ({tab.url or 'no url'})")
            return None

        session = Session(domain=domain, start_time=self._clock())
        try:
            await self._state.set_active_session(session)
        except Exception as e:
            logger.error(f"Failed to persist session for {domain}: {e}")
            return None

        logger.info(f"Started tracking: {domain}")
        return session

    async def handle_idle_changed(self, state: IdleState) -> None:
        """Close on idle or lock; reopen on the foreground tab when active again."""
        if state != IdleState.ACTIVE:
            await self.close()
            return

        try:
            tab = await self._resolver.active_tab()
        except Exception as e:
            logger.error(f"Error querying active tab: {e}")
            return

        if tab is not None:
            await self.handle_tab_changed(tab.id)

    async def close(self) -> LogRecord | None:
        """Close the active session, committing it if it lasted long enough.

        Returns the committed record, or ``None`` when there was no session,
        it was too short, or it could not be stored.
        """
        try:
            session = await self._state.get_active_session()
        except Exception as e:
            logger.error(f"Failed to read session slot: {e}")
            return None

        if session is None:
            return None

        duration = session.duration_until(self._clock())

        if duration < self._min_session_seconds:
            try:
                await self._state.set_active_session(None)
            except Exception as e:
                logger.error(f"Failed to clear session slot: {e}")
            logger.debug(f"Ignored brief visit to {session.domain} ({duration:.2f}s)")
            return None

        record = LogRecord.from_session(session, duration)
        try:
            async with self._db.transaction():
                await self._queue.append(record)
                await self._state.set_active_session(None)
        except Exception as e:
            logger.error(f"Failed to store log locally: {e}")
            return None

        logger.info(f"Logged: {record.domain} ({record.duration:.1f}s)")

        if self._on_commit:
            self._on_commit(record)

        return record

    async def current_session(self) -> Session | None:
        return await self._state.get_active_session()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_events(self) -> int:
        return self._inbox.qsize()
