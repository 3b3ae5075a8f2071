"""Polling event source that watches the front browser tab and user idle time."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from typing import Protocol

from smart_time_tracker.core.errors import TabUnavailable
from smart_time_tracker.trackers.events import (
    CloseSession,
    EventSink,
    IdleChanged,
    IdleState,
    TabChanged,
    TabInfo,
)

logger = logging.getLogger(__name__)


class BrowserProbe(Protocol):
    """Blocking probe of the environment; called from a worker thread."""

    def front_tab(self) -> TabInfo | None:
        """Return the active tab of the front browser window, if any."""
        ...

    def idle_seconds(self) -> float:
        """Seconds since the last keyboard or mouse input."""
        ...


# AppleScript applications exposing "active tab of front window"
SCRIPTABLE_BROWSERS = ("Google Chrome", "Arc", "Brave Browser", "Microsoft Edge")

_TAB_SCRIPT = '''
tell application "System Events" to set frontApp to name of first process whose frontmost is true
if frontApp is "{app}" then
    tell application "{app}"
        if (count of windows) > 0 then
            set t to active tab of front window
            return (id of t as string) & linefeed & (URL of t)
        end if
    end tell
end if
'''


class MacBrowserProbe:
    """Reads the front Chromium-family tab via AppleScript and idle time via Quartz."""

    def __init__(self, browsers: tuple[str, ...] = SCRIPTABLE_BROWSERS):
        self._browsers = browsers

    def front_tab(self) -> TabInfo | None:
        for browser in self._browsers:
            tab = self._query_browser(browser)
            if tab is not None:
                return tab
        return None

    def _query_browser(self, browser: str) -> TabInfo | None:
        try:
            result = subprocess.run(
                ["osascript", "-e", _TAB_SCRIPT.format(app=browser)],
                capture_output=True,
                text=True,
                timeout=2,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Error querying {browser}: {e}")
            return None

        if result.returncode != 0 or not result.stdout.strip():
            return None

        tab_id, _, url = result.stdout.strip().partition("\n")
        return TabInfo(id=f"{browser}:{tab_id.strip()}", url=url.strip() or None)

    def idle_seconds(self) -> float:
        try:
            from Quartz import (
                CGEventSourceSecondsSinceLastEventType,
                kCGEventKeyDown,
                kCGEventMouseMoved,
                kCGEventSourceStateCombinedSessionState,
            )

            mouse_idle = CGEventSourceSecondsSinceLastEventType(
                kCGEventSourceStateCombinedSessionState, kCGEventMouseMoved
            )
            keyboard_idle = CGEventSourceSecondsSinceLastEventType(
                kCGEventSourceStateCombinedSessionState, kCGEventKeyDown
            )
            return min(mouse_idle, keyboard_idle)
        except Exception as e:
            logger.debug(f"Error getting idle time: {e}")
            return 0.0


class PollingBrowserSource:
    """Turns periodic probe snapshots into tracker events.

    Emits ``TabChanged`` when the front tab or its URL changes,
    ``IdleChanged`` when idle time crosses the threshold in either
    direction, and ``CloseSession`` when no browser tab is in front.
    Also acts as the tracker's ``TabResolver``.
    """

    def __init__(
        self,
        probe: BrowserProbe,
        sink: EventSink | None = None,
        *,
        poll_interval: float = 1.0,
        idle_threshold: float = 60.0,
    ):
        self._probe = probe
        self._sink = sink
        self._poll_interval = poll_interval
        self._idle_threshold = idle_threshold

        self._current: TabInfo | None = None
        self._idle_state = IdleState.ACTIVE
        self._task: asyncio.Task | None = None
        self._running = False

    def set_sink(self, sink: EventSink) -> None:
        self._sink = sink

    def _emit(self, event) -> None:
        if self._sink is None:
            logger.debug(f"No sink for {event!r}")
            return
        self._sink.submit(event)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._poll_loop())
        logger.info(f"Browser source started (poll every {self._poll_interval}s)")

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Browser source stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error during poll: {e}")
            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> None:
        """Take one probe snapshot and emit whatever changed."""
        tab = await asyncio.to_thread(self._probe.front_tab)
        idle = await asyncio.to_thread(self._probe.idle_seconds)
        idle_state = IdleState.IDLE if idle >= self._idle_threshold else IdleState.ACTIVE

        previous = self._current
        self._current = tab

        if idle_state != self._idle_state:
            self._idle_state = idle_state
            logger.debug(f"Idle state changed: {idle_state.value}")
            # The tracker reopens on the active tab itself when resuming
            self._emit(IdleChanged(idle_state))
            return

        if idle_state != IdleState.ACTIVE or tab == previous:
            return

        if tab is None:
            self._emit(CloseSession())
        else:
            self._emit(TabChanged(tab.id))

    # TabResolver

    async def get_tab(self, tab_id: str) -> TabInfo:
        if self._current is not None and self._current.id == tab_id:
            return self._current
        tab = await asyncio.to_thread(self._probe.front_tab)
        if tab is None or tab.id != tab_id:
            raise TabUnavailable(f"Tab {tab_id} is no longer in front")
        self._current = tab
        return tab

    async def active_tab(self) -> TabInfo | None:
        return self._current

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def idle_state(self) -> IdleState:
        return self._idle_state
