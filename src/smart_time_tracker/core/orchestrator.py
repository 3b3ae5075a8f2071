"""Client daemon wiring the event source, session tracker and sync engine."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from datetime import datetime
from typing import Any

from smart_time_tracker.core.config import Config, get_config
from smart_time_tracker.core.models import utcnow
from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.database import Database, init_database
from smart_time_tracker.storage.log_queue import LogQueue
from smart_time_tracker.sync.cloud_sync import SyncEngine
from smart_time_tracker.trackers.browser_source import BrowserProbe, MacBrowserProbe, PollingBrowserSource
from smart_time_tracker.trackers.session_tracker import SessionTracker

logger = logging.getLogger(__name__)


class Orchestrator:
    """Main client coordinator.

    Manages the lifecycle of the tracking components and the flow from
    tab/idle events to committed records and their upload.
    """

    def __init__(self, config: Config | None = None, probe: BrowserProbe | None = None):
        self.config = config or get_config()
        self._probe = probe
        self._running = False
        self._startup_time: datetime | None = None
        self._stopped = asyncio.Event()
        self._shutdown_task: asyncio.Task | None = None
        self._integrity_ok: bool | None = None

        # Initialized in start()
        self.db: Database | None = None
        self.state: ClientState | None = None
        self.queue: LogQueue | None = None
        self.tracker: SessionTracker | None = None
        self.source: PollingBrowserSource | None = None
        self.sync: SyncEngine | None = None

        self._pid_file = self.config.data_dir / "daemon.pid"

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def uptime_seconds(self) -> float:
        if self._startup_time is None:
            return 0.0
        return (utcnow() - self._startup_time).total_seconds()

    async def start(self) -> None:
        """Start the daemon and all tracking components."""
        if self._running:
            logger.warning("Orchestrator already running")
            return

        logger.info("Starting Smart Time Tracker client...")

        try:
            self.config.ensure_directories()
            self._write_pid_file()

            self.db = await init_database(self.config.db_path)
            self._integrity_ok = await self.db.check_integrity()
            self.state = ClientState(self.db)
            self.queue = LogQueue(self.db)

            self.sync = SyncEngine(self.config.sync, self.queue, self.state)

            tracking = self.config.tracking
            # The source is both the tracker's resolver and its event producer
            self.source = PollingBrowserSource(
                self._probe or MacBrowserProbe(),
                poll_interval=tracking.poll_interval_seconds,
                idle_threshold=tracking.idle_threshold_seconds,
            )
            self.tracker = SessionTracker(
                self.db,
                resolver=self.source,
                state=self.state,
                queue=self.queue,
                min_session_seconds=tracking.min_session_seconds,
                ignored_url_prefixes=tracking.ignored_url_prefixes,
                on_commit=self.sync.trigger,
            )
            self.source.set_sink(self.tracker)

            await self.tracker.start()
            await self.source.start()
            await self.sync.start()

            self._running = True
            self._startup_time = utcnow()
            self._stopped.clear()
            self._setup_signal_handlers()

            logger.info("Smart Time Tracker client started successfully")

        except Exception as e:
            logger.error(f"Failed to start client: {e}")
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the daemon and cleanup all resources."""
        if not self._running and self.db is None and not self._pid_file.exists():
            return

        logger.info("Stopping Smart Time Tracker client...")
        if self._running:
            logger.info(f"Shutdown status: {await self.get_health()}")
        self._running = False

        if self.source:
            await self.source.stop()
            self.source = None

        # Commits the open session
        if self.tracker:
            await self.tracker.stop()
            self.tracker = None

        if self.sync:
            await self.sync.stop()
            self.sync = None

        if self.db:
            await self.db.close()
            self.db = None

        self._remove_pid_file()
        self._stopped.set()
        logger.info("Smart Time Tracker client stopped")

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def _setup_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        if self._shutdown_task is None or self._shutdown_task.done():
            self._shutdown_task = asyncio.create_task(self.stop())

    def _write_pid_file(self) -> None:
        self._pid_file.parent.mkdir(parents=True, exist_ok=True)
        self._pid_file.write_text(str(os.getpid()))
        logger.debug(f"PID file written: {self._pid_file}")

    def _remove_pid_file(self) -> None:
        if self._pid_file.exists():
            self._pid_file.unlink()
            logger.debug("PID file removed")

    @classmethod
    def get_daemon_pid(cls, config: Config | None = None) -> int | None:
        """Get the PID of a running daemon from PID file."""
        config = config or get_config()
        pid_file = config.data_dir / "daemon.pid"

        if not pid_file.exists():
            return None

        try:
            pid = int(pid_file.read_text().strip())
            os.kill(pid, 0)
            return pid
        except (ValueError, OSError):
            pid_file.unlink(missing_ok=True)
            return None

    async def get_health(self) -> dict[str, Any]:
        """Get health status of all components."""
        health: dict[str, Any] = {
            "status": "running" if self._running else "stopped",
            "uptime_seconds": self.uptime_seconds,
            "pid": os.getpid(),
        }

        if self.queue:
            health["queue"] = {"pending": await self.queue.pending_count()}

        if self.db:
            health["database"] = {
                "path": str(self.config.db_path),
                "size_mb": round(await self.db.get_size_mb(), 3),
                "integrity_ok": self._integrity_ok,
            }

        if self.tracker:
            session = await self.tracker.current_session()
            health["tracker"] = {
                "is_running": self.tracker.is_running,
                "active_domain": session.domain if session else None,
                "pending_events": self.tracker.pending_events,
            }

        if self.source:
            health["source"] = {
                "is_running": self.source.is_running,
                "idle_state": self.source.idle_state.value,
            }

        if self.sync:
            health["sync"] = self.sync.status

        return health


async def run_daemon(config: Config | None = None) -> None:
    """Run the client until stopped."""
    orchestrator = Orchestrator(config)
    try:
        await orchestrator.start()
        await orchestrator.wait_stopped()
    finally:
        await orchestrator.stop()
