"""Tests for the sync engine and its request construction."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import aiohttp
import pytest

from conftest import FakeClock, FakeHttpSession, FakeResponse
from smart_time_tracker.core.config import SyncConfig
from smart_time_tracker.core.models import LogRecord
from smart_time_tracker.storage.client_state import ClientState
from smart_time_tracker.storage.database import init_database
from smart_time_tracker.storage.log_queue import LogQueue, QueueSnapshot
from smart_time_tracker.sync.cloud_sync import (
    Identity,
    SyncEngine,
    SyncOutcome,
    build_request,
    resolve_identity,
)

TOKEN = "f" * 64
RECORD = LogRecord(domain="example.com", start_time="2024-05-01T09:00:00.000Z", duration=42.0)


def _run(db_path: Path, session: FakeHttpSession, body, *, token: str = TOKEN, user_id: str = "", **config):
    async def main():
        db = await init_database(db_path)
        try:
            queue = LogQueue(db)
            state = ClientState(db)
            if token:
                await state.store_token(token, "user-aaaaaa")
            if user_id:
                await state.store_user_id(user_id)
            engine = SyncEngine(
                SyncConfig(api_url="http://tracker.test/", **config),
                queue,
                state,
                session_factory=session,
                clock=FakeClock(),
            )
            return await body(engine, queue)
        finally:
            await db.close()

    return asyncio.run(main())


class TestResolveIdentity:
    def test_token_wins(self):
        assert resolve_identity(TOKEN, "legacy-user") == Identity(token=TOKEN)

    def test_short_token_falls_back_to_user_id(self):
        assert resolve_identity("short", "legacy-user") == Identity(user_id="legacy-user")

    def test_nothing_usable(self):
        assert resolve_identity("short", "abc") is None
        assert resolve_identity("", "") is None

    def test_whitespace_is_trimmed(self):
        assert resolve_identity("  ", "  legacy-user  ") == Identity(user_id="legacy-user")


class TestBuildRequest:
    snapshot = QueueSnapshot(records=[RECORD], last_id=1)

    def test_token_request_has_no_body_identity(self):
        headers, body = build_request(self.snapshot, Identity(token=TOKEN))
        assert headers["Authorization"] == f"Bearer {TOKEN}"
        assert "user_id" not in body
        assert body["logs"] == [{"domain": "example.com", "startTime": "2024-05-01T09:00:00.000Z", "duration": 42.0}]

    def test_legacy_request_has_no_authorization(self):
        headers, body = build_request(self.snapshot, Identity(user_id="legacy-user"))
        assert "Authorization" not in headers
        assert body["user_id"] == "legacy-user"


class TestSyncNow:
    def test_success_clears_queue(self, db_path: Path):
        session = FakeHttpSession(FakeResponse(200, {"success": True, "inserted": 1}))

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            result = await engine.sync_now()
            return result, await queue.pending_count()

        result, pending = _run(db_path, session, body)
        assert result.outcome == SyncOutcome.SYNCED
        assert result.count == 1
        assert pending == 0

        request = session.requests[0]
        assert request["url"] == "http://tracker.test/api/logs"
        assert request["headers"]["Authorization"] == f"Bearer {TOKEN}"
        assert request["json"] == {"logs": [RECORD.to_dict()]}

    def test_network_failure_keeps_queue(self, db_path: Path, network_error):
        session = FakeHttpSession(network_error)

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            result = await engine.sync_now()
            return result, (await queue.snapshot()).records

        result, records = _run(db_path, session, body)
        assert result.outcome == SyncOutcome.FAILED
        assert "connection refused" in result.error
        assert records == [RECORD]

    def test_timeout_keeps_queue(self, db_path: Path):
        session = FakeHttpSession(asyncio.TimeoutError())

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            result = await engine.sync_now()
            return result, await queue.pending_count()

        result, pending = _run(db_path, session, body)
        assert result.outcome == SyncOutcome.FAILED
        assert pending == 1

    @pytest.mark.parametrize("status", [400, 401, 500, 503])
    def test_non_success_status_keeps_queue(self, db_path: Path, status: int):
        session = FakeHttpSession(FakeResponse(status, text='{"error": "nope"}'))

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            result = await engine.sync_now()
            return result, await queue.pending_count()

        result, pending = _run(db_path, session, body)
        assert result.outcome == SyncOutcome.FAILED
        assert str(status) in result.error
        assert pending == 1

    def test_repeated_failures_preserve_superset(self, db_path: Path, network_error):
        session = FakeHttpSession(network_error, FakeResponse(500), network_error)

        async def body(engine: SyncEngine, queue: LogQueue):
            seen: list[list[str]] = []
            for domain in ("a.com", "b.com", "c.com"):
                await queue.append(LogRecord(domain, "2024-05-01T09:00:00.000Z", 5.0))
                await engine.sync_now()
                seen.append([r.domain for r in (await queue.snapshot()).records])
            return seen

        seen = _run(db_path, session, body)
        assert seen == [["a.com"], ["a.com", "b.com"], ["a.com", "b.com", "c.com"]]
        assert [len(r["json"]["logs"]) for r in session.requests] == [1, 2, 3]

    def test_empty_queue_sends_nothing(self, db_path: Path):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            return await engine.sync_now()

        assert _run(db_path, session, body).outcome == SyncOutcome.EMPTY
        assert session.requests == []

    def test_no_credentials_keeps_queue(self, db_path: Path):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            result = await engine.sync_now()
            return result, await queue.pending_count()

        result, pending = _run(db_path, session, body, token="", user_id="abc")
        assert result.outcome == SyncOutcome.NO_CREDENTIALS
        assert pending == 1
        assert session.requests == []

    def test_legacy_user_id_upload(self, db_path: Path):
        session = FakeHttpSession(FakeResponse(200))

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            return await engine.sync_now()

        result = _run(db_path, session, body, token="", user_id="legacy-user")
        assert result.outcome == SyncOutcome.SYNCED
        request = session.requests[0]
        assert "Authorization" not in request["headers"]
        assert request["json"]["user_id"] == "legacy-user"

    def test_records_appended_in_flight_survive(self, db_path: Path):
        session = FakeHttpSession(FakeResponse(200))

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)

            # A commit lands while the batch is on the wire
            class CommitDuringPost(FakeResponse):
                async def __aenter__(self):
                    await queue.append(LogRecord("late.com", "2024-05-01T09:01:00.000Z", 3.0))
                    return self

            def post(url, **kwargs):
                session.requests.append({"url": url, **kwargs})
                return CommitDuringPost(200)

            session.post = post
            result = await engine.sync_now()
            return result, [r.domain for r in (await queue.snapshot()).records]

        result, remaining = _run(db_path, session, body)
        assert result.count == 1
        assert remaining == ["late.com"]

    def test_overlapping_tick_is_skipped(self, db_path: Path):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            release = asyncio.Event()

            class SlowResponse(FakeResponse):
                async def __aenter__(self):
                    await release.wait()
                    return self

            def post(url, **kwargs):
                session.requests.append({"url": url, **kwargs})
                return SlowResponse(200)

            session.post = post
            first = asyncio.create_task(engine.sync_now())
            while not session.requests:
                await asyncio.sleep(0.01)
            assert engine.in_flight
            second = await engine.sync_now()
            release.set()
            return await first, second

        first, second = _run(db_path, session, body)
        assert second.outcome == SyncOutcome.BUSY
        assert first.outcome == SyncOutcome.SYNCED
        assert len(session.requests) == 1


class TestLifecycle:
    def test_start_syncs_immediately_and_stop_cancels(self, db_path: Path):
        session = FakeHttpSession(FakeResponse(200))

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            await engine.start()
            for _ in range(100):
                if engine.status["last_outcome"] is not None:
                    break
                await asyncio.sleep(0.01)
            status = engine.status
            await engine.stop()
            return status, await queue.pending_count()

        status, pending = _run(db_path, session, body, interval_seconds=3600)
        assert pending == 0
        assert status["running"] is True
        assert status["last_outcome"] == "synced"

    def test_disabled_engine_does_not_start(self, db_path: Path):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            await engine.start()
            running = engine.status["running"]
            engine.trigger()
            await engine.stop()
            return running

        assert _run(db_path, session, body, enabled=False) is False
        assert session.requests == []

    def test_triggers_coalesce(self, db_path: Path):
        session = FakeHttpSession(FakeResponse(200), FakeResponse(200))

        async def body(engine: SyncEngine, queue: LogQueue):
            await engine.start()
            # Let the initial tick find an empty queue
            await asyncio.sleep(0.05)
            await queue.append(RECORD)
            for _ in range(5):
                engine.trigger(RECORD)
            await asyncio.sleep(0.3)
            pending = await queue.pending_count()
            await engine.stop()
            return pending

        pending = _run(db_path, session, body, interval_seconds=3600, trigger_delay_seconds=0.05)
        assert pending == 0
        assert len(session.requests) == 1

    def test_triggered_sync_error_is_logged(self, db_path: Path, caplog: pytest.LogCaptureFixture):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            await engine.start()
            await asyncio.sleep(0.05)

            async def broken_snapshot():
                raise RuntimeError("disk I/O error")

            queue.snapshot = broken_snapshot
            engine.trigger()
            await asyncio.sleep(0.2)
            in_flight = engine.in_flight
            await engine.stop()
            return in_flight

        with caplog.at_level(logging.ERROR, logger="smart_time_tracker.sync.cloud_sync"):
            in_flight = _run(db_path, session, body, interval_seconds=3600, trigger_delay_seconds=0.01)

        assert in_flight is False
        assert any(r.getMessage() == "Sync error: disk I/O error" for r in caplog.records)
        assert not any("never retrieved" in r.getMessage() for r in caplog.records)

    def test_trigger_without_start_is_ignored(self, db_path: Path):
        session = FakeHttpSession()

        async def body(engine: SyncEngine, queue: LogQueue):
            await queue.append(RECORD)
            engine.trigger()
            await asyncio.sleep(0.05)
            return await queue.pending_count()

        assert _run(db_path, session, body, trigger_delay_seconds=0) == 1
        assert session.requests == []


def test_client_error_is_wrapped(db_path: Path):
    session = FakeHttpSession(aiohttp.ServerDisconnectedError())

    async def body(engine: SyncEngine, queue: LogQueue):
        await queue.append(RECORD)
        return await engine.sync_now()

    result = _run(db_path, session, body)
    assert result.outcome == SyncOutcome.FAILED
    assert result.error.startswith("Network error")
