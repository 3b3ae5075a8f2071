"""Tests for the polling browser event source."""
from __future__ import annotations

import asyncio
import subprocess

import pytest

from conftest import FakeProbe
from smart_time_tracker.core.errors import TabUnavailable
from smart_time_tracker.trackers.browser_source import MacBrowserProbe, PollingBrowserSource
from smart_time_tracker.trackers.events import CloseSession, IdleChanged, IdleState, TabChanged, TabInfo

NEWS = TabInfo(id="Google Chrome:1", url="https://news.example/")
OTHER = TabInfo(id="Google Chrome:2", url="https://other.example/")


class RecordingSink:
    def __init__(self):
        self.events = []

    def submit(self, event):
        self.events.append(event)


def _source(probe: FakeProbe, sink: RecordingSink | None = None) -> PollingBrowserSource:
    return PollingBrowserSource(probe, sink, poll_interval=0.01, idle_threshold=60)


class TestPollOnce:
    def test_new_tab_emits_tab_changed(self):
        sink = RecordingSink()
        probe = FakeProbe(NEWS)
        source = _source(probe, sink)

        async def main():
            await source.poll_once()
            await source.poll_once()
            probe.tab = OTHER
            await source.poll_once()

        asyncio.run(main())
        assert sink.events == [TabChanged(NEWS.id), TabChanged(OTHER.id)]

    def test_url_change_in_same_tab(self):
        sink = RecordingSink()
        probe = FakeProbe(NEWS)
        source = _source(probe, sink)

        async def main():
            await source.poll_once()
            probe.tab = TabInfo(id=NEWS.id, url="https://elsewhere.example/")
            await source.poll_once()
            return await source.get_tab(NEWS.id)

        tab = asyncio.run(main())
        assert sink.events == [TabChanged(NEWS.id), TabChanged(NEWS.id)]
        assert tab.url == "https://elsewhere.example/"

    def test_browser_leaves_front(self):
        sink = RecordingSink()
        probe = FakeProbe(NEWS)
        source = _source(probe, sink)

        async def main():
            await source.poll_once()
            probe.tab = None
            await source.poll_once()
            await source.poll_once()

        asyncio.run(main())
        assert sink.events == [TabChanged(NEWS.id), CloseSession()]

    def test_idle_transitions(self):
        sink = RecordingSink()
        probe = FakeProbe(NEWS)
        source = _source(probe, sink)

        async def main():
            await source.poll_once()
            probe.idle = 75
            await source.poll_once()
            # Tab changes while idle are not reported
            probe.tab = OTHER
            await source.poll_once()
            probe.idle = 1
            await source.poll_once()

        asyncio.run(main())
        assert sink.events == [
            TabChanged(NEWS.id),
            IdleChanged(IdleState.IDLE),
            IdleChanged(IdleState.ACTIVE),
        ]
        assert source.idle_state == IdleState.ACTIVE

    def test_without_sink_events_are_dropped(self):
        source = _source(FakeProbe(NEWS))
        asyncio.run(source.poll_once())


class TestResolver:
    def test_get_tab_uses_cached_front_tab(self):
        probe = FakeProbe(NEWS)
        source = _source(probe, RecordingSink())

        async def main():
            await source.poll_once()
            return await source.get_tab(NEWS.id), await source.active_tab()

        assert asyncio.run(main()) == (NEWS, NEWS)

    def test_get_tab_that_left_front(self):
        probe = FakeProbe(NEWS)
        source = _source(probe, RecordingSink())

        async def main():
            await source.poll_once()
            probe.tab = OTHER
            with pytest.raises(TabUnavailable):
                await source.get_tab("Google Chrome:99")

        asyncio.run(main())

    def test_active_tab_before_first_poll(self):
        assert asyncio.run(_source(FakeProbe(NEWS)).active_tab()) is None


class TestLifecycle:
    def test_loop_polls_until_stopped(self):
        sink = RecordingSink()
        source = _source(FakeProbe(NEWS), sink)

        async def main():
            await source.start()
            assert source.is_running
            await asyncio.sleep(0.1)
            await source.stop()
            assert not source.is_running

        asyncio.run(main())
        assert sink.events == [TabChanged(NEWS.id)]

    def test_probe_errors_do_not_stop_the_loop(self):
        class FlakyProbe(FakeProbe):
            calls = 0

            def front_tab(self):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("osascript crashed")
                return NEWS

        sink = RecordingSink()
        source = _source(FlakyProbe(), sink)

        async def main():
            await source.start()
            await asyncio.sleep(0.1)
            await source.stop()

        asyncio.run(main())
        assert TabChanged(NEWS.id) in sink.events


class TestMacBrowserProbe:
    def test_parses_osascript_output(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            assert cmd[0] == "osascript"
            return subprocess.CompletedProcess(cmd, 0, stdout="42\nhttps://news.example/\n", stderr="")

        monkeypatch.setattr(subprocess, "run", fake_run)
        tab = MacBrowserProbe(browsers=("Arc",)).front_tab()
        assert tab == TabInfo(id="Arc:42", url="https://news.example/")

    def test_no_browser_in_front(self, monkeypatch):
        monkeypatch.setattr(
            subprocess, "run", lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        )
        assert MacBrowserProbe().front_tab() is None

    def test_osascript_missing(self, monkeypatch):
        def fake_run(cmd, **kwargs):
            raise FileNotFoundError("osascript")

        monkeypatch.setattr(subprocess, "run", fake_run)
        assert MacBrowserProbe().front_tab() is None

    def test_idle_without_quartz_is_zero(self, monkeypatch):
        import builtins

        real_import = builtins.__import__

        def no_quartz(name, *args, **kwargs):
            if name == "Quartz":
                raise ImportError("no Quartz")
            return real_import(name, *args, **kwargs)

        monkeypatch.setattr(builtins, "__import__", no_quartz)
        assert MacBrowserProbe().idle_seconds() == 0.0
