"""Tests for the Jicofo → rtcstats relay loop."""

from __future__ import annotations

import asyncio
import itertools
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from rtcstats_push.relay import StatsRelay
from rtcstats_push.source import SnapshotError
from rtcstats_push.tracker import SessionTracker


# ------------------------------------------------------------------ #
# Helpers
# ------------------------------------------------------------------ #

class FakeSource:
    """Replays scripted snapshots (or errors) one per fetch."""

    def __init__(self, results: list) -> None:
        self._results = list(results)
        self.fetches = 0
        self.closed = False

    async def fetch_snapshot(self):
        self.fetches += 1
        result = self._results.pop(0) if self._results else {}
        if isinstance(result, Exception):
            raise result
        return json.loads(json.dumps(result))

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.connect_calls = 0
        self.closed = False

    async def connect(self) -> None:
        self.connect_calls += 1

    async def send(self, message: dict) -> bool:
        self.sent.append(message)
        return True

    async def close(self) -> None:
        self.closed = True


def _relay(results, interval_ms: int = 30000) -> StatsRelay:
    counter = itertools.count(1)
    tracker = SessionTracker(
        display_name="relay-host",
        session_id_factory=lambda: f"session-{next(counter)}",
    )
    return StatsRelay(FakeSource(results), FakeTransport(), tracker, interval_ms=interval_ms)


# ------------------------------------------------------------------ #
# Tests
# ------------------------------------------------------------------ #

class TestRunCycle:
    async def test_scenario_three_cycles(self):
        relay = _relay([
            {"room1@x": {"participants": {"a": {}}, "stats": {"bitrate": 100}}},
            {"room1@x": {"participants": {"a": {}}, "stats": {"bitrate": 200}}},
            {},
        ])
        sent = relay.transport.sent

        with patch("rtcstats_push.relay.time.time", return_value=1.0):
            assert await relay.run_cycle() is True
        assert [m["type"] for m in sent] == ["identity", "stats-entry"]
        assert sent[0]["data"]["endpoints"] == ["a"]
        assert json.loads(sent[1]["data"]) == {
            "participants": {"a": {}},
            "stats": {"bitrate": 100},
            "timestamp": 1000,
        }

        sent.clear()
        with patch("rtcstats_push.relay.time.time", return_value=2.0):
            assert await relay.run_cycle() is True
        assert [m["type"] for m in sent] == ["stats-entry"]
        assert json.loads(sent[0]["data"]) == {"stats": {"bitrate": 200}, "timestamp": 2000}

        sent.clear()
        assert await relay.run_cycle() is True
        assert sent == [{"type": "close", "statsSessionId": "session-1"}]
        assert len(relay.store) == 0

        sent.clear()
        assert await relay.run_cycle() is True
        assert sent == []

    async def test_shared_timestamp_across_conferences(self):
        relay = _relay([{"a@x": {}, "b@x": {}}])
        await relay.run_cycle()
        stamps = {
            json.loads(m["data"])["timestamp"]
            for m in relay.transport.sent
            if m["type"] == "stats-entry"
        }
        assert len(stamps) == 1

    async def test_fetch_failure_skips_cycle(self):
        relay = _relay([
            {"room@x": {"v": 1}},
            SnapshotError("boom"),
            {"room@x": {"v": 2}},
        ])
        await relay.run_cycle()
        relay.transport.sent.clear()

        assert await relay.run_cycle() is False
        assert relay.transport.sent == []
        assert "room@x" in relay.store
        assert relay.failed_cycles == 1

        assert await relay.run_cycle() is True
        assert [m["type"] for m in relay.transport.sent] == ["stats-entry"]
        assert json.loads(relay.transport.sent[0]["data"])["v"] == 2

    async def test_cycle_after_stop_discarded(self):
        relay = _relay([{"room@x": {}}])
        await relay.stop()
        assert await relay.run_cycle() is False
        assert relay.transport.sent == []
        assert len(relay.store) == 0


class TestLifecycle:
    def test_initial_state(self):
        relay = _relay([])
        assert relay.running is False
        assert relay.interval_ms == 30000
        assert relay.cycles == 0

    async def test_start_connects_and_stop_closes(self):
        relay = _relay([])
        await relay.start()
        assert relay.running is True
        assert relay.transport.connect_calls == 1
        await relay.stop()
        assert relay.running is False
        assert relay.transport.closed is True
        assert relay.source.closed is True

    async def test_double_start(self):
        relay = _relay([])
        await relay.start()
        await relay.start()
        assert relay.transport.connect_calls == 1
        await relay.stop()

    async def test_loop_polls_on_interval(self):
        relay = _relay([{"room@x": {}}, {"room@x": {}}, {"room@x": {}}], interval_ms=20)
        await relay.start()
        await asyncio.sleep(0.15)
        await relay.stop()
        assert relay.source.fetches >= 2
        assert relay.transport.sent[0]["type"] == "identity"

    async def test_no_fetch_before_first_interval(self):
        relay = _relay([{"room@x": {}}], interval_ms=60000)
        await relay.start()
        await asyncio.sleep(0.05)
        await relay.stop()
        assert relay.source.fetches == 0

    async def test_loop_survives_unexpected_error(self):
        relay = _relay([], interval_ms=10)
        relay.tracker.process_snapshot = MagicMock(side_effect=[RuntimeError("bad")] + [[]] * 50)
        await relay.start()
        await asyncio.sleep(0.1)
        await relay.stop()
        assert relay.source.fetches >= 2

    async def test_slow_cycle_does_not_overlap(self):
        relay = _relay([], interval_ms=10)
        active = 0
        max_active = 0

        async def slow_fetch():
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            await asyncio.sleep(0.05)
            active -= 1
            return {}

        relay.source.fetch_snapshot = AsyncMock(side_effect=slow_fetch)
        await relay.start()
        await asyncio.sleep(0.2)
        await relay.stop()
        assert max_active == 1

    async def test_restart_after_stop_refused(self):
        relay = _relay([])
        await relay.start()
        await relay.stop()
        with pytest.raises(RuntimeError, match="restarted"):
            await relay.start()
        assert relay.running is False
        assert relay.transport.connect_calls == 1
