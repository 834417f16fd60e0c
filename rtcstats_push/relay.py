"""Periodic Jicofo → rtcstats relay loop."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from .source import FocusClient, SnapshotError
from .tracker import ConferenceStore, SessionTracker
from .transport import StatsTransport

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MS = 30000


class StatsRelay:
    """Polls Jicofo on a fixed period and pushes conference deltas to rtcstats."""

    def __init__(
        self,
        source: FocusClient,
        transport: StatsTransport,
        tracker: SessionTracker | None = None,
        interval_ms: int = DEFAULT_INTERVAL_MS,
        store: ConferenceStore | None = None,
    ) -> None:
        self.source = source
        self.transport = transport
        self.tracker = tracker or SessionTracker()
        self.interval_ms = interval_ms
        self._store = store if store is not None else ConferenceStore()
        self._running = False
        self._stopped = False
        self._task: asyncio.Task | None = None
        self.cycles = 0
        self.failed_cycles = 0

    async def start(self) -> None:
        """Connect the transport and start polling."""
        if self._stopped:
            raise RuntimeError("Relay cannot be restarted after stop()")
        if self._running:
            logger.warning("Relay is already running")
            return

        self._running = True
        await self.transport.connect()
        self._task = asyncio.create_task(self._loop())
        logger.info("Relay started (interval=%d ms)", self.interval_ms)

    async def stop(self) -> None:
        """Cancel polling and close both connections."""
        self._running = False
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.transport.close()
        await self.source.aclose()
        logger.info("Relay stopped")

    async def run_cycle(self) -> bool:
        """Fetch one snapshot and forward its messages.

        Returns ``False`` when the fetch failed and the cycle was skipped.
        """
        try:
            snapshot = await self.source.fetch_snapshot()
        except SnapshotError as exc:
            self.failed_cycles += 1
            logger.error("Error retrieving data: %s", exc)
            return False
        if self._stopped:
            logger.debug("Relay stopped, discarding fetched snapshot")
            return False

        timestamp = int(time.time() * 1000)
        for conf_data in snapshot.values():
            conf_data["timestamp"] = timestamp

        messages = self.tracker.process_snapshot(self._store, snapshot)
        self.cycles += 1
        await self._send_all(messages)
        logger.debug(
            "Cycle %d: %d conferences, %d messages",
            self.cycles,
            len(self._store),
            len(messages),
        )
        return True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> ConferenceStore:
        return self._store

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _send_all(self, messages: list[dict[str, Any]]) -> None:
        for message in messages:
            if self._stopped:
                logger.debug("Relay stopping, discarding remaining messages")
                return
            await self.transport.send(message)

    async def _loop(self) -> None:
        """Fixed-rate loop; ticks missed while a cycle runs are skipped."""
        loop = asyncio.get_running_loop()
        period = self.interval_ms / 1000
        next_tick = loop.time() + period
        while self._running:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if not self._running:
                return
            logger.info("Fetching data")
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Relay cycle failed")

            next_tick += period
            now = loop.time()
            if next_tick <= now:
                skipped = int((now - next_tick) // period) + 1
                logger.warning("Cycle overran the interval, skipping %d tick(s)", skipped)
                next_tick += skipped * period
