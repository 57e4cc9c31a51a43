"""
StateSession — one reconciler per client session.

Owns the store, controller, reducer and gateway, and drains inbound events
from a FIFO queue one at a time.  Command results are applied on the same
event loop, so the snapshot only ever has one writer.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pydantic import ValidationError

from bkenstate.config import settings
from bkenstate.schemas.events import parse_event
from bkenstate.schemas.snapshot import Snapshot
from bkenstate.state.connection import ConnectionController
from bkenstate.state.gateway import CommandGateway, CommandTransport
from bkenstate.state.projection import build_snapshot
from bkenstate.state.reducer import EventReducer, wall_clock_ms
from bkenstate.state.store import EntityStore

logger = logging.getLogger(__name__)


class StateSession:
    def __init__(self, transport: CommandTransport, clock: Callable[[], int] = wall_clock_ms) -> None:
        self.clock = clock
        self.controller = ConnectionController()
        self.reducer = EventReducer(EntityStore(), self.controller, clock)
        self.gateway = CommandGateway(transport, self.reducer)
        self._queue: asyncio.Queue[Mapping[str, Any]] = asyncio.Queue()

    @property
    def store(self) -> EntityStore:
        # the reducer swaps in a new store when the active server changes
        return self.reducer.store

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    def submit(self, raw: Mapping[str, Any]) -> None:
        """Queue a decoded-from-the-wire event mapping for the pump."""
        self._queue.put_nowait(raw)

    def apply_raw(self, raw: Mapping[str, Any]) -> bool:
        """Decode and apply one event immediately.  Returns False if it was dropped."""
        try:
            event = parse_event(raw)
        except ValidationError as exc:
            logger.warning("Dropping malformed event %r: %s", raw.get("type"), exc)
            return False
        self.reducer.apply(event)
        return True

    async def run(self) -> None:
        """Event pump: apply queued events in arrival order until cancelled."""
        while True:
            raw = await self._queue.get()
            try:
                self.apply_raw(raw)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued event has been applied."""
        await self._queue.join()

    # ------------------------------------------------------------------
    # Presentation-facing
    # ------------------------------------------------------------------

    def view_channel(self, channel_id: int) -> None:
        """The UI switched to *channel_id*: it stops accruing unread and is reset."""
        self.reducer.viewed_channel_id = channel_id
        self.store.reset_unread(channel_id)

    def snapshot(self, now: int | None = None) -> Snapshot:
        if now is None:
            now = self.clock()
        return build_snapshot(self.store, self.controller, now, self.reducer.viewed_channel_id)

    # ------------------------------------------------------------------
    # Reconnect countdown
    # ------------------------------------------------------------------

    def tick(self, now: int | None = None) -> int | None:
        """Advance the reconnect countdown.  Returns the attempt number if one fired."""
        if now is None:
            now = self.clock()
        return self.controller.poll(now)

    def cancel_reconnect(self) -> None:
        self.controller.cancel_reconnect()

    async def run_ticker(self, on_attempt: Callable[[int], Awaitable[Any]] | None = None) -> None:
        """Tick every TICK_INTERVAL_SECONDS until cancelled.

        *on_attempt* is awaited with the attempt number each time a reconnect
        attempt falls due; the host decides whether to call gateway.reconnect.
        """
        while True:
            await asyncio.sleep(settings.TICK_INTERVAL_SECONDS)
            attempt = self.tick()
            if attempt is not None and on_attempt is not None:
                await on_attempt(attempt)
