"""
Command gateway — outbound user actions and their results.

Every command goes through ``_run``: an optional optimistic mutation, the
transport call, then a result handler.  Transport methods resolve to an
error string ("" on success); exceptions from the transport are logged and
turned into that string, so nothing here raises into the UI.

Results are applied strictly in the order the commands were issued, even
when a later command's result arrives first.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Protocol

from bkenstate.state.connection import ConnectionController
from bkenstate.state.reducer import EventReducer

logger = logging.getLogger(__name__)


class CommandTransport(Protocol):
    """The bridge to the networking layer.  Every call returns an error string."""

    async def connect(self, addr: str, username: str) -> str: ...
    async def disconnect(self) -> None: ...
    async def join_voice(self, channel_id: int) -> str: ...
    async def leave_voice(self) -> str: ...
    async def send_chat(self, channel_id: int, text: str) -> str: ...
    async def edit_message(self, msg_id: int, text: str) -> str: ...
    async def delete_message(self, msg_id: int) -> str: ...
    async def add_reaction(self, msg_id: int, emoji: str) -> str: ...
    async def remove_reaction(self, msg_id: int, emoji: str) -> str: ...
    async def kick_user(self, user_id: int) -> str: ...
    async def create_channel(self, name: str) -> str: ...
    async def rename_channel(self, channel_id: int, name: str) -> str: ...
    async def delete_channel(self, channel_id: int) -> str: ...
    async def move_user(self, user_id: int, channel_id: int) -> str: ...
    async def rename_user(self, name: str) -> str: ...
    async def rename_server(self, name: str) -> str: ...
    async def start_video(self) -> str: ...
    async def stop_video(self) -> str: ...
    async def start_screen_share(self) -> str: ...
    async def stop_screen_share(self) -> str: ...
    async def request_video_quality(self, user_id: int, quality: str) -> str: ...


class ResultSequencer:
    """Hands out tickets at issue time and admits result handlers in ticket order."""

    def __init__(self) -> None:
        self._issued = 0
        self._applied = 0
        # tickets whose holder was cancelled before its turn came
        self._abandoned: set[int] = set()
        self._cond = asyncio.Condition()

    def ticket(self) -> int:
        ticket = self._issued
        self._issued += 1
        return ticket

    def _advance(self) -> None:
        # caller holds the condition's lock
        self._applied += 1
        while self._applied in self._abandoned:
            self._abandoned.discard(self._applied)
            self._applied += 1
        self._cond.notify_all()

    def _abandon(self, ticket: int) -> None:
        if self._applied == ticket:
            self._advance()
        else:
            self._abandoned.add(ticket)

    async def abandon(self, ticket: int) -> None:
        """Give up *ticket* without applying anything; later results still flow."""
        async with self._cond:
            self._abandon(ticket)

    @asynccontextmanager
    async def turn(self, ticket: int) -> AsyncIterator[None]:
        async with self._cond:
            try:
                await self._cond.wait_for(lambda: self._applied == ticket)
            except asyncio.CancelledError:
                self._abandon(ticket)
                raise
            try:
                yield
            finally:
                self._advance()


class CommandGateway:
    def __init__(self, transport: CommandTransport, reducer: EventReducer) -> None:
        self.transport = transport
        self.reducer = reducer
        self._sequencer = ResultSequencer()
        self._last_addr = ""
        self._last_username = ""

    @property
    def controller(self) -> ConnectionController:
        return self.reducer.controller

    async def _call(self, name: str, call: Callable[[], Awaitable[str | None]]) -> str:
        try:
            result = await call()
        except Exception as exc:
            logger.error("Command %s raised: %s", name, exc, exc_info=True)
            return str(exc) or f"{name} failed"
        return result or ""

    def _stale(self, name: str, generation: int) -> bool:
        if generation == self.controller.generation:
            return False
        logger.info("Dropping %s result issued before disconnect", name)
        return True

    async def _run(
        self,
        name: str,
        call: Callable[[], Awaitable[str | None]],
        on_result: Callable[[str], None] | None = None,
    ) -> str:
        ticket = self._sequencer.ticket()
        try:
            error = await self._call(name, call)
        except asyncio.CancelledError:
            await self._sequencer.abandon(ticket)
            raise
        async with self._sequencer.turn(ticket):
            if on_result is not None:
                on_result(error)
            elif error:
                self.controller.set_error(error)
        if error:
            logger.warning("Command %s failed: %s", name, error)
        return error

    # ------------------------------------------------------------------
    # Server connection
    # ------------------------------------------------------------------

    async def connect(self, addr: str, username: str) -> str:
        """Connect to (or switch the active server to) *addr*.

        Rollback-on-failure: while the attempt is in flight the previously
        active server stays fully visible; a failure only sets connect_error.
        """
        self._last_addr, self._last_username = addr, username
        switching = addr != self.controller.connected_addr
        if switching:
            self.reducer.stage(addr)
        self.controller.begin_connect(addr)
        generation = self.controller.generation

        def on_result(error: str) -> None:
            if self._stale("connect", generation):
                return
            if error:
                self.controller.connect_failed(addr, error)
                if switching:
                    self.reducer.discard_stage(addr)
                return
            self.controller.connect_succeeded(addr)
            if switching:
                self.reducer.promote(addr)

        return await self._run("connect", lambda: self.transport.connect(addr, username), on_result)

    async def reconnect(self) -> str:
        """Re-issue connect with the last credentials after ``poll`` fired an attempt."""
        addr, username = self._last_addr, self._last_username
        generation = self.controller.generation

        def on_result(error: str) -> None:
            if self._stale("reconnect", generation):
                return
            if error:
                self.controller.reconnect_failed(error, self.reducer.clock())
            else:
                # also when cancelled meanwhile: the transport is connected
                self.controller.connect_succeeded(addr)

        return await self._run("reconnect", lambda: self.transport.connect(addr, username), on_result)

    async def disconnect(self) -> None:
        """Always-commit-locally: the session is gone as soon as the user asks.

        Results of connect, reconnect and join_voice still in flight are
        dropped when they arrive.
        """
        self.controller.disconnected()
        self.reducer.clear_stages()
        self.reducer.store.reset()

        async def call() -> str:
            await self.transport.disconnect()
            return ""

        await self._run("disconnect", call)

    # ------------------------------------------------------------------
    # Voice
    # ------------------------------------------------------------------

    async def join_voice(self, channel_id: int) -> str:
        self.controller.begin_join_voice(channel_id)
        generation = self.controller.generation

        def on_result(error: str) -> None:
            if self._stale("join_voice", generation):
                return
            if error:
                self.controller.voice_join_failed(error)
            else:
                self.controller.voice_joined(channel_id)

        return await self._run("join_voice", lambda: self.transport.join_voice(channel_id), on_result)

    async def leave_voice(self) -> str:
        """Always-commit-locally: audio is already torn down by the caller.

        An error is surfaced in connect_error but never re-raises
        voice_connected.
        """
        self.controller.voice_left()

        def on_result(error: str) -> None:
            if error:
                self.controller.set_error(error)

        return await self._run("leave_voice", self.transport.leave_voice, on_result)

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def send_chat(self, channel_id: int, text: str) -> str:
        return await self._run("send_chat", lambda: self.transport.send_chat(channel_id, text))

    async def edit_message(self, msg_id: int, text: str) -> str:
        return await self._run("edit_message", lambda: self.transport.edit_message(msg_id, text))

    async def delete_message(self, msg_id: int) -> str:
        return await self._run("delete_message", lambda: self.transport.delete_message(msg_id))

    async def add_reaction(self, msg_id: int, emoji: str) -> str:
        return await self._run("add_reaction", lambda: self.transport.add_reaction(msg_id, emoji))

    async def remove_reaction(self, msg_id: int, emoji: str) -> str:
        return await self._run("remove_reaction", lambda: self.transport.remove_reaction(msg_id, emoji))

    # ------------------------------------------------------------------
    # Moderation / channel management
    # ------------------------------------------------------------------

    async def kick_user(self, user_id: int) -> str:
        return await self._run("kick_user", lambda: self.transport.kick_user(user_id))

    async def create_channel(self, name: str) -> str:
        return await self._run("create_channel", lambda: self.transport.create_channel(name))

    async def rename_channel(self, channel_id: int, name: str) -> str:
        return await self._run("rename_channel", lambda: self.transport.rename_channel(channel_id, name))

    async def delete_channel(self, channel_id: int) -> str:
        return await self._run("delete_channel", lambda: self.transport.delete_channel(channel_id))

    async def move_user(self, user_id: int, channel_id: int) -> str:
        return await self._run("move_user", lambda: self.transport.move_user(user_id, channel_id))

    async def rename_user(self, name: str) -> str:
        return await self._run("rename_user", lambda: self.transport.rename_user(name))

    async def rename_server(self, name: str) -> str:
        return await self._run("rename_server", lambda: self.transport.rename_server(name))

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def start_video(self) -> str:
        return await self._run("start_video", self.transport.start_video)

    async def stop_video(self) -> str:
        return await self._run("stop_video", self.transport.stop_video)

    async def start_screen_share(self) -> str:
        return await self._run("start_screen_share", self.transport.start_screen_share)

    async def stop_screen_share(self) -> str:
        return await self._run("stop_screen_share", self.transport.stop_screen_share)

    async def request_video_quality(self, user_id: int, quality: str) -> str:
        return await self._run(
            "request_video_quality",
            lambda: self.transport.request_video_quality(user_id, quality),
        )
