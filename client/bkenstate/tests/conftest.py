"""
Pytest fixtures shared across all test modules.

No network: the command transport is a scripted fake and the clock is a
settable integer, so every expiry and countdown is deterministic.
"""

import asyncio
import os

# Set env vars BEFORE any bkenstate module is imported
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["SYSTEM_MESSAGES"] = "false"

import pytest

from bkenstate.core import events  # noqa: E402
from bkenstate.session import StateSession  # noqa: E402

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a settable Unix-ms timestamp."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTransport:
    """Records every command and answers with scripted results.

    ``results[name]`` is a list consumed front-first; an empty or missing
    list answers "" (success).  ``gates[name]`` is an asyncio.Event the call
    waits on before answering, to hold a command in flight.
    """

    def __init__(self):
        self.calls: list[tuple] = []
        self.results: dict[str, list] = {}
        self.gates: dict[str, asyncio.Event] = {}

    def script(self, name: str, *results) -> None:
        self.results.setdefault(name, []).extend(results)

    def hold(self, name: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[name] = gate
        return gate

    async def _answer(self, name: str, *args):
        self.calls.append((name, *args))
        gate = self.gates.pop(name, None)
        queued = self.results.get(name)
        result = queued.pop(0) if queued else ""
        if gate is not None:
            await gate.wait()
        if isinstance(result, Exception):
            raise result
        return result

    async def connect(self, addr, username):
        return await self._answer("connect", addr, username)

    async def disconnect(self):
        await self._answer("disconnect")

    async def join_voice(self, channel_id):
        return await self._answer("join_voice", channel_id)

    async def leave_voice(self):
        return await self._answer("leave_voice")

    async def send_chat(self, channel_id, text):
        return await self._answer("send_chat", channel_id, text)

    async def edit_message(self, msg_id, text):
        return await self._answer("edit_message", msg_id, text)

    async def delete_message(self, msg_id):
        return await self._answer("delete_message", msg_id)

    async def add_reaction(self, msg_id, emoji):
        return await self._answer("add_reaction", msg_id, emoji)

    async def remove_reaction(self, msg_id, emoji):
        return await self._answer("remove_reaction", msg_id, emoji)

    async def kick_user(self, user_id):
        return await self._answer("kick_user", user_id)

    async def create_channel(self, name):
        return await self._answer("create_channel", name)

    async def rename_channel(self, channel_id, name):
        return await self._answer("rename_channel", channel_id, name)

    async def delete_channel(self, channel_id):
        return await self._answer("delete_channel", channel_id)

    async def move_user(self, user_id, channel_id):
        return await self._answer("move_user", user_id, channel_id)

    async def rename_user(self, name):
        return await self._answer("rename_user", name)

    async def rename_server(self, name):
        return await self._answer("rename_server", name)

    async def start_video(self):
        return await self._answer("start_video")

    async def stop_video(self):
        return await self._answer("stop_video")

    async def start_screen_share(self):
        return await self._answer("start_screen_share")

    async def stop_screen_share(self):
        return await self._answer("stop_screen_share")

    async def request_video_quality(self, user_id, quality):
        return await self._answer("request_video_quality", user_id, quality)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def session(transport, clock):
    return StateSession(transport, clock)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def chat(msg_id: int, channel_id: int = 0, text: str = "hello", sender_id: int = 1, **extra) -> dict:
    return {
        "type": events.CHAT_CREATED,
        "username": "Alice",
        "message": text,
        "ts": 1_700_000_000_000,
        "channel_id": channel_id,
        "msg_id": msg_id,
        "sender_id": sender_id,
        **extra,
    }


def emit(session: StateSession, tag: str, **payload) -> None:
    assert session.apply_raw({"type": tag, **payload}), f"{tag} was dropped"
