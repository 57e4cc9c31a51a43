"""
Read-time projection of the store and controller.

Nothing here mutates state.  Expiry of typing and speaking indicators and
the reconnect countdown are evaluated against the ``now`` passed in (Unix
ms), so stale entries are simply never rendered and tests can pin the clock.
"""

import math

from bkenstate.schemas.message import TypingEntry
from bkenstate.schemas.snapshot import ConnectionView, ReconnectView, Snapshot, VoiceView
from bkenstate.state.connection import ConnectionController, ReconnectPhase
from bkenstate.state.store import EntityStore


def visible_typing(
    store: EntityStore,
    now: int,
    channel_id: int,
    self_id: int | None = None,
) -> dict[int, TypingEntry]:
    """Typing entries that are unexpired and in *channel_id*, keyed by user id."""
    if self_id is None:
        self_id = store.self_id
    return {
        uid: entry
        for uid, entry in store.get_typing().items()
        if now < entry.expires_at and entry.channel_id == channel_id and uid != self_id
    }


def speaking_users(store: EntityStore, now: int) -> set[int]:
    return {uid for uid, expires_at in store.get_speaking().items() if now < expires_at}


def seconds_until_retry(controller: ConnectionController, now: int) -> int:
    """Whole seconds left before the next reconnect attempt, never negative."""
    if controller.reconnect_phase != ReconnectPhase.RETRYING or controller.retry_at is None:
        return 0
    return max(0, math.ceil((controller.retry_at - now) / 1000))


def connection_view(controller: ConnectionController) -> ConnectionView:
    return ConnectionView(
        phase=controller.server_phase.value,
        connected=controller.connected,
        connected_addr=controller.connected_addr,
        connect_error=controller.connect_error,
    )


def voice_view(controller: ConnectionController) -> VoiceView:
    return VoiceView(
        phase=controller.voice_phase.value,
        voice_connected=controller.voice_connected,
        voice_channel_id=controller.voice_channel_id,
    )


def reconnect_view(controller: ConnectionController, now: int) -> ReconnectView:
    return ReconnectView(
        reconnecting=controller.reconnecting,
        attempt=controller.reconnect_attempt,
        seconds_until_retry=seconds_until_retry(controller, now),
        reason=controller.reconnect_reason,
    )


def build_snapshot(
    store: EntityStore,
    controller: ConnectionController,
    now: int,
    viewed_channel_id: int,
) -> Snapshot:
    return Snapshot(
        server_name=store.server_name,
        owner_id=store.owner_id,
        self_id=store.self_id,
        viewed_channel_id=viewed_channel_id,
        users=[u.model_copy() for u in store.get_users()],
        channels=[c.model_copy() for c in store.get_channels()],
        user_channels=store.get_user_channels(),
        messages={
            cid: [m.model_copy(deep=True) for m in msgs]
            for cid, msgs in store.get_all_messages().items()
        },
        unread_counts=store.get_unread_counts(),
        typing=visible_typing(store, now, viewed_channel_id),
        speaking=speaking_users(store, now),
        video_states={uid: v.model_copy(deep=True) for uid, v in store.get_video_states().items()},
        recording_states={cid: r.model_copy() for cid, r in store.get_recording_states().items()},
        connection=connection_view(controller),
        voice=voice_view(controller),
        reconnect=reconnect_view(controller, now),
    )
