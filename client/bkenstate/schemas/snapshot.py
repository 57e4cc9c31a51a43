from pydantic import BaseModel

from bkenstate.schemas.channel import Channel
from bkenstate.schemas.message import ChatMessage, TypingEntry
from bkenstate.schemas.user import User
from bkenstate.schemas.video import RecordingState, VideoState


class ConnectionView(BaseModel):
    phase: str
    connected: bool
    connected_addr: str
    connect_error: str

    model_config = {"frozen": True}


class VoiceView(BaseModel):
    phase: str
    voice_connected: bool
    voice_channel_id: int | None = None

    model_config = {"frozen": True}


class ReconnectView(BaseModel):
    reconnecting: bool
    attempt: int
    seconds_until_retry: int
    reason: str

    model_config = {"frozen": True}


class Snapshot(BaseModel):
    """Everything the UI renders, detached from the live store."""

    server_name: str
    owner_id: int | None = None
    self_id: int | None = None
    viewed_channel_id: int
    users: list[User]
    channels: list[Channel]
    user_channels: dict[int, int]
    messages: dict[int, list[ChatMessage]]
    unread_counts: dict[int, int]
    typing: dict[int, TypingEntry]
    speaking: set[int]
    video_states: dict[int, VideoState]
    recording_states: dict[int, RecordingState]
    connection: ConnectionView
    voice: VoiceView
    reconnect: ReconnectView

    model_config = {"frozen": True}
