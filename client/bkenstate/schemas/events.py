"""
Inbound event payloads — one model per tag in bkenstate.core.events.

Every model carries its tag in ``type``; ``InboundEvent`` is the closed union
the reducer dispatches over.  ``server_addr`` names the server session the
event came from; untagged events belong to the active server.  Unknown keys
are ignored.
"""

from collections.abc import Mapping
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from bkenstate.core import events
from bkenstate.schemas.channel import Channel
from bkenstate.schemas.message import ReplyPreview
from bkenstate.schemas.user import Role, RosterEntry
from bkenstate.schemas.video import VideoLayer


class EventBase(BaseModel):
    server_addr: str = ""


# ---------------------------------------------------------------------------
# Roster / server metadata
# ---------------------------------------------------------------------------


class RosterReplaceEvent(EventBase):
    type: Literal[events.ROSTER_REPLACE] = events.ROSTER_REPLACE
    users: list[RosterEntry] = []


class RosterJoinedEvent(EventBase):
    type: Literal[events.ROSTER_JOINED] = events.ROSTER_JOINED
    id: int
    username: str
    role: Role | None = None


class RosterLeftEvent(EventBase):
    type: Literal[events.ROSTER_LEFT] = events.ROSTER_LEFT
    id: int


class RosterRenamedEvent(EventBase):
    type: Literal[events.ROSTER_RENAMED] = events.ROSTER_RENAMED
    id: int
    username: str


class ServerInfoEvent(EventBase):
    type: Literal[events.SERVER_INFO] = events.SERVER_INFO
    name: str


class OwnerChangedEvent(EventBase):
    type: Literal[events.OWNER_CHANGED] = events.OWNER_CHANGED
    owner_id: int


class SelfIdentifiedEvent(EventBase):
    type: Literal[events.SELF_IDENTIFIED] = events.SELF_IDENTIFIED
    id: int


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatCreatedEvent(EventBase):
    type: Literal[events.CHAT_CREATED] = events.CHAT_CREATED
    msg_id: int
    sender_id: int = 0
    username: str = ""
    message: str = ""
    ts: int = 0
    channel_id: int = 0
    file_id: int | None = None
    file_name: str | None = None
    file_size: int | None = None
    file_url: str | None = None
    mentions: list[int] = []
    reply_to: int | None = None
    reply_preview: ReplyPreview | None = None
    system: bool = False


class ChatEditedEvent(EventBase):
    type: Literal[events.CHAT_EDITED] = events.CHAT_EDITED
    msg_id: int
    message: str
    ts: int = 0


class ChatDeletedEvent(EventBase):
    type: Literal[events.CHAT_DELETED] = events.CHAT_DELETED
    msg_id: int


class ReactionAddedEvent(EventBase):
    type: Literal[events.CHAT_REACTION_ADDED] = events.CHAT_REACTION_ADDED
    msg_id: int
    emoji: str = Field(..., min_length=1)
    id: int  # reacting user


class ReactionRemovedEvent(EventBase):
    type: Literal[events.CHAT_REACTION_REMOVED] = events.CHAT_REACTION_REMOVED
    msg_id: int
    emoji: str = Field(..., min_length=1)
    id: int


class MessagePinnedEvent(EventBase):
    type: Literal[events.CHAT_PINNED] = events.CHAT_PINNED
    msg_id: int
    channel_id: int = 0
    id: int = 0  # user who pinned


class MessageUnpinnedEvent(EventBase):
    type: Literal[events.CHAT_UNPINNED] = events.CHAT_UNPINNED
    msg_id: int


class LinkPreviewEvent(EventBase):
    type: Literal[events.CHAT_LINK_PREVIEW] = events.CHAT_LINK_PREVIEW
    msg_id: int
    channel_id: int = 0
    url: str
    title: str = ""
    description: str = ""
    image: str = ""
    site_name: str = ""


class TypingSignalEvent(EventBase):
    type: Literal[events.TYPING_SIGNAL] = events.TYPING_SIGNAL
    id: int
    username: str = ""
    channel_id: int = 0


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class ChannelListEvent(EventBase):
    type: Literal[events.CHANNEL_LIST] = events.CHANNEL_LIST
    channels: list[Channel] = []


class MemberMovedEvent(EventBase):
    type: Literal[events.CHANNEL_MEMBER_MOVED] = events.CHANNEL_MEMBER_MOVED
    user_id: int
    channel_id: int


# ---------------------------------------------------------------------------
# Voice / video / recording
# ---------------------------------------------------------------------------


class SpeakingEvent(EventBase):
    type: Literal[events.SPEAKING] = events.SPEAKING
    id: int


class VideoStateEvent(EventBase):
    type: Literal[events.VIDEO_STATE] = events.VIDEO_STATE
    id: int
    video_active: bool
    screen_share: bool = False


class VideoLayersEvent(EventBase):
    type: Literal[events.VIDEO_LAYERS] = events.VIDEO_LAYERS
    id: int
    layers: list[VideoLayer] = []


class RecordingStateEvent(EventBase):
    type: Literal[events.RECORDING_STATE] = events.RECORDING_STATE
    channel_id: int
    recording: bool
    started_by: str = ""


# ---------------------------------------------------------------------------
# Connection lifecycle
# ---------------------------------------------------------------------------


class KickedEvent(EventBase):
    type: Literal[events.KICKED] = events.KICKED


class ConnectionLostEvent(EventBase):
    type: Literal[events.CONNECTION_LOST] = events.CONNECTION_LOST
    reason: str = ""


InboundEvent = Annotated[
    Union[
        RosterReplaceEvent,
        RosterJoinedEvent,
        RosterLeftEvent,
        RosterRenamedEvent,
        ServerInfoEvent,
        OwnerChangedEvent,
        SelfIdentifiedEvent,
        ChatCreatedEvent,
        ChatEditedEvent,
        ChatDeletedEvent,
        ReactionAddedEvent,
        ReactionRemovedEvent,
        MessagePinnedEvent,
        MessageUnpinnedEvent,
        LinkPreviewEvent,
        TypingSignalEvent,
        ChannelListEvent,
        MemberMovedEvent,
        SpeakingEvent,
        VideoStateEvent,
        VideoLayersEvent,
        RecordingStateEvent,
        KickedEvent,
        ConnectionLostEvent,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[Any] = TypeAdapter(InboundEvent)


def parse_event(raw: Mapping[str, Any]) -> InboundEvent:
    """Decode a raw ``{"type": <tag>, ...}`` mapping into its event model.

    Raises pydantic.ValidationError for unknown tags or malformed payloads.
    """
    return _adapter.validate_python(dict(raw))
