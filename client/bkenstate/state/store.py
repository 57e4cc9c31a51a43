import logging
from collections import defaultdict

from bkenstate.config import settings
from bkenstate.schemas.channel import LOBBY_CHANNEL_ID, Channel
from bkenstate.schemas.message import ChatMessage, LinkPreview, TypingEntry
from bkenstate.schemas.user import User
from bkenstate.schemas.video import RecordingState, VideoLayer, VideoState

logger = logging.getLogger(__name__)


class EntityStore:
    """In-memory entity maps for one connection session.

    Every mutator is total: an unknown id is a logged no-op, never an
    exception, and re-applying an already-applied change leaves the store
    as it was.  Messages are kept per channel in arrival order and indexed
    by msg_id; they are never physically removed (delete is a soft flag).
    """

    def __init__(self) -> None:
        self._clear()

    def reset(self) -> None:
        """Forget everything; used when the active server changes."""
        self._clear()

    def _clear(self) -> None:
        self.server_name: str = ""
        self.owner_id: int | None = None
        self.self_id: int | None = None
        # user_id -> User, in roster order
        self._users: dict[int, User] = {}
        # user_id -> channel_id (0 = lobby)
        self._user_channels: dict[int, int] = {}
        self._channels: list[Channel] = []
        # channel_id -> [ChatMessage] in arrival order
        self._messages: dict[int, list[ChatMessage]] = defaultdict(list)
        # msg_id -> ChatMessage (same objects as in _messages)
        self._by_msg_id: dict[int, ChatMessage] = {}
        self._typing: dict[int, TypingEntry] = {}
        # user_id -> expires_at (ms)
        self._speaking: dict[int, int] = {}
        # user_id -> VideoState; present only while active
        self._video: dict[int, VideoState] = {}
        # channel_id -> RecordingState; present only while recording
        self._recording: dict[int, RecordingState] = {}
        self._unread: dict[int, int] = {}
        self._next_system_id = -1

    # ------------------------------------------------------------------
    # Server metadata
    # ------------------------------------------------------------------

    def set_server_name(self, name: str) -> None:
        self.server_name = name

    def set_owner(self, owner_id: int) -> None:
        self.owner_id = owner_id

    def set_self_id(self, user_id: int) -> None:
        self.self_id = user_id

    # ------------------------------------------------------------------
    # Users / membership
    # ------------------------------------------------------------------

    def replace_users(self, users: list[User], channels: dict[int, int] | None = None) -> None:
        """Replace the roster wholesale.

        *channels* maps user ids to the channel the roster row reported.
        Membership of ids absent from the new roster is left alone; new ids
        without a reported channel default to the lobby.
        """
        channels = channels or {}
        self._users = {u.id: u for u in users}
        for user in users:
            if user.id in channels:
                self._user_channels[user.id] = channels[user.id]
            else:
                self._user_channels.setdefault(user.id, LOBBY_CHANNEL_ID)

    def upsert_user(self, user: User) -> None:
        self._users[user.id] = user
        self._user_channels.setdefault(user.id, LOBBY_CHANNEL_ID)

    def remove_user(self, user_id: int) -> None:
        if self._users.pop(user_id, None) is None:
            logger.debug("remove_user: unknown user %s", user_id)
        self._user_channels.pop(user_id, None)

    def rename_user(self, user_id: int, username: str) -> None:
        user = self._users.get(user_id)
        if user is None:
            logger.debug("rename_user: unknown user %s", user_id)
            return
        user.username = username

    def get_user(self, user_id: int) -> User | None:
        return self._users.get(user_id)

    def get_users(self) -> list[User]:
        return list(self._users.values())

    def move_user(self, user_id: int, channel_id: int) -> None:
        self._user_channels[user_id] = channel_id

    def channel_of(self, user_id: int) -> int:
        return self._user_channels.get(user_id, LOBBY_CHANNEL_ID)

    def get_user_channels(self) -> dict[int, int]:
        return dict(self._user_channels)

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def replace_channels(self, channels: list[Channel]) -> None:
        self._channels = list(channels)

    def get_channels(self) -> list[Channel]:
        return list(self._channels)

    def has_channel(self, channel_id: int) -> bool:
        if channel_id == LOBBY_CHANNEL_ID:
            return True
        return any(c.id == channel_id for c in self._channels)

    def channel_name(self, channel_id: int) -> str | None:
        for channel in self._channels:
            if channel.id == channel_id:
                return channel.name
        if channel_id == LOBBY_CHANNEL_ID:
            return settings.LOBBY_NAME
        return None

    # ------------------------------------------------------------------
    # Chat messages
    # ------------------------------------------------------------------

    def apply_chat_create(self, message: ChatMessage) -> bool:
        """Append *message* to its channel.

        Returns True for a new message.  A redelivered msg_id overwrites the
        stored record in place and returns False.
        """
        existing = self._by_msg_id.get(message.msg_id)
        if existing is not None:
            old_list = self._messages[existing.channel_id]
            idx = next(i for i, m in enumerate(old_list) if m is existing)
            if existing.channel_id == message.channel_id:
                old_list[idx] = message
            else:
                del old_list[idx]
                self._messages[message.channel_id].append(message)
            self._by_msg_id[message.msg_id] = message
            logger.debug("apply_chat_create: overwrote redelivered msg %s", message.msg_id)
            return False

        history = self._messages[message.channel_id]
        history.append(message)
        self._by_msg_id[message.msg_id] = message
        self._evict(history)
        return True

    def append_system(self, channel_id: int, text: str, ts: int) -> ChatMessage:
        """Append a local narration line (join/leave/kick) with a negative msg_id."""
        message = ChatMessage(
            msg_id=self._next_system_id,
            username="",
            text=text,
            ts=ts,
            channel_id=channel_id,
            system=True,
        )
        self._next_system_id -= 1
        history = self._messages[channel_id]
        history.append(message)
        self._by_msg_id[message.msg_id] = message
        self._evict(history)
        return message

    def _evict(self, history: list[ChatMessage]) -> None:
        limit = settings.MAX_MESSAGES_PER_CHANNEL
        if limit <= 0:
            return
        while len(history) > limit:
            dropped = history.pop(0)
            self._by_msg_id.pop(dropped.msg_id, None)

    def _find(self, msg_id: int, op: str) -> ChatMessage | None:
        message = self._by_msg_id.get(msg_id)
        if message is None:
            logger.debug("%s: unknown msg %s dropped", op, msg_id)
        return message

    def apply_chat_edit(self, msg_id: int, text: str, ts: int) -> None:
        message = self._find(msg_id, "apply_chat_edit")
        if message is None:
            return
        message.text = text
        message.edited = True
        message.edited_ts = ts

    def apply_chat_delete(self, msg_id: int) -> None:
        message = self._find(msg_id, "apply_chat_delete")
        if message is None:
            return
        message.deleted = True
        message.text = ""

    def apply_reaction_added(self, msg_id: int, emoji: str, user_id: int) -> None:
        message = self._find(msg_id, "apply_reaction_added")
        if message is None:
            return
        message.reactions.setdefault(emoji, set()).add(user_id)

    def apply_reaction_removed(self, msg_id: int, emoji: str, user_id: int) -> None:
        message = self._find(msg_id, "apply_reaction_removed")
        if message is None:
            return
        reactors = message.reactions.get(emoji)
        if reactors is None:
            return
        reactors.discard(user_id)
        if not reactors:
            del message.reactions[emoji]

    def apply_pin(self, msg_id: int, pinned: bool) -> None:
        message = self._find(msg_id, "apply_pin")
        if message is None:
            return
        message.pinned = pinned

    def apply_link_preview(self, msg_id: int, preview: LinkPreview) -> None:
        message = self._find(msg_id, "apply_link_preview")
        if message is None:
            return
        message.link_preview = preview

    def get_message(self, msg_id: int) -> ChatMessage | None:
        return self._by_msg_id.get(msg_id)

    def get_messages(self, channel_id: int) -> list[ChatMessage]:
        return list(self._messages.get(channel_id, []))

    def get_all_messages(self) -> dict[int, list[ChatMessage]]:
        return {cid: list(msgs) for cid, msgs in self._messages.items() if msgs}

    # ------------------------------------------------------------------
    # Typing / speaking (time-bounded, filtered at read time)
    # ------------------------------------------------------------------

    def upsert_typing(self, user_id: int, username: str, channel_id: int, expires_at: int) -> None:
        self._typing[user_id] = TypingEntry(
            user_id=user_id,
            username=username,
            channel_id=channel_id,
            expires_at=expires_at,
        )

    def get_typing(self) -> dict[int, TypingEntry]:
        return dict(self._typing)

    def mark_speaking(self, user_id: int, expires_at: int) -> None:
        self._speaking[user_id] = expires_at

    def get_speaking(self) -> dict[int, int]:
        return dict(self._speaking)

    # ------------------------------------------------------------------
    # Video / recording
    # ------------------------------------------------------------------

    def set_video_state(
        self,
        user_id: int,
        active: bool,
        screen_share: bool,
        layers: list[VideoLayer] | None = None,
    ) -> None:
        if not active:
            self._video.pop(user_id, None)
            return
        current = self._video.get(user_id)
        if layers is None:
            layers = current.layers if current is not None else []
        self._video[user_id] = VideoState(active=True, screen_share=screen_share, layers=list(layers))

    def set_video_layers(self, user_id: int, layers: list[VideoLayer]) -> None:
        state = self._video.get(user_id)
        if state is None:
            logger.debug("set_video_layers: user %s has no active video", user_id)
            return
        state.layers = list(layers)

    def get_video_states(self) -> dict[int, VideoState]:
        return dict(self._video)

    def set_recording(self, channel_id: int, recording: bool, started_by: str) -> None:
        if not recording:
            self._recording.pop(channel_id, None)
            return
        self._recording[channel_id] = RecordingState(recording=True, started_by=started_by)

    def get_recording_states(self) -> dict[int, RecordingState]:
        return dict(self._recording)

    # ------------------------------------------------------------------
    # Unread counters
    # ------------------------------------------------------------------

    def increment_unread(self, channel_id: int) -> None:
        self._unread[channel_id] = self._unread.get(channel_id, 0) + 1

    def reset_unread(self, channel_id: int) -> None:
        self._unread[channel_id] = 0

    def get_unread(self, channel_id: int) -> int:
        return self._unread.get(channel_id, 0)

    def get_unread_counts(self) -> dict[int, int]:
        return dict(self._unread)
