import logging
import time
from collections.abc import Callable

from bkenstate.config import settings
from bkenstate.schemas.channel import LOBBY_CHANNEL_ID
from bkenstate.schemas.events import (
    ChannelListEvent,
    ChatCreatedEvent,
    ChatDeletedEvent,
    ChatEditedEvent,
    ConnectionLostEvent,
    InboundEvent,
    KickedEvent,
    LinkPreviewEvent,
    MemberMovedEvent,
    MessagePinnedEvent,
    MessageUnpinnedEvent,
    OwnerChangedEvent,
    ReactionAddedEvent,
    ReactionRemovedEvent,
    RecordingStateEvent,
    RosterJoinedEvent,
    RosterLeftEvent,
    RosterRenamedEvent,
    RosterReplaceEvent,
    SelfIdentifiedEvent,
    ServerInfoEvent,
    SpeakingEvent,
    TypingSignalEvent,
    VideoLayersEvent,
    VideoStateEvent,
)
from bkenstate.schemas.message import ChatMessage, FileAttachment, LinkPreview
from bkenstate.schemas.user import User
from bkenstate.state.connection import ConnectionController
from bkenstate.state.store import EntityStore

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class EventReducer:
    """Applies inbound events, one at a time, to the store and controller.

    ``viewed_channel_id`` is owned by the presentation layer (the channel
    on screen); it only decides which messages count as unread.

    A connect to a new server stages a fresh store; events tagged with that
    server's address land there until the gateway promotes it (connect
    succeeded) or discards it (connect failed), so a failed switch never
    touches the active store.  Events tagged with any other server that is
    not active are dropped.
    """

    def __init__(
        self,
        store: EntityStore,
        controller: ConnectionController,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self.store = store
        self.controller = controller
        self.clock = clock
        self.viewed_channel_id: int = LOBBY_CHANNEL_ID
        # server_addr -> store filling up while a connect is in flight
        self._staged: dict[str, EntityStore] = {}

    # ------------------------------------------------------------------
    # Staged stores for in-flight connects
    # ------------------------------------------------------------------

    def stage(self, addr: str) -> None:
        self._staged[addr] = EntityStore()

    def promote(self, addr: str) -> None:
        staged = self._staged.pop(addr, None)
        self.store = staged if staged is not None else EntityStore()
        logger.debug("Promoted store for %s", addr)

    def discard_stage(self, addr: str) -> None:
        self._staged.pop(addr, None)

    def clear_stages(self) -> None:
        self._staged.clear()

    def _target(self, event: InboundEvent) -> EntityStore | None:
        addr = event.server_addr
        if not addr:
            # untagged: the first connect's stage, otherwise the active server
            pending = self.controller.pending_addr
            if not self.controller.connected and pending in self._staged:
                return self._staged[pending]
            return self.store
        staged = self._staged.get(addr)
        if staged is not None:
            return staged
        active = self.controller.connected_addr
        if active and addr != active:
            return None
        return self.store

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def apply(self, event: InboundEvent) -> None:
        """Apply one event.  Never raises; handler bugs are logged."""
        store = self._target(event)
        if store is None:
            logger.debug("Dropping %r from inactive server %s", event.type, event.server_addr)
            return
        try:
            self._dispatch(event, store, live=store is self.store)
        except Exception as exc:
            logger.error("Error applying event %r: %s", event.type, exc, exc_info=True)

    def _dispatch(self, event: InboundEvent, store: EntityStore, live: bool) -> None:
        # ------------------------------------------------------------------
        # Roster / server metadata
        # ------------------------------------------------------------------
        if isinstance(event, RosterReplaceEvent):
            store.replace_users(
                [entry.to_user() for entry in event.users],
                channels={e.id: e.channel_id for e in event.users if e.channel_id is not None},
            )

        elif isinstance(event, RosterJoinedEvent):
            store.upsert_user(User(id=event.id, username=event.username, role=event.role))
            self._narrate(store, f"{event.username} joined")

        elif isinstance(event, RosterLeftEvent):
            user = store.get_user(event.id)
            store.remove_user(event.id)
            if user is not None:
                self._narrate(store, f"{user.username} left")

        elif isinstance(event, RosterRenamedEvent):
            store.rename_user(event.id, event.username)

        elif isinstance(event, ServerInfoEvent):
            store.set_server_name(event.name)

        elif isinstance(event, OwnerChangedEvent):
            store.set_owner(event.owner_id)

        elif isinstance(event, SelfIdentifiedEvent):
            store.set_self_id(event.id)

        # ------------------------------------------------------------------
        # Chat
        # ------------------------------------------------------------------
        elif isinstance(event, ChatCreatedEvent):
            created = store.apply_chat_create(_message_from_event(event))
            if created and event.channel_id != self.viewed_channel_id:
                store.increment_unread(event.channel_id)

        elif isinstance(event, ChatEditedEvent):
            store.apply_chat_edit(event.msg_id, event.message, event.ts)

        elif isinstance(event, ChatDeletedEvent):
            store.apply_chat_delete(event.msg_id)

        elif isinstance(event, ReactionAddedEvent):
            store.apply_reaction_added(event.msg_id, event.emoji, event.id)

        elif isinstance(event, ReactionRemovedEvent):
            store.apply_reaction_removed(event.msg_id, event.emoji, event.id)

        elif isinstance(event, MessagePinnedEvent):
            store.apply_pin(event.msg_id, True)

        elif isinstance(event, MessageUnpinnedEvent):
            store.apply_pin(event.msg_id, False)

        elif isinstance(event, LinkPreviewEvent):
            store.apply_link_preview(
                event.msg_id,
                LinkPreview(
                    url=event.url,
                    title=event.title,
                    description=event.description,
                    image=event.image,
                    site_name=event.site_name,
                ),
            )

        elif isinstance(event, TypingSignalEvent):
            if store.self_id is not None and event.id == store.self_id:
                return
            store.upsert_typing(
                event.id,
                event.username,
                event.channel_id,
                self.clock() + settings.TYPING_TTL_MS,
            )

        # ------------------------------------------------------------------
        # Channels
        # ------------------------------------------------------------------
        elif isinstance(event, ChannelListEvent):
            store.replace_channels(event.channels)

        elif isinstance(event, MemberMovedEvent):
            store.move_user(event.user_id, event.channel_id)

        # ------------------------------------------------------------------
        # Voice / video / recording
        # ------------------------------------------------------------------
        elif isinstance(event, SpeakingEvent):
            store.mark_speaking(event.id, self.clock() + settings.SPEAKING_TTL_MS)

        elif isinstance(event, VideoStateEvent):
            store.set_video_state(event.id, event.video_active, event.screen_share)

        elif isinstance(event, VideoLayersEvent):
            store.set_video_layers(event.id, event.layers)

        elif isinstance(event, RecordingStateEvent):
            store.set_recording(event.channel_id, event.recording, event.started_by)

        # ------------------------------------------------------------------
        # Connection lifecycle: only the active server's session counts;
        # a staged server's failure arrives as its connect result instead.
        # ------------------------------------------------------------------
        elif isinstance(event, KickedEvent):
            if not live:
                return
            self.controller.kicked()
            self._narrate(store, settings.KICKED_REASON)

        elif isinstance(event, ConnectionLostEvent):
            if not live:
                return
            self.controller.connection_lost(event.reason, self.clock())

        else:
            logger.warning("No handler for event %r", getattr(event, "type", event))

    def _narrate(self, store: EntityStore, text: str) -> None:
        if settings.SYSTEM_MESSAGES:
            store.append_system(LOBBY_CHANNEL_ID, text, self.clock())


def _message_from_event(event: ChatCreatedEvent) -> ChatMessage:
    attachment = None
    if event.file_id or event.file_url:
        attachment = FileAttachment(
            file_id=event.file_id,
            url=event.file_url or "",
            name=event.file_name or "",
            size=event.file_size or 0,
        )
    return ChatMessage(
        msg_id=event.msg_id,
        sender_id=event.sender_id,
        username=event.username,
        text=event.message,
        ts=event.ts,
        channel_id=event.channel_id,
        mentions=set(event.mentions),
        attachment=attachment,
        reply_to=event.reply_to,
        reply_preview=event.reply_preview,
        system=event.system,
    )
