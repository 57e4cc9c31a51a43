# Inbound event tags, as emitted by the client bridge.
# Every tag listed here has a payload model in bkenstate.schemas.events.

# Roster
ROSTER_REPLACE = "user:list"
ROSTER_JOINED = "user:joined"
ROSTER_LEFT = "user:left"
ROSTER_RENAMED = "user:renamed"

# Server metadata
SERVER_INFO = "server:info"
OWNER_CHANGED = "room:owner"
SELF_IDENTIFIED = "user:me"

# Chat
CHAT_CREATED = "chat:message"
CHAT_EDITED = "chat:message_edited"
CHAT_DELETED = "chat:message_deleted"
CHAT_REACTION_ADDED = "chat:reaction_added"
CHAT_REACTION_REMOVED = "chat:reaction_removed"
CHAT_PINNED = "chat:message_pinned"
CHAT_UNPINNED = "chat:message_unpinned"
CHAT_LINK_PREVIEW = "chat:link_preview"
TYPING_SIGNAL = "chat:user_typing"

# Channels
CHANNEL_LIST = "channel:list"
CHANNEL_MEMBER_MOVED = "channel:user_moved"

# Voice / video / recording
SPEAKING = "audio:speaking"
VIDEO_STATE = "video:state"
VIDEO_LAYERS = "video:layers"
RECORDING_STATE = "recording:state"

# Connection lifecycle
KICKED = "connection:kicked"
CONNECTION_LOST = "connection:lost"
