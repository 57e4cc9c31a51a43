from pydantic import AliasChoices, BaseModel, Field


class LinkPreview(BaseModel):
    """Rich link metadata fetched by the server after the message was sent."""

    url: str
    title: str = ""
    description: str = ""
    image: str = ""
    site_name: str = ""


class FileAttachment(BaseModel):
    file_id: int | None = None
    url: str = ""
    name: str = ""
    size: int = 0


class ReplyPreview(BaseModel):
    """Minimal snapshot of the parent message embedded in a reply."""

    msg_id: int
    username: str = ""
    text: str = Field("", validation_alias=AliasChoices("text", "message"))
    deleted: bool = False


class ReactionInfo(BaseModel):
    emoji: str
    user_ids: list[int]
    count: int


class ChatMessage(BaseModel):
    msg_id: int
    sender_id: int = 0
    username: str = ""
    text: str = ""
    ts: int = 0  # Unix ms, server-stamped
    channel_id: int = 0
    edited: bool = False
    edited_ts: int | None = None
    deleted: bool = False
    pinned: bool = False
    # emoji -> reactor user ids; the displayed count is the set size
    reactions: dict[str, set[int]] = {}
    mentions: set[int] = set()
    attachment: FileAttachment | None = None
    link_preview: LinkPreview | None = None
    reply_to: int | None = None
    reply_preview: ReplyPreview | None = None
    system: bool = False

    def reaction_list(self) -> list[ReactionInfo]:
        """Reactions in first-reacted order, as the UI renders them."""
        return [
            ReactionInfo(emoji=emoji, user_ids=sorted(ids), count=len(ids))
            for emoji, ids in self.reactions.items()
            if ids
        ]


class TypingEntry(BaseModel):
    user_id: int
    username: str
    channel_id: int = 0
    expires_at: int  # Unix ms
