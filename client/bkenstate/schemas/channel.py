from pydantic import BaseModel, Field

LOBBY_CHANNEL_ID = 0


class Channel(BaseModel):
    id: int
    name: str
    max_users: int | None = Field(None, ge=0)  # 0 or None = unlimited
