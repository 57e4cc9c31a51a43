from typing import Literal

from pydantic import BaseModel

Role = Literal["OWNER", "ADMIN", "MODERATOR", "USER"]


class User(BaseModel):
    id: int
    username: str
    role: Role | None = None


class RosterEntry(User):
    """A roster row as sent by the server; carries the user's current channel."""

    channel_id: int | None = None

    def to_user(self) -> User:
        return User(id=self.id, username=self.username, role=self.role)
