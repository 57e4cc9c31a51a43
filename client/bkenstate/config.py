from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"

    # Typing / speaking indicators: visibility window after the last signal
    TYPING_TTL_MS: int = 5000
    SPEAKING_TTL_MS: int = 500

    # Reconnect backoff: delay before attempt N is RECONNECT_BACKOFF_SECONDS[N],
    # clamped to the last entry once the list is exhausted.
    RECONNECT_BACKOFF_SECONDS: list[int] = [1, 2, 4, 8, 16, 30]
    TICK_INTERVAL_SECONDS: float = 1.0

    # User-visible reasons
    KICKED_REASON: str = "Disconnected by server owner"
    CONNECTION_LOST_REASON: str = "Connection lost"

    # Channel 0 is never part of the server's channel list but always exists.
    LOBBY_NAME: str = "Lobby"

    # Narrate joins, leaves and kicks as system lines in the lobby history
    SYSTEM_MESSAGES: bool = True

    # 0 keeps the full history; a positive value evicts the oldest messages
    # of a channel once it grows past the limit.
    MAX_MESSAGES_PER_CHANNEL: int = 0

    model_config = {"env_file": ".env"}


settings = Settings()
