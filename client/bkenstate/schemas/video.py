from pydantic import BaseModel


class VideoLayer(BaseModel):
    """One simulcast layer a publisher offers."""

    quality: str  # "high", "medium" or "low"
    width: int
    height: int
    bitrate: int  # kbps


class VideoState(BaseModel):
    active: bool = True
    screen_share: bool = False
    layers: list[VideoLayer] = []


class RecordingState(BaseModel):
    recording: bool
    started_by: str = ""
