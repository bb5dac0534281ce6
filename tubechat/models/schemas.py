from datetime import datetime

from pydantic import BaseModel, Field


class CatalogItem(BaseModel):
    """A video listed by the external catalog, before it is selected."""

    youtube_id: str
    title: str
    description: str = ""
    thumbnail: str | None = None
    duration_in_minutes: int = 0
    channel_handle: str | None = None
    playlist_id: str | None = None
    playlist_title: str | None = None


class CatalogPage(BaseModel):
    """One page of catalog items plus the token for the following page."""

    page_number: int
    items: list[CatalogItem] = Field(default_factory=list)
    next_token: str | None = None


class UploadsMetadata(BaseModel):
    """Bootstrap data for browsing a channel's uploads playlist."""

    uploads_playlist_id: str
    first_page_videos: list[CatalogItem] = Field(default_factory=list)
    next_token: str | None = None
    total_video_count: int = 0


class PlaylistInfo(BaseModel):
    playlist_id: str
    title: str = ""
    item_count: int = 0
    thumbnail: str | None = None


class Segment(BaseModel):
    """A timestamped piece of transcript text."""

    timestamp_in_seconds: int
    text: str


class QuotaInfo(BaseModel):
    user_email: str
    messages_left: int
    video_hours_left: int
    reset_at: datetime


class VideoInfo(BaseModel):
    """Stored video summary exposed to callers."""

    id: str
    youtube_id: str
    title: str
    status: str
    duration_in_minutes: int
    channel_handle: str | None = None
    playlist_id: str | None = None
    playlist_title: str | None = None
    thumbnail_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
