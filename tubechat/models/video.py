import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tubechat.db import Base
from tubechat.errors import InvalidTransitionError


class VideoStatus(str, enum.Enum):
    PENDING = "PENDING"
    TRANSCRIBE_ERROR = "TRANSCRIBE_ERROR"
    EMBEDDING_ERROR = "EMBEDDING_ERROR"
    COMPLETED = "COMPLETED"


# Allowed status changes. Error states are recoverable, COMPLETED is only
# left when a later embedding pass fails.
TRANSITIONS: dict[VideoStatus, frozenset[VideoStatus]] = {
    VideoStatus.PENDING: frozenset({
        VideoStatus.COMPLETED,
        VideoStatus.TRANSCRIBE_ERROR,
    }),
    VideoStatus.TRANSCRIBE_ERROR: frozenset({
        VideoStatus.PENDING,
        VideoStatus.COMPLETED,
        VideoStatus.TRANSCRIBE_ERROR,
    }),
    VideoStatus.COMPLETED: frozenset({
        VideoStatus.EMBEDDING_ERROR,
    }),
    VideoStatus.EMBEDDING_ERROR: frozenset({
        VideoStatus.COMPLETED,
        VideoStatus.EMBEDDING_ERROR,
    }),
}


def assert_transition(current: VideoStatus, target: VideoStatus) -> None:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move video from '{current.value}' to '{target.value}'"
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    youtube_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    channel_handle: Mapped[str | None] = mapped_column(String(200), nullable=True)
    playlist_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    playlist_title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    duration_in_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[VideoStatus] = mapped_column(
        Enum(VideoStatus), nullable=False, default=VideoStatus.PENDING
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    chunks: Mapped[list["TranscriptChunk"]] = relationship(
        back_populates="video",
        cascade="all, delete-orphan",
        order_by="TranscriptChunk.timestamp_in_seconds",
    )

    def __repr__(self) -> str:
        return (
            f"<Video(id='{self.id}', youtube_id='{self.youtube_id}', "
            f"status='{self.status.value}')>"
        )


class TranscriptChunk(Base):
    __tablename__ = "transcript_chunks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    video_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True
    )
    timestamp_in_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    video: Mapped["Video"] = relationship(back_populates="chunks")

    def __repr__(self) -> str:
        return (
            f"<TranscriptChunk(video_id='{self.video_id}', "
            f"t={self.timestamp_in_seconds})>"
        )
