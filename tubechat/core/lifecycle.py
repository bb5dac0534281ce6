"""Per-video lifecycle: creation, status transitions, retry and deletion.

Status changes are validated against ``TRANSITIONS``. Deleting a
COMPLETED video gives its video-hours back to the owner in the same
transaction as the delete.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import delete as sql_delete
from sqlalchemy import select
from sqlalchemy.orm import Session

from tubechat.config import Settings
from tubechat.core.duration import hours_for_minutes
from tubechat.core.quota import QuotaLedger
from tubechat.errors import RetryNotAllowedError, VideoNotFoundError
from tubechat.models.schemas import CatalogItem, VideoInfo
from tubechat.models.video import TranscriptChunk, Video, VideoStatus, assert_transition

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("title", "channel_handle", "playlist_id", "playlist_title")


@dataclass
class RetryOutcome:
    action: str  # "transcribe" or "embed"
    success: bool
    error: str | None = None


@dataclass
class DeleteResult:
    quota_restored: int


@dataclass
class BulkDeleteResult:
    deleted_count: int
    quota_restored: int


def refund_hours(video: Video) -> int:
    """Video-hours given back when this video is deleted."""
    if video.status != VideoStatus.COMPLETED:
        return 0
    return hours_for_minutes(video.duration_in_minutes)


def to_video_info(video: Video) -> VideoInfo:
    return VideoInfo(
        id=video.id,
        youtube_id=video.youtube_id,
        title=video.title,
        status=video.status.value,
        duration_in_minutes=video.duration_in_minutes,
        channel_handle=video.channel_handle,
        playlist_id=video.playlist_id,
        playlist_title=video.playlist_title,
        thumbnail_url=video.thumbnail_url,
        error_message=video.error_message,
        created_at=video.created_at,
        updated_at=video.updated_at,
    )


class VideoLifecycle:
    def __init__(self, session: Session, settings: Settings):
        self.session = session
        self.settings = settings
        self.ledger = QuotaLedger(session, settings)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create(self, item: CatalogItem, user_email: str) -> Video:
        """Record a selected catalog item as a PENDING video.

        No quota is consumed here. If a video with the same YouTube id is
        already stored it is returned as is.
        """
        existing = self.session.execute(
            select(Video).where(Video.youtube_id == item.youtube_id)
        ).scalar_one_or_none()
        if existing is not None:
            logger.debug("Video %s already stored as %s", item.youtube_id, existing.id)
            return existing

        video = Video(
            youtube_id=item.youtube_id,
            user_email=user_email,
            title=item.title,
            content="",
            channel_handle=item.channel_handle,
            playlist_id=item.playlist_id,
            playlist_title=item.playlist_title,
            thumbnail_url=item.thumbnail,
            duration_in_minutes=item.duration_in_minutes,
            status=VideoStatus.PENDING,
        )
        self.session.add(video)
        self.session.commit()
        logger.info("Created video %s (%s) for %s", video.id, item.youtube_id, user_email)
        return video

    def get(self, video_id: str, user_email: str) -> Video:
        """Fetch a video owned by ``user_email``.

        Raises:
            VideoNotFoundError: If the video is missing or owned by someone else.
        """
        video = self.session.get(Video, video_id)
        if video is None or video.user_email != user_email:
            raise VideoNotFoundError(f"Video not found: {video_id}")
        return video

    def list_for_user(self, user_email: str, status: VideoStatus | None = None) -> list[Video]:
        stmt = select(Video).where(Video.user_email == user_email)
        if status is not None:
            stmt = stmt.where(Video.status == status)
        stmt = stmt.order_by(Video.created_at.desc())
        return list(self.session.execute(stmt).scalars())

    def update(self, video_id: str, user_email: str, **fields) -> Video:
        unknown = set(fields) - set(_UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        video = self.get(video_id, user_email)
        for name, value in fields.items():
            setattr(video, name, value)
        self.session.commit()
        return video

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _move(self, video: Video, target: VideoStatus, error: str | None = None) -> None:
        assert_transition(video.status, target)
        logger.info("Video %s: %s -> %s", video.id, video.status.value, target.value)
        video.status = target
        video.error_message = error
        self.session.commit()

    def mark_completed(self, video: Video) -> None:
        self._move(video, VideoStatus.COMPLETED)

    def mark_transcribe_error(self, video: Video, error: str) -> None:
        self._move(video, VideoStatus.TRANSCRIBE_ERROR, error)

    def mark_embedding_error(self, video: Video, error: str) -> None:
        self._move(video, VideoStatus.EMBEDDING_ERROR, error)

    def reset_for_transcription(self, video: Video) -> None:
        """Drop a failed transcription's chunks and content and go back to PENDING."""
        assert_transition(video.status, VideoStatus.PENDING)
        video.chunks.clear()
        video.content = ""
        self._move(video, VideoStatus.PENDING)

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry(self, video_id: str, user_email: str, transcriber, embedder) -> RetryOutcome:
        """Re-run only the step that failed.

        TRANSCRIBE_ERROR re-runs transcription and embedding from scratch,
        consuming the video's hours again. EMBEDDING_ERROR re-embeds the
        stored chunks without transcribing.

        Raises:
            VideoNotFoundError: If the video is missing or owned by someone else.
            RetryNotAllowedError: If the video is PENDING or COMPLETED.
        """
        from tubechat.core.pipeline import embed_video, reserve_hours, transcribe_video

        video = self.get(video_id, user_email)

        if video.status == VideoStatus.EMBEDDING_ERROR:
            ok = embed_video(self, video, embedder)
            return RetryOutcome("embed", ok, None if ok else video.error_message)

        if video.status == VideoStatus.TRANSCRIBE_ERROR:
            if not reserve_hours(self.ledger, video):
                return RetryOutcome("transcribe", False, "Insufficient video-hours quota")
            self.reset_for_transcription(video)
            ok = transcribe_video(
                self, video, transcriber, min_chunk_seconds=self.settings.min_chunk_seconds
            )
            if ok:
                ok = embed_video(self, video, embedder)
            return RetryOutcome("transcribe", ok, None if ok else video.error_message)

        raise RetryNotAllowedError(
            f"Video {video_id} is {video.status.value}; only failed videos can be retried"
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete(self, video_id: str, user_email: str) -> DeleteResult:
        """Delete one video and its chunks, refunding hours if it was COMPLETED."""
        video = self.get(video_id, user_email)
        hours = refund_hours(video)
        self.ledger.get(user_email)
        try:
            self.session.delete(video)
            restored = self.ledger.credit_hours(user_email, hours, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info("Deleted video %s for %s (restored %d h)", video_id, user_email, restored)
        return DeleteResult(quota_restored=restored)

    def bulk_delete(self, video_ids: Iterable[str], user_email: str) -> BulkDeleteResult:
        """Delete several videos at once; all ids must belong to the user.

        Raises:
            VideoNotFoundError: If any id is unknown or foreign. Nothing is
                deleted in that case.
        """
        ids = list(dict.fromkeys(video_ids))
        if not ids:
            return BulkDeleteResult(deleted_count=0, quota_restored=0)

        videos = list(self.session.execute(
            select(Video).where(Video.id.in_(ids), Video.user_email == user_email)
        ).scalars())
        found = {v.id for v in videos}
        missing = [i for i in ids if i not in found]
        if missing:
            raise VideoNotFoundError(f"Videos not found: {', '.join(missing)}")

        hours = sum(refund_hours(v) for v in videos)
        self.ledger.get(user_email)
        try:
            self.session.execute(
                sql_delete(TranscriptChunk).where(TranscriptChunk.video_id.in_(ids))
            )
            self.session.execute(sql_delete(Video).where(Video.id.in_(ids)))
            restored = self.ledger.credit_hours(user_email, hours, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.expire_all()

        logger.info(
            "Bulk deleted %d videos for %s (restored %d h)", len(ids), user_email, restored
        )
        return BulkDeleteResult(deleted_count=len(ids), quota_restored=restored)
