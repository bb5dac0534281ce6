"""Transcription pipeline: quota-checked dispatch of selected videos.

Phase 1 transcribes each video and stores its merged chunks (status
COMPLETED on success). Phase 2 embeds the chunks of every video that
made it through phase 1. A failure is recorded on that video only and
the rest of the batch carries on.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from tubechat.config import Settings
from tubechat.core.duration import hours_for_minutes
from tubechat.core.lifecycle import VideoLifecycle
from tubechat.core.quota import QuotaLedger, check_batch
from tubechat.core.segments import merge_segments
from tubechat.models.schemas import CatalogItem
from tubechat.models.video import TranscriptChunk, Video, VideoStatus
from tubechat.services.embedding_service import Embedder
from tubechat.services.transcription_service import Transcriber

logger = logging.getLogger(__name__)


@dataclass
class VideoResult:
    video_id: str
    youtube_id: str
    status: str
    error: str | None = None


@dataclass
class TranscribeReport:
    total_attempts: int = 0
    total_transcribed: int = 0
    total_embedded: int = 0
    quota_exceeded: bool = False
    hours_needed: int = 0
    hours_left: int = 0
    results: list[VideoResult] = field(default_factory=list)


@dataclass
class BatchCharge:
    """Hours debited once for a whole batch, at the ceiling of its total minutes."""

    user_email: str
    minutes: int

    @property
    def hours(self) -> int:
        return hours_for_minutes(self.minutes)

    def release(self, ledger: QuotaLedger, video: Video) -> int:
        """Drop a failed video from the charge and credit the hours that frees."""
        before = self.hours
        self.minutes = max(self.minutes - video.duration_in_minutes, 0)
        freed = before - self.hours
        if freed:
            ledger.credit_hours(self.user_email, freed)
        return freed


def reserve_hours(ledger: QuotaLedger, video: Video) -> bool:
    """Debit the video's own hours from its owner. False if they do not fit."""
    return ledger.debit_hours(video.user_email, hours_for_minutes(video.duration_in_minutes))


def transcribe_video(
    lifecycle: VideoLifecycle,
    video: Video,
    transcriber: Transcriber,
    min_chunk_seconds: int = 10,
    charge: BatchCharge | None = None,
) -> bool:
    """Transcribe one PENDING video whose hours are already reserved.

    On success the merged chunks and full content are stored and the video
    is COMPLETED. On failure it moves to TRANSCRIBE_ERROR and its hours are
    credited back: the video's own ceiling when it was reserved alone, or
    whatever its minutes free up in ``charge`` when it was paid for as part
    of a batch.
    """
    try:
        segments = transcriber.transcribe(video)
        merged = merge_segments(segments, min_seconds=min_chunk_seconds)
        if not merged:
            raise ValueError("Transcription returned no text")
    except Exception as e:
        logger.error("Transcription failed for %s: %s", video.youtube_id, e)
        lifecycle.mark_transcribe_error(video, str(e))
        if charge is None:
            lifecycle.ledger.credit_hours(
                video.user_email, hours_for_minutes(video.duration_in_minutes)
            )
        else:
            charge.release(lifecycle.ledger, video)
        return False

    video.chunks = [
        TranscriptChunk(timestamp_in_seconds=seg.timestamp_in_seconds, text=seg.text)
        for seg in merged
    ]
    video.content = " ".join(seg.text for seg in merged)
    lifecycle.mark_completed(video)
    logger.info("Transcribed %s: %d chunks", video.youtube_id, len(merged))
    return True


def embed_video(lifecycle: VideoLifecycle, video: Video, embedder: Embedder) -> bool:
    """Embed a video's stored chunks. Failure moves it to EMBEDDING_ERROR."""
    chunks = list(video.chunks)
    try:
        vectors = embedder.embed([c.text for c in chunks])
        if len(vectors) != len(chunks):
            raise ValueError(
                f"Expected {len(chunks)} embeddings, got {len(vectors)}"
            )
    except Exception as e:
        logger.error("Embedding failed for %s: %s", video.youtube_id, e)
        lifecycle.mark_embedding_error(video, str(e))
        return False

    for chunk, vector in zip(chunks, vectors):
        chunk.embedding = list(vector)
    if video.status == VideoStatus.COMPLETED:
        lifecycle.session.commit()
    else:
        lifecycle.mark_completed(video)
    logger.info("Embedded %s: %d chunks", video.youtube_id, len(chunks))
    return True


def transcribe_videos(
    session: Session,
    items: list[CatalogItem],
    user_email: str,
    transcriber: Transcriber,
    embedder: Embedder,
    settings: Settings,
    batch_size: int | None = None,
) -> TranscribeReport:
    """Store the selected items and run them through transcription and embedding.

    The whole batch is checked against the user's remaining video-hours
    before anything is dispatched; an over-budget batch is rejected with
    ``quota_exceeded`` set. An accepted batch is debited once, at the
    ceiling of its total minutes, and then every video in it is attempted.
    A failed transcription gives back only the hours its minutes free up.
    """
    batch_size = batch_size or settings.transcription_batch_size
    lifecycle = VideoLifecycle(session, settings)
    report = TranscribeReport()

    pending: list[Video] = []
    seen: set[str] = set()
    for item in items:
        video = lifecycle.create(item, user_email)
        if video.id in seen:
            continue
        seen.add(video.id)
        if video.user_email != user_email:
            logger.warning("Skipping %s: stored for another user", video.youtube_id)
        elif video.status != VideoStatus.PENDING:
            logger.info("Skipping %s: already %s", video.youtube_id, video.status.value)
        else:
            pending.append(video)

    if not pending:
        logger.info("Nothing to transcribe for %s", user_email)
        return report

    check = check_batch(pending, lifecycle.ledger.get(user_email))
    report.hours_needed = check.hours_needed
    report.hours_left = check.hours_left
    if not check.allowed:
        logger.warning(
            "Quota exceeded for %s: batch needs %d h, %d h left",
            user_email, check.hours_needed, check.hours_left,
        )
        report.quota_exceeded = True
        report.results = [_result(v) for v in pending]
        return report

    charge = BatchCharge(user_email, sum(v.duration_in_minutes for v in pending))
    if not lifecycle.ledger.debit_hours(user_email, charge.hours):
        logger.warning(
            "Quota for %s changed before dispatch: %d h no longer available",
            user_email, charge.hours,
        )
        report.quota_exceeded = True
        report.results = [_result(v) for v in pending]
        return report

    # Phase 1: transcription
    transcribed: list[Video] = []
    for start in range(0, len(pending), batch_size):
        batch = pending[start:start + batch_size]
        logger.info(
            "Transcribing batch %d (%d videos) for %s",
            start // batch_size + 1, len(batch), user_email,
        )
        for video in batch:
            report.total_attempts += 1
            if transcribe_video(
                lifecycle, video, transcriber,
                min_chunk_seconds=settings.min_chunk_seconds, charge=charge,
            ):
                transcribed.append(video)
    report.total_transcribed = len(transcribed)

    # Phase 2: embeddings
    for video in transcribed:
        if embed_video(lifecycle, video, embedder):
            report.total_embedded += 1

    report.results = [_result(v) for v in pending]
    logger.info(
        "Transcription run for %s: %d attempted, %d transcribed, %d embedded",
        user_email, report.total_attempts, report.total_transcribed, report.total_embedded,
    )
    return report


def _result(video: Video) -> VideoResult:
    return VideoResult(
        video_id=video.id,
        youtube_id=video.youtube_id,
        status=video.status.value,
        error=video.error_message,
    )
