"""Boundary procedures: one call per user action, plain dicts in and out.

These are what the web layer and the CLI call. Collaborators default to
the OpenAI-backed implementations built from ``Settings``.
"""

import logging
from dataclasses import asdict

from sqlalchemy.orm import Session

from tubechat.config import Settings, get_settings
from tubechat.core.lifecycle import VideoLifecycle, to_video_info
from tubechat.core.paginator import CatalogPaginator
from tubechat.core.pipeline import transcribe_videos as run_transcription
from tubechat.core.quota import QuotaLedger, to_quota_info
from tubechat.errors import RetryNotAllowedError, VideoNotFoundError
from tubechat.models.schemas import CatalogItem

logger = logging.getLogger(__name__)


def default_transcriber(settings: Settings):
    from tubechat.services.transcription_service import WhisperTranscriber

    return WhisperTranscriber(settings)


def default_embedder(settings: Settings):
    from tubechat.services.embedding_service import OpenAIEmbedder

    return OpenAIEmbedder(settings)


# ── Catalog ──────────────────────────────────────────────────────


def get_uploads_metadata_for_channel(paginator: CatalogPaginator, channel_handle: str) -> dict:
    metadata = paginator.get_uploads_metadata(channel_handle)
    return metadata.model_dump()


def get_next_videos_for_playlist(
    paginator: CatalogPaginator,
    playlist_id: str,
    next_token: str | None,
    page_number: int,
) -> dict:
    """Serve ``page_number`` of a playlist, from the paginator cache when possible."""
    paginator.attach(playlist_id)
    page = paginator.get_page(page_number, known_token=next_token)
    return {
        "videos": [item.model_dump() for item in page.items],
        "next_token": page.next_token,
        "for_page": page.page_number,
    }


# ── Quota ────────────────────────────────────────────────────────


def get_quota(session: Session, user_email: str, settings: Settings | None = None) -> dict:
    ledger = QuotaLedger(session, settings or get_settings())
    return to_quota_info(ledger.get(user_email)).model_dump()


# ── Videos ───────────────────────────────────────────────────────


def list_stored_videos(
    session: Session,
    user_email: str,
    settings: Settings | None = None,
) -> list[dict]:
    lifecycle = VideoLifecycle(session, settings or get_settings())
    return [to_video_info(v).model_dump() for v in lifecycle.list_for_user(user_email)]


def transcribe_videos(
    session: Session,
    selected_items: list[CatalogItem | dict],
    user_email: str,
    batch_size: int | None = None,
    settings: Settings | None = None,
    transcriber=None,
    embedder=None,
) -> dict:
    """Quota-consuming entry point. Over-budget batches come back with
    ``quota_exceeded`` set and nothing dispatched."""
    settings = settings or get_settings()
    items = [
        i if isinstance(i, CatalogItem) else CatalogItem.model_validate(i)
        for i in selected_items
    ]
    report = run_transcription(
        session,
        items,
        user_email,
        transcriber or default_transcriber(settings),
        embedder or default_embedder(settings),
        settings,
        batch_size=batch_size,
    )
    return asdict(report)


def retry_video(
    session: Session,
    video_id: str,
    user_email: str,
    settings: Settings | None = None,
    transcriber=None,
    embedder=None,
) -> dict:
    """Retry a failed video. Errors are reported in the result, not raised."""
    settings = settings or get_settings()
    lifecycle = VideoLifecycle(session, settings)
    try:
        outcome = lifecycle.retry(
            video_id,
            user_email,
            transcriber or default_transcriber(settings),
            embedder or default_embedder(settings),
        )
    except (VideoNotFoundError, RetryNotAllowedError) as e:
        logger.warning("Retry of %s rejected: %s", video_id, e)
        return {"success": False, "action": None, "error": str(e)}
    return asdict(outcome)


def delete_stored_video(
    session: Session,
    video_id: str,
    user_email: str,
    settings: Settings | None = None,
) -> dict:
    lifecycle = VideoLifecycle(session, settings or get_settings())
    return asdict(lifecycle.delete(video_id, user_email))


def bulk_delete_stored_videos(
    session: Session,
    video_ids: list[str],
    user_email: str,
    settings: Settings | None = None,
) -> dict:
    lifecycle = VideoLifecycle(session, settings or get_settings())
    return asdict(lifecycle.bulk_delete(video_ids, user_email))
