"""Flask JSON API over the boundary procedures."""

import logging
import threading
from datetime import datetime, timezone

from flask import Blueprint, Flask, current_app, jsonify, request

import tubechat
from tubechat import api
from tubechat.config import Settings, get_settings
from tubechat.core.lifecycle import VideoLifecycle
from tubechat.core.paginator import CatalogPaginator
from tubechat.db import get_session_factory
from tubechat.errors import (
    CatalogError,
    CatalogRateLimitError,
    PageNotReachableError,
    RetryNotAllowedError,
    VideoNotFoundError,
)
from tubechat.models.video import VideoStatus
from tubechat.services.youtube_service import YouTubeClient
from tubechat.web.jobs import JobManager

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

_RETRYABLE = (VideoStatus.TRANSCRIBE_ERROR, VideoStatus.EMBEDDING_ERROR)


def create_app(settings: Settings | None = None) -> Flask:
    settings = settings or get_settings()

    app = Flask(__name__)
    app.config["settings"] = settings
    app.config["session_factory"] = get_session_factory(settings.database_url)
    app.config["youtube_client"] = YouTubeClient(settings)
    app.config["transcriber_factory"] = api.default_transcriber
    app.config["embedder_factory"] = api.default_embedder
    app.config["job_manager"] = JobManager(settings.logs_dir)
    app.config["paginators"] = {}
    app.config["paginators_lock"] = threading.Lock()

    app.register_blueprint(api_bp)
    _register_error_handlers(app)
    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(VideoNotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(RetryNotAllowedError)
    def _retry_not_allowed(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(PageNotReachableError)
    def _page_not_reachable(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(CatalogRateLimitError)
    def _rate_limited(e):
        return jsonify({"error": str(e)}), 429

    @app.errorhandler(CatalogError)
    def _catalog_error(e):
        logger.warning("Catalog request failed: %s", e)
        return jsonify({"error": str(e)}), 502


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def _user_email() -> str | None:
    return request.headers.get("X-User-Email") or None


def _require_user():
    user = _user_email()
    if not user:
        return None, (jsonify({"error": "Missing X-User-Email header"}), 401)
    return user, None


def _session():
    return current_app.config["session_factory"]()


def _paginator(user_email: str) -> CatalogPaginator:
    """One paginator (and page cache) per user browsing session."""
    with current_app.config["paginators_lock"]:
        paginators = current_app.config["paginators"]
        if user_email not in paginators:
            settings = current_app.config["settings"]
            paginators[user_email] = CatalogPaginator(
                current_app.config["youtube_client"],
                page_size=settings.catalog_page_size,
            )
        return paginators[user_email]


def _job_response(job):
    return jsonify({"job_id": job.job_id, "state": job.state}), 202


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@api_bp.get("/health")
def health():
    return jsonify({
        "status": "ok",
        "time": datetime.now(timezone.utc).isoformat(),
        "version": tubechat.__version__,
    })


@api_bp.get("/catalog/<handle>")
def catalog(handle: str):
    user, error = _require_user()
    if error:
        return error
    return jsonify(api.get_uploads_metadata_for_channel(_paginator(user), handle))


@api_bp.get("/playlists/<playlist_id>/pages/<int:page_number>")
def playlist_page(playlist_id: str, page_number: int):
    user, error = _require_user()
    if error:
        return error
    token = request.args.get("token") or None
    return jsonify(api.get_next_videos_for_playlist(
        _paginator(user), playlist_id, token, page_number,
    ))


@api_bp.get("/quota")
def quota():
    user, error = _require_user()
    if error:
        return error
    session = _session()
    try:
        return jsonify(api.get_quota(session, user, current_app.config["settings"]))
    finally:
        session.close()


@api_bp.get("/videos")
def videos():
    user, error = _require_user()
    if error:
        return error
    session = _session()
    try:
        return jsonify(api.list_stored_videos(session, user, current_app.config["settings"]))
    finally:
        session.close()


@api_bp.post("/transcriptions")
def transcriptions():
    user, error = _require_user()
    if error:
        return error
    body = request.get_json(silent=True) or {}
    items = body.get("items") or []
    if not items:
        return jsonify({"error": "No videos selected"}), 400

    jobs: JobManager = current_app.config["job_manager"]
    active = jobs.active_for(user)
    if active:
        return jsonify({"error": f"Transcription already active: {active.job_id}"}), 409

    job = jobs.submit(
        "transcribe", user, user, current_app._get_current_object(),
        payload={"items": items, "batch_size": body.get("batch_size")},
    )
    return _job_response(job)


@api_bp.post("/videos/<video_id>/retry")
def retry(video_id: str):
    user, error = _require_user()
    if error:
        return error
    session = _session()
    try:
        video = VideoLifecycle(session, current_app.config["settings"]).get(video_id, user)
        if video.status not in _RETRYABLE:
            raise RetryNotAllowedError(
                f"Video {video_id} is {video.status.value}; only failed videos can be retried"
            )
    finally:
        session.close()

    jobs: JobManager = current_app.config["job_manager"]
    active = jobs.active_for(video_id)
    if active:
        return jsonify({"error": f"Job already active: {active.job_id}"}), 409

    job = jobs.submit("retry", user, video_id, current_app._get_current_object())
    return _job_response(job)


@api_bp.delete("/videos/<video_id>")
def delete_video(video_id: str):
    user, error = _require_user()
    if error:
        return error
    session = _session()
    try:
        return jsonify(api.delete_stored_video(
            session, video_id, user, current_app.config["settings"],
        ))
    finally:
        session.close()


@api_bp.post("/videos/bulk-delete")
def bulk_delete():
    user, error = _require_user()
    if error:
        return error
    body = request.get_json(silent=True) or {}
    ids = body.get("video_ids") or []
    session = _session()
    try:
        return jsonify(api.bulk_delete_stored_videos(
            session, ids, user, current_app.config["settings"],
        ))
    finally:
        session.close()


@api_bp.get("/jobs/<job_id>")
def job_status(job_id: str):
    jobs: JobManager = current_app.config["job_manager"]
    job = jobs.get(job_id)
    if job is None or job.user_email != _user_email():
        return jsonify({"error": f"Job not found: {job_id}"}), 404
    return jsonify(job.to_dict())


@api_bp.get("/jobs/<job_id>/log")
def job_log(job_id: str):
    jobs: JobManager = current_app.config["job_manager"]
    job = jobs.get(job_id)
    if job is None or job.user_email != _user_email():
        return jsonify({"error": f"Job not found: {job_id}"}), 404

    path = jobs.log_path(job_id)
    lines = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    tail = request.args.get("tail", type=int)
    if tail:
        lines = lines[-tail:]
    return jsonify({"lines": lines})
