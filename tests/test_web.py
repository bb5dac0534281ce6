"""Tests for the tubechat JSON API endpoints."""

import time
from unittest.mock import MagicMock

import pytest

from conftest import OTHER_USER, USER, FakeEmbedder, FakeTranscriber, make_item
from tubechat.core.lifecycle import VideoLifecycle
from tubechat.core.quota import QuotaLedger
from tubechat.errors import CatalogRateLimitError, ChannelNotFoundError
from tubechat.models.schemas import CatalogItem, PlaylistInfo
from tubechat.models.video import TranscriptChunk, Video, VideoStatus
from tubechat.services.youtube_service import YouTubeClient

HEADERS = {"X-User-Email": USER}


@pytest.fixture
def youtube_client():
    c = MagicMock(spec=YouTubeClient)
    c.get_uploads_playlist_id.return_value = "UUchan"
    c.get_playlist_metadata.return_value = PlaylistInfo(
        playlist_id="UUchan", title="Uploads", item_count=25,
    )
    pages = {
        None: ([CatalogItem(youtube_id="v1", title="One")], "T2"),
        "T2": ([CatalogItem(youtube_id="v2", title="Two")], None),
    }
    c.list_playlist_items.side_effect = lambda playlist_id, token=None: pages[token]
    c.fetch_durations.side_effect = lambda ids: {vid: 30 for vid in ids}
    return c


@pytest.fixture
def fakes():
    return {"transcriber": FakeTranscriber(fail={"bad"}), "embedder": FakeEmbedder()}


@pytest.fixture
def app(settings, session_factory, youtube_client, fakes):
    from tubechat.web.app import create_app

    application = create_app(settings=settings)
    application.config["session_factory"] = session_factory
    application.config["youtube_client"] = youtube_client
    application.config["transcriber_factory"] = lambda s: fakes["transcriber"]
    application.config["embedder_factory"] = lambda s: fakes["embedder"]
    application.config["TESTING"] = True
    yield application
    application.config["job_manager"].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded(session_factory, settings):
    """Three stored videos for USER at different statuses, one for OTHER_USER."""
    session = session_factory()
    lifecycle = VideoLifecycle(session, settings)
    ids = {}
    for youtube_id, minutes, status, user in [
        ("done", 125, VideoStatus.COMPLETED, USER),
        ("tfail", 30, VideoStatus.TRANSCRIBE_ERROR, USER),
        ("efail", 30, VideoStatus.EMBEDDING_ERROR, USER),
        ("theirs", 60, VideoStatus.COMPLETED, OTHER_USER),
    ]:
        video = lifecycle.create(make_item(youtube_id, minutes), user)
        video.status = status
        if status == VideoStatus.EMBEDDING_ERROR:
            video.chunks = [TranscriptChunk(timestamp_in_seconds=0, text="stored")]
        session.commit()
        ids[youtube_id] = video.id
    QuotaLedger(session, settings).set(USER, video_hours_left=5)
    session.close()
    return ids


def _wait_for_job(client, job_id, timeout=5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/api/jobs/{job_id}", headers=HEADERS).get_json()
        if data["state"] in ("success", "error"):
            return data
        time.sleep(0.05)
    raise AssertionError(f"Job {job_id} did not finish")


# ---------------------------------------------------------------------------
# Health and auth
# ---------------------------------------------------------------------------


class TestHealth:
    def test_health_endpoint(self, client):
        r = client.get("/api/health")
        assert r.status_code == 200
        data = r.get_json()
        assert data["status"] == "ok"
        assert "time" in data
        assert data["version"] == "0.1.0"

    def test_default_collaborators_come_from_api(self, settings):
        from tubechat import api
        from tubechat.web.app import create_app

        application = create_app(settings=settings)
        try:
            assert application.config["transcriber_factory"] is api.default_transcriber
            assert application.config["embedder_factory"] is api.default_embedder
        finally:
            application.config["job_manager"].shutdown()

    def test_missing_user_header(self, client):
        assert client.get("/api/quota").status_code == 401


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestCatalog:
    def test_channel_bootstrap(self, client):
        r = client.get("/api/catalog/@chan", headers=HEADERS)
        assert r.status_code == 200
        data = r.get_json()
        assert data["uploads_playlist_id"] == "UUchan"
        assert data["total_video_count"] == 25
        assert data["next_token"] == "T2"
        assert data["first_page_videos"][0]["duration_in_minutes"] == 30

    def test_next_page_and_cached_back_navigation(self, client, youtube_client):
        client.get("/api/catalog/@chan", headers=HEADERS)

        r = client.get("/api/playlists/UUchan/pages/2?token=T2", headers=HEADERS)
        assert r.status_code == 200
        data = r.get_json()
        assert data["for_page"] == 2
        assert data["next_token"] is None
        assert data["videos"][0]["youtube_id"] == "v2"

        r = client.get("/api/playlists/UUchan/pages/1", headers=HEADERS)
        assert r.get_json()["videos"][0]["youtube_id"] == "v1"
        assert youtube_client.list_playlist_items.call_count == 2

    def test_other_playlist_items_not_tagged_with_previous_channel(self, client):
        client.get("/api/catalog/@chan", headers=HEADERS)
        r = client.get("/api/playlists/PLx/pages/1", headers=HEADERS)
        video = r.get_json()["videos"][0]
        assert video["playlist_id"] == "PLx"
        assert video["channel_handle"] is None

    def test_page_without_token(self, client):
        r = client.get("/api/playlists/UUother/pages/3", headers=HEADERS)
        assert r.status_code == 400

    def test_unknown_channel(self, client, youtube_client):
        youtube_client.get_uploads_playlist_id.side_effect = ChannelNotFoundError("nope")
        assert client.get("/api/catalog/@nobody", headers=HEADERS).status_code == 502

    def test_rate_limited(self, client, youtube_client):
        youtube_client.get_uploads_playlist_id.side_effect = CatalogRateLimitError("slow down")
        assert client.get("/api/catalog/@chan", headers=HEADERS).status_code == 429


# ---------------------------------------------------------------------------
# Quota and stored videos
# ---------------------------------------------------------------------------


class TestQuotaAndVideos:
    def test_quota_defaults(self, client):
        data = client.get("/api/quota", headers=HEADERS).get_json()
        assert data["user_email"] == USER
        assert data["video_hours_left"] == 10
        assert data["messages_left"] == 100

    def test_list_only_own_videos(self, client, seeded):
        data = client.get("/api/videos", headers=HEADERS).get_json()
        assert {v["youtube_id"] for v in data} == {"done", "tfail", "efail"}


# ---------------------------------------------------------------------------
# Transcription and retry jobs
# ---------------------------------------------------------------------------


class TestTranscriptionJobs:
    def test_transcription_job(self, client, session_factory):
        items = [make_item("n1", 30).model_dump(), make_item("bad", 30).model_dump()]
        r = client.post("/api/transcriptions", json={"items": items}, headers=HEADERS)
        assert r.status_code == 202
        job = _wait_for_job(client, r.get_json()["job_id"])

        assert job["state"] == "success"
        assert job["result"]["total_attempts"] == 2
        assert job["result"]["total_transcribed"] == 1
        assert job["result"]["quota_exceeded"] is False

        session = session_factory()
        try:
            statuses = {v.youtube_id: v.status for v in session.query(Video)}
        finally:
            session.close()
        assert statuses == {"n1": VideoStatus.COMPLETED, "bad": VideoStatus.TRANSCRIBE_ERROR}

    def test_over_budget_reported(self, client, seeded):
        items = [make_item("big", 600).model_dump()]
        r = client.post("/api/transcriptions", json={"items": items}, headers=HEADERS)
        job = _wait_for_job(client, r.get_json()["job_id"])
        assert job["result"]["quota_exceeded"] is True
        assert job["result"]["total_attempts"] == 0

    def test_empty_selection(self, client):
        r = client.post("/api/transcriptions", json={"items": []}, headers=HEADERS)
        assert r.status_code == 400

    def test_job_log(self, client):
        items = [make_item("n1", 30).model_dump()]
        job_id = client.post(
            "/api/transcriptions", json={"items": items}, headers=HEADERS,
        ).get_json()["job_id"]
        _wait_for_job(client, job_id)

        lines = client.get(f"/api/jobs/{job_id}/log", headers=HEADERS).get_json()["lines"]
        assert any("Starting transcribe" in line for line in lines)
        tail = client.get(f"/api/jobs/{job_id}/log?tail=1", headers=HEADERS).get_json()
        assert len(tail["lines"]) == 1

    def test_job_hidden_from_other_users(self, client):
        items = [make_item("n1", 30).model_dump()]
        job_id = client.post(
            "/api/transcriptions", json={"items": items}, headers=HEADERS,
        ).get_json()["job_id"]
        _wait_for_job(client, job_id)
        r = client.get(f"/api/jobs/{job_id}", headers={"X-User-Email": OTHER_USER})
        assert r.status_code == 404

    def test_job_not_found(self, client):
        assert client.get("/api/jobs/nonexistent", headers=HEADERS).status_code == 404


class TestRetry:
    def test_retry_embedding_error(self, client, seeded, fakes):
        r = client.post(f"/api/videos/{seeded['efail']}/retry", headers=HEADERS)
        assert r.status_code == 202
        job = _wait_for_job(client, r.get_json()["job_id"])
        assert job["state"] == "success"
        assert job["result"]["action"] == "embed"
        assert fakes["transcriber"].calls == []

    def test_retry_transcribe_error(self, client, seeded, fakes):
        r = client.post(f"/api/videos/{seeded['tfail']}/retry", headers=HEADERS)
        job = _wait_for_job(client, r.get_json()["job_id"])
        assert job["state"] == "success"
        assert job["result"]["action"] == "transcribe"
        assert fakes["transcriber"].calls == ["tfail"]

    def test_retry_completed_conflict(self, client, seeded):
        r = client.post(f"/api/videos/{seeded['done']}/retry", headers=HEADERS)
        assert r.status_code == 409

    def test_retry_foreign_video(self, client, seeded):
        r = client.post(f"/api/videos/{seeded['theirs']}/retry", headers=HEADERS)
        assert r.status_code == 404


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_completed_restores_quota(self, client, seeded):
        r = client.delete(f"/api/videos/{seeded['done']}", headers=HEADERS)
        assert r.status_code == 200
        assert r.get_json() == {"quota_restored": 3}
        assert client.get("/api/quota", headers=HEADERS).get_json()["video_hours_left"] == 8

    def test_delete_foreign_video(self, client, seeded):
        r = client.delete(f"/api/videos/{seeded['theirs']}", headers=HEADERS)
        assert r.status_code == 404

    def test_bulk_delete(self, client, seeded):
        ids = [seeded["done"], seeded["tfail"]]
        r = client.post("/api/videos/bulk-delete", json={"video_ids": ids}, headers=HEADERS)
        assert r.status_code == 200
        assert r.get_json() == {"deleted_count": 2, "quota_restored": 3}

    def test_bulk_delete_with_foreign_id(self, client, seeded):
        ids = [seeded["done"], seeded["theirs"]]
        r = client.post("/api/videos/bulk-delete", json={"video_ids": ids}, headers=HEADERS)
        assert r.status_code == 404
        remaining = client.get("/api/videos", headers=HEADERS).get_json()
        assert len(remaining) == 3
