from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import tubechat.models.quota  # noqa: F401
import tubechat.models.video  # noqa: F401
from tubechat.config import Settings
from tubechat.db import Base, _enable_sqlite_foreign_keys
from tubechat.models.schemas import CatalogItem, Segment

USER = "alice@example.com"
OTHER_USER = "bob@example.com"


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with foreign keys on, shared across threads."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Database session for tests."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings(tmp_path):
    """Settings with temp directories and fake keys."""
    return Settings(
        youtube_api_key="yt-test",
        openai_api_key="sk-test",
        database_url="sqlite:///:memory:",
        raw_data_dir=str(tmp_path / "raw"),
        logs_dir=str(tmp_path / "logs"),
        default_video_hours_quota=10,
        default_messages_quota=100,
    )


def make_item(youtube_id: str, minutes: int, **kwargs) -> CatalogItem:
    return CatalogItem(
        youtube_id=youtube_id,
        title=kwargs.pop("title", f"Video {youtube_id}"),
        duration_in_minutes=minutes,
        channel_handle=kwargs.pop("channel_handle", "@chan"),
        playlist_id=kwargs.pop("playlist_id", "UUchan"),
        **kwargs,
    )


class FakeTranscriber:
    """Returns canned segments; raises for ids listed in ``fail``."""

    def __init__(self, fail: set[str] | None = None):
        self.fail = fail or set()
        self.calls: list[str] = []

    def transcribe(self, video) -> list[Segment]:
        self.calls.append(video.youtube_id)
        if video.youtube_id in self.fail:
            raise RuntimeError(f"yt-dlp failed for {video.youtube_id}")
        return [
            Segment(timestamp_in_seconds=0, text="Hello"),
            Segment(timestamp_in_seconds=4, text="and welcome."),
            Segment(timestamp_in_seconds=12, text="Today we talk about"),
            Segment(timestamp_in_seconds=25, text="quotas."),
        ]


class FakeEmbedder:
    """Returns fixed-size vectors; raises for calls while ``failing`` is set."""

    def __init__(self, failing: bool = False):
        self.failing = failing
        self.calls: list[list[str]] = []

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failing:
            raise RuntimeError("embedding service unavailable")
        return [[0.1, 0.2, 0.3] for _ in texts]


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def future():
    return datetime(2099, 1, 1, tzinfo=timezone.utc)
