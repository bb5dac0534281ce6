from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Keys
    youtube_api_key: str = ""
    openai_api_key: str = ""
    whisper_api_key: str = ""  # falls back to openai_api_key if empty

    # Database
    database_url: str = "sqlite:///data/tubechat.db"

    # Catalog (YouTube Data API v3)
    youtube_api_base_url: str = "https://www.googleapis.com/youtube/v3"
    youtube_timeout_seconds: int = 30
    catalog_page_size: int = 20
    duration_batch_size: int = 50  # videos.list accepts at most 50 ids

    # Quota defaults
    default_messages_quota: int = 100
    default_video_hours_quota: int = 10

    # Transcription
    raw_data_dir: str = "data/raw"
    audio_format: str = "m4a"
    whisper_model: str = "whisper-1"
    whisper_language: str = ""  # empty lets Whisper detect the language
    whisper_max_chunk_mb: int = 24
    transcription_batch_size: int = 5
    min_chunk_seconds: int = 10

    # Embeddings
    embedding_model: str = "text-embedding-3-small"
    embedding_batch_size: int = 100
    max_retries: int = 3

    # Web
    logs_dir: str = "data/logs"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def effective_whisper_api_key(self) -> str:
        return self.whisper_api_key or self.openai_api_key


def get_settings() -> Settings:
    return Settings()
