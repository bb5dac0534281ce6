import logging
import math
from pathlib import Path
from typing import Protocol

from openai import OpenAI

from tubechat.config import Settings
from tubechat.models.schemas import Segment
from tubechat.services.download_service import download_audio

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    """Turns a stored video into timestamped transcript segments."""

    def transcribe(self, video) -> list[Segment]: ...


class WhisperTranscriber:
    """Downloads a video's audio with yt-dlp and transcribes it with Whisper."""

    def __init__(self, settings: Settings):
        api_key = settings.effective_whisper_api_key
        if not api_key:
            raise ValueError("No Whisper API key configured. Set WHISPER_API_KEY or OPENAI_API_KEY.")
        self.api_key = api_key
        self.model = settings.whisper_model
        self.language = settings.whisper_language or None
        self.max_chunk_mb = settings.whisper_max_chunk_mb
        self.max_retries = settings.max_retries
        self.raw_data_dir = settings.raw_data_dir
        self.audio_format = settings.audio_format

    def transcribe(self, video) -> list[Segment]:
        audio_path = download_audio(
            video.youtube_id,
            str(Path(self.raw_data_dir) / "audio"),
            audio_format=self.audio_format,
        )
        segments = transcribe_audio(
            audio_path,
            api_key=self.api_key,
            model=self.model,
            language=self.language,
            max_chunk_mb=self.max_chunk_mb,
            max_retries=self.max_retries,
        )
        logger.info("Transcribed %s: %d segments", video.youtube_id, len(segments))
        return segments


def transcribe_audio(
    audio_path: str,
    api_key: str,
    model: str = "whisper-1",
    language: str | None = None,
    max_chunk_mb: int = 24,
    max_retries: int = 3,
) -> list[Segment]:
    """Transcribe an audio file into timestamped segments.

    Files larger than ``max_chunk_mb`` are split first; segment timestamps
    of later parts are shifted by the part's start offset.
    """
    client = OpenAI(api_key=api_key, max_retries=max_retries)
    file_size_mb = Path(audio_path).stat().st_size / (1024 * 1024)

    if file_size_mb <= max_chunk_mb:
        return _transcribe_single(client, audio_path, model, language)

    logger.info("Audio %.1f MB > %d MB limit, splitting...", file_size_mb, max_chunk_mb)
    return _transcribe_chunked(client, audio_path, model, language, max_chunk_mb)


def _transcribe_single(
    client: OpenAI,
    audio_path: str,
    model: str,
    language: str | None,
    offset_seconds: float = 0.0,
) -> list[Segment]:
    kwargs = {"model": model, "response_format": "verbose_json"}
    if language:
        kwargs["language"] = language
    with open(audio_path, "rb") as f:
        response = client.audio.transcriptions.create(file=f, **kwargs)

    return [
        Segment(
            timestamp_in_seconds=int(seg.start + offset_seconds),
            text=seg.text.strip(),
        )
        for seg in (response.segments or [])
    ]


def _transcribe_chunked(
    client: OpenAI,
    audio_path: str,
    model: str,
    language: str | None,
    max_chunk_mb: int,
) -> list[Segment]:
    from pydub import AudioSegment

    audio = AudioSegment.from_file(audio_path)
    duration_ms = len(audio)
    file_size_mb = Path(audio_path).stat().st_size / (1024 * 1024)

    num_parts = math.ceil(file_size_mb / max_chunk_mb)
    part_ms = duration_ms // num_parts

    tmp_dir = Path(audio_path).parent / "_whisper_tmp"
    tmp_dir.mkdir(exist_ok=True)

    segments: list[Segment] = []
    try:
        for i in range(num_parts):
            start = i * part_ms
            end = min((i + 1) * part_ms, duration_ms)
            tmp_path = tmp_dir / f"part_{i:03d}.mp3"
            audio[start:end].export(str(tmp_path), format="mp3")
            logger.info("Transcribing part %d/%d...", i + 1, num_parts)
            segments.extend(
                _transcribe_single(client, str(tmp_path), model, language, start / 1000)
            )
    finally:
        for f in tmp_dir.glob("*"):
            f.unlink()
        tmp_dir.rmdir()

    return segments
