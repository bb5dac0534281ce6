"""Tests for the yt-dlp, Whisper and embedding adapters (no network)."""

import subprocess
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from tubechat.services.download_service import download_audio
from tubechat.services.embedding_service import OpenAIEmbedder
from tubechat.services.transcription_service import WhisperTranscriber, transcribe_audio


# ── Download ───────────────────────────────────────────────────────


class TestDownloadAudio:
    def test_invokes_yt_dlp(self, tmp_path):
        def fake_run(cmd, **kwargs):
            (tmp_path / "vid1.m4a").write_bytes(b"audio")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        with patch("tubechat.services.download_service.subprocess.run", side_effect=fake_run) as run:
            path = download_audio("vid1", str(tmp_path))

        assert path == str(tmp_path / "vid1.m4a")
        cmd = run.call_args.args[0]
        assert cmd[0] == "yt-dlp"
        assert "https://www.youtube.com/watch?v=vid1" in cmd
        assert "--audio-format" in cmd

    def test_reuses_existing_download(self, tmp_path):
        (tmp_path / "vid1.webm").write_bytes(b"audio")
        with patch("tubechat.services.download_service.subprocess.run") as run:
            assert download_audio("vid1", str(tmp_path)) == str(tmp_path / "vid1.webm")
        run.assert_not_called()

    def test_failure_raises(self, tmp_path):
        failed = subprocess.CompletedProcess([], 1, "", "ERROR: Private video")
        with patch("tubechat.services.download_service.subprocess.run", return_value=failed):
            with pytest.raises(RuntimeError, match="Private video"):
                download_audio("vid1", str(tmp_path))

    def test_missing_output_raises(self, tmp_path):
        ok = subprocess.CompletedProcess([], 0, "", "")
        with patch("tubechat.services.download_service.subprocess.run", return_value=ok):
            with pytest.raises(RuntimeError, match="No audio file"):
                download_audio("vid1", str(tmp_path))


# ── Whisper ────────────────────────────────────────────────────────


def _verbose(*segments):
    return SimpleNamespace(
        segments=[SimpleNamespace(start=start, text=text) for start, text in segments]
    )


class TestTranscribeAudio:
    def test_segments_from_verbose_json(self, tmp_path):
        audio = tmp_path / "a.m4a"
        audio.write_bytes(b"x" * 1024)

        with patch("tubechat.services.transcription_service.OpenAI") as openai_cls:
            create = openai_cls.return_value.audio.transcriptions.create
            create.return_value = _verbose((0.0, " Hello "), (4.7, "world"))
            segments = transcribe_audio(str(audio), api_key="sk-test", language="en")

        assert [(s.timestamp_in_seconds, s.text) for s in segments] == [(0, "Hello"), (4, "world")]
        kwargs = create.call_args.kwargs
        assert kwargs["response_format"] == "verbose_json"
        assert kwargs["language"] == "en"
        openai_cls.assert_called_once_with(api_key="sk-test", max_retries=3)

    def test_language_omitted_when_empty(self, tmp_path):
        audio = tmp_path / "a.m4a"
        audio.write_bytes(b"x")
        with patch("tubechat.services.transcription_service.OpenAI") as openai_cls:
            create = openai_cls.return_value.audio.transcriptions.create
            create.return_value = _verbose()
            assert transcribe_audio(str(audio), api_key="sk-test") == []
        assert "language" not in create.call_args.kwargs

    def test_large_files_are_split(self, tmp_path):
        audio = tmp_path / "a.m4a"
        audio.write_bytes(b"x" * 1024)
        with patch("tubechat.services.transcription_service._transcribe_chunked") as chunked, \
                patch("tubechat.services.transcription_service.OpenAI"):
            chunked.return_value = []
            transcribe_audio(str(audio), api_key="sk-test", max_chunk_mb=0)
        chunked.assert_called_once()


class TestWhisperTranscriber:
    def test_requires_key(self, settings):
        settings.openai_api_key = ""
        settings.whisper_api_key = ""
        with pytest.raises(ValueError, match="Whisper API key"):
            WhisperTranscriber(settings)

    def test_downloads_then_transcribes(self, settings):
        video = SimpleNamespace(youtube_id="vid1")
        with patch(
            "tubechat.services.transcription_service.download_audio",
            return_value="/tmp/vid1.m4a",
        ) as download, patch(
            "tubechat.services.transcription_service.transcribe_audio",
            return_value=[],
        ) as transcribe:
            WhisperTranscriber(settings).transcribe(video)

        assert download.call_args.args[0] == "vid1"
        assert transcribe.call_args.args[0] == "/tmp/vid1.m4a"
        assert transcribe.call_args.kwargs["model"] == "whisper-1"


# ── Embeddings ─────────────────────────────────────────────────────


def _embedding_response(batch, offset=0):
    return SimpleNamespace(
        data=[
            SimpleNamespace(index=i, embedding=[float(offset + i)])
            for i in reversed(range(len(batch)))
        ],
        usage=SimpleNamespace(total_tokens=len(batch)),
    )


class TestOpenAIEmbedder:
    def test_batches_and_preserves_order(self, settings):
        settings.embedding_batch_size = 2
        with patch("tubechat.services.embedding_service.OpenAI") as openai_cls:
            create = openai_cls.return_value.embeddings.create
            offsets = iter([0, 2, 4])
            create.side_effect = lambda model, input: _embedding_response(input, next(offsets))

            vectors = OpenAIEmbedder(settings).embed(["a", "b", "c", "d", "e"])

        assert vectors == [[0.0], [1.0], [2.0], [3.0], [4.0]]
        assert create.call_count == 3
        assert create.call_args_list[0].kwargs["input"] == ["a", "b"]
        assert create.call_args_list[0].kwargs["model"] == "text-embedding-3-small"
        openai_cls.assert_called_once_with(api_key="sk-test", max_retries=3)

    def test_empty_input(self, settings):
        with patch("tubechat.services.embedding_service.OpenAI") as openai_cls:
            assert OpenAIEmbedder(settings).embed([]) == []
        openai_cls.return_value.embeddings.create.assert_not_called()

    def test_requires_key(self, settings):
        settings.openai_api_key = ""
        with pytest.raises(ValueError):
            OpenAIEmbedder(settings)

    def test_api_error_propagates(self, settings):
        with patch("tubechat.services.embedding_service.OpenAI") as openai_cls:
            openai_cls.return_value.embeddings.create.side_effect = RuntimeError("503")
            with pytest.raises(RuntimeError):
                OpenAIEmbedder(settings).embed(["a"])

