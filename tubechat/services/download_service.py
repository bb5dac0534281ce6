import logging
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

WATCH_URL = "https://www.youtube.com/watch?v={youtube_id}"


def download_audio(
    youtube_id: str,
    output_dir: str,
    audio_format: str = "m4a",
    timeout: int = 1800,
) -> str:
    """Extract the audio track of a YouTube video with yt-dlp.

    The file is written as ``<output_dir>/<youtube_id>.<ext>``; an existing
    download is reused.

    Returns:
        Path to the audio file.

    Raises:
        RuntimeError: If yt-dlp exits non-zero or produces no file.
    """
    out_path = Path(output_dir)
    out_path.mkdir(parents=True, exist_ok=True)

    existing = sorted(out_path.glob(f"{youtube_id}.*"))
    if existing:
        logger.info("Audio already downloaded: %s", existing[0])
        return str(existing[0])

    url = WATCH_URL.format(youtube_id=youtube_id)
    cmd = [
        "yt-dlp",
        "--extract-audio",
        "--audio-format", audio_format,
        "--output", str(out_path / f"{youtube_id}.%(ext)s"),
        "--no-playlist",
        "--quiet",
        "--no-warnings",
        url,
    ]

    logger.info("Downloading audio for %s -> %s", youtube_id, output_dir)
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    if result.returncode != 0:
        raise RuntimeError(
            f"yt-dlp failed for {youtube_id} (exit {result.returncode}): "
            f"{result.stderr.strip()}"
        )

    candidates = sorted(out_path.glob(f"{youtube_id}.*"))
    if not candidates:
        raise RuntimeError(f"No audio file for {youtube_id} in {output_dir} after download")

    logger.info("Downloaded: %s", candidates[0])
    return str(candidates[0])
