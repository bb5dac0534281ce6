import logging

from tubechat.models.schemas import Segment

logger = logging.getLogger(__name__)


def merge_segments(segments: list[Segment], min_seconds: int = 10) -> list[Segment]:
    """Merge consecutive transcript segments into chunks of at least ``min_seconds``.

    A segment starting less than ``min_seconds`` after the current chunk's
    start is appended to it; otherwise it opens a new chunk. The last chunk
    may be shorter.
    """
    merged: list[Segment] = []
    current: Segment | None = None

    for seg in sorted(segments, key=lambda s: s.timestamp_in_seconds):
        text = seg.text.strip()
        if not text:
            continue
        if current is None:
            current = Segment(timestamp_in_seconds=seg.timestamp_in_seconds, text=text)
        elif seg.timestamp_in_seconds - current.timestamp_in_seconds < min_seconds:
            current.text = f"{current.text} {text}"
        else:
            merged.append(current)
            current = Segment(timestamp_in_seconds=seg.timestamp_in_seconds, text=text)

    if current is not None:
        merged.append(current)

    logger.debug("Merged %d segments into %d chunks", len(segments), len(merged))
    return merged
