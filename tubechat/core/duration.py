"""Duration normalization: catalog durations to whole minutes and video-hours."""

import logging
import math
import re

logger = logging.getLogger(__name__)

# ISO 8601 durations as returned by videos.list, e.g. "PT1H4M13S"
_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def duration_to_minutes(duration: str | None) -> int:
    """Convert an ISO 8601 duration ("PT4M13S") to minutes, rounded up.

    Missing components count as zero. Malformed or empty input yields 0
    instead of raising; the value is logged so upstream API problems stay
    visible.
    """
    if not duration:
        return 0

    match = _DURATION_RE.search(duration)
    if not match:
        logger.warning("Unparseable duration %r, treating as 0 minutes", duration)
        return 0

    hours = int(match.group(1) or 0)
    minutes = int(match.group(2) or 0)
    seconds = int(match.group(3) or 0)

    total_seconds = hours * 3600 + minutes * 60 + seconds
    return math.ceil(total_seconds / 60)


def hours_for_minutes(minutes: int) -> int:
    """Video-hours billed for a number of minutes (partial hours round up)."""
    if minutes <= 0:
        return 0
    return math.ceil(minutes / 60)
