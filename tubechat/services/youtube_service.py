"""YouTube Data API v3 client for channel and playlist browsing."""

import json
import logging
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from tubechat.config import Settings
from tubechat.core.duration import duration_to_minutes
from tubechat.errors import CatalogError, CatalogRateLimitError, ChannelNotFoundError
from tubechat.models.schemas import CatalogItem, PlaylistInfo

logger = logging.getLogger(__name__)

_RATE_LIMIT_REASONS = {"quotaExceeded", "rateLimitExceeded", "userRateLimitExceeded"}


def _pick_thumbnail(thumbnails: dict) -> str | None:
    for size in ("default", "medium", "high"):
        url = thumbnails.get(size, {}).get("url")
        if url:
            return url
    return None


def _error_reason(raw_body: str) -> str:
    try:
        payload = json.loads(raw_body)
        errors = payload.get("error", {}).get("errors", [])
        if errors:
            return errors[0].get("reason", "")
    except (ValueError, AttributeError):
        pass
    return ""


class YouTubeClient:
    """Thin wrapper over the four endpoints the catalog needs.

    Every method makes real HTTP calls; errors surface as ``CatalogError``
    subclasses and are never retried here.
    """

    def __init__(self, settings: Settings):
        self._api_key = settings.youtube_api_key
        self._base_url = settings.youtube_api_base_url.rstrip("/")
        self._timeout = settings.youtube_timeout_seconds
        self._page_size = settings.catalog_page_size
        self._duration_batch_size = settings.duration_batch_size

    def _get(self, endpoint: str, params: dict) -> dict:
        query = urlencode({**params, "key": self._api_key})
        req = Request(
            f"{self._base_url}/{endpoint}?{query}",
            headers={"Accept": "application/json", "User-Agent": "tubechat/0.1"},
        )
        try:
            with urlopen(req, timeout=self._timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            reason = _error_reason(body)
            if e.code == 429 or (e.code == 403 and reason in _RATE_LIMIT_REASONS):
                raise CatalogRateLimitError(
                    f"YouTube API rate limited ({reason or e.code})"
                ) from e
            if e.code == 404:
                raise ChannelNotFoundError(f"YouTube resource not found: {endpoint}") from e
            raise CatalogError(f"YouTube API error {e.code} on {endpoint}: {reason}") from e
        except (URLError, TimeoutError) as e:
            raise CatalogError(f"YouTube API request failed: {e}") from e

    # ------------------------------------------------------------------
    # Channels and playlists
    # ------------------------------------------------------------------

    def get_uploads_playlist_id(self, channel_handle: str) -> str:
        data = self._get("channels", {
            "part": "contentDetails",
            "forHandle": channel_handle,
        })
        items = data.get("items") or []
        uploads = (
            items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")
            if items else None
        )
        if not uploads:
            raise ChannelNotFoundError(f"No uploads playlist for channel: {channel_handle}")
        return uploads

    def get_playlist_metadata(self, playlist_id: str) -> PlaylistInfo:
        data = self._get("playlists", {
            "part": "snippet,contentDetails",
            "id": playlist_id,
        })
        items = data.get("items") or []
        if not items:
            raise ChannelNotFoundError(f"Playlist not found: {playlist_id}")
        item = items[0]
        snippet = item.get("snippet", {})
        return PlaylistInfo(
            playlist_id=playlist_id,
            title=snippet.get("title", ""),
            item_count=item.get("contentDetails", {}).get("itemCount", 0),
            thumbnail=_pick_thumbnail(snippet.get("thumbnails", {})),
        )

    def list_channel_playlists(self, channel_handle: str) -> list[PlaylistInfo]:
        """All public playlists of a channel (excluding its uploads list)."""
        data = self._get("channels", {"part": "id", "forHandle": channel_handle})
        items = data.get("items") or []
        if not items:
            raise ChannelNotFoundError(f"Channel not found: {channel_handle}")
        channel_id = items[0]["id"]

        playlists: list[PlaylistInfo] = []
        token: str | None = None
        while True:
            params = {
                "part": "snippet,contentDetails",
                "channelId": channel_id,
                "maxResults": 50,
            }
            if token:
                params["pageToken"] = token
            page = self._get("playlists", params)
            for item in page.get("items", []):
                snippet = item.get("snippet", {})
                playlists.append(PlaylistInfo(
                    playlist_id=item["id"],
                    title=snippet.get("title", ""),
                    item_count=item.get("contentDetails", {}).get("itemCount", 0),
                    thumbnail=_pick_thumbnail(snippet.get("thumbnails", {})),
                ))
            token = page.get("nextPageToken")
            if not token:
                break
        return playlists

    # ------------------------------------------------------------------
    # Playlist items and durations
    # ------------------------------------------------------------------

    def list_playlist_items(
        self,
        playlist_id: str,
        page_token: str | None = None,
    ) -> tuple[list[CatalogItem], str | None]:
        """Fetch one page of a playlist. Returns (items, next_page_token)."""
        params = {
            "part": "snippet",
            "maxResults": self._page_size,
            "playlistId": playlist_id,
        }
        if page_token:
            params["pageToken"] = page_token
        data = self._get("playlistItems", params)

        items = []
        for entry in data.get("items", []):
            snippet = entry.get("snippet", {})
            video_id = snippet.get("resourceId", {}).get("videoId")
            if not video_id:
                continue
            items.append(CatalogItem(
                youtube_id=video_id,
                title=snippet.get("title", "Untitled"),
                description=snippet.get("description", ""),
                thumbnail=_pick_thumbnail(snippet.get("thumbnails", {})),
                playlist_id=playlist_id,
            ))
        return items, data.get("nextPageToken")

    def fetch_durations(self, video_ids: list[str]) -> dict[str, int]:
        """Look up durations in minutes, at most ``duration_batch_size`` ids per call."""
        durations: dict[str, int] = {}
        step = self._duration_batch_size
        for start in range(0, len(video_ids), step):
            batch = video_ids[start:start + step]
            data = self._get("videos", {
                "part": "contentDetails",
                "id": ",".join(batch),
            })
            for item in data.get("items", []):
                durations[item["id"]] = duration_to_minutes(
                    item.get("contentDetails", {}).get("duration")
                )
        logger.debug("Fetched durations for %d/%d videos", len(durations), len(video_ids))
        return durations
