"""Session-scoped paginated view over a YouTube playlist.

Pages are fetched once and kept for the lifetime of the browsing session,
so moving backward never hits the API. Continuation tokens only flow
forward: the token for page N+1 is learned from the response for page N.
"""

import logging
import math
from dataclasses import dataclass, field

from tubechat.errors import PageNotReachableError
from tubechat.models.schemas import CatalogItem, CatalogPage, UploadsMetadata
from tubechat.services.youtube_service import YouTubeClient

logger = logging.getLogger(__name__)


@dataclass
class PageArena:
    """Pages and tokens indexed by page number. Nothing is evicted."""

    pages: dict[int, list[CatalogItem]] = field(default_factory=dict)
    tokens: dict[int, str] = field(default_factory=dict)

    def has_page(self, page_number: int) -> bool:
        return page_number in self.pages

    def token_for(self, page_number: int) -> str | None:
        return self.tokens.get(page_number)

    def store(
        self,
        page_number: int,
        items: list[CatalogItem],
        next_token: str | None,
    ) -> None:
        self.pages[page_number] = items
        if next_token:
            self.tokens[page_number + 1] = next_token

    def clear(self) -> None:
        self.pages.clear()
        self.tokens.clear()


class CatalogPaginator:
    """Paginated, cached catalog browsing for one playlist at a time."""

    def __init__(self, client: YouTubeClient, page_size: int = 20):
        self._client = client
        self.page_size = page_size
        self.arena = PageArena()
        self.playlist_id: str | None = None
        self.channel_handle: str | None = None
        self.playlist_title: str | None = None
        self.total_count = 0

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def get_uploads_metadata(self, channel_handle: str) -> UploadsMetadata:
        """Resolve a channel's uploads playlist and seed page 1."""
        playlist_id = self._client.get_uploads_playlist_id(channel_handle)
        return self._bootstrap(playlist_id, channel_handle=channel_handle)

    def open_playlist(self, playlist_id: str) -> UploadsMetadata:
        """Bootstrap browsing of an arbitrary playlist."""
        return self._bootstrap(playlist_id)

    def _bootstrap(
        self,
        playlist_id: str,
        channel_handle: str | None = None,
    ) -> UploadsMetadata:
        metadata = self._client.get_playlist_metadata(playlist_id)

        self.attach(playlist_id, channel_handle=channel_handle)
        self.playlist_title = metadata.title or None
        self.total_count = metadata.item_count

        first_page = self.get_page(1)
        logger.info(
            "Catalog %s: %d videos, %d pages",
            playlist_id, self.total_count, self.total_pages,
        )
        return UploadsMetadata(
            uploads_playlist_id=playlist_id,
            first_page_videos=first_page.items,
            next_token=first_page.next_token,
            total_video_count=self.total_count,
        )

    def attach(self, playlist_id: str, channel_handle: str | None = None) -> None:
        """Point the paginator at a playlist; switching playlists drops the cache."""
        if playlist_id != self.playlist_id:
            self.arena.clear()
            self.total_count = 0
            self.playlist_title = None
            self.channel_handle = channel_handle
        elif channel_handle is not None:
            self.channel_handle = channel_handle
        self.playlist_id = playlist_id

    # ------------------------------------------------------------------
    # Paging
    # ------------------------------------------------------------------

    def get_page(self, page_number: int, known_token: str | None = None) -> CatalogPage:
        """Return a page, from cache when possible.

        Raises:
            PageNotReachableError: If no playlist is attached or the page's
                continuation token has not been learned yet.
            CatalogError: On API failure; nothing is cached in that case.
        """
        if page_number < 1:
            raise PageNotReachableError(f"Invalid page number: {page_number}")

        if self.arena.has_page(page_number):
            return CatalogPage(
                page_number=page_number,
                items=self.arena.pages[page_number],
                next_token=self.arena.token_for(page_number + 1),
            )

        if self.playlist_id is None:
            raise PageNotReachableError("No playlist attached to the paginator")

        token = self.arena.token_for(page_number) or known_token
        if page_number > 1 and not token:
            raise PageNotReachableError(
                f"Page {page_number} requested before page {page_number - 1} was fetched"
            )

        items, next_token = self._client.list_playlist_items(self.playlist_id, token)
        items = self._with_durations(items)
        self.arena.store(page_number, items, next_token)

        logger.info(
            "Fetched page %d of %s (%d items, next_token=%s)",
            page_number, self.playlist_id, len(items), next_token,
        )
        return CatalogPage(page_number=page_number, items=items, next_token=next_token)

    def _with_durations(self, items: list[CatalogItem]) -> list[CatalogItem]:
        durations = self._client.fetch_durations([i.youtube_id for i in items])
        return [
            item.model_copy(update={
                "duration_in_minutes": durations.get(item.youtube_id, 0),
                "channel_handle": self.channel_handle,
                "playlist_id": self.playlist_id,
                "playlist_title": self.playlist_title,
            })
            for item in items
        ]

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    def can_go_forward(self, current_page: int) -> bool:
        nxt = current_page + 1
        return (
            self.arena.token_for(nxt) is not None
            or self.arena.has_page(nxt)
            or current_page < self.total_pages
        )

    def can_go_back(self, current_page: int) -> bool:
        return current_page > 1
