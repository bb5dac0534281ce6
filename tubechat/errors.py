"""Exception hierarchy shared by the catalog, quota and lifecycle layers."""


class TubechatError(Exception):
    """Base exception for tubechat errors."""


class CatalogError(TubechatError):
    """Raised when the external catalog request fails."""


class ChannelNotFoundError(CatalogError):
    """Raised when a channel handle or playlist cannot be resolved."""


class CatalogRateLimitError(CatalogError):
    """Raised when the catalog API reports an exhausted quota or rate limit."""


class PageNotReachableError(TubechatError):
    """Raised when a page is requested before its continuation token is known."""


class VideoNotFoundError(TubechatError):
    """Raised when a video does not exist or belongs to another user."""


class RetryNotAllowedError(TubechatError):
    """Raised when a video's status has no failed step to retry."""


class InvalidTransitionError(TubechatError):
    """Raised on a status change not allowed by the transition table."""
