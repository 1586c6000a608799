"""Custom exceptions for GraphSnap."""

from typing import Optional


class GraphSnapError(Exception):
    """Base exception for GraphSnap."""
    pass


class ConfigurationError(GraphSnapError):
    """Configuration is unusable (e.g. missing access token)."""
    pass


class RateLimitedError(GraphSnapError):
    """Rate limited by the Graph API (HTTP 429 or a rate-limit error code)."""

    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


class TransientNetworkError(GraphSnapError):
    """Connection-level failure worth retrying through another proxy."""

    def __init__(self, message: str, retry_after: float, proxy: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after
        self.proxy = proxy


class GraphAPIError(GraphSnapError):
    """Non-retryable API failure (bad status, error envelope, bad JSON)."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ProxyConfigError(GraphSnapError):
    """A proxy URI that cannot be turned into a transport."""
    pass


class DownloadError(GraphSnapError):
    """Failed to download media."""
    pass
