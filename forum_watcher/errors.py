"""
Forum Watcher Errors
Exception hierarchy shared by the crawlers, the query builder and the config loader.
"""

from typing import Optional


class WatcherError(Exception):
    """Base class for all forum watcher errors."""


class FetchError(WatcherError):
    """A page or API call could not be fetched (after retries, or a non-retryable status)."""

    def __init__(self, message: str, status: Optional[int] = None, path: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.path = path


class AuthenticationError(FetchError):
    """The forum rejected the credential (401/403). Never retried."""


class QueryError(WatcherError, ValueError):
    """The raw query is structurally malformed."""


class ConfigError(WatcherError, ValueError):
    """A configuration value could not be parsed."""
