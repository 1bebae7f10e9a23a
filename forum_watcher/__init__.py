"""
Forum Watcher
Finds feedback-forum threads and comments relevant to a product feature.
"""

from .api_scraper import crawl_api_comments, crawl_api_threads
from .config import WatcherSettings, load_settings
from .errors import AuthenticationError, ConfigError, FetchError, QueryError, WatcherError
from .forum_scraper import crawl_comments, crawl_threads
from .jobs import JobRegistry
from .matcher import match_comment, match_item
from .models import ForumItem, MatchResult, NormalizedText
from .query_context import QueryContext, build_query_context
from .scraper_base import probe_credential
from .text_normalizer import normalize

__all__ = [
    'AuthenticationError',
    'ConfigError',
    'FetchError',
    'ForumItem',
    'JobRegistry',
    'MatchResult',
    'NormalizedText',
    'QueryContext',
    'QueryError',
    'WatcherError',
    'WatcherSettings',
    'build_query_context',
    'crawl_api_comments',
    'crawl_api_threads',
    'crawl_comments',
    'crawl_threads',
    'load_settings',
    'match_comment',
    'match_item',
    'normalize',
    'probe_credential',
]
