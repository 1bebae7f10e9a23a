"""
Watcher Configuration
Defaults live in watcher_config.yaml next to this module; a .env file and the
process environment override them.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "watcher_config.yaml"


@dataclass(frozen=True)
class WatcherSettings:
    """Resolved runtime settings for one crawl."""
    subdomain: str = 'adobeexpress'
    base_url_override: Optional[str] = None
    forum_path: str = '/forums/951181-adobe-express'
    http_timeout: float = 20.0
    api_timeout: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 0.5
    api_page_size: int = 100
    user_agent: str = 'Mozilla/5.0'
    threads_concurrency: int = 2
    comments_page_concurrency: int = 3
    match_concurrency: int = 4
    semantic_threshold: float = 0.78
    embed_provider: str = 'openai'
    openai_embed_model: str = 'text-embedding-3-small'
    local_embed_model: str = 'all-MiniLM-L6-v2'
    openai_api_key: Optional[str] = None

    @property
    def base_url(self) -> str:
        """Root of the HTML forum site."""
        if self.base_url_override:
            return self.base_url_override.rstrip('/')
        return f"https://{self.subdomain}.uservoice.com"

    @property
    def api_base_url(self) -> str:
        return f"https://{self.subdomain}.uservoice.com/api/v2"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the YAML configuration file."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _number(raw: Any, name: str, cast=float):
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {raw!r}")


def _positive_int(raw: Any, name: str) -> int:
    value = _number(raw, name, int)
    if value < 1:
        raise ConfigError(f"{name} must be at least 1, got {value}")
    return value


def load_settings(config_path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> WatcherSettings:
    """
    Build settings from YAML defaults overridden by environment variables.

    Args:
        config_path: Alternative YAML file. Defaults to the packaged watcher_config.yaml.
        env: Environment mapping. Defaults to os.environ after loading .env.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    config = load_config(config_path)
    forum = config.get('forum', {}) or {}
    scraping = config.get('scraping', {}) or {}
    concurrency = config.get('concurrency', {}) or {}
    semantic = config.get('semantic', {}) or {}
    defaults = WatcherSettings()

    def pick(env_name: str, section: Dict[str, Any], key: str, fallback: Any) -> Any:
        if env.get(env_name) not in (None, ''):
            return env[env_name]
        return section.get(key, fallback)

    settings = WatcherSettings(
        subdomain=pick('UV_SUBDOMAIN', forum, 'subdomain', defaults.subdomain),
        base_url_override=pick('UV_BASE_URL', forum, 'base_url', None),
        forum_path=pick('UV_FORUM_PATH', forum, 'forum_path', defaults.forum_path),
        http_timeout=_number(pick('HTTP_TIMEOUT_MS', scraping, 'http_timeout_ms', 20000), 'HTTP_TIMEOUT_MS') / 1000.0,
        api_timeout=_number(pick('API_TIMEOUT_MS', scraping, 'api_timeout_ms', 30000), 'API_TIMEOUT_MS') / 1000.0,
        max_retries=_number(pick('HTTP_MAX_RETRIES', scraping, 'max_retries', defaults.max_retries), 'HTTP_MAX_RETRIES', int),
        retry_base_delay=_number(scraping.get('retry_base_delay', defaults.retry_base_delay), 'retry_base_delay'),
        api_page_size=_positive_int(scraping.get('api_page_size', defaults.api_page_size), 'api_page_size'),
        user_agent=pick('USER_AGENT', scraping, 'user_agent', defaults.user_agent),
        threads_concurrency=_positive_int(pick('THREADS_CONCURRENCY', concurrency, 'threads', defaults.threads_concurrency), 'THREADS_CONCURRENCY'),
        comments_page_concurrency=_positive_int(
            pick('COMMENTS_PAGE_CONCURRENCY', concurrency, 'comment_pages', defaults.comments_page_concurrency),
            'COMMENTS_PAGE_CONCURRENCY'
        ),
        match_concurrency=_positive_int(pick('MATCH_CONCURRENCY', concurrency, 'matching', defaults.match_concurrency), 'MATCH_CONCURRENCY'),
        semantic_threshold=_number(pick('SEMANTIC_THRESHOLD', semantic, 'threshold', defaults.semantic_threshold), 'SEMANTIC_THRESHOLD'),
        embed_provider=str(pick('EMBED_PROVIDER', semantic, 'provider', defaults.embed_provider)).lower(),
        openai_embed_model=pick('OPENAI_EMBED_MODEL', semantic, 'openai_model', defaults.openai_embed_model),
        local_embed_model=pick('LOCAL_EMBED_MODEL', semantic, 'local_model', defaults.local_embed_model),
        openai_api_key=env.get('OPENAI_API_KEY') or None,
    )

    logger.debug(
        f"Loaded settings: forum={settings.base_url}{settings.forum_path} "
        f"threads={settings.threads_concurrency} pages={settings.comments_page_concurrency} "
        f"provider={settings.embed_provider}"
    )
    return settings
