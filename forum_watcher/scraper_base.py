"""
Base Scraper Infrastructure
HTTP client with retry logic, authentication failure handling, URL helpers and
the bounded worker pool shared by the HTML and API crawlers.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

import httpx

from .config import WatcherSettings, load_settings
from .errors import AuthenticationError, FetchError

logger = logging.getLogger(__name__)

ACCEPT_HTML = 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8'


class ServerError(FetchError):
    """5xx response; retried like a transport failure."""


class RetryHandler:
    """Handles retry logic with exponential backoff."""

    RETRYABLE = (httpx.TransportError, ServerError)

    def __init__(self, max_retries: int = 3, base_delay: float = 0.5):
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def execute(self, func, *args, **kwargs):
        """Run `func`, retrying transient failures up to max_retries times."""
        last_exception = None

        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except self.RETRYABLE as e:
                last_exception = e
                if attempt < self.max_retries:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
                    await asyncio.sleep(delay)

        logger.error(f"All {self.max_retries + 1} attempts failed")
        if isinstance(last_exception, FetchError):
            raise last_exception
        raise FetchError(f"Request failed after {self.max_retries + 1} attempts: {last_exception}") from last_exception


class ForumClient:
    """Async HTTP client for one forum site (HTML pages or the JSON API)."""

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        timeout: float,
        retry_handler: Optional[RetryHandler] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.retry_handler = retry_handler or RetryHandler()
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    async def __aenter__(self) -> 'ForumClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get_once(self, path: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        response = await self.http.get(path, params=params)
        status = response.status_code
        if status in (401, 403):
            raise AuthenticationError(
                "Authentication failed. Please provide a valid credential.", status=status, path=path
            )
        if status >= 500:
            raise ServerError(f"Failed to load {path}: {status}", status=status, path=path)
        if status >= 400:
            raise FetchError(f"Failed to load {path}: {status}", status=status, path=path)
        return response

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET with retries. 401/403 and other 4xx are raised immediately."""
        logger.debug(f"GET {path} {params or ''}")
        return await self.retry_handler.execute(self._get_once, path, params)

    async def get_text(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        response = await self.get(path, params)
        return response.text

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self.get(path, params)
        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Invalid JSON from {path}: {e}", status=response.status_code, path=path)


def create_client(
    cookie: Optional[str],
    settings: Optional[WatcherSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ForumClient:
    """Client for the HTML forum, authenticated with a captured cookie string."""
    settings = settings or load_settings()
    headers = {
        'User-Agent': settings.user_agent,
        'Accept': ACCEPT_HTML,
        'Accept-Language': 'en-US,en;q=0.9',
        'Cookie': cookie or '',
    }
    return ForumClient(
        settings.base_url,
        headers,
        settings.http_timeout,
        RetryHandler(settings.max_retries, settings.retry_base_delay),
        transport=transport,
    )


def normalize_url(href: Optional[str], base_url: str) -> Optional[str]:
    """Absolute URL for a forum href."""
    if not href:
        return None
    if href.startswith('http'):
        return href
    if href.startswith('//'):
        return f"https:{href}"
    if not href.startswith('/'):
        href = f"/{href}"
    return base_url.rstrip('/') + href


def to_relative(url: Optional[str], base_url: str) -> Optional[str]:
    """Path (plus query/fragment) of a forum URL; other values pass through."""
    if not url:
        return None
    base = base_url.rstrip('/')
    if url.startswith(base):
        return url[len(base):] or '/'
    return url


async def run_bounded(
    items: Sequence[Any],
    limit: int,
    worker: Callable[[Any], Awaitable[None]],
    cancel: Optional[asyncio.Event] = None,
) -> None:
    """
    Process `items` with at most `limit` workers pulling from a shared index.

    Claiming the next index never awaits, so no lock is needed on one event
    loop. The first worker error cancels the rest and is re-raised.
    """
    index = 0

    async def _worker():
        nonlocal index
        while index < len(items):
            if is_cancelled(cancel):
                return
            item = items[index]
            index += 1
            await worker(item)

    count = min(max(limit, 1), len(items))
    if count == 0:
        return

    tasks = [asyncio.ensure_future(_worker()) for _ in range(count)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


_LOGIN_MARKERS = re.compile(r'Continue with email', re.IGNORECASE)
_SIGN_IN = re.compile(r'Sign in', re.IGNORECASE)
_SIGN_OUT = re.compile(r'Sign out', re.IGNORECASE)


async def probe_credential(
    cookie: Optional[str],
    settings: Optional[WatcherSettings] = None,
    client: Optional[ForumClient] = None,
) -> Dict[str, Any]:
    """Check whether a cookie reaches the forum as a signed-in user."""
    if not cookie:
        return {'authenticated': False, 'reason': 'no_cookie'}

    settings = settings or load_settings()
    own_client = client is None
    client = client or create_client(cookie, settings)
    try:
        html = await client.get_text(settings.forum_path)
    except FetchError as e:
        logger.warning(f"Credential probe failed: {e}")
        return {'authenticated': False, 'reason': 'request_failed'}
    finally:
        if own_client:
            await client.aclose()

    is_login = bool(_LOGIN_MARKERS.search(html)) or (bool(_SIGN_IN.search(html)) and not _SIGN_OUT.search(html))
    return {'authenticated': not is_login, 'reason': 'login_page' if is_login else 'ok'}


EventCallback = Callable[[str, Dict[str, Any]], None]
ProgressCallback = Callable[[Dict[str, Any]], None]


def emit_event(on_event: Optional[EventCallback], event_type: str, payload: Dict[str, Any]) -> None:
    if on_event is not None:
        on_event(event_type, payload)


def emit_progress(on_progress: Optional[ProgressCallback], snapshot: Dict[str, Any]) -> None:
    if on_progress is not None:
        on_progress(snapshot)


def is_cancelled(cancel: Optional[asyncio.Event]) -> bool:
    return cancel is not None and cancel.is_set()
