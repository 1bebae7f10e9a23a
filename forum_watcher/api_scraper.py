"""
API Scraper
Same crawl contract as the HTML scraper, fed from the forum's v2 REST API for
callers holding an API token.
"""

import asyncio
import logging
import re
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Tuple, Union

import httpx

from .config import WatcherSettings, load_settings
from .forum_scraper import CommentCollector, ThreadCollector, coerce_threads
from .models import ForumItem, parse_timestamp
from .query_context import QueryContext
from .scraper_base import (
    EventCallback,
    ForumClient,
    ProgressCallback,
    RetryHandler,
    emit_progress,
    is_cancelled,
    run_bounded,
)

logger = logging.getLogger(__name__)

_SUGGESTION_ID = re.compile(r'/suggestions/(\d+)')


def create_api_client(
    token: str,
    settings: Optional[WatcherSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ForumClient:
    """Client for the v2 API, authenticated with a bearer token."""
    settings = settings or load_settings()
    headers = {
        'Authorization': f"Bearer {token}",
        'Accept': 'application/json',
        'User-Agent': settings.user_agent,
    }
    return ForumClient(
        settings.api_base_url,
        headers,
        settings.api_timeout,
        RetryHandler(settings.max_retries, settings.retry_base_delay),
        transport=transport,
    )


async def iter_pages(
    client: ForumClient,
    path: str,
    params: Optional[Dict[str, Any]] = None,
    picker: Callable[[Dict[str, Any]], List[Any]] = lambda data: data,
    page_size: int = 100,
) -> AsyncIterator[Tuple[List[Any], Dict[str, Any]]]:
    """
    Yield (records, pagination) per page until an empty page or the last page.
    """
    page = 1
    while True:
        data = await client.get_json(path, {**(params or {}), 'page': page, 'per_page': page_size}) or {}
        chunk = picker(data) or []
        pagination = data.get('pagination') or {}
        yield chunk, pagination

        total_pages = pagination.get('total_pages')
        if not chunk or (total_pages is not None and pagination.get('page', page) >= total_pages):
            break
        page += 1


async def paginate(
    client: ForumClient,
    path: str,
    params: Optional[Dict[str, Any]] = None,
    picker: Callable[[Dict[str, Any]], List[Any]] = lambda data: data,
    page_size: int = 100,
) -> List[Any]:
    """All records of a paginated listing."""
    records: List[Any] = []
    async for chunk, _ in iter_pages(client, path, params, picker, page_size):
        records.extend(chunk)
    return records


def _pick_suggestions(data: Dict[str, Any]) -> List[Any]:
    return data.get('suggestions') or data.get('items') or []


def _pick_comments(data: Dict[str, Any]) -> List[Any]:
    return data.get('comments') or data.get('items') or []


def map_suggestion(record: Dict[str, Any], settings: WatcherSettings) -> ForumItem:
    site = f"https://{settings.subdomain}.uservoice.com"
    suggestion_id = record.get('id')
    return ForumItem(
        url=f"{site}/suggestions/{suggestion_id}" if suggestion_id else site,
        title=record.get('title') or '',
        description=record.get('text') or record.get('description') or '',
        id=suggestion_id,
        timestamp=parse_timestamp(record.get('updated_at') or record.get('updatedAt')),
    )


def map_comment(record: Dict[str, Any], fallback_url: str = '') -> ForumItem:
    return ForumItem(
        url=record.get('html_url') or record.get('url') or fallback_url,
        body=record.get('text') or record.get('body') or '',
        id=record.get('id'),
        timestamp=parse_timestamp(record.get('created_at') or record.get('createdAt')),
    )


async def list_suggestions(
    client: ForumClient,
    updated_after: Optional[str] = None,
    settings: Optional[WatcherSettings] = None,
) -> List[ForumItem]:
    settings = settings or load_settings()
    params = {'updated_after': updated_after} if updated_after else {}
    records = await paginate(client, '/suggestions', params, _pick_suggestions, settings.api_page_size)
    return [map_suggestion(record, settings) for record in records]


async def list_comments(
    client: ForumClient,
    suggestion_id: Any,
    settings: Optional[WatcherSettings] = None,
    fallback_url: str = '',
) -> List[ForumItem]:
    settings = settings or load_settings()
    records = await paginate(client, '/comments', {'suggestion': suggestion_id}, _pick_comments, settings.api_page_size)
    return [map_comment(record, fallback_url) for record in records]


def suggestion_id_for(thread: ForumItem) -> Optional[Any]:
    """API id of a thread: its own id, else the number in a /suggestions/<id> URL."""
    if thread.id is not None:
        return thread.id
    found = _SUGGESTION_ID.search(thread.url or '')
    return int(found.group(1)) if found else None


async def crawl_api_threads(
    token: str,
    context: QueryContext,
    on_event: Optional[EventCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    updated_after: Optional[str] = None,
    settings: Optional[WatcherSettings] = None,
    client: Optional[ForumClient] = None,
    cancel: Optional[asyncio.Event] = None,
) -> List[ForumItem]:
    """Find relevant suggestions through the API; emits like crawl_threads."""
    settings = settings or load_settings()
    own_client = client is None
    client = client or create_api_client(token, settings)
    collector = ThreadCollector(context, on_event)
    params = {'updated_after': updated_after} if updated_after else {}
    page_index = 0
    threads_per_page = 0

    logger.info(f"[*] Scanning suggestions via API at {settings.api_base_url}")
    try:
        async for records, pagination in iter_pages(client, '/suggestions', params, _pick_suggestions, settings.api_page_size):
            if is_cancelled(cancel):
                logger.info("API thread crawl cancelled")
                break
            page_index += 1
            threads = [map_suggestion(record, settings) for record in records]
            if page_index == 1:
                threads_per_page = len(threads)

            await collector.collect(threads, settings.match_concurrency, cancel)

            total_pages = max(pagination.get('total_pages') or page_index, page_index)
            total_records = pagination.get('total_records')
            emit_progress(on_progress, {
                'phase': 'discover',
                'current_path': '/suggestions',
                'page_index': page_index,
                'discovered_pages': page_index,
                'total_pages': total_pages,
                'page_threads': len(threads),
                'scanned_threads': collector.scanned,
                'total_threads': total_records if total_records is not None else threads_per_page * total_pages,
                'total_relevant': len(collector.found),
            })
    finally:
        if own_client:
            await client.aclose()

    logger.info(f"[SUCCESS] API thread scan complete: {len(collector.found)} relevant of {collector.scanned}")
    return collector.found


async def crawl_api_comments(
    token: str,
    threads: Iterable[Union[ForumItem, Dict[str, Any]]],
    context: QueryContext,
    since: Any = None,
    on_event: Optional[EventCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    settings: Optional[WatcherSettings] = None,
    client: Optional[ForumClient] = None,
    cancel: Optional[asyncio.Event] = None,
) -> List[ForumItem]:
    """Find relevant comments through the API; emits like crawl_comments."""
    settings = settings or load_settings()
    thread_items = coerce_threads(threads)
    own_client = client is None
    client = client or create_api_client(token, settings)
    collector = CommentCollector(context, on_event, since, cancel)
    threads_started = 0
    threads_processed = 0
    pages_scanned = 0

    async def process_thread(thread: ForumItem):
        nonlocal threads_started, threads_processed, pages_scanned
        threads_started += 1

        suggestion_id = suggestion_id_for(thread)
        if suggestion_id is None:
            logger.warning(f"No suggestion id for {thread.url}; skipping")
            comments = []
        else:
            comments = await list_comments(client, suggestion_id, settings, fallback_url=thread.url)

        match_count = await collector.collect(thread, comments)
        pages_scanned += 1
        emit_progress(on_progress, {
            'phase': 'comments',
            'thread_index': threads_started,
            'total_threads': len(thread_items),
            'page_index': pages_scanned,
            'thread_page_index': 1,
            'total_pages': 1,
            'scanned_comments': collector.scanned,
            'total_relevant': len(collector.relevant),
            'threads_processed': threads_processed,
        })

        # status events only for fully read threads
        if is_cancelled(cancel):
            return
        collector.finish_thread(thread, len(comments), match_count)
        threads_processed += 1

    logger.info(f"[*] Extracting comments via API for {len(thread_items)} suggestions")
    try:
        await run_bounded(thread_items, settings.threads_concurrency, process_thread, cancel)
    finally:
        if own_client:
            await client.aclose()

    logger.info(f"[SUCCESS] API comment scan complete: {len(collector.relevant)} relevant of {collector.scanned}")
    return collector.relevant
