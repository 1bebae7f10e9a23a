"""
Forum Scraper
Walks the forum listing for relevant threads, then pages through each thread
for relevant comments.

Both crawls emit matches as soon as they are found and report progress after
every page. Pagination ends when no "next" link is found or a page repeats.
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .config import WatcherSettings, load_settings
from .matcher import match_comment, match_item
from .models import ForumItem, parse_timestamp
from .query_context import QueryContext
from .scraper_base import (
    EventCallback,
    ForumClient,
    ProgressCallback,
    create_client,
    emit_event,
    emit_progress,
    is_cancelled,
    normalize_url,
    run_bounded,
    to_relative,
)

logger = logging.getLogger(__name__)

# Listing markup variants, tried in order
THREAD_SELECTORS = ['.uvIdea', '.suggestions li', '.feedback li']
THREAD_DESCRIPTION_SELECTOR = '.description, .body, .uvIdeaDescription'
NEXT_PAGE_SELECTOR = 'a.next_page, a[rel="next"]'
PAGINATION_SELECTOR = 'a.page, .pagination a'

COMMENT_SELECTOR = 'article.uvUserAction.uvUserAction-comment'
COMMENT_BODY_SELECTOR = '.uvUserActionBody'
COMMENT_PERMALINK_SELECTOR = 'a.permalink, .permalink a'
FALLBACK_COMMENT_SELECTOR = '.comment, .uvComment, .comment_item, [class*="comment"], .idea-comment'
FALLBACK_COMMENT_BODY_SELECTOR = '.body, .content, .uvCommentBody'


def text_content(element) -> str:
    """Visible text of an element with whitespace collapsed."""
    if element is None:
        return ''
    return ' '.join(element.get_text(' ').split())


def parse_threads(html: str, base_url: str) -> List[ForumItem]:
    """Threads on a listing page, from the first selector variant that yields any."""
    soup = BeautifulSoup(html, 'html.parser')

    for selector in THREAD_SELECTORS:
        rows = []
        for element in soup.select(selector):
            title_el = element.select_one('h3 a') or element.select_one('a')
            if title_el is None:
                continue
            title = text_content(title_el)
            url = normalize_url(title_el.get('href'), base_url)
            if not title or not url:
                continue
            description = text_content(element.select_one(THREAD_DESCRIPTION_SELECTOR))
            rows.append(ForumItem(url=url, title=title, description=description))
        if rows:
            return rows

    return []


def find_next_page(html: str, base_url: str, current_path: str = '/') -> Optional[str]:
    """Path of the "next page" link, resolved against the page it was found on."""
    soup = BeautifulSoup(html, 'html.parser')
    link = soup.select_one(NEXT_PAGE_SELECTOR)
    if link is None or not link.get('href'):
        return None
    href = link['href']
    if not href.startswith(('http', '//', '/')):
        href = urljoin(current_path, href)
    return to_relative(href, base_url)


def parse_total_pages(html: str) -> int:
    """Highest page number in the pagination controls, 1 when there are none."""
    soup = BeautifulSoup(html, 'html.parser')
    total = 1
    for link in soup.select(PAGINATION_SELECTOR):
        label = link.get_text().strip()
        if label.isdigit():
            total = max(total, int(label))
    return total


def build_thread_page_path(rel: str, page_number: int) -> str:
    if page_number == 1:
        return rel
    separator = '&' if '?' in rel else '?'
    return f"{rel}{separator}page={page_number}"


def _comment_url(element, href: Optional[str], current_path: str, base_url: str) -> str:
    if not href:
        for anchor in element.select('a[href]'):
            if '#' in anchor['href']:
                href = anchor['href']
                break
    if not href and element.get('id'):
        href = f"{current_path}#{element['id']}"
    return normalize_url(href or current_path, base_url)


def _comment_timestamp(element):
    stamp = element.select_one('time[datetime]')
    return parse_timestamp(stamp['datetime']) if stamp is not None else None


def parse_comments(html: str, current_path: str, base_url: str) -> List[ForumItem]:
    """
    Comments on one thread page.

    Uses the specific comment markup when present and the broader selectors
    otherwise. Duplicates (same url and body) on the page are dropped.
    """
    soup = BeautifulSoup(html, 'html.parser')
    comments: List[ForumItem] = []
    seen = set()

    def push(element, body: str, href: Optional[str] = None):
        if not body:
            return
        url = _comment_url(element, href, current_path, base_url)
        key = (url, body)
        if key in seen:
            return
        seen.add(key)
        comments.append(ForumItem(url=url, body=body, timestamp=_comment_timestamp(element)))

    for element in soup.select(COMMENT_SELECTOR):
        permalink = element.select_one(COMMENT_PERMALINK_SELECTOR)
        push(
            element,
            text_content(element.select_one(COMMENT_BODY_SELECTOR)),
            permalink.get('href') if permalink is not None else None,
        )

    if not comments:
        for element in soup.select(FALLBACK_COMMENT_SELECTOR):
            push(element, text_content(element.select_one(FALLBACK_COMMENT_BODY_SELECTOR)))

    return comments


class ThreadCollector:
    """Matches threads for one crawl run and emits each relevant URL once."""

    def __init__(self, context: QueryContext, on_event: Optional[EventCallback] = None):
        self.context = context
        self.on_event = on_event
        self.found: List[ForumItem] = []
        self.seen_urls = set()
        self.scanned = 0

    async def collect(self, threads: List[ForumItem], concurrency: int, cancel: Optional[asyncio.Event] = None) -> None:
        self.scanned += len(threads)

        async def handle(thread: ForumItem):
            try:
                result = await match_item(thread.match_text, self.context)
            except Exception as e:
                logger.warning(f"Matching failed for {thread.url}: {e}")
                return
            if result.is_match and thread.url not in self.seen_urls:
                self.seen_urls.add(thread.url)
                thread.why = result.explanation
                self.found.append(thread)
                logger.info(f"  [MATCH] {thread.title[:60]} ({result.explanation})")
                emit_event(self.on_event, 'thread', thread.to_dict())

        await run_bounded(threads, concurrency, handle, cancel)


class CommentCollector:
    """
    Run-wide comment bookkeeping: (url, body) dedup, the recency cutoff,
    three-tier matching and emission.
    """

    def __init__(
        self,
        context: QueryContext,
        on_event: Optional[EventCallback] = None,
        since: Any = None,
        cancel: Optional[asyncio.Event] = None,
    ):
        self.context = context
        self.on_event = on_event
        self.cutoff = parse_timestamp(since)
        self.cancel = cancel
        self.seen = set()
        self.relevant: List[ForumItem] = []
        self.scanned = 0

    async def collect(self, thread: ForumItem, comments: Iterable[ForumItem]) -> int:
        """Match comments of `thread`; returns how many were emitted."""
        matches = 0
        for comment in comments:
            if is_cancelled(self.cancel):
                break
            self.scanned += 1
            key = (comment.url, comment.body)
            if key in self.seen:
                continue
            self.seen.add(key)
            if self.cutoff and comment.timestamp and comment.timestamp < self.cutoff:
                continue

            try:
                result = await match_comment(comment.body, thread.title, self.context)
            except Exception as e:
                logger.warning(f"Matching failed for comment {comment.url}: {e}")
                continue
            if not result.is_match:
                continue

            comment.thread_title = thread.title
            comment.thread_url = thread.url
            comment.why = result.explanation
            self.relevant.append(comment)
            matches += 1
            emit_event(self.on_event, 'comment', comment.to_dict())
        return matches

    def finish_thread(self, thread: ForumItem, comment_count: int, match_count: int) -> None:
        """Emit why a thread contributed nothing, if it did not."""
        payload = {'threadTitle': thread.title, 'threadUrl': thread.url}
        if comment_count == 0:
            emit_event(self.on_event, 'threadNoComments', payload)
        elif match_count == 0:
            emit_event(self.on_event, 'threadNoMatches', payload)


def coerce_threads(threads: Iterable[Union[ForumItem, Dict[str, Any]]]) -> List[ForumItem]:
    """Accept ForumItems or thread payloads as emitted by a previous crawl."""
    items = []
    for thread in threads:
        if isinstance(thread, ForumItem):
            items.append(thread)
        elif isinstance(thread, dict) and thread.get('url'):
            items.append(ForumItem.from_dict(thread))
        else:
            logger.warning(f"Skipping thread without url: {thread!r}")
    return items


async def crawl_threads(
    credential: Optional[str],
    context: QueryContext,
    on_event: Optional[EventCallback] = None,
    on_progress: Optional[ProgressCallback] = None,
    *,
    settings: Optional[WatcherSettings] = None,
    client: Optional[ForumClient] = None,
    cancel: Optional[asyncio.Event] = None,
) -> List[ForumItem]:
    """
    Find relevant threads across every listing page of the forum.

    Args:
        credential: Cookie string captured from a signed-in browser session.
        context: Query context built once for this crawl.
        on_event: Called with ('thread', payload) for each new match.
        on_progress: Called with a progress snapshot after every page.

    Raises:
        AuthenticationError: The forum rejected the cookie.
        FetchError: A page could not be loaded after retries.
    """
    settings = settings or load_settings()
    own_client = client is None
    client = client or create_client(credential, settings)
    collector = ThreadCollector(context, on_event)
    threads_per_page = 0
    visited = set()
    path = settings.forum_path

    logger.info(f"[*] Scanning forum threads from {settings.base_url}{path}")
    try:
        while path and path not in visited:
            if is_cancelled(cancel):
                logger.info("Thread crawl cancelled")
                break
            visited.add(path)

            html = await client.get_text(path)
            threads = parse_threads(html, settings.base_url)
            page_index = len(visited)
            if page_index == 1:
                threads_per_page = len(threads)

            await collector.collect(threads, settings.match_concurrency, cancel)

            emit_progress(on_progress, {
                'phase': 'discover',
                'current_path': path,
                'page_index': page_index,
                'discovered_pages': page_index,
                'total_pages': page_index,
                'page_threads': len(threads),
                'scanned_threads': collector.scanned,
                'total_threads': threads_per_page * page_index,
                'total_relevant': len(collector.found),
            })
            logger.info(f"  -> Page {page_index}: {len(threads)} threads, {len(collector.found)} relevant so far")

            path = find_next_page(html, settings.base_url, path)
    finally:
        if own_client:
            await client.aclose()

    logger.info(f"[SUCCESS] Thread scan complete: {len(collector.found)} relevant of {collector.scanned}")
    return collector.found


async def crawl_comments(
    credential: Optional[str],
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
    """
    Find relevant comments in the given threads.

    Threads and the pages within each thread are fetched by bounded worker
    pools. Comments older than `since` (datetime, ISO string or epoch) are
    skipped when their timestamp is known.
    """
    settings = settings or load_settings()
    thread_items = coerce_threads(threads)
    own_client = client is None
    client = client or create_client(credential, settings)
    collector = CommentCollector(context, on_event, since, cancel)
    threads_started = 0
    threads_processed = 0
    pages_scanned = 0

    async def process_thread(thread: ForumItem):
        nonlocal threads_started, threads_processed
        threads_started += 1
        thread_number = threads_started

        rel = to_relative(thread.url, settings.base_url)
        first_html = await client.get_text(rel)
        total_pages = parse_total_pages(first_html)
        pages_processed = 0
        comment_count = 0
        match_count = 0

        async def process_page(page_number: int):
            nonlocal pages_scanned, pages_processed, comment_count, match_count
            path = build_thread_page_path(rel, page_number)
            html = first_html if page_number == 1 else await client.get_text(path)
            comments = parse_comments(html, path, settings.base_url)

            match_count += await collector.collect(thread, comments)
            comment_count += len(comments)
            pages_processed += 1
            pages_scanned += 1

            # run-wide counters, never decreasing
            emit_progress(on_progress, {
                'phase': 'comments',
                'thread_index': threads_started,
                'total_threads': len(thread_items),
                'page_index': pages_scanned,
                'thread_page_index': pages_processed,
                'total_pages': total_pages,
                'scanned_comments': collector.scanned,
                'total_relevant': len(collector.relevant),
                'threads_processed': threads_processed,
            })

        await run_bounded(list(range(1, total_pages + 1)), settings.comments_page_concurrency, process_page, cancel)

        # status events only for fully read threads
        if is_cancelled(cancel):
            logger.info(f"  -> Thread {thread_number}/{len(thread_items)} interrupted by cancellation")
            return

        collector.finish_thread(thread, comment_count, match_count)
        threads_processed += 1
        logger.info(f"  -> Thread {thread_number}/{len(thread_items)}: {comment_count} comments, {match_count} relevant")

    logger.info(f"[*] Extracting comments from {len(thread_items)} threads")
    try:
        await run_bounded(thread_items, settings.threads_concurrency, process_thread, cancel)
    finally:
        if own_client:
            await client.aclose()

    logger.info(f"[SUCCESS] Comment scan complete: {len(collector.relevant)} relevant of {collector.scanned}")
    return collector.relevant
