"""
Forum Watcher CLI
Run thread or comment crawls from the command line and print events as JSON lines.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import load_settings
from .errors import WatcherError
from .jobs import JobRegistry
from .scraper_base import probe_credential

logger = logging.getLogger(__name__)


def split_terms(values: Optional[List[str]]) -> List[str]:
    """Flatten repeated and comma-separated term flags."""
    terms = []
    for value in values or []:
        terms.extend(part.strip() for part in value.split(',') if part.strip())
    return terms


def build_raw_query(args) -> Dict[str, Any]:
    return {
        'must': split_terms(args.must),
        'optional': split_terms(args.optional),
        'exclude': split_terms(args.exclude),
        'feature_text': args.feature or '',
        'use_synonyms': args.synonyms,
        'use_semantic': args.semantic,
    }


def load_threads_file(path: str) -> List[Dict[str, Any]]:
    """Threads saved by a previous `threads` run (JSON list or JSON lines)."""
    text = Path(path).read_text(encoding='utf-8').strip()
    if not text:
        return []
    if text.startswith('['):
        return json.loads(text)

    threads = []
    for line in text.splitlines():
        if not line.strip():
            continue
        record = json.loads(line)
        # JSON lines output wraps payloads in {"event": ..., "data": ...}
        if 'event' in record:
            if record['event'] != 'thread':
                continue
            record = record.get('data', {})
        threads.append(record)
    return threads


def since_from_days(days: Optional[float]) -> Optional[datetime]:
    if days is None or days <= 0:
        return None
    return datetime.now(timezone.utc) - timedelta(days=days)


def print_event(event_type: str, payload: Dict[str, Any]) -> None:
    print(json.dumps({'event': event_type, 'data': payload}, ensure_ascii=False), flush=True)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='forum-watcher',
        description='Forum Watcher - Find feedback threads and comments relevant to a feature',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Find threads about brand kits (cookie from a signed-in browser session)
  forum-watcher threads --must "brand kit" --synonyms --cookie "$UV_COOKIE" --output threads.json

  # Scan comments of those threads from the last 90 days
  forum-watcher comments --threads-file threads.json --must "brand kit" --since-days 90

  # Same crawl through the REST API
  forum-watcher api-threads --must logo --optional font,color --token "$UV_API_TOKEN"

  # Check whether a cookie is still signed in
  forum-watcher probe --cookie "$UV_COOKIE"
        """
    )
    parser.add_argument('--config', help='Alternative watcher_config.yaml')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    parser.add_argument('--log-file', help='Also write logs to this file')

    subparsers = parser.add_subparsers(dest='command', required=True)

    query = argparse.ArgumentParser(add_help=False)
    query.add_argument('--must', action='append', help='Required term (repeatable, comma-separated allowed)')
    query.add_argument('--optional', action='append', help='Optional term; at least one must match when given')
    query.add_argument('--exclude', action='append', help='Term that rejects an item')
    query.add_argument('--feature', help='Free-text feature description for semantic matching')
    query.add_argument('--synonyms', action='store_true', help='Expand terms with built-in synonyms')
    query.add_argument('--semantic', action='store_true', help='Require embedding similarity as well')
    query.add_argument('--output', help='Write matched items to this JSON file')

    cookie = argparse.ArgumentParser(add_help=False)
    cookie.add_argument('--cookie', default=os.environ.get('UV_COOKIE'),
                        help='Forum cookie string (default: $UV_COOKIE)')

    token = argparse.ArgumentParser(add_help=False)
    token.add_argument('--token', default=os.environ.get('UV_API_TOKEN'),
                       help='API bearer token (default: $UV_API_TOKEN)')

    comments = argparse.ArgumentParser(add_help=False)
    comments.add_argument('--threads-file', required=True,
                          help='Threads from a previous threads run (JSON list or JSON lines)')
    comments.add_argument('--since-days', type=float, default=365,
                          help='Skip comments older than this many days (default: 365, 0 disables)')

    subparsers.add_parser('threads', parents=[query, cookie], help='Crawl forum listing pages for threads')
    subparsers.add_parser('comments', parents=[query, cookie, comments], help='Crawl comments of given threads')
    subparsers.add_parser('api-threads', parents=[query, token], help='List suggestions through the API')
    subparsers.add_parser('api-comments', parents=[query, token, comments], help='List comments through the API')
    subparsers.add_parser('probe', parents=[cookie], help='Check whether a cookie is signed in')
    return parser


def setup_logging(verbose: bool, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


async def run(args) -> int:
    settings = load_settings(args.config)

    if args.command == 'probe':
        result = await probe_credential(args.cookie, settings)
        print(json.dumps(result))
        return 0 if result['authenticated'] else 1

    use_api = args.command.startswith('api-')
    credential = args.token if use_api else args.cookie
    if use_api and not credential:
        logger.error("An API token is required (--token or UV_API_TOKEN)")
        return 2

    raw_query = build_raw_query(args)
    registry = JobRegistry()

    if args.command in ('threads', 'api-threads'):
        job = registry.create_job('threads')
        registry.subscribe(job.id, print_event)
        results = await registry.run_thread_job(job, credential, raw_query, use_api=use_api, settings=settings)
    else:
        threads = load_threads_file(args.threads_file)
        job = registry.create_job('comments')
        registry.subscribe(job.id, print_event)
        results = await registry.run_comment_job(
            job, credential, threads, raw_query, since_from_days(args.since_days),
            use_api=use_api, settings=settings,
        )

    if job.status == 'error':
        return 1

    if args.output:
        Path(args.output).write_text(
            json.dumps([item.to_dict() for item in results], indent=2, ensure_ascii=False),
            encoding='utf-8',
        )
        logger.info(f"[*] Wrote {len(results)} items to {args.output}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("[!] Crawl interrupted by user")
        return 130
    except (WatcherError, OSError, ValueError) as e:
        logger.error(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
