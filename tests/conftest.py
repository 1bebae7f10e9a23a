import asyncio

import httpx
import pytest

from forum_watcher.config import WatcherSettings
from forum_watcher.scraper_base import create_client

BASE_URL = 'https://forum.test'
FORUM_PATH = '/forums/1-test'


class FakeEmbedder:
    """Deterministic embeddings: one axis per vocabulary word plus a constant."""

    VOCAB = ('brand', 'video', 'logo')

    def __init__(self):
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.VOCAB] + [1.0]


class FailingEmbedder:
    async def embed(self, text):
        raise RuntimeError('embedding service down')


@pytest.fixture
def settings():
    return WatcherSettings(
        subdomain='test',
        base_url_override=BASE_URL,
        forum_path=FORUM_PATH,
        retry_base_delay=0,
        max_retries=2,
        threads_concurrency=2,
        comments_page_concurrency=2,
        match_concurrency=2,
        embed_provider='none',
    )


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


def html_response(body, status=200):
    return httpx.Response(status, text=body, headers={'Content-Type': 'text/html'})


def make_client(handler, settings, cookie='session=abc'):
    return create_client(cookie, settings, transport=httpx.MockTransport(handler))


def run(coro):
    return asyncio.run(coro)
