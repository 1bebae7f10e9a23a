import asyncio

import httpx

from conftest import run
from forum_watcher.api_scraper import (
    create_api_client,
    crawl_api_comments,
    crawl_api_threads,
    list_comments,
    list_suggestions,
    paginate,
    suggestion_id_for,
)
from forum_watcher.models import ForumItem
from forum_watcher.query_context import QueryContext

SITE = 'https://test.uservoice.com'

SUGGESTIONS = {
    1: [
        {'id': 11, 'title': 'Brand kit sharing', 'text': 'Share logos', 'updated_at': '2025-03-01T00:00:00Z'},
        {'id': 12, 'title': 'Video trims', 'text': ''},
    ],
    2: [
        {'id': 13, 'title': 'More brand kit slots', 'text': 'Five is not enough'},
    ],
}

COMMENTS = {
    11: [
        {'id': 101, 'text': 'Need brand kit fonts', 'created_at': '2025-05-01T00:00:00Z'},
        {'id': 102, 'text': 'Old brand kit note', 'created_at': '2019-05-01T00:00:00Z',
         'html_url': f'{SITE}/suggestions/11#c102'},
    ],
    13: [],
}


def api_handler(requests):
    def handler(request):
        requests.append(request)
        page = int(request.url.params.get('page', '1'))
        if request.url.path == '/api/v2/suggestions':
            return httpx.Response(200, json={
                'suggestions': SUGGESTIONS.get(page, []),
                'pagination': {'page': page, 'total_pages': 2, 'total_records': 3},
            })
        if request.url.path == '/api/v2/comments':
            records = COMMENTS.get(int(request.url.params['suggestion']), []) if page == 1 else []
            return httpx.Response(200, json={'comments': records})
        return httpx.Response(404)
    return handler


def api_client(settings, requests, token='tok'):
    return create_api_client(token, settings, transport=httpx.MockTransport(api_handler(requests)))


def test_paginate_stops_at_total_pages(settings):
    requests = []

    async def go():
        async with api_client(settings, requests) as client:
            return await paginate(client, '/suggestions', picker=lambda data: data['suggestions'])

    records = run(go())
    assert [r['id'] for r in records] == [11, 12, 13]
    assert len(requests) == 2
    assert requests[0].url.params['per_page'] == '100'
    assert requests[0].headers['authorization'] == 'Bearer tok'


def test_paginate_stops_on_empty_chunk(settings):
    requests = []

    async def go():
        async with api_client(settings, requests) as client:
            return await list_comments(client, 11, settings)

    comments = run(go())
    assert [c.id for c in comments] == [101, 102]
    assert len(requests) == 2


def test_list_suggestions_maps_records(settings):
    requests = []

    async def go():
        async with api_client(settings, requests) as client:
            return await list_suggestions(client, '2025-01-01T00:00:00Z', settings)

    threads = run(go())
    assert threads[0].url == f'{SITE}/suggestions/11'
    assert threads[0].title == 'Brand kit sharing'
    assert threads[0].description == 'Share logos'
    assert threads[0].timestamp.month == 3
    assert requests[0].url.params['updated_after'] == '2025-01-01T00:00:00Z'


def test_suggestion_id_from_url():
    assert suggestion_id_for(ForumItem(url=f'{SITE}/suggestions/42-logo-maker')) == 42
    assert suggestion_id_for(ForumItem(url='https://x.test/ideas/1', id=7)) == 7
    assert suggestion_id_for(ForumItem(url='https://x.test/ideas/1')) is None


def test_api_thread_crawl(settings):
    requests = []
    events = []
    progress = []

    async def go():
        async with api_client(settings, requests) as client:
            return await crawl_api_threads(
                'tok', QueryContext(must=('brand kit',)),
                lambda kind, payload: events.append((kind, payload)), progress.append,
                settings=settings, client=client,
            )

    found = run(go())
    assert [t.id for t in found] == [11, 13]
    assert [payload['url'] for _, payload in events] == [f'{SITE}/suggestions/11', f'{SITE}/suggestions/13']
    assert [p['page_index'] for p in progress] == [1, 2]
    assert progress[-1]['total_pages'] == 2
    assert progress[-1]['total_threads'] == 3
    assert progress[-1]['scanned_threads'] == 3


def test_api_comment_crawl(settings):
    requests = []
    events = []
    threads = [
        {'url': f'{SITE}/suggestions/11', 'title': 'Brand kit sharing'},
        {'url': f'{SITE}/suggestions/13', 'title': 'More slots', 'id': 13},
    ]

    async def go():
        async with api_client(settings, requests) as client:
            return await crawl_api_comments(
                'tok', threads, QueryContext(must=('brand kit',)), '2024-01-01T00:00:00Z',
                lambda kind, payload: events.append((kind, payload)),
                settings=settings, client=client,
            )

    relevant = run(go())
    assert [c.id for c in relevant] == [101]
    assert relevant[0].url == f'{SITE}/suggestions/11'
    assert relevant[0].thread_title == 'Brand kit sharing'

    kinds = [kind for kind, _ in events]
    assert kinds.count('comment') == 1
    assert ('threadNoComments', {'threadTitle': 'More slots', 'threadUrl': f'{SITE}/suggestions/13'}) in events


def test_api_comment_progress_never_decreases(settings):
    requests = []
    progress = []
    threads = [{'url': f'{SITE}/suggestions/{sid}', 'title': f'Idea {sid}'} for sid in (11, 13, 11)]

    async def go():
        async with api_client(settings, requests) as client:
            return await crawl_api_comments(
                'tok', threads, QueryContext(must=('brand kit',)),
                on_progress=progress.append, settings=settings, client=client,
            )

    run(go())
    assert [p['page_index'] for p in progress] == [1, 2, 3]
    for key in ('thread_index', 'scanned_comments', 'total_relevant', 'threads_processed'):
        values = [p[key] for p in progress]
        assert values == sorted(values), key


def test_cancel_during_api_comments_emits_no_thread_status(settings):
    events = []
    threads = [{'url': f'{SITE}/suggestions/11', 'title': 'Brand kit sharing'}]

    async def go():
        cancel = asyncio.Event()
        requests = []
        handler = api_handler(requests)

        def cancelling_handler(request):
            cancel.set()
            return handler(request)

        client = create_api_client('tok', settings, transport=httpx.MockTransport(cancelling_handler))
        async with client:
            return await crawl_api_comments(
                'tok', threads, QueryContext(must=('brand kit',)),
                on_event=lambda kind, payload: events.append(kind),
                settings=settings, client=client, cancel=cancel,
            )

    assert run(go()) == []
    assert events == []
