import httpx

from conftest import BASE_URL, FORUM_PATH, html_response, make_client, run
from forum_watcher.jobs import JobRegistry


def listing_handler(request):
    return html_response(
        '<ul><li class="uvIdea"><h3><a href="/ideas/1-brand-kit">Brand kit sharing</a></h3></li>'
        '<li class="uvIdea"><h3><a href="/ideas/2-video">Video trims</a></h3></li></ul>'
    )


def test_broadcast_reaches_subscribers_until_unsubscribed():
    registry = JobRegistry()
    job = registry.create_job('threads')
    received = []

    def listener(kind, payload):
        received.append((kind, payload))

    def broken(kind, payload):
        raise RuntimeError('client went away')

    assert registry.subscribe(job.id, broken)
    assert registry.subscribe(job.id, listener)
    registry.broadcast(job.id, 'progress', {'page_index': 1})
    registry.unsubscribe(job.id, listener)
    registry.broadcast(job.id, 'progress', {'page_index': 2})

    assert received == [('progress', {'page_index': 1})]


def test_unknown_job_ids_are_ignored():
    registry = JobRegistry()
    assert registry.get_job('nope') is None
    assert not registry.subscribe('nope', print)
    assert not registry.cancel('nope')
    registry.update('nope', status='running')
    registry.broadcast('nope', 'done', {})


def test_jobs_are_independent():
    registry = JobRegistry()
    first = registry.create_job('threads')
    second = registry.create_job('comments')
    registry.cancel(first.id)
    registry.update(second.id, status='running')

    assert first.id != second.id
    assert first.cancelled and not second.cancelled
    assert first.status == 'pending'
    assert second.status == 'running'


def test_thread_job_completes(settings):
    registry = JobRegistry()
    job = registry.create_job('threads')
    received = []
    registry.subscribe(job.id, lambda kind, payload: received.append((kind, payload)))

    async def go():
        async with make_client(listing_handler, settings) as client:
            return await registry.run_thread_job(job, 'c', {'must': ['brand kit']}, settings=settings, client=client)

    results = run(go())
    assert [item.url for item in results] == [f'{BASE_URL}/ideas/1-brand-kit']
    assert job.status == 'completed'
    assert job.results == results
    assert [kind for kind, _ in received] == ['thread', 'progress', 'done']
    assert received[-1][1] == {'ok': True, 'count': 1, 'cancelled': False}


def test_failed_job_reports_error(settings):
    registry = JobRegistry()
    job = registry.create_job('threads')
    received = []
    registry.subscribe(job.id, lambda kind, payload: received.append((kind, payload)))

    async def go():
        async with make_client(lambda request: httpx.Response(401), settings) as client:
            return await registry.run_thread_job(job, 'bad', {'must': ['logo']}, settings=settings, client=client)

    assert run(go()) == []
    assert job.status == 'error'
    assert 'Authentication failed' in job.error
    assert received[-1][0] == 'error'
    assert 'Authentication failed' in received[-1][1]['message']


def test_malformed_query_fails_the_job(settings):
    registry = JobRegistry()
    job = registry.create_job('comments')

    async def go():
        async with make_client(listing_handler, settings) as client:
            return await registry.run_comment_job(job, 'c', [], {'must': 'logo'}, settings=settings, client=client)

    run(go())
    assert job.status == 'error'


def test_cancelled_job_finishes_early(settings):
    registry = JobRegistry()
    job = registry.create_job('comments')
    registry.cancel(job.id)
    calls = []
    received = []
    registry.subscribe(job.id, lambda kind, payload: received.append((kind, payload)))

    def handler(request):
        calls.append(request)
        return html_response('')

    threads = [{'url': f'{BASE_URL}/ideas/1', 'title': 'One'}]

    async def go():
        async with make_client(handler, settings) as client:
            return await registry.run_comment_job(job, 'c', threads, {'must': ['logo']}, settings=settings, client=client)

    assert run(go()) == []
    assert calls == []
    assert job.status == 'completed'
    assert received == [('done', {'ok': True, 'count': 0, 'cancelled': True})]
