"""
Job Registry
Tracks crawl jobs, fans their events out to subscribers and runs thread and
comment crawls as jobs.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from .api_scraper import crawl_api_comments, crawl_api_threads
from .config import WatcherSettings, load_settings
from .forum_scraper import crawl_comments, crawl_threads
from .models import ForumItem
from .query_context import build_query_context

logger = logging.getLogger(__name__)

Listener = Callable[[str, Dict[str, Any]], None]


@dataclass
class Job:
    id: str
    kind: str
    status: str = 'pending'
    created_at: float = field(default_factory=time.time)
    error: Optional[str] = None
    results: List[ForumItem] = field(default_factory=list)
    listeners: List[Listener] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


class JobRegistry:
    """In-memory jobs keyed by id. Unknown ids are ignored by every mutator."""

    def __init__(self):
        self.jobs: Dict[str, Job] = {}

    def create_job(self, kind: str) -> Job:
        job = Job(id=uuid.uuid4().hex, kind=kind)
        self.jobs[job.id] = job
        logger.debug(f"Created {kind} job {job.id}")
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def subscribe(self, job_id: str, listener: Listener) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        job.listeners.append(listener)
        return True

    def unsubscribe(self, job_id: str, listener: Listener) -> None:
        job = self.get_job(job_id)
        if job is not None and listener in job.listeners:
            job.listeners.remove(listener)

    def broadcast(self, job_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to every subscriber; a failing listener does not stop the rest."""
        job = self.get_job(job_id)
        if job is None:
            return
        for listener in list(job.listeners):
            try:
                listener(event_type, payload)
            except Exception as e:
                logger.warning(f"Listener failed on {event_type} for job {job_id}: {e}")

    def update(self, job_id: str, **changes) -> None:
        job = self.get_job(job_id)
        if job is None:
            return
        for key, value in changes.items():
            setattr(job, key, value)

    def cancel(self, job_id: str) -> bool:
        job = self.get_job(job_id)
        if job is None:
            return False
        job.cancel_event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    async def _run(self, job: Job, crawl) -> List[ForumItem]:
        self.update(job.id, status='running')
        try:
            results = await crawl(
                lambda event_type, payload: self.broadcast(job.id, event_type, payload),
                lambda snapshot: self.broadcast(job.id, 'progress', snapshot),
            )
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}")
            self.update(job.id, status='error', error=str(e))
            self.broadcast(job.id, 'error', {'message': str(e)})
            return []

        self.update(job.id, status='completed', results=results)
        self.broadcast(job.id, 'done', {'ok': True, 'count': len(results), 'cancelled': job.cancelled})
        return results

    async def run_thread_job(
        self,
        job: Job,
        credential: Optional[str],
        raw_query: Mapping[str, Any],
        *,
        use_api: bool = False,
        settings: Optional[WatcherSettings] = None,
        client=None,
        embedder=None,
    ) -> List[ForumItem]:
        """
        Build the query context and crawl threads as `job`.

        `credential` is the forum cookie, or the API token when `use_api` is set.
        Errors end the job with status 'error'; they are not re-raised.
        """
        settings = settings or load_settings()

        async def crawl(on_event, on_progress):
            context = await build_query_context(raw_query, settings, embedder)
            if use_api:
                return await crawl_api_threads(
                    credential, context, on_event, on_progress,
                    settings=settings, client=client, cancel=job.cancel_event,
                )
            return await crawl_threads(
                credential, context, on_event, on_progress,
                settings=settings, client=client, cancel=job.cancel_event,
            )

        return await self._run(job, crawl)

    async def run_comment_job(
        self,
        job: Job,
        credential: Optional[str],
        threads: List[Any],
        raw_query: Mapping[str, Any],
        since: Any = None,
        *,
        use_api: bool = False,
        settings: Optional[WatcherSettings] = None,
        client=None,
        embedder=None,
    ) -> List[ForumItem]:
        """Build the query context and crawl comments of `threads` as `job`."""
        settings = settings or load_settings()

        async def crawl(on_event, on_progress):
            context = await build_query_context(raw_query, settings, embedder)
            if use_api:
                return await crawl_api_comments(
                    credential, threads, context, since, on_event, on_progress,
                    settings=settings, client=client, cancel=job.cancel_event,
                )
            return await crawl_comments(
                credential, threads, context, since, on_event, on_progress,
                settings=settings, client=client, cancel=job.cancel_event,
            )

        return await self._run(job, crawl)
