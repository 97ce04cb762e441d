"""One candidate's feed session: wires the feed, cache, queue, scheduler and realtime channel."""
from __future__ import annotations

import asyncio
from typing import Sequence

from jobfeed.analysis_cache import AnalysisCache
from jobfeed.analysis_queue import AnalysisQueue
from jobfeed.clock import Clock, SystemClock
from jobfeed.feed import FeedStateManager
from jobfeed.log import get_logger
from jobfeed.models import CandidatePreferences, RefreshResult, Resume
from jobfeed.realtime import RealtimeChannel
from jobfeed.scheduler import RefreshScheduler
from jobfeed.sources.base import JobSearchBase, VendorJobSource
from jobfeed.store import Store

log = get_logger(__name__)


class FeedSession:
    def __init__(
        self,
        *,
        store: Store,
        scorer,
        api_sources: Sequence[JobSearchBase] = (),
        vendor_source: VendorJobSource | None = None,
        preferences: CandidatePreferences | None = None,
        resume: Resume | None = None,
        channel: RealtimeChannel | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.clock = clock or SystemClock()
        self.preferences = preferences
        self.resume = resume
        self.api_sources = list(api_sources)
        self.channel = channel

        self.feed = FeedStateManager(self.api_sources, vendor_source, store, self.clock)
        self.cache = AnalysisCache(store, self.clock)
        self.queue = AnalysisQueue(self.feed, self.cache, scorer)
        self.scheduler = RefreshScheduler(store, self.clock)

        self._analysis_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe_trigger = None

    @classmethod
    def from_config(cls, channel: RealtimeChannel | None = None) -> FeedSession:
        """Build a session from ``.env`` and ``config/preferences.yaml``."""
        from jobfeed.config import data_dir, ensure_dirs, get_env, load_preferences, load_resume
        from jobfeed.scorer import get_scorer
        from jobfeed.sources import FileVendorSource, get_sources
        from jobfeed.store import JsonFileStore

        ensure_dirs()
        root = data_dir()
        return cls(
            store=JsonFileStore(root / "state"),
            scorer=get_scorer(get_env),
            api_sources=get_sources(get_env),
            vendor_source=FileVendorSource(root / "vendor_jobs.json", root / "inbox"),
            preferences=load_preferences(),
            resume=load_resume(),
            channel=channel,
        )

    @property
    def candidate_id(self) -> str:
        return self.preferences.candidate_id if self.preferences else "default"

    async def start(self) -> None:
        if self.feed.load_state() and self.resume is not None:
            ids = [job.id for job in self.feed.get_unanalyzed_jobs()]
            self.queue.apply_cached(ids, self.resume.id)
        if self.channel is not None:
            self.feed.attach_realtime(self.channel, self.candidate_id)
        if self._unsubscribe_trigger is None:
            self._unsubscribe_trigger = self.scheduler.on_trigger(self._on_trigger)
        self.scheduler.start()
        log.info("Feed session started for %s (%d jobs)", self.candidate_id, len(self.feed.get_state().jobs))

    def _on_trigger(self) -> None:
        self._spawn(self.perform_refresh())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("Background task failed: %r", task.exception())

    async def perform_refresh(self) -> RefreshResult | None:
        """Refresh the feed, then score whatever is still unanalyzed."""
        if self.scheduler.get_state().is_refreshing or self.feed.get_state().is_refreshing:
            log.info("Refresh already in progress — skipping")
            return None

        self.scheduler.set_refreshing(True)
        try:
            result = await self.feed.refresh(
                self.preferences,
                max_jobs_per_source=self.scheduler.get_config().max_jobs_per_source,
            )
        finally:
            self.scheduler.set_refreshing(False)

        if result is not None:
            await self.analyze_pending()
        return result

    async def analyze_pending(self) -> None:
        """Apply cached scores, queue the rest and wait for the analysis run."""
        if self.resume is None:
            log.info("No resume configured — skipping analysis")
            return
        ids = [job.id for job in self.feed.get_unanalyzed_jobs()]
        self.queue.apply_cached(ids, self.resume.id)
        self.queue.enqueue(ids, self.resume.id)

        if self._analysis_task is None or self._analysis_task.done():
            self._analysis_task = self._spawn(self.queue.run(self.resume))
        await asyncio.shield(self._analysis_task)

    async def switch_resume(self, resume: Resume) -> None:
        """Score the feed against *resume*, discarding the previous résumé's results."""
        previous = self.resume
        self.queue.clear_queue()
        if self._analysis_task is not None and not self._analysis_task.done():
            # Jobs already dispatched still finish against the old résumé.
            await asyncio.shield(self._analysis_task)

        if previous is not None:
            self.cache.invalidate_for_resume(previous.id)
        self.feed.clear_analysis_results()
        self.resume = resume
        log.info("Switched resume %s -> %s", previous.id if previous else None, resume.id)
        await self.analyze_pending()

    def clear_all_caches(self) -> None:
        self.queue.clear_queue()
        self.cache.clear()
        self.feed.clear_state()
        for source in self.api_sources:
            source.clear_cache()
        log.info("Cleared analysis cache, feed snapshot and source caches")

    async def close(self) -> None:
        await self.scheduler.close()
        if self._unsubscribe_trigger is not None:
            self._unsubscribe_trigger()
            self._unsubscribe_trigger = None
        self.feed.detach_realtime()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self.feed.save_state()
        log.info("Feed session closed")
