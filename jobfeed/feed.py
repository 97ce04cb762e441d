"""The candidate's unified job feed.

:class:`FeedStateManager` owns the feed and is its only writer. Every
mutation publishes a fresh :class:`FeedState`; a state object handed out
earlier never changes underneath its reader.

Refresh pipeline: fetch API and vendor jobs concurrently → normalize →
merge with the current feed → mark new jobs → sort → publish → persist.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta
from typing import Callable, Iterable, Sequence

from jobfeed.aio import call
from jobfeed.clock import Clock, SystemClock
from jobfeed.dedup import dedup_key, merge_jobs, pick_winner, posted_at
from jobfeed.log import get_logger
from jobfeed.models import (
    SORT_KEYS,
    SOURCE_FILTERS,
    AnalysisPatch,
    AnalysisResult,
    AnalyzingPatch,
    CandidatePreferences,
    ClearAnalysisPatch,
    FeedState,
    Job,
    RawApiJob,
    RawVendorJob,
    RefreshConfig,
    RefreshResult,
    SearchQuery,
    SeenPatch,
)
from jobfeed.normalize import (
    normalize_api_job,
    normalize_feed_row,
    normalize_vendor_job,
    parse_date,
)
from jobfeed.realtime import RealtimeChannel, Subscription
from jobfeed.sources.base import JobSearchBase, VendorJobSource
from jobfeed.store import FEED_STATE_KEY, SEEN_JOBS_KEY, MemoryStore, Store, StoreError

log = get_logger(__name__)

MAX_SEEN_IDS = 1000
MAX_KNOWN_JOBS = 5000
SNAPSHOT_MAX_AGE = timedelta(hours=24)
VENDOR_FETCH_LIMIT = 100
VENDOR_SYNC_MAX_ITEMS = 50
MAX_SEARCH_QUERIES = 4
DEFAULT_QUERY = "software engineer"

FeedListener = Callable[[FeedState], None]


def build_search_queries(preferences: CandidatePreferences | None) -> list[SearchQuery]:
    """Title × location combinations: up to 3 titles, 2 locations, 4 queries."""
    if preferences is None:
        return [SearchQuery(query=DEFAULT_QUERY)]

    titles = preferences.preferred_job_titles[:3] or [DEFAULT_QUERY]
    locations = preferences.preferred_locations[:2] or [""]
    work_type = preferences.preferred_work_type[0] if preferences.preferred_work_type else None

    queries = [
        SearchQuery(query=title, location=location or None, work_type=work_type)
        for title in titles
        for location in locations
    ]
    return queries[:MAX_SEARCH_QUERIES]


def _salary(job: Job) -> float:
    return max(job.salary_max or 0, job.salary_min or 0, 0)


def sort_jobs(jobs: Iterable[Job], sort_by: str) -> list[Job]:
    """Descending order by the sort key, ties broken by newest ``posted_date``."""
    if sort_by == "date":
        return sorted(jobs, key=posted_at, reverse=True)
    if sort_by == "match":
        return sorted(
            jobs,
            key=lambda j: (j.match_score if j.match_score is not None else -1, posted_at(j)),
            reverse=True,
        )
    if sort_by == "salary":
        return sorted(jobs, key=lambda j: (_salary(j), posted_at(j)), reverse=True)
    raise ValueError(f"Unknown sort key: {sort_by!r}")


def _carry_analysis(previous: Job, job: Job) -> Job:
    """Keep the scoring a job already had when a fresh copy of it replaces it."""
    if not previous.analyzed:
        return job
    return replace(
        job,
        match_score=previous.match_score,
        matching_skills=previous.matching_skills,
        missing_skills=previous.missing_skills,
        recommendations=previous.recommendations,
        analyzed=True,
        analyzing=False,
        analysis_timestamp=previous.analysis_timestamp,
    )


class FeedStateManager:
    def __init__(
        self,
        api_sources: Sequence[JobSearchBase] = (),
        vendor_source: VendorJobSource | None = None,
        store: Store | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._api_sources = list(api_sources)
        self._vendor_source = vendor_source
        self._store = store if store is not None else MemoryStore()
        self._clock = clock or SystemClock()
        self._state = FeedState()
        # Ids and keys met this session, most recent last, capped at MAX_KNOWN_JOBS.
        self._known_ids: dict[str, None] = {}
        self._known_keys: dict[str, None] = {}
        # Insertion order doubles as recency for the persisted cap.
        self._seen_order: dict[str, None] = {}
        self._listeners: list[FeedListener] = []
        self._realtime: Subscription | None = None
        self._load_seen_job_ids()

    # --- Reading ----------------------------------------------------------------

    def get_state(self) -> FeedState:
        return self._state

    def get_jobs(self, source_filter: str = "all") -> list[Job]:
        if source_filter == "all":
            return list(self._state.jobs)
        return [job for job in self._state.jobs if job.source_type == source_filter]

    def get_filtered_jobs(self) -> list[Job]:
        """Jobs under the current source filter, in the current sort order."""
        return sort_jobs(self.get_jobs(self._state.source_filter), self._state.sort_by)

    def get_unanalyzed_jobs(self) -> list[Job]:
        return [job for job in self._state.jobs if not job.analyzed and not job.analyzing]

    def find_job(self, job_id: str) -> Job | None:
        return next((job for job in self._state.jobs if job.id == job_id), None)

    def subscribe(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- Refresh ----------------------------------------------------------------

    async def refresh(
        self,
        preferences: CandidatePreferences | None = None,
        *,
        max_jobs_per_source: int | None = None,
        sync_incoming: bool = True,
    ) -> RefreshResult | None:
        """Fetch every source and merge the results into the feed.

        Returns None without doing anything while another refresh is in
        flight. A failing source contributes no jobs; the refresh still
        completes with whatever the other sources returned.
        """
        if self._state.is_refreshing:
            log.info("Refresh already in progress — skipping")
            return None
        self._publish(is_refreshing=True)

        max_jobs = max_jobs_per_source or RefreshConfig().max_jobs_per_source
        try:
            queries = build_search_queries(preferences)
            api_raw, vendor_raw = await asyncio.gather(
                self._fetch_api_jobs(queries, max_jobs),
                self._fetch_vendor_jobs(sync_incoming),
            )

            discovered_at = self._clock.now().isoformat()
            api_jobs = [normalize_api_job(raw, discovered_at=discovered_at) for raw in api_raw]
            email_jobs = [normalize_vendor_job(raw) for raw in vendor_raw]

            jobs, new_count = self._merge_into_feed(self._state.jobs, [*api_jobs, *email_jobs])
            self._publish(
                jobs=tuple(sort_jobs(jobs, self._state.sort_by)),
                last_refresh_time=self._clock.now(),
                is_refreshing=False,
            )
            self.save_state()
        finally:
            if self._state.is_refreshing:
                self._publish(is_refreshing=False)

        log.info(
            "Refresh complete — api=%d, email=%d, new=%d, feed=%d",
            len(api_jobs), len(email_jobs), new_count, len(self._state.jobs),
        )
        return RefreshResult(api_jobs=len(api_jobs), email_jobs=len(email_jobs), new_jobs=new_count)

    async def refresh_email_jobs_only(self) -> int:
        """Re-read vendor jobs and merge them with the API jobs already in the feed."""
        if self._state.is_refreshing:
            log.info("Refresh already in progress — skipping vendor refresh")
            return 0
        self._publish(is_refreshing=True)
        try:
            vendor_raw = await self._fetch_vendor_jobs(True)
            email_jobs = [normalize_vendor_job(raw) for raw in vendor_raw]
            api_jobs = [job for job in self._state.jobs if job.source_type == "api"]
            jobs, new_count = self._merge_into_feed(api_jobs, email_jobs)
            self._publish(
                jobs=tuple(sort_jobs(jobs, self._state.sort_by)),
                last_refresh_time=self._clock.now(),
                is_refreshing=False,
            )
            self.save_state()
        finally:
            if self._state.is_refreshing:
                self._publish(is_refreshing=False)

        log.info("Vendor refresh complete — email=%d, new=%d", len(email_jobs), new_count)
        return len(email_jobs)

    async def _search_one(self, source: JobSearchBase, query: SearchQuery, limit: int) -> list[RawApiJob]:
        try:
            results = await call(source.search_jobs, query.query, query.location, query.work_type, limit)
        except Exception as exc:
            log.error("[%s] search %r failed: %s", source.name, query.query, exc)
            return []
        log.info("[%s] %r returned %d jobs", source.name, query.query, len(results))
        return results

    async def _fetch_api_jobs(self, queries: list[SearchQuery], max_per_source: int) -> list[RawApiJob]:
        units = [(source, query) for query in queries for source in self._api_sources]
        limit = min(max_per_source, max(q.results_per_page for q in queries)) if queries else max_per_source
        batches = await asyncio.gather(*(self._search_one(s, q, limit) for s, q in units))

        # Merge in (query, source) order, whatever order the fetches finished in.
        jobs: list[RawApiJob] = []
        seen: set[tuple[str, str]] = set()
        per_source: dict[str, int] = {}
        for batch in batches:
            for raw in batch:
                uid = (raw.source, raw.id)
                if uid in seen or per_source.get(raw.source, 0) >= max_per_source:
                    continue
                seen.add(uid)
                per_source[raw.source] = per_source.get(raw.source, 0) + 1
                jobs.append(raw)
        return jobs

    async def _fetch_vendor_jobs(self, sync_incoming: bool) -> list[RawVendorJob]:
        if self._vendor_source is None:
            return []
        if sync_incoming:
            try:
                imported = await call(self._vendor_source.sync_incoming, VENDOR_SYNC_MAX_ITEMS)
                log.debug("Vendor sync imported %s item(s)", imported)
            except Exception as exc:
                log.warning("Vendor sync failed (continuing with stored jobs): %s", exc)
        try:
            return await call(self._vendor_source.get_vendor_jobs, VENDOR_FETCH_LIMIT)
        except Exception as exc:
            log.error("Fetching vendor jobs failed: %s", exc)
            return []

    def _merge_into_feed(self, base: Iterable[Job], incoming: Iterable[Job]) -> tuple[list[Job], int]:
        """Merge *incoming* after *base*; returns the jobs and how many are new."""
        previous = {dedup_key(job): job for job in self._state.jobs}
        seen = self._state.seen_job_ids
        result: list[Job] = []
        new_count = 0

        for job in merge_jobs([*base, *incoming]):
            key = dedup_key(job)
            held = previous.get(key)
            if held is None:
                is_new = (
                    job.id not in self._known_ids
                    and job.id not in seen
                    and key not in self._known_keys
                )
                new_count += is_new
                job = replace(job, is_new=is_new, is_seen=job.id in seen)
            elif job is not held:
                if job.id == held.id:
                    job = _carry_analysis(held, job)
                job = replace(job, is_new=held.is_new and job.id not in seen, is_seen=job.id in seen)
            result.append(job)
            self._remember_known(job.id, key)
        return result, new_count

    # --- Seen / new -------------------------------------------------------------

    def mark_as_seen(self, job_id: str) -> None:
        self._remember_seen([job_id])
        patch = SeenPatch()
        jobs = tuple(patch.apply(job) if job.id == job_id else job for job in self._state.jobs)
        self._publish(jobs=jobs, seen_job_ids=self._state.seen_job_ids | {job_id})
        self._save_seen_job_ids()

    def mark_all_as_seen(self) -> None:
        ids = [job.id for job in self._state.jobs]
        self._remember_seen(ids)
        patch = SeenPatch()
        self._publish(
            jobs=tuple(patch.apply(job) for job in self._state.jobs),
            seen_job_ids=self._state.seen_job_ids | set(ids),
        )
        self._save_seen_job_ids()

    def _remember_known(self, job_id: str, key: str) -> None:
        for known, value in ((self._known_ids, job_id), (self._known_keys, key)):
            known.pop(value, None)
            known[value] = None
            while len(known) > MAX_KNOWN_JOBS:
                del known[next(iter(known))]

    def _remember_seen(self, job_ids: Iterable[str]) -> None:
        for job_id in job_ids:
            self._seen_order.pop(job_id, None)
            self._seen_order[job_id] = None

    def _load_seen_job_ids(self) -> None:
        raw = self._store.load(SEEN_JOBS_KEY)
        if raw is None:
            return
        if not isinstance(raw, list) or not all(isinstance(i, str) for i in raw):
            log.warning("Discarding malformed seen-job list")
            return
        self._remember_seen(raw)
        self._state = replace(self._state, seen_job_ids=frozenset(raw))

    def _save_seen_job_ids(self) -> None:
        ids = list(self._seen_order)[-MAX_SEEN_IDS:]
        try:
            self._store.save(SEEN_JOBS_KEY, ids)
        except StoreError as exc:
            log.warning("Seen job ids not persisted: %s", exc)

    # --- View -------------------------------------------------------------------

    def set_source_filter(self, source_filter: str) -> None:
        if source_filter not in SOURCE_FILTERS:
            raise ValueError(f"Unknown source filter: {source_filter!r}")
        self._publish(source_filter=source_filter)

    def set_sort_by(self, sort_by: str) -> None:
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by!r}")
        self._publish(jobs=tuple(sort_jobs(self._state.jobs, sort_by)), sort_by=sort_by)

    # --- Analysis patches -------------------------------------------------------

    def update_job_analysis(self, job_id: str, result: AnalysisResult) -> bool:
        patched = self._patch(job_id, AnalysisPatch(result=result, timestamp=self._clock.now().isoformat()))
        if patched:
            self.save_state()
        return patched

    def set_job_analyzing(self, job_id: str, analyzing: bool) -> bool:
        return self._patch(job_id, AnalyzingPatch(analyzing=analyzing))

    def clear_analysis_results(self) -> None:
        patch = ClearAnalysisPatch()
        self._publish(jobs=tuple(patch.apply(job) for job in self._state.jobs))

    def _patch(self, job_id: str, patch) -> bool:
        jobs = list(self._state.jobs)
        for i, job in enumerate(jobs):
            if job.id == job_id:
                jobs[i] = patch.apply(job)
                self._publish(jobs=tuple(jobs))
                return True
        log.debug("No job %s in feed to patch", job_id)
        return False

    # --- Realtime reconciliation --------------------------------------------------

    def attach_realtime(self, channel: RealtimeChannel, candidate_id: str) -> None:
        self.detach_realtime()
        self._realtime = channel.subscribe(candidate_id, self.apply_realtime_insert, self.apply_realtime_update)
        log.info("Listening for feed changes for candidate %s", candidate_id)

    def detach_realtime(self) -> None:
        if self._realtime is not None:
            self._realtime.unsubscribe()
            self._realtime = None

    def _row_to_job(self, row: dict) -> Job | None:
        try:
            job = normalize_feed_row(row)
        except (KeyError, TypeError, ValueError) as exc:
            log.warning("Ignoring malformed feed row: %s", exc)
            return None
        if job.id in self._state.seen_job_ids:
            job = SeenPatch().apply(job)
        return job

    def apply_realtime_insert(self, row: dict) -> None:
        job = self._row_to_job(row)
        if job is None or job.status == "expired":
            return
        jobs = self._state.jobs
        if any(held.id == job.id for held in jobs):
            return

        key = dedup_key(job)
        for i, held in enumerate(jobs):
            if dedup_key(held) == key:
                winner = pick_winner(held, job)
                if winner is not held:
                    self._publish(jobs=jobs[:i] + (winner,) + jobs[i + 1:])
                    self._remember_known(winner.id, key)
                    self.save_state()
                return

        self._remember_known(job.id, key)
        self._publish(jobs=(job, *jobs))
        self.save_state()

    def apply_realtime_update(self, row: dict) -> None:
        job_id = str(row.get("id"))
        jobs = self._state.jobs
        if row.get("status") == "expired":
            kept = tuple(job for job in jobs if job.id != job_id)
            if len(kept) != len(jobs):
                log.info("Job %s expired — removed from feed", job_id)
                self._publish(jobs=kept)
                self.save_state()
            return

        job = self._row_to_job(row)
        if job is None:
            return
        index = next((i for i, held in enumerate(jobs) if held.id == job.id), None)
        if index is None:
            log.debug("Update for job %s not in feed — ignored", job.id)
            return

        updated = list(jobs)
        updated[index] = job
        key = dedup_key(job)
        other = next((i for i, held in enumerate(jobs) if i != index and dedup_key(held) == key), None)
        if other is not None:
            # One job per key: the winner takes the earlier slot.
            winner = pick_winner(jobs[other], job)
            first, second = sorted((index, other))
            updated[first] = winner
            del updated[second]
            log.info("Job %s now duplicates %s — kept %s", job.id, jobs[other].id, winner.id)
        self._remember_known(job.id, key)
        self._publish(jobs=tuple(updated))
        self.save_state()

    # --- Snapshots ----------------------------------------------------------------

    def save_state(self) -> None:
        state = self._state
        payload = {
            "jobs": [job.to_dict() for job in state.jobs],
            "last_refresh_time": state.last_refresh_time.isoformat() if state.last_refresh_time else None,
            "source_filter": state.source_filter,
            "sort_by": state.sort_by,
            "saved_at": self._clock.now().isoformat(),
        }
        try:
            self._store.save(FEED_STATE_KEY, payload)
        except StoreError as exc:
            log.warning("Feed snapshot not persisted: %s", exc)

    def load_state(self) -> bool:
        """Restore the last snapshot; stale (24h+) or malformed snapshots are dropped."""
        raw = self._store.load(FEED_STATE_KEY)
        if not raw:
            return False
        try:
            saved_at = parse_date(raw["saved_at"])
            if saved_at is None:
                raise ValueError("snapshot has no valid saved_at")
            jobs = [Job.from_dict(item) for item in raw["jobs"]]
            last_refresh = parse_date(raw.get("last_refresh_time"))
            source_filter = raw.get("source_filter") or "all"
            sort_by = raw.get("sort_by") or "date"
            if source_filter not in SOURCE_FILTERS or sort_by not in SORT_KEYS:
                raise ValueError(f"bad view settings {source_filter!r}/{sort_by!r}")
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            log.warning("Discarding malformed feed snapshot: %s", exc)
            return False

        if self._clock.now() - saved_at >= SNAPSHOT_MAX_AGE:
            log.info("Feed snapshot from %s is stale — not restored", saved_at.isoformat())
            return False
        if not jobs:
            return False

        # Scoring that was in flight when the snapshot was taken did not survive.
        jobs = [replace(job, analyzing=False) if job.analyzing else job for job in merge_jobs(jobs)]
        for job in jobs:
            self._remember_known(job.id, dedup_key(job))
        self._publish(
            jobs=tuple(jobs),
            last_refresh_time=last_refresh,
            source_filter=source_filter,
            sort_by=sort_by,
        )
        log.info("Restored %d jobs from snapshot saved %s", len(jobs), saved_at.isoformat())
        return True

    def set_jobs(self, jobs: Iterable[Job]) -> None:
        jobs = merge_jobs(jobs)
        for job in jobs:
            self._remember_known(job.id, dedup_key(job))
        self._publish(jobs=tuple(jobs))

    def clear_state(self) -> None:
        try:
            self._store.delete(FEED_STATE_KEY)
        except StoreError as exc:
            log.warning("Feed snapshot not deleted: %s", exc)
        self._known_ids.clear()
        self._known_keys.clear()
        self._publish(jobs=(), last_refresh_time=None)

    # --- Publishing ---------------------------------------------------------------

    def _publish(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                log.exception("Feed listener %r failed", listener)
