"""Batch scoring of feed jobs against the active résumé.

Queued job ids are scored three at a time; a batch only starts once the
previous one has fully settled. Results go through the analysis cache and
are patched back into the feed.
"""
from __future__ import annotations

import asyncio
import re
from dataclasses import replace
from typing import Any, Callable, Iterable

from jobfeed.aio import call
from jobfeed.analysis_cache import AnalysisCache
from jobfeed.feed import FeedStateManager
from jobfeed.log import get_logger
from jobfeed.models import AnalysisProgress, Job, Resume

log = get_logger(__name__)

BATCH_SIZE = 3
MAX_SKILLS = 10

COMMON_SKILLS = [
    "JavaScript", "TypeScript", "Python", "Java", "C++", "C#", "Go", "Rust", "Ruby", "PHP",
    "React", "Angular", "Vue", "Node.js", "Express", "Django", "Flask", "Spring", ".NET",
    "AWS", "Azure", "GCP", "Docker", "Kubernetes", "CI/CD", "Git", "Linux",
    "SQL", "PostgreSQL", "MySQL", "MongoDB", "Redis", "Elasticsearch",
    "Machine Learning", "AI", "Data Science", "TensorFlow", "PyTorch",
    "Agile", "Scrum", "REST API", "GraphQL", "Microservices",
]

_SKILL_PATTERNS = [
    (skill, re.compile(rf"(?<![a-z0-9]){re.escape(skill.lower())}(?![a-z0-9])"))
    for skill in COMMON_SKILLS
]

ProgressListener = Callable[[AnalysisProgress], None]
CompleteListener = Callable[[str, bool], None]


def extract_skills(job: Job) -> list[dict[str, str]]:
    """Required skills, then tech stack, then skills named in the description.

    Case-insensitive duplicates are dropped; the list never exceeds 10 entries.
    """
    candidates: list[tuple[str, str]] = [(s, "Required") for s in job.required_skills or []]
    if job.tech_stack:
        candidates += [(s, "Preferred") for s in job.tech_stack.all()]
    description = (job.description or "").lower()
    if description:
        candidates += [(skill, "Preferred") for skill, pattern in _SKILL_PATTERNS if pattern.search(description)]

    skills: list[dict[str, str]] = []
    seen: set[str] = set()
    for skill, importance in candidates:
        key = skill.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        skills.append({"skill": skill.strip(), "importance": importance})
        if len(skills) == MAX_SKILLS:
            break
    return skills


def _years(text: str | None) -> int | None:
    m = re.search(r"\d+", text or "")
    return int(m.group()) if m else None


def prepare_job_for_analysis(job: Job) -> dict[str, Any]:
    return {
        "job_title": job.title,
        "company_name": job.company,
        "location": job.location,
        "description_full": job.description,
        "required_skills": extract_skills(job),
        "employment_type": job.employment_type,
        "salary_min": job.salary_min,
        "salary_max": job.salary_max,
        "work_type": job.work_arrangement if job.work_arrangement != "unknown" else None,
        "years_experience_required": _years(job.years_experience),
    }


def _percent(done: int, total: int) -> int:
    # Half-up rounding.
    return (done * 200 + total) // (2 * total) if total else 0


class AnalysisQueue:
    def __init__(self, feed: FeedStateManager, cache: AnalysisCache, scorer) -> None:
        self._feed = feed
        self._cache = cache
        self._scorer = scorer
        self._queue: list[str] = []
        self._processing = False
        self._progress = AnalysisProgress()
        self._progress_listeners: list[ProgressListener] = []
        self._complete_listeners: list[CompleteListener] = []

    @property
    def queued(self) -> list[str]:
        return list(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def get_progress(self) -> AnalysisProgress:
        return self._progress

    def on_progress(self, listener: ProgressListener) -> Callable[[], None]:
        self._progress_listeners.append(listener)
        return lambda: self._progress_listeners.remove(listener)

    def on_complete(self, listener: CompleteListener) -> Callable[[], None]:
        self._complete_listeners.append(listener)
        return lambda: self._complete_listeners.remove(listener)

    def enqueue(self, job_ids: Iterable[str], resume_id: str | None = None) -> int:
        """Queue ids not already queued; with *resume_id*, cached ones are skipped."""
        added = 0
        for job_id in job_ids:
            if job_id in self._queue:
                continue
            if resume_id is not None and self._cache.get(job_id, resume_id) is not None:
                continue
            self._queue.append(job_id)
            added += 1
        if added and self._processing:
            self._set_progress(total_jobs=self._progress.total_jobs + added)
        log.debug("Enqueued %d job(s) for analysis (%d pending)", added, len(self._queue))
        return added

    def clear_queue(self) -> None:
        """Drop ids not yet dispatched; in-flight scorings still finish."""
        dropped = len(self._queue)
        self._queue.clear()
        if dropped and self._processing:
            self._set_progress(total_jobs=self._progress.total_jobs - dropped)

    def apply_cached(self, job_ids: Iterable[str], resume_id: str) -> int:
        """Patch cached results for *job_ids* straight into the feed."""
        applied = 0
        for job_id in job_ids:
            entry = self._cache.get(job_id, resume_id)
            if entry is not None and self._feed.update_job_analysis(job_id, entry.result):
                applied += 1
        if applied:
            log.info("Restored %d analyses from cache", applied)
        return applied

    async def run(self, resume: Resume) -> None:
        if self._processing:
            log.debug("Analysis already running — skipping")
            return
        self._processing = True
        self._set_progress(
            is_processing=True,
            total_jobs=len(self._queue),
            analyzed_count=0,
            current_job_id=None,
        )
        log.info("Analyzing %d job(s) against resume %s", len(self._queue), resume.id)

        try:
            while self._queue:
                batch, self._queue = self._queue[:BATCH_SIZE], self._queue[BATCH_SIZE:]
                self._set_progress(current_job_id=batch[0])
                await asyncio.gather(*(self._analyze(job_id, resume) for job_id in batch))
                self._set_progress(analyzed_count=self._progress.analyzed_count + len(batch))
        finally:
            self._processing = False
            self._progress = replace(
                self._progress,
                is_processing=False,
                current_job_id=None,
                progress=100,
            )
            self._emit_progress()

        log.info("Analysis run complete — %d job(s)", self._progress.analyzed_count)

    async def _analyze(self, job_id: str, resume: Resume) -> None:
        entry = self._cache.get(job_id, resume.id)
        if entry is not None:
            self._feed.update_job_analysis(job_id, entry.result)
            self._emit_complete(job_id, True)
            return

        job = self._feed.find_job(job_id)
        if job is None:
            log.warning("Job %s is no longer in the feed — not scored", job_id)
            self._emit_complete(job_id, False)
            return

        self._feed.set_job_analyzing(job_id, True)
        try:
            result = await call(self._scorer.score, resume, prepare_job_for_analysis(job))
        except Exception as exc:
            log.warning("Scoring %s (%s @ %s) failed: %s", job_id, job.title, job.company, exc)
            self._feed.set_job_analyzing(job_id, False)
            self._emit_complete(job_id, False)
            return

        self._cache.put(job_id, resume.id, result)
        self._feed.update_job_analysis(job_id, result)
        log.debug("Scored %s: %d", job_id, result.match_score)
        self._emit_complete(job_id, True)

    def _set_progress(self, **changes) -> None:
        progress = replace(self._progress, **changes)
        self._progress = replace(progress, progress=_percent(progress.analyzed_count, progress.total_jobs))
        self._emit_progress()

    def _emit_progress(self) -> None:
        for listener in list(self._progress_listeners):
            try:
                listener(self._progress)
            except Exception:
                log.exception("Progress listener %r failed", listener)

    def _emit_complete(self, job_id: str, success: bool) -> None:
        for listener in list(self._complete_listeners):
            try:
                listener(job_id, success)
            except Exception:
                log.exception("Completion listener %r failed for %s", listener, job_id)
