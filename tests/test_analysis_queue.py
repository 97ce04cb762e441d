from __future__ import annotations

import asyncio
import threading

import pytest

from jobfeed.analysis_cache import AnalysisCache
from jobfeed.analysis_queue import (
    MAX_SKILLS,
    AnalysisQueue,
    extract_skills,
    prepare_job_for_analysis,
)
from jobfeed.feed import FeedStateManager
from jobfeed.models import AnalysisResult, Resume, TechStack
from jobfeed.store import MemoryStore
from tests.fakes import FakeClock, RecordingScorer, make_job, settle

pytestmark = pytest.mark.unit


def _setup(store: MemoryStore, clock: FakeClock, scorer, count: int = 7):
    feed = FeedStateManager(store=store, clock=clock)
    feed.set_jobs([make_job(f"api-adzuna-{i}", title=f"Role {i}") for i in range(count)])
    cache = AnalysisCache(store, clock)
    return feed, cache, AnalysisQueue(feed, cache, scorer)


@pytest.mark.asyncio
async def test_batches_never_exceed_three_concurrent_scorings(store, clock, resume) -> None:
    scorer = RecordingScorer()
    feed, _, queue = _setup(store, clock, scorer)

    queue.enqueue([job.id for job in feed.get_state().jobs])
    await queue.run(resume)

    assert len(scorer.calls) == 7
    assert scorer.max_in_flight == 3
    assert all(job.analyzed and job.match_score == 70 for job in feed.get_state().jobs)


@pytest.mark.asyncio
async def test_progress_is_monotonic_and_ends_at_100(store, clock, resume) -> None:
    feed, _, queue = _setup(store, clock, RecordingScorer())
    seen = []
    queue.on_progress(seen.append)

    queue.enqueue([job.id for job in feed.get_state().jobs])
    await queue.run(resume)

    counts = [p.analyzed_count for p in seen]
    assert counts == sorted(counts)
    assert [p.progress for p in seen if p.is_processing][-1] == 100
    final = queue.get_progress()
    assert final.is_processing is False
    assert final.analyzed_count == final.total_jobs == 7
    assert final.progress == 100
    assert [p.analyzed_count for p in seen if p.is_processing] == [0, 0, 3, 3, 6, 6, 7]


@pytest.mark.asyncio
async def test_progress_rounds_half_up(store, clock, resume) -> None:
    feed, _, queue = _setup(store, clock, RecordingScorer(), count=8)
    seen = []
    queue.on_progress(seen.append)

    queue.enqueue([job.id for job in feed.get_state().jobs])
    await queue.run(resume)

    # 3/8 = 37.5% and 6/8 = 75%
    assert {p.progress for p in seen if p.analyzed_count == 3} == {38}
    assert {p.progress for p in seen if p.analyzed_count == 6} == {75}


@pytest.mark.asyncio
async def test_empty_run_still_completes_at_100(store, clock, resume) -> None:
    _, _, queue = _setup(store, clock, RecordingScorer(), count=0)
    states = []
    queue.on_progress(states.append)

    await queue.run(resume)

    assert states[0].is_processing is True
    assert queue.get_progress().progress == 100
    assert queue.get_progress().total_jobs == 0
    assert queue.is_processing is False


@pytest.mark.asyncio
async def test_cache_hit_skips_the_scorer(store, clock, resume) -> None:
    scorer = RecordingScorer()
    feed, cache, queue = _setup(store, clock, scorer, count=1)
    cache.put("api-adzuna-0", resume.id, AnalysisResult(match_score=91))
    outcomes = []
    queue.on_complete(lambda job_id, ok: outcomes.append((job_id, ok)))

    queue.enqueue(["api-adzuna-0"])
    await queue.run(resume)

    assert scorer.calls == []
    assert outcomes == [("api-adzuna-0", True)]
    assert feed.find_job("api-adzuna-0").match_score == 91


@pytest.mark.asyncio
async def test_scoring_failure_clears_analyzing_and_is_not_retried(store, clock, resume) -> None:
    scorer = RecordingScorer(fail_titles=("Role 1",))
    feed, cache, queue = _setup(store, clock, scorer, count=3)
    outcomes = {}
    queue.on_complete(lambda job_id, ok: outcomes.__setitem__(job_id, ok))

    queue.enqueue([job.id for job in feed.get_state().jobs])
    await queue.run(resume)

    failed = feed.find_job("api-adzuna-1")
    assert outcomes == {"api-adzuna-0": True, "api-adzuna-1": False, "api-adzuna-2": True}
    assert failed.analyzing is False and failed.analyzed is False
    assert [title for _, title in scorer.calls].count("Role 1") == 1
    assert cache.get("api-adzuna-1", resume.id) is None
    assert failed in feed.get_unanalyzed_jobs()


@pytest.mark.asyncio
async def test_job_missing_from_feed_reports_failure(store, clock, resume) -> None:
    scorer = RecordingScorer()
    _, _, queue = _setup(store, clock, scorer, count=0)
    outcomes = []
    queue.on_complete(lambda job_id, ok: outcomes.append((job_id, ok)))

    queue.enqueue(["api-gone-1"])
    await queue.run(resume)

    assert outcomes == [("api-gone-1", False)]
    assert scorer.calls == []


@pytest.mark.asyncio
async def test_run_while_processing_returns_immediately(store, clock, resume) -> None:
    scorer = RecordingScorer()
    feed, _, queue = _setup(store, clock, scorer, count=3)
    queue.enqueue([job.id for job in feed.get_state().jobs])

    first = asyncio.create_task(queue.run(resume))
    await asyncio.sleep(0)
    assert queue.is_processing

    await queue.run(resume)
    await first

    assert len(scorer.calls) == 3
    assert queue.get_progress().analyzed_count == 3


def test_enqueue_skips_duplicates_and_cached_jobs(store, clock, resume) -> None:
    _, cache, queue = _setup(store, clock, RecordingScorer(), count=3)
    cache.put("api-adzuna-2", resume.id, AnalysisResult(match_score=50))

    added = queue.enqueue(["api-adzuna-0", "api-adzuna-1", "api-adzuna-0", "api-adzuna-2"], resume.id)

    assert added == 2
    assert queue.queued == ["api-adzuna-0", "api-adzuna-1"]


@pytest.mark.asyncio
async def test_clear_queue_only_drops_undispatched_ids(store, clock, resume) -> None:
    scorer = RecordingScorer()
    feed, _, queue = _setup(store, clock, scorer, count=7)

    def clear_after_first_batch(job_id, ok):
        if job_id == "api-adzuna-2":
            queue.clear_queue()

    queue.on_complete(clear_after_first_batch)
    queue.enqueue([job.id for job in feed.get_state().jobs])
    await queue.run(resume)

    assert len(scorer.calls) == 3
    assert queue.queued == []
    final = queue.get_progress()
    assert final.analyzed_count == final.total_jobs == 3


@pytest.mark.asyncio
async def test_failing_listener_does_not_abort_the_run(store, clock, resume) -> None:
    scorer = RecordingScorer()
    feed, _, queue = _setup(store, clock, scorer, count=6)
    done = []

    def broken(job_id, ok):
        raise RuntimeError("listener bug")

    queue.on_complete(broken)
    queue.on_complete(lambda job_id, ok: done.append(job_id))
    queue.on_progress(lambda progress: 1 / 0)
    queue.enqueue([job.id for job in feed.get_state().jobs])

    await queue.run(resume)

    assert sorted(done) == sorted(job.id for job in feed.get_state().jobs)
    assert queue.queued == []
    final = queue.get_progress()
    assert final.analyzed_count == final.total_jobs == 6
    assert final.progress == 100


@pytest.mark.asyncio
async def test_aborted_run_reports_only_finished_jobs(store, clock, resume, monkeypatch) -> None:
    feed, _, queue = _setup(store, clock, RecordingScorer(), count=6)
    set_analyzing = feed.set_job_analyzing

    def flaky(job_id, analyzing):
        if job_id == "api-adzuna-4":
            raise RuntimeError("feed gone")
        return set_analyzing(job_id, analyzing)

    monkeypatch.setattr(feed, "set_job_analyzing", flaky)
    queue.enqueue([job.id for job in feed.get_state().jobs])

    with pytest.raises(RuntimeError):
        await queue.run(resume)
    await settle()

    final = queue.get_progress()
    assert final.is_processing is False
    assert (final.analyzed_count, final.total_jobs) == (3, 6)
    assert queue.is_processing is False


@pytest.mark.asyncio
async def test_sync_scorer_runs_off_the_event_loop(store, clock, resume) -> None:
    threads = []

    class BlockingScorer:
        def score(self, resume: Resume, payload: dict) -> AnalysisResult:
            threads.append(threading.current_thread())
            return AnalysisResult(match_score=60)

    feed, _, queue = _setup(store, clock, BlockingScorer(), count=1)
    queue.enqueue(["api-adzuna-0"])
    await queue.run(resume)

    assert feed.find_job("api-adzuna-0").match_score == 60
    assert threads and threads[0] is not threading.main_thread()


def test_extract_skills_dedupes_and_caps_at_ten() -> None:
    job = make_job(
        required_skills=["Python", "python", "Django"],
        tech_stack=TechStack(backend=["PostgreSQL", "Django"], cloud=["AWS"]),
        description="We use React, TypeScript, Node.js, Docker, Kubernetes, Redis, GraphQL and C++.",
    )

    skills = extract_skills(job)
    names = [s["skill"] for s in skills]

    assert len(skills) == MAX_SKILLS
    assert names[:4] == ["Python", "Django", "PostgreSQL", "AWS"]
    assert skills[0]["importance"] == "Required"
    assert skills[2]["importance"] == "Preferred"
    assert len({n.lower() for n in names}) == len(names)


def test_description_keywords_match_whole_terms_only() -> None:
    job = make_job(description="Experience with JavaScript and Express. C# welcome.")

    names = [s["skill"] for s in extract_skills(job)]

    assert "JavaScript" in names and "Express" in names and "C#" in names
    assert "Java" not in names


def test_prepare_job_for_analysis_payload() -> None:
    job = make_job(
        description="Python services",
        employment_type="Full-time",
        salary_min=100000,
        salary_max=140000,
        work_arrangement="remote",
        years_experience="5+ years",
    )

    payload = prepare_job_for_analysis(job)

    assert payload["job_title"] == "Backend Engineer"
    assert payload["company_name"] == "Acme"
    assert payload["description_full"] == "Python services"
    assert payload["required_skills"] == [{"skill": "Python", "importance": "Preferred"}]
    assert payload["work_type"] == "remote"
    assert payload["years_experience_required"] == 5
    assert prepare_job_for_analysis(make_job())["work_type"] is None
