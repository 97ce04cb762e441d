from __future__ import annotations

import asyncio

import pytest

from jobfeed.models import Resume
from jobfeed.realtime import LocalChannel
from jobfeed.session import FeedSession
from jobfeed.store import FEED_STATE_KEY
from tests.fakes import GatedSource, RecordingScorer, StaticSource, StaticVendor, make_raw, make_vendor, settle

pytestmark = pytest.mark.integration


def _raw_jobs() -> list:
    return [make_raw(str(i), title=f"Role {i}") for i in range(4)]


def _session(store, clock, resume, *, scorer=None, sources=None, vendor=None, channel=None) -> FeedSession:
    return FeedSession(
        store=store,
        scorer=scorer or RecordingScorer(),
        api_sources=sources if sources is not None else [StaticSource("adzuna", _raw_jobs())],
        vendor_source=vendor,
        resume=resume,
        channel=channel,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_perform_refresh_fetches_and_scores_everything(store, clock, resume) -> None:
    scorer = RecordingScorer(score=66)
    session = _session(store, clock, resume, scorer=scorer, vendor=StaticVendor([make_vendor("v1", title="Vendor Role")]))

    result = await session.perform_refresh()

    assert (result.api_jobs, result.email_jobs, result.new_jobs) == (4, 1, 5)
    jobs = session.feed.get_state().jobs
    assert all(job.analyzed and job.match_score == 66 for job in jobs)
    assert len(scorer.calls) == 5
    assert session.scheduler.get_state().is_refreshing is False
    assert session.scheduler.get_state().last_refresh_time == clock.now()
    await session.close()


@pytest.mark.asyncio
async def test_second_refresh_reuses_cached_scores(store, clock, resume) -> None:
    scorer = RecordingScorer()
    session = _session(store, clock, resume, scorer=scorer)

    await session.perform_refresh()
    session.feed.clear_analysis_results()
    await session.perform_refresh()

    assert len(scorer.calls) == 4
    assert all(job.analyzed for job in session.feed.get_state().jobs)
    await session.close()


@pytest.mark.asyncio
async def test_concurrent_refresh_is_skipped(store, clock, resume) -> None:
    gated = GatedSource(_raw_jobs())
    session = _session(store, clock, resume, sources=[gated])

    first = asyncio.create_task(session.perform_refresh())
    await settle()

    assert await session.perform_refresh() is None

    gated.release.set()
    assert (await first).api_jobs == 4
    await session.close()


@pytest.mark.asyncio
async def test_switch_resume_invalidates_old_scores(store, clock, resume) -> None:
    scorer = RecordingScorer()
    session = _session(store, clock, resume, scorer=scorer)
    await session.perform_refresh()
    job_ids = [job.id for job in session.feed.get_state().jobs]
    assert session.cache.get(job_ids[0], resume.id) is not None

    new_resume = Resume(id="resume-2", title="Data Engineer", skills=["SQL"])
    await session.switch_resume(new_resume)

    assert all(session.cache.get(job_id, resume.id) is None for job_id in job_ids)
    assert sorted(rid for rid, _ in scorer.calls) == ["resume-1"] * 4 + ["resume-2"] * 4
    assert all(session.cache.get(job_id, "resume-2") is not None for job_id in job_ids)
    assert session.resume is new_resume
    await session.close()


@pytest.mark.asyncio
async def test_start_restores_snapshot_and_cached_scores(store, clock, resume) -> None:
    first = _session(store, clock, resume)
    await first.perform_refresh()
    first.feed.clear_analysis_results()
    await first.close()

    scorer = RecordingScorer()
    second = _session(store, clock, resume, scorer=scorer, sources=[])
    await second.start()

    jobs = second.feed.get_state().jobs
    assert len(jobs) == 4
    assert all(job.analyzed for job in jobs)
    assert scorer.calls == []
    await second.close()


@pytest.mark.asyncio
async def test_scheduler_tick_triggers_refresh(store, clock, resume) -> None:
    source = GatedSource(_raw_jobs())
    source.release.set()
    session = _session(store, clock, resume, sources=[source])
    await session.start()
    assert session.feed.get_state().jobs == ()

    await clock.advance(15 * 60)
    await session.close()

    jobs = session.feed.get_state().jobs
    assert len(jobs) == 4
    assert all(job.analyzed for job in jobs)


@pytest.mark.asyncio
async def test_realtime_rows_reach_the_feed_until_close(store, clock, resume) -> None:
    channel = LocalChannel()
    session = _session(store, clock, resume, sources=[], channel=channel)
    await session.start()

    channel.publish_insert("default", {"id": "row-1", "title": "Pushed Role", "company": "Initech"})
    assert [job.id for job in session.feed.get_state().jobs] == ["row-1"]

    await session.close()
    assert channel.subscriber_count() == 0
    assert store.load(FEED_STATE_KEY)["jobs"][0]["id"] == "row-1"


@pytest.mark.asyncio
async def test_clear_all_caches(store, clock, resume) -> None:
    session = _session(store, clock, resume)
    await session.perform_refresh()

    session.clear_all_caches()

    assert session.feed.get_state().jobs == ()
    assert len(session.cache) == 0
    assert store.load(FEED_STATE_KEY) is None
    await session.close()


@pytest.mark.asyncio
async def test_without_resume_nothing_is_scored(store, clock) -> None:
    scorer = RecordingScorer()
    session = _session(store, clock, None, scorer=scorer)

    result = await session.perform_refresh()

    assert result.api_jobs == 4
    assert scorer.calls == []
    await session.close()
