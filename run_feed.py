#!/usr/bin/env python3
"""Refresh the unified job feed and score it against the configured résumé.

Usage:
  python run_feed.py            one refresh + analysis run, then exit
  python run_feed.py --watch    keep refreshing on the configured interval (Ctrl-C to stop)
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from jobfeed.config import PREFERENCES_PATH
from jobfeed.log import get_logger
from jobfeed.session import FeedSession

log = get_logger(__name__)


def _log_summary(session: FeedSession) -> None:
    state = session.feed.get_state()
    scored = [job for job in state.jobs if job.analyzed]
    log.info("Feed: %d jobs (%d new, %d scored)", len(state.jobs), state.new_jobs_count, len(scored))
    for job in sorted(scored, key=lambda j: j.match_score or 0, reverse=True)[:10]:
        log.info("  %3d  %s @ %s [%s]", job.match_score, job.title, job.company, job.source_platform)


async def run_once() -> int:
    session = FeedSession.from_config()
    session.feed.load_state()
    try:
        result = await session.perform_refresh()
    finally:
        await session.close()
    if result is None:
        return 1
    log.info("Refresh: api=%d email=%d new=%d", result.api_jobs, result.email_jobs, result.new_jobs)
    _log_summary(session)
    return 0


async def watch() -> int:
    session = FeedSession.from_config()
    await session.start()
    session.scheduler.on_state(
        lambda s: log.debug("Next refresh in %s", session.scheduler.countdown_label())
    )
    try:
        await session.perform_refresh()
        _log_summary(session)
        while True:
            await asyncio.sleep(3600)
    finally:
        await session.close()


if __name__ == "__main__":
    if not PREFERENCES_PATH.exists():
        print()
        print("  No preferences found. Copy the example and edit it:")
        print("    cp config/preferences.example.yaml config/preferences.yaml")
        print()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(watch() if "--watch" in sys.argv else run_once()))
    except KeyboardInterrupt:
        log.info("Stopped.")
