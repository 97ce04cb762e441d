"""Collapse postings that describe the same job into one record.

Two jobs are "the same posting" when their title, company and location
agree after normalization. On a collision:

  1. an email (vendor) job replaces an API job;
  2. between jobs of the same source type, the later ``posted_date`` wins
     (missing or unparseable dates count as the oldest possible date, and
     an exact tie keeps the job already held);
  3. an API job never replaces an email job.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Iterable

from jobfeed.models import Job
from jobfeed.normalize import parse_date

OLDEST = datetime.min.replace(tzinfo=timezone.utc)

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")


def _normalize_part(value: str | None) -> str:
    text = _NON_ALNUM.sub("", (value or "").lower())
    return _SPACES.sub(" ", text).strip()


def dedup_key(job: Job) -> str:
    return "|".join(_normalize_part(part) for part in (job.title, job.company, job.location))


def posted_at(job: Job) -> datetime:
    return parse_date(job.posted_date) or OLDEST


def pick_winner(existing: Job, incoming: Job) -> Job:
    if incoming.source_type == "email" and existing.source_type == "api":
        return incoming
    if incoming.source_type == existing.source_type:
        return incoming if posted_at(incoming) > posted_at(existing) else existing
    return existing


def merge_jobs(jobs: Iterable[Job]) -> list[Job]:
    """At most one job per dedup key, in first-arrival order of the keys."""
    merged: dict[str, Job] = {}
    for job in jobs:
        key = dedup_key(job)
        held = merged.get(key)
        merged[key] = job if held is None else pick_winner(held, job)
    return list(merged.values())
