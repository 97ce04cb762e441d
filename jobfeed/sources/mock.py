"""Offline job source used when no API keys are configured."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jobfeed.log import get_logger
from jobfeed.models import RawApiJob
from jobfeed.sources.base import JobSearchBase

log = get_logger(__name__)


def _days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


def _mock_id(query: str, suffix: str) -> str:
    """Date-based ID so fallback mock jobs are treated as new each day."""
    slug = "-".join(query.lower().split()) or "any"
    return f"{datetime.now(timezone.utc).strftime('%Y-%m-%d')}-{slug}-{suffix}"


class MockSource(JobSearchBase):
    name = "mock"

    def _search(
        self,
        query: str,
        location: str | None,
        work_type: str | None,
        max_results: int,
    ) -> list[RawApiJob]:
        log.info("MockSource generating sample jobs for %r", query)
        title = query.title() if query else "Software Engineer"
        where = location or "Remote"
        mock_jobs = [
            RawApiJob(
                id=_mock_id(query, "1"),
                title=title,
                company="TechCorp",
                location=where,
                url="https://example.com/job/1",
                description="Python, Kubernetes and AWS. Remote friendly. 5+ years.",
                posted_date=_days_ago(2),
                source="mock",
                salary_min=120000,
                salary_max=150000,
                work_type="remote",
            ),
            RawApiJob(
                id=_mock_id(query, "2"),
                title=f"Senior {title}",
                company="CloudScale SaaS",
                location=where,
                url="https://example.com/job/2",
                description="Distributed systems, PostgreSQL, Docker. Hybrid, 3 days in office.",
                posted_date=_days_ago(7),
                source="mock",
                work_type="hybrid",
            ),
            RawApiJob(
                id=_mock_id(query, "3"),
                title=f"{title} (Contract)",
                company="Enterprise Platform Inc",
                location=where,
                url="https://example.com/job/3",
                description="React, TypeScript, Node.js, GraphQL. On-site.",
                posted_date=_days_ago(3),
                source="mock",
                employment_type="contract",
                work_type="onsite",
            ),
        ]
        return mock_jobs[:max_results]
