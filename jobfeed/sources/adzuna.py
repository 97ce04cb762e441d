"""Adzuna job search.

Free tier: 250 requests/day.  Sign up at https://developer.adzuna.com/
"""
from __future__ import annotations

import requests

from jobfeed.log import get_logger
from jobfeed.models import RawApiJob
from jobfeed.normalize import format_salary, utc_now_iso
from jobfeed.retry import retry
from jobfeed.sources.base import JobSearchBase

log = get_logger(__name__)

BASE_URL = "https://api.adzuna.com/v1/api/jobs"


class AdzunaSource(JobSearchBase):
    name = "adzuna"

    def __init__(self, env_getter, country: str = "us") -> None:
        super().__init__()
        self.app_id: str = env_getter("ADZUNA_APP_ID")
        self.app_key: str = env_getter("ADZUNA_APP_KEY")
        self.country = country

    @retry(max_attempts=3, base_delay=2.0)
    def _fetch(self, params: dict, page: int) -> dict:
        r = requests.get(f"{BASE_URL}/{self.country}/search/{page}", params=params, timeout=15)
        r.raise_for_status()
        return r.json()

    def _search(
        self,
        query: str,
        location: str | None,
        work_type: str | None,
        max_results: int,
    ) -> list[RawApiJob]:
        params: dict = {
            "app_id": self.app_id,
            "app_key": self.app_key,
            "results_per_page": min(max_results, 50),
            "content-type": "application/json",
        }
        what = query
        if work_type == "remote":
            what = f"{query} remote"
        if what:
            params["what"] = what
        if location:
            params["where"] = location

        data = self._fetch(params, page=1)
        jobs = [_to_raw(hit) for hit in data.get("results", [])]
        log.debug("Adzuna q=%r loc=%r returned %d jobs", query, location, len(jobs))
        return jobs[:max_results]


def _to_raw(hit: dict) -> RawApiJob:
    sal_min = hit.get("salary_min")
    sal_max = hit.get("salary_max")
    title = hit.get("title") or "Unknown Title"
    company = (hit.get("company") or {}).get("display_name") or "Unknown Company"
    location = (hit.get("location") or {}).get("display_name") or "Unknown Location"
    return RawApiJob(
        id=str(hit.get("id") or f"{title}|{company}|{location}"),
        title=title,
        company=company,
        location=location,
        description=hit.get("description") or "",
        url=hit.get("redirect_url") or "",
        posted_date=hit.get("created") or utc_now_iso(),
        source="adzuna",
        salary_min=sal_min,
        salary_max=sal_max,
        salary_text=format_salary(sal_min, sal_max) or None,
        employment_type=hit.get("contract_type") or "Full-time",
        category=(hit.get("category") or {}).get("label") or None,
    )
