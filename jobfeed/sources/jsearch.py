"""JSearch API (RapidAPI) — aggregated job listings."""
from __future__ import annotations

import requests

from jobfeed.log import get_logger
from jobfeed.models import RawApiJob
from jobfeed.normalize import format_salary, utc_now_iso
from jobfeed.retry import retry
from jobfeed.sources.base import JobSearchBase

log = get_logger(__name__)


class JSearchSource(JobSearchBase):
    name = "rapidapi"
    BASE = "https://jsearch.p.rapidapi.com"

    def __init__(self, env_getter) -> None:
        super().__init__()
        self.api_key: str = env_getter("JSEARCH_API_KEY")

    @retry(max_attempts=3, base_delay=2.0)
    def _fetch(self, params: dict) -> dict:
        r = requests.get(
            f"{self.BASE}/search",
            params=params,
            headers={
                "X-RapidAPI-Key": self.api_key,
                "X-RapidAPI-Host": "jsearch.p.rapidapi.com",
            },
            timeout=15,
        )
        if r.status_code == 403:
            log.warning("JSearch 403 — subscribe at https://rapidapi.com/letscrape-6bRDu3Sgupt/api/jsearch")
            return {}
        r.raise_for_status()
        return r.json()

    def _search(
        self,
        query: str,
        location: str | None,
        work_type: str | None,
        max_results: int,
    ) -> list[RawApiJob]:
        text = query or "software developer"
        if location:
            text += f" in {location}"
        params = {"query": text, "page": "1", "num_pages": "1"}
        if work_type == "remote":
            params["remote_jobs_only"] = "true"

        data = self._fetch(params)
        jobs = [_to_raw(hit) for hit in data.get("data", [])]
        log.debug("JSearch q=%r returned %d jobs", text, len(jobs))
        return jobs[:max_results]


def _to_raw(hit: dict) -> RawApiJob:
    sal_min = hit.get("job_min_salary")
    sal_max = hit.get("job_max_salary")
    title = hit.get("job_title") or "Unknown Title"
    company = hit.get("employer_name") or "Unknown Company"
    parts = [hit.get("job_city"), hit.get("job_state"), hit.get("job_country")]
    location = ", ".join(p for p in parts if p) or "Unknown Location"
    return RawApiJob(
        id=str(hit.get("job_id") or f"{title}|{company}|{location}"),
        title=title,
        company=company,
        location=location,
        description=hit.get("job_description") or "",
        url=hit.get("job_apply_link") or "",
        posted_date=hit.get("job_posted_at_datetime_utc") or utc_now_iso(),
        source="rapidapi",
        salary_min=sal_min,
        salary_max=sal_max,
        salary_text=format_salary(sal_min, sal_max) or None,
        employment_type=hit.get("job_employment_type") or "Full-time",
        work_type="remote" if hit.get("job_is_remote") else None,
    )
