from __future__ import annotations

import time
from abc import ABC, abstractmethod

from jobfeed.log import get_logger
from jobfeed.models import RawApiJob, RawVendorJob

log = get_logger(__name__)

SEARCH_CACHE_TTL = 5 * 60


class JobSearchBase(ABC):
    """A job-search API. Identical searches within five minutes reuse the last answer."""

    name: str = "unknown"

    def __init__(self) -> None:
        self._cache: dict[tuple, tuple[float, list[RawApiJob]]] = {}

    def search_jobs(
        self,
        query: str,
        location: str | None = None,
        work_type: str | None = None,
        max_results: int = 20,
    ) -> list[RawApiJob]:
        key = (query, location or "", work_type or "", max_results)
        hit = self._cache.get(key)
        if hit and time.monotonic() - hit[0] < SEARCH_CACHE_TTL:
            log.debug("[%s] cached results for %r", self.name, query)
            return list(hit[1])

        jobs = self._search(query, location, work_type, max_results)
        self._cache[key] = (time.monotonic(), jobs)
        return list(jobs)

    def clear_cache(self) -> None:
        self._cache.clear()

    @abstractmethod
    def _search(
        self,
        query: str,
        location: str | None,
        work_type: str | None,
        max_results: int,
    ) -> list[RawApiJob]:
        pass


class VendorJobSource(ABC):
    """Jobs parsed from vendor/recruiter emails."""

    def sync_incoming(self, max_items: int = 50) -> int:
        """Pull newly arrived vendor emails into the job store; returns how many."""
        return 0

    @abstractmethod
    def get_vendor_jobs(self, limit: int = 100) -> list[RawVendorJob]:
        pass
