from .base import JobSearchBase, VendorJobSource
from .adzuna import AdzunaSource
from .jsearch import JSearchSource
from .mock import MockSource
from .vendor import FileVendorSource

from jobfeed.log import get_logger

log = get_logger(__name__)

__all__ = [
    "JobSearchBase", "VendorJobSource", "AdzunaSource", "JSearchSource",
    "MockSource", "FileVendorSource", "get_sources",
]


def get_sources(env_getter) -> list[JobSearchBase]:
    """API fetchers in merge order; Adzuna first, as the more reliable of the two."""
    sources: list[JobSearchBase] = []

    if env_getter("ADZUNA_APP_ID") and env_getter("ADZUNA_APP_KEY"):
        sources.append(AdzunaSource(env_getter, country=env_getter("ADZUNA_COUNTRY") or "us"))
        log.info("Registered source: Adzuna")

    if env_getter("JSEARCH_API_KEY"):
        sources.append(JSearchSource(env_getter))
        log.info("Registered source: JSearch")

    if not sources:
        sources.append(MockSource())
        log.info("No API keys found — using MockSource")

    return sources
