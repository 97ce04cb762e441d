"""Time-boxed cache of résumé/job scoring results."""
from __future__ import annotations

from jobfeed.clock import Clock, SystemClock
from jobfeed.log import get_logger
from jobfeed.models import AnalysisCacheEntry, AnalysisResult
from jobfeed.store import ANALYSIS_CACHE_KEY, Store, StoreError

log = get_logger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60
MAX_PERSISTED_ENTRIES = 500


def cache_key(job_id: str, resume_id: str) -> str:
    return f"{resume_id}:{job_id}"


class AnalysisCache:
    """Entries live for 24 hours and are never updated in place.

    Expired entries are dropped lazily on read. The persisted copy keeps the
    500 most recently written entries.
    """

    def __init__(self, store: Store, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._entries: dict[str, AnalysisCacheEntry] = {}
        self._load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, job_id: str, resume_id: str) -> AnalysisCacheEntry | None:
        key = cache_key(job_id, resume_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock.time() < entry.expires_at:
            return entry

        del self._entries[key]
        log.debug("Analysis cache entry %s expired", key)
        self._persist()
        return None

    def put(self, job_id: str, resume_id: str, result: AnalysisResult) -> AnalysisCacheEntry:
        now = self._clock.time()
        entry = AnalysisCacheEntry(
            job_id=job_id,
            resume_id=resume_id,
            result=result,
            timestamp=now,
            expires_at=now + CACHE_TTL_SECONDS,
        )
        # Re-insert so dict order stays write order.
        self._entries.pop(entry.key, None)
        self._entries[entry.key] = entry
        self._persist()
        return entry

    def invalidate_for_resume(self, resume_id: str) -> int:
        stale = [key for key, entry in self._entries.items() if entry.resume_id == resume_id]
        for key in stale:
            del self._entries[key]
        self._persist()
        log.info("Invalidated %d cached analyses for resume %s", len(stale), resume_id)
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self._persist()

    def _load(self) -> None:
        raw = self._store.load(ANALYSIS_CACHE_KEY)
        if raw is None:
            return
        try:
            entries = [AnalysisCacheEntry.from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            log.warning("Discarding malformed analysis cache: %s", exc)
            return

        now = self._clock.time()
        # Persisted newest first.
        for entry in reversed(entries):
            if entry.expires_at > now:
                self._entries[entry.key] = entry
        log.debug("Loaded %d cached analyses (%d expired)", len(self._entries), len(entries) - len(self._entries))

    def _persist(self) -> None:
        ordered = sorted(enumerate(self._entries.values()), key=lambda p: (p[1].timestamp, p[0]), reverse=True)
        payload = [entry.to_dict() for _, entry in ordered[:MAX_PERSISTED_ENTRIES]]
        try:
            self._store.save(ANALYSIS_CACHE_KEY, payload)
        except StoreError as exc:
            log.warning("Analysis cache not persisted: %s", exc)
