"""Vendor/recruiter jobs that were already parsed out of emails.

Parsed jobs live in one JSON file (a list of objects). New parses arrive as
individual ``*.json`` drops in an inbox directory; :meth:`sync_incoming`
folds them into the main file and moves each drop to ``processed/``.
"""
from __future__ import annotations

import json
import shutil
from pathlib import Path

from jobfeed.log import get_logger
from jobfeed.models import RawVendorJob
from jobfeed.sources.base import VendorJobSource

log = get_logger(__name__)


class FileVendorSource(VendorJobSource):
    def __init__(self, jobs_path: Path, inbox_dir: Path | None = None) -> None:
        self.jobs_path = Path(jobs_path)
        self.inbox_dir = Path(inbox_dir) if inbox_dir else None

    def _read_all(self) -> list[dict]:
        if not self.jobs_path.exists():
            return []
        with open(self.jobs_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{self.jobs_path.name} must hold a JSON list")
        return data

    def get_vendor_jobs(self, limit: int = 100) -> list[RawVendorJob]:
        jobs: list[RawVendorJob] = []
        for item in self._read_all():
            try:
                jobs.append(RawVendorJob.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                log.warning("Skipping malformed vendor job %r: %s", item.get("id") if isinstance(item, dict) else item, exc)
        # Newest first, as they would come back from the mailbox.
        jobs.sort(key=lambda j: j.created_at or "", reverse=True)
        return jobs[:limit]

    def sync_incoming(self, max_items: int = 50) -> int:
        if self.inbox_dir is None or not self.inbox_dir.exists():
            return 0

        drops = sorted(self.inbox_dir.glob("*.json"))[:max_items]
        if not drops:
            return 0

        existing = self._read_all()
        known_ids = {str(item.get("id")) for item in existing if isinstance(item, dict)}
        processed_dir = self.inbox_dir / "processed"
        processed_dir.mkdir(parents=True, exist_ok=True)

        added = 0
        for drop in drops:
            try:
                item = json.loads(drop.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                log.warning("Unreadable vendor drop %s: %s", drop.name, exc)
                continue
            if isinstance(item, dict) and item.get("id") is not None and str(item["id"]) not in known_ids:
                existing.append(item)
                known_ids.add(str(item["id"]))
                added += 1
            shutil.move(str(drop), processed_dir / drop.name)

        self.jobs_path.parent.mkdir(parents=True, exist_ok=True)
        self.jobs_path.write_text(json.dumps(existing, ensure_ascii=False, indent=2), encoding="utf-8")
        log.info("Imported %d vendor job(s) from %d inbox file(s)", added, len(drops))
        return added
