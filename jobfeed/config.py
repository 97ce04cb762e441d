"""Load candidate preferences and env configuration."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from jobfeed.log import get_logger
from jobfeed.models import CandidatePreferences, Resume

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
PREFERENCES_PATH: Path = CONFIG_DIR / "preferences.yaml"


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def data_dir() -> Path:
    """Directory holding the persisted feed state; ``JOBFEED_DATA_DIR`` overrides."""
    override = get_env("JOBFEED_DATA_DIR")
    return Path(override) if override else ROOT_DIR / "data"


def ensure_dirs() -> None:
    for d in (CONFIG_DIR, data_dir()):
        d.mkdir(parents=True, exist_ok=True)


def load_preferences_file(path: Path | None = None) -> dict[str, Any]:
    path = path or PREFERENCES_PATH
    if not path.exists():
        log.warning("No preferences file at %s — using defaults", path)
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        log.warning("Ignoring %s: expected a mapping, got %s", path.name, type(data).__name__)
        return {}
    return data


def load_preferences(path: Path | None = None) -> CandidatePreferences | None:
    """Search preferences for the candidate, or None when nothing is configured."""
    data = load_preferences_file(path)
    prefs = data.get("preferences") or {}

    # Older files kept the search terms at the top level.
    titles = prefs.get("preferred_job_titles") or data.get("preferred_roles") or []
    locations = prefs.get("preferred_locations") or data.get("locations") or []
    work_types = prefs.get("preferred_work_type") or []
    if not (titles or locations or work_types):
        return None

    return CandidatePreferences(
        candidate_id=str(data.get("candidate_id", "default")),
        preferred_job_titles=[str(t) for t in titles],
        preferred_locations=[str(loc) for loc in locations],
        preferred_work_type=[str(w) for w in work_types],
    )


def load_resume(path: Path | None = None) -> Resume | None:
    """The résumé used for scoring, read from the ``resume`` block of the preferences file."""
    data = load_preferences_file(path)
    block = data.get("resume")
    if not block:
        return None
    return Resume(
        id=str(block.get("id", "default")),
        name=block.get("name", ""),
        title=block.get("title", ""),
        summary=block.get("summary", ""),
        skills=[str(s) for s in block.get("skills", [])],
        text=block.get("text", ""),
    )
