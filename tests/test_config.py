from __future__ import annotations

import pytest

from jobfeed import config

pytestmark = pytest.mark.unit


def _write(tmp_path, text: str):
    path = tmp_path / "preferences.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_preferences_block(tmp_path) -> None:
    path = _write(tmp_path, """
candidate_id: cand-9
preferences:
  preferred_job_titles: [Backend Engineer, SRE]
  preferred_locations: [Remote]
  preferred_work_type: [remote]
""")

    prefs = config.load_preferences(path)

    assert prefs.candidate_id == "cand-9"
    assert prefs.preferred_job_titles == ["Backend Engineer", "SRE"]
    assert prefs.preferred_locations == ["Remote"]
    assert prefs.preferred_work_type == ["remote"]


def test_load_preferences_accepts_top_level_roles(tmp_path) -> None:
    path = _write(tmp_path, "preferred_roles: [Data Engineer]\nlocations: [Berlin]\n")

    prefs = config.load_preferences(path)

    assert prefs.preferred_job_titles == ["Data Engineer"]
    assert prefs.preferred_locations == ["Berlin"]


def test_missing_or_empty_preferences(tmp_path) -> None:
    assert config.load_preferences(tmp_path / "absent.yaml") is None
    assert config.load_preferences(_write(tmp_path, "- just\n- a list\n")) is None


def test_load_resume(tmp_path) -> None:
    path = _write(tmp_path, """
resume:
  id: r-1
  title: Backend Engineer
  skills: [Python, AWS]
""")

    resume = config.load_resume(path)

    assert resume.id == "r-1"
    assert resume.skills == ["Python", "AWS"]
    assert config.load_resume(_write(tmp_path, "candidate_id: x\n")) is None


def test_data_dir_override(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("JOBFEED_DATA_DIR", str(tmp_path / "custom"))

    assert config.data_dir() == tmp_path / "custom"
