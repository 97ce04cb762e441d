from __future__ import annotations

import os

os.environ.setdefault("JOBFEED_LOG_FILE", "0")

import pytest

from jobfeed.models import Resume
from jobfeed.store import MemoryStore
from tests.fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def resume() -> Resume:
    return Resume(
        id="resume-1",
        name="Jane Doe",
        title="Backend Engineer",
        summary="Python services on AWS",
        skills=["Python", "Django", "AWS", "Docker"],
    )
