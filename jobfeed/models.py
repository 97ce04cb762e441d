"""Data models for the unified job feed."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime
from typing import Any, Literal

SourceType = Literal["api", "email"]
WorkArrangement = Literal["remote", "hybrid", "onsite", "unknown"]
SourceFilter = Literal["all", "api", "email"]
SortBy = Literal["date", "match", "salary"]
JobStatus = Literal[
    "new", "reviewed", "interested", "not_interested", "applied", "expired", "archived",
]

SOURCE_FILTERS: tuple[str, ...] = ("all", "api", "email")
SORT_KEYS: tuple[str, ...] = ("date", "match", "salary")


@dataclass
class TechStack:
    frontend: list[str] = field(default_factory=list)
    backend: list[str] = field(default_factory=list)
    cloud: list[str] = field(default_factory=list)
    other: list[str] = field(default_factory=list)

    def all(self) -> list[str]:
        return [*self.frontend, *self.backend, *self.cloud, *self.other]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TechStack | None:
        if not data:
            return None
        return cls(**{k: list(data.get(k) or []) for k in ("frontend", "backend", "cloud", "other")})


@dataclass
class Job:
    """Canonical job record shared by every source.

    Dates are ISO-8601 strings, as received from the sources; comparison goes
    through :func:`jobfeed.normalize.parse_date`.
    """

    id: str
    source_type: SourceType
    source_platform: str
    title: str
    company: str
    location: str = ""
    description: str = ""
    url: str | None = None
    posted_date: str | None = None
    discovered_at: str | None = None

    salary_min: float | None = None
    salary_max: float | None = None
    salary_text: str | None = None
    pay_rate_type: str | None = None

    employment_type: str | None = None
    work_arrangement: WorkArrangement = "unknown"
    duration: str | None = None

    required_skills: list[str] | None = None
    tech_stack: TechStack | None = None
    years_experience: str | None = None
    certifications: list[str] | None = None

    match_score: int | None = None
    matching_skills: list[str] | None = None
    missing_skills: list[str] | None = None
    recommendations: list[str] | None = None
    analyzed: bool = False
    analyzing: bool = False
    analysis_timestamp: str | None = None

    is_new: bool = True
    is_seen: bool = False

    # Vendor (email) jobs only
    vendor_job_id: str | None = None
    recruiter_name: str | None = None
    recruiter_email: str | None = None
    recruiter_phone: str | None = None
    recruiter_title: str | None = None
    vendor_company: str | None = None
    client_company: str | None = None
    email_subject: str | None = None
    email_received_at: str | None = None
    special_requirements: str | None = None
    status: JobStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["tech_stack"] = TechStack.from_dict(values.get("tech_stack"))
        return cls(**values)


@dataclass
class RawApiJob:
    """One hit from a job-search API, before normalization."""

    id: str
    title: str
    company: str
    location: str
    description: str
    url: str
    posted_date: str
    source: str
    salary_min: float | None = None
    salary_max: float | None = None
    salary_text: str | None = None
    employment_type: str | None = None
    category: str | None = None
    work_type: str | None = None
    experience_level: str | None = None
    required_skills: list[str] | None = None


@dataclass
class RawVendorJob:
    """A job parsed out of a vendor/recruiter email."""

    id: str
    job_title: str
    created_at: str
    email_from: str = ""
    email_subject: str | None = None
    email_received_at: str | None = None
    client_company: str | None = None
    vendor_company: str | None = None
    location: str | None = None
    work_arrangement: str | None = None
    employment_type: str | None = None
    duration: str | None = None
    pay_rate: str | None = None
    pay_rate_min: float | None = None
    pay_rate_max: float | None = None
    pay_rate_type: str | None = None
    required_skills: list[str] = field(default_factory=list)
    years_experience: str | None = None
    certifications: list[str] = field(default_factory=list)
    special_requirements: str | None = None
    tech_stack: TechStack | None = None
    job_description: str | None = None
    recruiter_name: str | None = None
    recruiter_email: str | None = None
    recruiter_phone: str | None = None
    recruiter_title: str | None = None
    status: JobStatus = "new"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawVendorJob:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and v is not None}
        values["id"] = str(values["id"])
        values["tech_stack"] = TechStack.from_dict(data.get("tech_stack"))
        return cls(**values)


@dataclass(frozen=True)
class AnalysisResult:
    match_score: int
    matching_skills: list[str] = field(default_factory=list)
    missing_skills: list[str] = field(default_factory=list)
    recommendations: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisResult:
        recs = data.get("recommendations")
        return cls(
            match_score=int(data["match_score"]),
            matching_skills=list(data.get("matching_skills") or []),
            missing_skills=list(data.get("missing_skills") or []),
            recommendations=list(recs) if recs is not None else None,
        )


@dataclass(frozen=True)
class AnalysisCacheEntry:
    job_id: str
    resume_id: str
    result: AnalysisResult
    timestamp: float
    expires_at: float

    @property
    def key(self) -> str:
        return f"{self.resume_id}:{self.job_id}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "resume_id": self.resume_id,
            "result": self.result.to_dict(),
            "timestamp": self.timestamp,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnalysisCacheEntry:
        return cls(
            job_id=str(data["job_id"]),
            resume_id=str(data["resume_id"]),
            result=AnalysisResult.from_dict(data["result"]),
            timestamp=float(data["timestamp"]),
            expires_at=float(data["expires_at"]),
        )


# --- Patches -----------------------------------------------------------------
# Each patch names exactly the Job fields one kind of mutation may touch.


@dataclass(frozen=True)
class AnalysisPatch:
    result: AnalysisResult
    timestamp: str

    def apply(self, job: Job) -> Job:
        return replace(
            job,
            match_score=self.result.match_score,
            matching_skills=list(self.result.matching_skills),
            missing_skills=list(self.result.missing_skills),
            recommendations=self.result.recommendations,
            analyzed=True,
            analyzing=False,
            analysis_timestamp=self.timestamp,
        )


@dataclass(frozen=True)
class AnalyzingPatch:
    analyzing: bool

    def apply(self, job: Job) -> Job:
        return replace(job, analyzing=self.analyzing)


@dataclass(frozen=True)
class SeenPatch:
    def apply(self, job: Job) -> Job:
        return replace(job, is_new=False, is_seen=True)


@dataclass(frozen=True)
class ClearAnalysisPatch:
    def apply(self, job: Job) -> Job:
        return replace(
            job,
            match_score=None,
            matching_skills=None,
            missing_skills=None,
            recommendations=None,
            analyzed=False,
            analyzing=False,
            analysis_timestamp=None,
        )


# --- Feed / scheduler / queue state -------------------------------------------


@dataclass(frozen=True)
class FeedState:
    jobs: tuple[Job, ...] = ()
    last_refresh_time: datetime | None = None
    is_refreshing: bool = False
    seen_job_ids: frozenset[str] = frozenset()
    source_filter: SourceFilter = "all"
    sort_by: SortBy = "date"

    @property
    def new_jobs_count(self) -> int:
        return sum(1 for job in self.jobs if job.is_new)


@dataclass(frozen=True)
class RefreshConfig:
    interval_minutes: int = 15
    enabled: bool = True
    max_jobs_per_source: int = 50

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RefreshConfig:
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return replace(cls(), **{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class RefreshState:
    is_refreshing: bool = False
    last_refresh_time: datetime | None = None
    next_refresh_time: datetime | None = None
    seconds_until_refresh: int = 0
    is_paused: bool = False


@dataclass(frozen=True)
class AnalysisProgress:
    is_processing: bool = False
    total_jobs: int = 0
    analyzed_count: int = 0
    current_job_id: str | None = None
    progress: int = 0


@dataclass(frozen=True)
class RefreshResult:
    api_jobs: int
    email_jobs: int
    new_jobs: int


@dataclass
class CandidatePreferences:
    candidate_id: str = "default"
    preferred_job_titles: list[str] = field(default_factory=list)
    preferred_locations: list[str] = field(default_factory=list)
    preferred_work_type: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SearchQuery:
    query: str
    location: str | None = None
    work_type: str | None = None
    results_per_page: int = 20


@dataclass
class Resume:
    id: str
    name: str = ""
    title: str = ""
    summary: str = ""
    skills: list[str] = field(default_factory=list)
    text: str = ""
