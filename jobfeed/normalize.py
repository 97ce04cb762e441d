"""Convert source-specific job records into the canonical :class:`Job`."""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any

from jobfeed.models import Job, RawApiJob, RawVendorJob, TechStack, WorkArrangement

_ISO_Z = re.compile(r"Z$")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_date(value: Any) -> datetime | None:
    """Parse an ISO-8601 string or epoch seconds into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        raw = str(value).strip()
        if raw.isdigit():
            return parse_date(int(raw))
        try:
            dt = datetime.fromisoformat(_ISO_Z.sub("+00:00", raw))
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def normalize_work_arrangement(value: str | None) -> WorkArrangement:
    if not value:
        return "unknown"
    lower = value.lower()
    if "remote" in lower:
        return "remote"
    if "hybrid" in lower:
        return "hybrid"
    if "onsite" in lower or "on-site" in lower or "office" in lower:
        return "onsite"
    return "unknown"


def format_salary(salary_min: float | None, salary_max: float | None) -> str:
    """Human-readable salary range, e.g. ``$120k - $150k``."""
    if not salary_min and not salary_max:
        return ""

    def fmt(n: float) -> str:
        if n >= 1000:
            return f"${n / 1000:.0f}k"
        return f"${n:g}"

    if salary_min and salary_max:
        return f"{fmt(salary_min)} - {fmt(salary_max)}"
    if salary_min:
        return f"From {fmt(salary_min)}"
    return f"Up to {fmt(salary_max)}"


def normalize_api_job(raw: RawApiJob, *, discovered_at: str | None = None) -> Job:
    return Job(
        id=f"api-{raw.source}-{raw.id}",
        source_type="api",
        source_platform=raw.source,
        title=raw.title,
        company=raw.company,
        location=raw.location,
        description=raw.description,
        url=raw.url or None,
        posted_date=raw.posted_date,
        discovered_at=discovered_at or utc_now_iso(),
        salary_min=raw.salary_min,
        salary_max=raw.salary_max,
        salary_text=raw.salary_text,
        employment_type=raw.employment_type,
        work_arrangement=normalize_work_arrangement(raw.work_type),
        required_skills=raw.required_skills,
    )


def normalize_vendor_job(raw: RawVendorJob) -> Job:
    return Job(
        id=f"email-{raw.id}",
        source_type="email",
        source_platform="gmail",
        title=raw.job_title,
        company=raw.client_company or raw.vendor_company or "Unknown Company",
        location=raw.location or "",
        description=raw.job_description or "",
        url=None,
        posted_date=raw.email_received_at or raw.created_at,
        discovered_at=raw.created_at,
        salary_min=raw.pay_rate_min,
        salary_max=raw.pay_rate_max,
        salary_text=raw.pay_rate,
        pay_rate_type=raw.pay_rate_type,
        employment_type=raw.employment_type,
        work_arrangement=normalize_work_arrangement(raw.work_arrangement),
        duration=raw.duration,
        required_skills=raw.required_skills,
        tech_stack=raw.tech_stack,
        years_experience=raw.years_experience,
        certifications=raw.certifications,
        vendor_job_id=raw.id,
        recruiter_name=raw.recruiter_name,
        recruiter_email=raw.recruiter_email,
        recruiter_phone=raw.recruiter_phone,
        recruiter_title=raw.recruiter_title,
        vendor_company=raw.vendor_company,
        client_company=raw.client_company,
        email_subject=raw.email_subject,
        email_received_at=raw.email_received_at,
        special_requirements=raw.special_requirements,
        status=raw.status,
    )


def _number(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_feed_row(row: dict[str, Any]) -> Job:
    """Map a backing-store ``job_feed`` row, as pushed by the realtime channel."""
    analysis_status = row.get("analysis_status")
    score = row.get("match_score")
    is_seen = bool(row.get("is_seen"))
    return Job(
        id=str(row["id"]),
        source_type="email" if row.get("source_type") == "email" else "api",
        source_platform=row.get("source_platform") or "unknown",
        title=row.get("title") or "Unknown Title",
        company=row.get("company") or "Unknown Company",
        location=row.get("location") or "",
        description=row.get("description") or "",
        url=row.get("url") or None,
        posted_date=row.get("posted_date") or row.get("created_at"),
        discovered_at=row.get("discovered_at") or row.get("created_at"),
        salary_min=_number(row.get("salary_min")),
        salary_max=_number(row.get("salary_max")),
        salary_text=row.get("salary_text") or None,
        pay_rate_type=row.get("pay_rate_type") or None,
        employment_type=row.get("employment_type") or None,
        work_arrangement=normalize_work_arrangement(row.get("work_arrangement")),
        duration=row.get("duration") or None,
        required_skills=row.get("required_skills") or None,
        tech_stack=TechStack.from_dict(row.get("tech_stack")),
        years_experience=row.get("years_experience") or None,
        certifications=row.get("certifications") or None,
        match_score=int(score) if score is not None else None,
        matching_skills=row.get("matching_skills") or None,
        missing_skills=row.get("missing_skills") or None,
        recommendations=row.get("recommendations") or None,
        analyzed=analysis_status == "completed",
        analyzing=analysis_status == "analyzing",
        analysis_timestamp=row.get("analyzed_at") or None,
        is_new=not is_seen,
        is_seen=is_seen,
        vendor_job_id=row.get("vendor_job_id") or None,
        recruiter_name=row.get("recruiter_name") or None,
        recruiter_email=row.get("recruiter_email") or None,
        recruiter_phone=row.get("recruiter_phone") or None,
        vendor_company=row.get("vendor_company") or None,
        client_company=row.get("client_company") or None,
        email_subject=row.get("email_subject") or None,
        email_received_at=row.get("email_received_at") or None,
        status=row.get("status") or None,
    )
