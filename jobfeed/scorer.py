"""Score a job payload against a résumé.

Two scorers share one call shape, ``score(resume, payload) -> AnalysisResult``:
:class:`GroqScorer` asks an LLM for the assessment, :class:`KeywordScorer`
computes a skill-overlap score locally and needs no API key.
"""
from __future__ import annotations

import json
import re
from typing import Any

from jobfeed.log import get_logger
from jobfeed.models import AnalysisResult, Resume

log = get_logger(__name__)

# Minimum token length when expanding compound skills to avoid
# tiny tokens like "ai", "api" that match everything.
_MIN_SKILL_TOKEN_LEN = 4
_PREFERRED_WEIGHT = 0.5


class ScoringError(Exception):
    """The scorer produced no usable result for a job."""


def _normalize(s: str) -> str:
    return (s or "").lower().strip()


def _expand_skills(raw_skills: list[str]) -> list[str]:
    """Break compound skills into matchable tokens, filtering short noise."""
    tokens: list[str] = []
    for s in raw_skills:
        low = s.lower()
        tokens.append(low)
        inner = re.findall(r"[a-z0-9]+(?:[\s-][a-z0-9]+)*", low)
        for part in inner:
            part = part.strip()
            if part and part != low and len(part) >= _MIN_SKILL_TOKEN_LEN:
                tokens.append(part)
    return list(dict.fromkeys(tokens))


def _word_overlap_ratio(role: str, text: str) -> float:
    """Fraction of words in *role* that appear in *text*."""
    role_words = set(_normalize(role).split())
    text_words = set(_normalize(text).split())
    if not role_words:
        return 0.0
    return len(role_words & text_words) / len(role_words)


def _resume_text(resume: Resume) -> str:
    return " ".join([resume.title, resume.summary, " ".join(resume.skills), resume.text]).lower()


def _has_skill(skill: str, resume_text: str, resume_tokens: set[str]) -> bool:
    low = _normalize(skill)
    if not low:
        return False
    if low in resume_tokens:
        return True
    return re.search(rf"(?<![a-z0-9]){re.escape(low)}(?![a-z0-9])", resume_text) is not None


class KeywordScorer:
    """Skill-overlap scoring; required skills weigh twice as much as preferred ones."""

    def score(self, resume: Resume, payload: dict[str, Any]) -> AnalysisResult:
        text = _resume_text(resume)
        tokens = set(_expand_skills(resume.skills))
        skills = payload.get("required_skills") or []

        if not skills:
            overlap = _word_overlap_ratio(resume.title or "", payload.get("job_title", ""))
            return AnalysisResult(match_score=int(round(overlap * 100)))

        matching: list[str] = []
        missing: list[str] = []
        got = total = 0.0
        for item in skills:
            weight = 1.0 if item.get("importance") == "Required" else _PREFERRED_WEIGHT
            total += weight
            if _has_skill(item["skill"], text, tokens):
                matching.append(item["skill"])
                got += weight
            else:
                missing.append(item["skill"])

        score = int(round(100 * got / total)) if total else 0
        recommendations = [f"Highlight any experience with {s}" for s in missing[:3]]
        return AnalysisResult(
            match_score=score,
            matching_skills=matching,
            missing_skills=missing,
            recommendations=recommendations or None,
        )


_PROMPT = """You compare a candidate's resume with a job posting.
Reply with JSON only, using exactly these keys:
{{"match_score": <integer 0-100>, "matching_skills": [..], "missing_skills": [..], "recommendations": [..]}}

Resume title: {title}
Resume summary: {summary}
Resume skills: {skills}
Resume text (excerpt): {resume_text}

Job title: {job_title}
Company: {company}
Location: {location} ({work_type})
Years of experience required: {years}
Skills listed for the job: {job_skills}
Job description (excerpt): {description}"""


def parse_llm_result(raw: str) -> AnalysisResult:
    start, end = raw.find("{"), raw.rfind("}") + 1
    if start < 0 or end <= start:
        raise ScoringError(f"No JSON object in scorer reply: {raw[:120]!r}")
    try:
        data = json.loads(raw[start:end])
        score = max(0, min(100, int(round(float(data["match_score"])))))
    except (ValueError, KeyError, TypeError) as exc:
        raise ScoringError(f"Unusable scorer reply: {exc}") from exc
    recs = data.get("recommendations")
    return AnalysisResult(
        match_score=score,
        matching_skills=[str(s) for s in data.get("matching_skills") or []],
        missing_skills=[str(s) for s in data.get("missing_skills") or []],
        recommendations=[str(r) for r in recs] if recs else None,
    )


class GroqScorer:
    """LLM match analysis through Groq's OpenAI-compatible endpoint."""

    def __init__(self, api_key: str, model: str = "llama-3.3-70b-versatile") -> None:
        from openai import OpenAI

        self.model = model
        self._client = OpenAI(api_key=api_key, base_url="https://api.groq.com/openai/v1")

    def score(self, resume: Resume, payload: dict[str, Any]) -> AnalysisResult:
        prompt = _PROMPT.format(
            title=resume.title,
            summary=resume.summary,
            skills=", ".join(resume.skills[:20]),
            resume_text=resume.text[:3000],
            job_title=payload.get("job_title", ""),
            company=payload.get("company_name", ""),
            location=payload.get("location", ""),
            work_type=payload.get("work_type") or "unknown",
            years=payload.get("years_experience_required") or "not stated",
            job_skills=", ".join(s["skill"] for s in payload.get("required_skills") or []),
            description=(payload.get("description_full") or "")[:3000],
        )
        r = self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=500,
            temperature=0,
        )
        result = parse_llm_result(r.choices[0].message.content or "")
        log.debug("Groq scored %s @ %s: %d", payload.get("job_title"), payload.get("company_name"), result.match_score)
        return result


def get_scorer(env_getter):
    api_key = env_getter("GROQ_API_KEY")
    if not api_key:
        log.info("No GROQ_API_KEY — using keyword scorer")
        return KeywordScorer()
    model = env_getter("GROQ_LLM_MODEL") or "llama-3.3-70b-versatile"
    log.info("Using Groq scorer (%s)", model)
    return GroqScorer(api_key, model)
