from __future__ import annotations

from types import SimpleNamespace

import pytest

from jobfeed.models import Resume
from jobfeed.scorer import GroqScorer, KeywordScorer, ScoringError, get_scorer, parse_llm_result

pytestmark = pytest.mark.unit


def _payload(skills: list[tuple[str, str]], title: str = "Backend Engineer") -> dict:
    return {
        "job_title": title,
        "company_name": "Acme",
        "location": "Remote",
        "description_full": "",
        "required_skills": [{"skill": s, "importance": imp} for s, imp in skills],
    }


def test_keyword_scorer_weights_required_over_preferred(resume: Resume) -> None:
    payload = _payload([("Python", "Required"), ("Kubernetes", "Required"), ("AWS", "Preferred")])

    result = KeywordScorer().score(resume, payload)

    # (1 + 0.5) / 2.5
    assert result.match_score == 60
    assert result.matching_skills == ["Python", "AWS"]
    assert result.missing_skills == ["Kubernetes"]
    assert result.recommendations == ["Highlight any experience with Kubernetes"]


def test_keyword_scorer_matches_skills_named_in_resume_text() -> None:
    resume = Resume(id="r", skills=[], text="Built services in Go and PostgreSQL.")
    payload = _payload([("Go", "Required"), ("PostgreSQL", "Required")])

    assert KeywordScorer().score(resume, payload).match_score == 100


def test_keyword_scorer_without_skills_uses_title_overlap(resume: Resume) -> None:
    result = KeywordScorer().score(resume, _payload([], title="Senior Backend Engineer"))

    assert result.match_score == 100
    assert result.recommendations is None


@pytest.mark.parametrize(
    "raw, score",
    [
        ('{"match_score": 83, "matching_skills": ["Python"], "missing_skills": []}', 83),
        ('Sure! ```json\n{"match_score": 140}\n```', 100),
        ('{"match_score": -3}', 0),
        ('{"match_score": "71.6"}', 72),
    ],
)
def test_parse_llm_result_extracts_and_clamps(raw: str, score: int) -> None:
    assert parse_llm_result(raw).match_score == score


@pytest.mark.parametrize("raw", ["", "no json here", '{"score": 5}', '{"match_score": "high"}'])
def test_parse_llm_result_rejects_unusable_replies(raw: str) -> None:
    with pytest.raises(ScoringError):
        parse_llm_result(raw)


def test_groq_scorer_sends_prompt_and_parses_reply(resume: Resume) -> None:
    sent = {}

    def create(**kwargs):
        sent.update(kwargs)
        message = SimpleNamespace(content='{"match_score": 77, "matching_skills": ["Python"], "recommendations": ["Add metrics"]}')
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    scorer = GroqScorer(api_key="test-key", model="test-model")
    scorer._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    result = scorer.score(resume, _payload([("Python", "Required")]))

    assert result.match_score == 77
    assert result.recommendations == ["Add metrics"]
    assert sent["model"] == "test-model"
    assert sent["temperature"] == 0
    assert "Backend Engineer" in sent["messages"][0]["content"]


def test_get_scorer_falls_back_to_keywords_without_key() -> None:
    assert isinstance(get_scorer(lambda key: ""), KeywordScorer)

    scorer = get_scorer(lambda key: {"GROQ_API_KEY": "k", "GROQ_LLM_MODEL": "m"}.get(key, ""))
    assert isinstance(scorer, GroqScorer)
    assert scorer.model == "m"
