import json

import pytest

from jobpilot.agents.state import JobCandidate
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind
from jobpilot.services.writing import (
    ApplicationWriter,
    LLMProvider,
    MockLLMProvider,
    extract_job_keywords,
    parse_json_object,
    score_cv,
)


class _StaticProvider(LLMProvider):
    def __init__(self, text: str) -> None:
        self.text = text
        self.prompts = []

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        self.prompts.append(prompt)
        return self.text


class _FailingProvider(LLMProvider):
    def __init__(self, kind: ServiceErrorKind) -> None:
        self.kind = kind

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        raise ExternalServiceError("llm", self.kind, "simulated provider failure")


def _profile() -> dict:
    return {
        "personal_info": {"name": "Alex Carter", "email": "alex@example.com"},
        "summary": "Backend engineer focused on APIs.",
        "skills": ["Excel", "Python", "FastAPI", "PostgreSQL"],
        "experience": [
            {
                "company": "Northwind Labs",
                "title": "Software Engineer",
                "start_date": "2022",
                "end_date": "2025",
                "bullets": ["Reduced API latency by 35%", "Built FastAPI services"],
            }
        ],
        "education": [{"degree": "BSc Computer Science", "school": "Western", "year": "2021"}],
    }


def _job() -> JobCandidate:
    return JobCandidate(
        job_id="job_1",
        title="Senior Backend Engineer",
        company="Acme Analytics",
        description="Build Python microservices with FastAPI, PostgreSQL and Docker on AWS.",
    )


def test_tailor_cv_falls_back_when_reply_is_not_json():
    writer = ApplicationWriter(MockLLMProvider())

    cv = writer.tailor_cv(_profile(), _job())

    assert cv["contact_info"]["name"] == "Alex Carter"
    # Job-relevant skills are listed first.
    assert cv["skills"][:3] == ["Python", "FastAPI", "PostgreSQL"]
    assert cv["experience"][0]["role"] == "Software Engineer"
    assert cv["experience"][0]["duration"] == "2022 - 2025"
    assert "Senior Backend Engineer" in cv["summary"]


def test_tailor_cv_uses_structured_reply_and_fills_missing_sections():
    reply = {"summary": "Tailored", "skills": ["Python"], "experience": [{"role": "Engineer", "company": "N"}]}
    writer = ApplicationWriter(_StaticProvider(f"```json\n{json.dumps(reply)}\n```"))

    cv = writer.tailor_cv(_profile(), _job())

    assert cv["summary"] == "Tailored"
    assert cv["skills"] == ["Python"]
    assert cv["education"][0]["institution"] == "Western"


def test_provider_errors_propagate_to_the_caller():
    writer = ApplicationWriter(_FailingProvider(ServiceErrorKind.AUTH))
    with pytest.raises(ExternalServiceError):
        writer.tailor_cv(_profile(), _job())


def test_score_cv_is_deterministic_and_lists_keywords():
    cv = ApplicationWriter(MockLLMProvider()).tailor_cv(_profile(), _job())

    first = score_cv(cv, _job())
    second = score_cv(cv, _job())

    ats, matched, missing, suggestions = first
    assert first == second
    assert {"python", "fastapi", "postgresql"} <= set(matched)
    assert {"docker", "aws"} <= set(missing)
    assert 0 <= ats.overall <= 100
    assert any("docker" in suggestion for suggestion in suggestions)


def test_extract_job_keywords_pads_sparse_postings_with_frequent_terms():
    job = JobCandidate(job_id="j", title="Barista", company="Cafe", description="Espresso espresso latte art")
    keywords = extract_job_keywords(job)
    assert "espresso" in keywords


def test_draft_email_prefers_structured_reply():
    provider = _StaticProvider('{"subject": "Hello Acme", "body": "Dear team"}')
    drafted = ApplicationWriter(provider).draft_email(_profile(), _job(), "hr@acme.com")

    assert drafted == {"subject": "Hello Acme", "body": "Dear team"}
    assert "hr@acme.com" in provider.prompts[0]


def test_draft_email_fallback_mentions_role_and_signs_with_name():
    drafted = ApplicationWriter(MockLLMProvider()).draft_email(_profile(), _job(), "hr@acme.com")

    assert drafted["subject"] == "Application for Senior Backend Engineer - Alex Carter"
    assert "Acme Analytics" in drafted["body"]
    assert drafted["body"].rstrip().endswith("Alex Carter")


def test_estimate_contact_accepts_only_valid_addresses():
    good = _StaticProvider('{"emails": [{"email": "not-an-email"}, {"email": "Careers@Acme.com", "confidence": 40}]}')
    assert ApplicationWriter(good).estimate_contact("Acme", _job()) == "careers@acme.com"
    assert ApplicationWriter(MockLLMProvider()).estimate_contact("Acme", _job()) is None


def test_parse_json_object_rejects_garbage():
    assert parse_json_object("no json here") is None
    assert parse_json_object("{broken") is None
    assert parse_json_object('prefix {"a": 1} suffix') == {"a": 1}
