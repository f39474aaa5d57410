import json
import re
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any

import httpx

from jobpilot.agents.state import AtsScore, JobCandidate
from jobpilot.core.config import Settings
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, classify_exception, kind_for_status

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_SYSTEM_PROMPT = "You are a concise professional career-writing assistant. Answer only with the requested JSON."

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
JSON_BLOCK_RE = re.compile(r"\{.*\}", re.DOTALL)
METRIC_RE = re.compile(r"\d+(?:\.\d+)?\s*(?:%|x|\+|k|m)\b", re.IGNORECASE)

SKILL_VOCABULARY = {
    "python", "java", "javascript", "typescript", "go", "rust", "c++", "c#", "sql", "nosql",
    "react", "angular", "vue", "node", "django", "flask", "fastapi", "spring", "express",
    "postgresql", "mysql", "mongodb", "redis", "kafka", "rabbitmq", "celery", "graphql", "rest",
    "aws", "azure", "gcp", "docker", "kubernetes", "terraform", "linux", "git", "ci/cd",
    "pandas", "numpy", "spark", "airflow", "tableau", "excel", "etl", "machine learning",
    "deep learning", "nlp", "pytorch", "tensorflow", "llm", "microservices", "agile", "scrum",
    "testing", "communication", "leadership", "figma", "html", "css", "php", "laravel",
}
STOPWORDS = {
    "the", "and", "for", "with", "you", "our", "are", "will", "that", "this", "from", "have",
    "your", "who", "their", "they", "about", "work", "team", "teams", "role", "job", "join",
    "able", "using", "build", "strong", "years", "experience", "skills", "including", "within",
    "across", "what", "into", "more", "such", "other", "well", "must", "also", "help",
}


class LLMProvider(ABC):
    @abstractmethod
    def generate(self, prompt: str, *, system: str | None = None) -> str:
        raise NotImplementedError


class MockLLMProvider(LLMProvider):
    def generate(self, prompt: str, *, system: str | None = None) -> str:
        prompt_lines = [line.strip() for line in prompt.splitlines() if line.strip()]
        seed = " ".join(prompt_lines[:5])
        return f"Generated draft (mock provider): {seed[:280]}"


class OpenAICompatibleLLMProvider(LLMProvider):
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str,
        temperature: float,
        max_tokens: int,
        timeout_seconds: int,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("LLM_API_KEY is required when LLM_PROVIDER=openai")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        url = f"{self.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise classify_exception("llm", exc) from exc

        if response.status_code >= 400:
            raise ExternalServiceError(
                "llm",
                kind_for_status(response.status_code),
                f"LLM request failed ({response.status_code}): {response.text[:300]}",
                response.status_code,
            )

        data = response.json()
        content = (
            data.get("choices", [{}])[0]
            .get("message", {})
            .get("content", "")
        )
        if not content:
            raise ExternalServiceError("llm", ServiceErrorKind.UNKNOWN, "LLM response missing content")
        return str(content).strip()


# Hosted providers and the base URL used when LLM_BASE_URL is left at the OpenAI default.
HOSTED_BASE_URLS = {
    "openai": OPENAI_BASE_URL,
    "openai_compatible": OPENAI_BASE_URL,
    "groq": "https://api.groq.com/openai/v1",
}


def build_llm_provider(settings: Settings) -> LLMProvider:
    provider = (settings.llm_provider or "mock").strip().lower()

    if provider.startswith(("sk-", "gsk_")):
        raise ValueError(
            "LLM_PROVIDER appears to contain an API key. Set LLM_PROVIDER to 'openai' or 'groq' "
            "and move the key to LLM_API_KEY."
        )
    if provider == "mock":
        return MockLLMProvider()
    if provider not in HOSTED_BASE_URLS:
        raise ValueError("Unsupported LLM_PROVIDER. Supported values: mock, openai, groq.")

    base_url = settings.llm_base_url
    if not base_url or base_url.rstrip("/") == OPENAI_BASE_URL:
        base_url = HOSTED_BASE_URLS[provider]
    return OpenAICompatibleLLMProvider(
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        base_url=base_url,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout_seconds=settings.llm_timeout_seconds,
    )


def parse_json_object(raw_text: str) -> dict[str, Any] | None:
    """Pull the first JSON object out of an LLM reply, tolerating code fences."""
    text = (raw_text or "").strip()
    if not text:
        return None
    match = JSON_BLOCK_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _text_blob(value: Any) -> str:
    if isinstance(value, dict):
        return " ".join(_text_blob(item) for item in value.values())
    if isinstance(value, list):
        return " ".join(_text_blob(item) for item in value)
    return str(value or "")


def _contains_term(text: str, term: str) -> bool:
    return re.search(rf"(?<![a-z0-9]){re.escape(term)}(?![a-z0-9])", text) is not None


def extract_job_keywords(job: JobCandidate, *, max_keywords: int = 15) -> list[str]:
    text = f"{job.title} {job.description}".lower()
    keywords = sorted(term for term in SKILL_VOCABULARY if _contains_term(text, term))
    if len(keywords) < 5:
        counts = Counter(
            token
            for token in re.findall(r"[a-z][a-z0-9+#]{3,}", text)
            if token not in STOPWORDS and token not in keywords
        )
        keywords += [token for token, _ in counts.most_common(max_keywords - len(keywords))]
    return keywords[:max_keywords]


def score_cv(cv: dict[str, Any], job: JobCandidate) -> tuple[AtsScore, list[str], list[str], list[str]]:
    """Deterministic ATS estimate: keyword coverage, section layout and evidence density."""
    keywords = extract_job_keywords(job)
    blob = _text_blob(cv).lower()
    matched = [term for term in keywords if _contains_term(blob, term)]
    missing = [term for term in keywords if term not in matched]

    keyword_score = round(100 * len(matched) / len(keywords)) if keywords else 70
    present_sections = [key for key in ("summary", "skills", "experience", "education") if cv.get(key)]
    format_score = min(100, 40 + 15 * len(present_sections))

    bullets = [b for entry in cv.get("experience") or [] if isinstance(entry, dict) for b in entry.get("achievements") or []]
    metric_bullets = [b for b in bullets if METRIC_RE.search(str(b))]
    content_score = min(100, 40 + 8 * len(bullets) + 10 * len(metric_bullets))
    overall = round(0.4 * keyword_score + 0.3 * format_score + 0.3 * content_score)

    suggestions = [f"Add concrete evidence of {term} if it reflects your experience." for term in missing[:5]]
    if not cv.get("summary"):
        suggestions.append("Add a short professional summary aimed at the role.")
    if bullets and not metric_bullets:
        suggestions.append("Quantify at least one achievement with a metric.")
    return (
        AtsScore(overall=overall, format=format_score, keywords=keyword_score, content=content_score),
        matched,
        missing,
        suggestions,
    )


def _profile_skills(profile: dict[str, Any]) -> list[str]:
    skills = profile.get("skills") or []
    if isinstance(skills, dict):
        return [str(s) for values in skills.values() if isinstance(values, list) for s in values if s]
    return [str(s) for s in skills if str(s).strip()]


def fallback_cv(profile: dict[str, Any], job: JobCandidate) -> dict[str, Any]:
    """Tailored CV built from the profile alone: job-relevant skills first."""
    personal = profile.get("personal_info") or profile.get("contact_info") or {}
    job_text = f"{job.title} {job.description}".lower()
    skills = _profile_skills(profile)
    skills.sort(key=lambda skill: 0 if _contains_term(job_text, skill.lower()) else 1)

    experience = []
    for entry in profile.get("experience") or []:
        if not isinstance(entry, dict):
            continue
        bullets = entry.get("bullets") or entry.get("achievements") or []
        if not bullets and entry.get("highlights"):
            bullets = [entry["highlights"]]
        dates = " - ".join(part for part in (entry.get("start_date"), entry.get("end_date")) if part)
        experience.append(
            {
                "role": entry.get("title") or entry.get("role") or "",
                "company": entry.get("company") or "",
                "duration": entry.get("duration") or dates,
                "achievements": [str(b) for b in bullets][:5],
            }
        )

    education = [
        {
            "degree": entry.get("degree") or "",
            "institution": entry.get("school") or entry.get("institution") or "",
            "year": entry.get("year") or entry.get("end_date") or "",
        }
        for entry in profile.get("education") or []
        if isinstance(entry, dict)
    ]

    summary = str(profile.get("summary") or "").strip()
    lead = f"Candidate for the {job.title} role at {job.company}."
    return {
        "contact_info": {
            "name": personal.get("name") or "Candidate",
            "email": personal.get("email") or "",
            "phone": personal.get("phone") or "",
            "location": personal.get("location") or "",
        },
        "summary": f"{lead} {summary}".strip(),
        "skills": skills[:20],
        "experience": experience,
        "education": education,
        "certifications": list(profile.get("certifications") or []),
        "languages": list(profile.get("languages") or []),
    }


def _job_brief(job: JobCandidate) -> str:
    return (
        f"Title: {job.title}\nCompany: {job.company}\nLocation: {job.location}\n"
        f"Description:\n{job.description[:1500]}"
    )


class ApplicationWriter:
    """Tailors CVs and drafts outreach emails through an LLM provider.

    Provider errors propagate so the caller can record them on the item.
    A reply that is not usable JSON falls back to deterministic text.
    """

    def __init__(self, llm_provider: LLMProvider) -> None:
        self.llm = llm_provider

    def tailor_cv(self, profile: dict[str, Any], job: JobCandidate) -> dict[str, Any]:
        prompt = (
            "Rewrite the candidate profile below as a CV tailored to the job. Keep every fact truthful; "
            "do not invent employers, titles, dates or metrics.\n"
            "Return JSON with keys: contact_info (name, email, phone, location), summary, skills (list), "
            "experience (list of role, company, duration, achievements), education (list of "
            "degree, institution, year), certifications (list), languages (list).\n\n"
            f"JOB\n{_job_brief(job)}\n\nPROFILE\n{json.dumps(profile, default=str)[:6000]}"
        )
        tailored = parse_json_object(self.llm.generate(prompt))
        base = fallback_cv(profile, job)
        if not tailored or (not tailored.get("experience") and not tailored.get("skills")):
            return base
        for key, value in base.items():
            tailored.setdefault(key, value)
        return tailored

    def draft_email(self, profile: dict[str, Any], job: JobCandidate, hr_email: str) -> dict[str, str]:
        personal = profile.get("personal_info") or {}
        name = str(personal.get("name") or "Applicant")
        prompt = (
            f"Draft a short, professional job application email to {hr_email} for the role below. "
            "Mention two relevant strengths from the profile and that a tailored CV is attached.\n"
            'Return a JSON object with string fields "subject" and "body".\n\n'
            f"JOB\n{_job_brief(job)}\n\nCANDIDATE\nName: {name}\n"
            f"Summary: {profile.get('summary') or ''}\nSkills: {', '.join(_profile_skills(profile)[:12])}"
        )
        drafted = parse_json_object(self.llm.generate(prompt)) or {}
        subject = str(drafted.get("subject") or "").strip()
        body = str(drafted.get("body") or drafted.get("email_body") or drafted.get("content") or "").strip()
        if not subject:
            subject = f"Application for {job.title} - {name}"
        if not body:
            strengths = ", ".join(_profile_skills(profile)[:3]) or "my background"
            body = (
                f"Dear Hiring Team at {job.company},\n\n"
                f"I am writing to apply for the {job.title} position. My experience with {strengths} "
                "matches what the role asks for, and I have attached a CV tailored to it.\n\n"
                "I would welcome the chance to discuss how I can contribute to the team.\n\n"
                f"Best regards,\n{name}"
            )
        return {"subject": subject, "body": body}

    def estimate_contact(self, company: str, job: JobCandidate) -> str | None:
        prompt = (
            f"Suggest the most likely recruiting email address for {company} "
            f"(hiring for {job.title}; posting: {job.source_url or 'n/a'}). "
            'Return a JSON object with an "emails" list whose items have "email" and "confidence" (0-100) fields. '
            "Use an empty list if you cannot make a reasonable estimate."
        )
        parsed = parse_json_object(self.llm.generate(prompt)) or {}
        for entry in parsed.get("emails") or []:
            email = str(entry.get("email") if isinstance(entry, dict) else entry or "").strip()
            if EMAIL_RE.match(email):
                return email.lower()
        return None
