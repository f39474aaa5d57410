import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from jobpilot.agents.state import JobCandidate
from jobpilot.core.config import Settings
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, classify_exception, kind_for_status

MAX_DESCRIPTION_CHARS = 2000


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _tokens(text: str) -> set[str]:
    return {token for token in re.findall(r"[a-z0-9+#]+", (text or "").lower()) if len(token) > 1}


def match_score(role: str, title: str, description: str) -> float:
    """Share of role terms found in the posting, weighted towards the title."""
    role_terms = _tokens(role)
    if not role_terms:
        return 0.0
    title_hits = len(role_terms & _tokens(title)) / len(role_terms)
    body_hits = len(role_terms & _tokens(description)) / len(role_terms)
    return round(_clamp(0.7 * title_hits + 0.3 * body_hits), 3)


class JobSearchProvider(ABC):
    @abstractmethod
    def search(self, role: str, location: str, limit: int) -> list[JobCandidate]:
        raise NotImplementedError


class MockJobSearchProvider(JobSearchProvider):
    COMPANIES = [
        ("Northwind Labs", "northwindlabs.com"),
        ("Acme Analytics", "acmeanalytics.com"),
        ("Contoso Cloud", "contoso.com"),
        ("Fabrikam Systems", "fabrikam.com"),
        ("Tailspin Data", "tailspindata.com"),
    ]

    def __init__(self, jobs: list[JobCandidate] | None = None) -> None:
        self.jobs = jobs

    def search(self, role: str, location: str, limit: int) -> list[JobCandidate]:
        if self.jobs is not None:
            return list(self.jobs[:limit])
        results = []
        for idx, (company, domain) in enumerate(self.COMPANIES[:limit]):
            description = (
                f"{company} is hiring a {role} in {location}. "
                f"You will build and maintain production systems as a {role} and collaborate with product teams."
            )
            results.append(
                JobCandidate(
                    job_id=f"job_{idx + 1}",
                    title=role,
                    company=company,
                    location=location,
                    description=description,
                    source_url=f"https://{domain}/careers/{idx + 1}",
                    company_url=f"https://{domain}",
                    match_score=match_score(role, role, description),
                    source="mock",
                )
            )
        return results


class SerpApiJobSearchProvider(JobSearchProvider):
    """Google Jobs results through SerpAPI."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://serpapi.com/search.json",
        timeout_seconds: float = 30,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("SERPAPI_KEY is required when JOB_SEARCH_PROVIDER=serpapi")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def search(self, role: str, location: str, limit: int) -> list[JobCandidate]:
        params = {
            "engine": "google_jobs",
            "api_key": self.api_key,
            "q": role,
            "location": location,
            "hl": "en",
        }
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.get(self.base_url, params=params)
        except httpx.HTTPError as exc:
            raise classify_exception("serpapi", exc) from exc

        if response.status_code >= 400:
            raise ExternalServiceError(
                "serpapi",
                kind_for_status(response.status_code),
                f"search failed ({response.status_code}): {response.text[:300]}",
                response.status_code,
            )

        data = response.json()
        if isinstance(data, dict) and data.get("error") and not data.get("jobs_results"):
            message = str(data["error"])
            # SerpAPI reports "no results" through the error field.
            if "hasn't returned any results" in message:
                return []
            raise ExternalServiceError("serpapi", ServiceErrorKind.UNKNOWN, message)

        raw_jobs = data.get("jobs_results") or [] if isinstance(data, dict) else []
        return [self._to_candidate(idx, raw, role, location) for idx, raw in enumerate(raw_jobs[:limit])]

    @staticmethod
    def _to_candidate(idx: int, raw: dict[str, Any], role: str, location: str) -> JobCandidate:
        apply_options = raw.get("apply_options") or []
        apply_link = apply_options[0].get("link", "") if apply_options and isinstance(apply_options[0], dict) else ""
        title = str(raw.get("title") or "Unknown Title")
        description = str(raw.get("description") or "")[:MAX_DESCRIPTION_CHARS]
        return JobCandidate(
            job_id=str(raw.get("job_id") or f"job_{idx + 1}")[:120],
            title=title,
            company=str(raw.get("company_name") or "Unknown Company"),
            location=str(raw.get("location") or location),
            description=description,
            source_url=str(raw.get("share_link") or apply_link or ""),
            company_url="",
            match_score=match_score(role, title, description),
            source="google_jobs",
        )


def build_job_search_provider(settings: Settings) -> JobSearchProvider:
    provider = (settings.job_search_provider or "mock").strip().lower()
    if provider == "mock":
        return MockJobSearchProvider()
    if provider == "serpapi":
        return SerpApiJobSearchProvider(
            api_key=settings.serpapi_key,
            base_url=settings.serpapi_base_url,
            timeout_seconds=settings.job_search_timeout_seconds,
        )
    raise ValueError("Unsupported JOB_SEARCH_PROVIDER. Supported values: mock, serpapi.")
