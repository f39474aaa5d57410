"""Recruiting-contact discovery against the Hunter.io API.

1. Domain search finds known addresses for a company domain.
2. Addresses are ranked by recruiting relevance.
3. The top three are verified in order until one is deliverable.

Free tier: 25 domain searches + 50 verifications per month, so every
paid call is metered and the cascade makes at most three verifications.
"""

import re
from typing import Any
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel, Field

from jobpilot.agents.state import ContactAlternative
from jobpilot.core.config import Settings
from jobpilot.core.enums import NotFoundReason, VerifyResult
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, classify_exception, kind_for_status
from jobpilot.core.logging import get_logger
from jobpilot.core.quota import QuotaLimiter

logger = get_logger(__name__)

SERVICE_NAME = "hunter"

HR_DEPARTMENTS = ["human resources", "hr", "talent", "recruiting", "people", "staffing"]
HR_POSITIONS = ["hr", "recruiter", "talent", "hiring", "people", "workforce", "human resources", "acquisition"]
RECRUITING_ALIASES = ["hr@", "careers@", "recruiting@", "talent@", "jobs@", "people@"]

DEPARTMENT_BONUS = 60
POSITION_BONUS = 40
ALIAS_BONUS = 30
MAX_VERIFICATIONS = 3
MIN_DOMAIN_LENGTH = 4

SECOND_LEVEL_SUFFIXES = {
    "co.uk",
    "org.uk",
    "ac.uk",
    "com.au",
    "com.pk",
    "co.in",
    "co.jp",
    "com.br",
    "co.nz",
    "co.za",
}
COMPANY_SUFFIXES = {
    "inc",
    "llc",
    "ltd",
    "limited",
    "co",
    "corp",
    "corporation",
    "company",
    "gmbh",
    "plc",
    "pvt",
    "private",
    "group",
}


class DiscoveryResult(BaseModel):
    found: bool
    email: str | None = None
    confidence: int = 0
    source: str = "none"
    domain: str | None = None
    verified: bool = False
    verify_result: VerifyResult = VerifyResult.UNKNOWN
    position: str | None = None
    department: str | None = None
    alternatives: list[ContactAlternative] = Field(default_factory=list)
    reason: NotFoundReason | None = None


def _registrable(hostname: str) -> str:
    parts = [part for part in hostname.lower().strip(".").split(".") if part]
    if parts and parts[0] == "www":
        parts = parts[1:]
    if len(parts) >= 3 and ".".join(parts[-2:]) in SECOND_LEVEL_SUFFIXES:
        return ".".join(parts[-3:])
    if len(parts) >= 2:
        return ".".join(parts[-2:])
    return ".".join(parts)


def extract_domain(url: str | None) -> str | None:
    """Reduce a URL or bare host to its registrable domain."""
    value = (url or "").strip()
    if not value:
        return None
    if not re.match(r"^[a-z][a-z0-9+.-]*://", value, flags=re.IGNORECASE):
        value = f"https://{value}"
    try:
        hostname = urlparse(value).hostname or ""
    except ValueError:
        hostname = ""
    if not hostname:
        cleaned = re.sub(r"^https?://", "", value, flags=re.IGNORECASE).split("/")[0]
        hostname = cleaned
    if " " in hostname or "." not in hostname:
        return None
    return _registrable(hostname) or None


def domain_from_company(company: str | None) -> str | None:
    name = (company or "").strip()
    if not name:
        return None
    if "." in name and not re.search(r"\s", name):
        return extract_domain(name)
    words = re.findall(r"[a-z0-9]+", name.lower().replace("&", " and "))
    while len(words) > 1 and words[-1] in COMPANY_SUFFIXES:
        words.pop()
    slug = "".join(words)
    if not slug:
        return None
    return f"{slug}.com"


def recruiting_score(entry: dict[str, Any]) -> int:
    score = int(entry.get("confidence") or 0)
    department = str(entry.get("department") or "").lower()
    position = str(entry.get("position") or "").lower()
    value = str(entry.get("value") or "").lower()
    if any(keyword in department for keyword in HR_DEPARTMENTS):
        score += DEPARTMENT_BONUS
    if any(keyword in position for keyword in HR_POSITIONS):
        score += POSITION_BONUS
    if any(value.startswith(alias) for alias in RECRUITING_ALIASES):
        score += ALIAS_BONUS
    return score


def rank_candidates(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    # sorted() is stable, so equal scores keep the provider's order.
    return sorted(entries, key=recruiting_score, reverse=True)


class HunterClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.hunter.io/v2",
        timeout_seconds: float = 20,
        domain_search_limit: int = 10,
        quota: QuotaLimiter | None = None,
        search_quota: int = 25,
        verify_quota: int = 50,
        quota_window_seconds: int = 30 * 24 * 60 * 60,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.domain_search_limit = domain_search_limit
        self.quota = quota
        self.search_quota = search_quota
        self.verify_quota = verify_quota
        self.quota_window_seconds = quota_window_seconds
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, quota: QuotaLimiter | None = None) -> "HunterClient":
        return cls(
            api_key=settings.hunter_api_key,
            base_url=settings.hunter_base_url,
            timeout_seconds=settings.hunter_timeout_seconds,
            domain_search_limit=settings.hunter_domain_search_limit,
            quota=quota,
            search_quota=settings.hunter_search_quota,
            verify_quota=settings.hunter_verify_quota,
            quota_window_seconds=settings.hunter_quota_window_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _consume(self, key: str, limit: int) -> None:
        if self.quota is None:
            return
        if not self.quota.allow(f"quota:{SERVICE_NAME}:{key}", limit, self.quota_window_seconds):
            raise ExternalServiceError(SERVICE_NAME, ServiceErrorKind.QUOTA, f"{key} quota exhausted")

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        params = {**params, "api_key": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.get(f"{self.base_url}/{path}", params=params)
        except httpx.HTTPError as exc:
            raise classify_exception(SERVICE_NAME, exc) from exc

        if response.status_code >= 400:
            raise ExternalServiceError(
                SERVICE_NAME,
                kind_for_status(response.status_code),
                f"{path} failed ({response.status_code}): {response.text[:300]}",
                response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError(SERVICE_NAME, ServiceErrorKind.UNKNOWN, f"{path} returned invalid JSON") from exc
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ExternalServiceError(SERVICE_NAME, ServiceErrorKind.UNKNOWN, f"{path} response missing data")
        return data

    def domain_search(self, domain: str) -> list[dict[str, Any]]:
        self._consume("domain_search", self.search_quota)
        data = self._get("domain-search", {"domain": domain, "limit": self.domain_search_limit})
        emails = data.get("emails")
        return [entry for entry in emails if isinstance(entry, dict) and entry.get("value")] if isinstance(emails, list) else []

    def verify_email(self, email: str) -> VerifyResult:
        self._consume("email_verifier", self.verify_quota)
        data = self._get("email-verifier", {"email": email})
        try:
            return VerifyResult(str(data.get("result") or "unknown"))
        except ValueError:
            return VerifyResult.UNKNOWN


class EmailDiscoveryService:
    def __init__(self, client: HunterClient) -> None:
        self.client = client

    def find_contact(self, company: str | None, site_url: str | None = None) -> DiscoveryResult:
        """Return the best recruiting address for a company.

        "Not found" is a normal result carrying a reason code. Domain-search
        failures raise ExternalServiceError so the caller can tell a
        credential problem from a per-company miss.
        """
        if not self.client.configured:
            return DiscoveryResult(found=False, reason=NotFoundReason.NOT_CONFIGURED)

        domain = extract_domain(site_url) or domain_from_company(company)
        if not domain or len(domain) < MIN_DOMAIN_LENGTH:
            return DiscoveryResult(found=False, domain=domain, reason=NotFoundReason.INVALID_DOMAIN)

        entries = self.client.domain_search(domain)
        if not entries:
            return DiscoveryResult(found=False, source=SERVICE_NAME, domain=domain, reason=NotFoundReason.NO_ADDRESSES)

        ranked = rank_candidates(entries)[:MAX_VERIFICATIONS]
        chosen: dict[str, Any] | None = None
        chosen_result = VerifyResult.UNKNOWN

        for candidate in ranked:
            try:
                outcome = self.client.verify_email(str(candidate["value"]))
            except ExternalServiceError as exc:
                logger.warning(
                    "Verification unavailable; accepting discovery confidence",
                    extra={"extra": {"email": candidate["value"], "kind": exc.kind.value}},
                )
                chosen, chosen_result = candidate, VerifyResult.UNKNOWN
                break

            if outcome == VerifyResult.DELIVERABLE:
                chosen, chosen_result = candidate, outcome
                break
            if outcome == VerifyResult.RISKY and chosen is None:
                chosen, chosen_result = candidate, outcome

        if chosen is None:
            return DiscoveryResult(
                found=False,
                source=SERVICE_NAME,
                domain=domain,
                reason=NotFoundReason.ALL_UNDELIVERABLE,
            )

        return DiscoveryResult(
            found=True,
            email=str(chosen["value"]),
            confidence=int(chosen.get("confidence") or 50),
            source=SERVICE_NAME,
            domain=domain,
            verified=chosen_result == VerifyResult.DELIVERABLE,
            verify_result=chosen_result,
            position=chosen.get("position"),
            department=chosen.get("department"),
            alternatives=[
                ContactAlternative(
                    email=str(entry["value"]),
                    confidence=int(entry.get("confidence") or 0),
                    position=entry.get("position"),
                    department=entry.get("department"),
                )
                for entry in ranked
            ],
        )
