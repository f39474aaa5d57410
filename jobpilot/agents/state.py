import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobpilot.core.enums import (
    ActivityCategory,
    ApprovalResolution,
    ApprovalType,
    EmailSource,
    PipelineState,
    VerifyResult,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class JobCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    title: str
    company: str
    location: str = ""
    description: str = ""
    source_url: str = ""
    company_url: str = ""
    match_score: float = 0.0
    source: str = ""


class AtsScore(BaseModel):
    overall: int = 0
    format: int = 0
    keywords: int = 0
    content: int = 0


class CVResult(BaseModel):
    job_id: str
    company: str = ""
    job_title: str = ""
    cv: dict[str, Any] | None = None
    ats_score: AtsScore | None = None
    matched_keywords: list[str] = Field(default_factory=list)
    missing_keywords: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    error: str | None = None
    document_path: str | None = None
    has_document: bool = False

    @property
    def usable(self) -> bool:
        return self.cv is not None and not self.error


class ContactAlternative(BaseModel):
    email: str
    confidence: int = 0
    position: str | None = None
    department: str | None = None


class EmailDraft(BaseModel):
    job_id: str
    company: str = ""
    job_title: str = ""
    hr_email: str | None = None
    email_source: EmailSource = EmailSource.NONE
    email_verified: bool = False
    email_verify_result: VerifyResult = VerifyResult.UNKNOWN
    alternatives: list[ContactAlternative] = Field(default_factory=list)
    subject: str | None = None
    body: str | None = None
    error: str | None = None

    @property
    def sendable(self) -> bool:
        return not self.error and bool(self.hr_email) and bool(self.subject) and bool(self.body)


class DraftEdit(BaseModel):
    """User changes to one draft at the email-review gate."""

    job_id: str
    hr_email: str | None = None
    subject: str | None = None
    body: str | None = None


class SendResult(BaseModel):
    job_id: str
    company: str = ""
    job_title: str = ""
    hr_email: str = ""
    subject: str = ""
    success: bool
    message_id: str | None = None
    error: str | None = None
    sent_at: datetime = Field(default_factory=utcnow)


class ApprovalRecord(BaseModel):
    approval_id: str = Field(default_factory=lambda: new_id("approval"))
    approval_type: ApprovalType
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None
    content_original: list[dict[str, Any]] = Field(default_factory=list)
    content_modified: list[dict[str, Any]] | None = None
    resolution: ApprovalResolution = ApprovalResolution.PENDING
    resolved_at: datetime | None = None


class ActivityEntry(BaseModel):
    id: int
    message: str
    category: ActivityCategory
    timestamp: datetime = Field(default_factory=utcnow)


class PipelineSession(BaseModel):
    session_id: str = Field(default_factory=lambda: new_id("pipeline"))
    owner_id: str
    state: PipelineState = PipelineState.WAITING_PROFILE
    candidate_profile: dict[str, Any] = Field(default_factory=dict)
    target_role: str = ""
    target_location: str = ""
    max_items: int = 5

    job_candidates: list[JobCandidate] = Field(default_factory=list)
    cv_results: list[CVResult] = Field(default_factory=list)
    email_drafts: list[EmailDraft] = Field(default_factory=list)
    send_results: list[SendResult] = Field(default_factory=list)
    activity_log: list[ActivityEntry] = Field(default_factory=list)

    pending_approval: ApprovalRecord | None = None
    resolved_approvals: list[ApprovalRecord] = Field(default_factory=list)

    error: str | None = None
    error_recoverable: bool = False
    history_persisted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def candidate_name(self) -> str:
        personal = self.candidate_profile.get("personal_info") or {}
        return str(personal.get("name") or "Applicant").strip() or "Applicant"
