from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobpilot.agents.state import (
    ActivityEntry,
    ApprovalRecord,
    CVResult,
    DraftEdit,
    EmailDraft,
    JobCandidate,
    PipelineSession,
    SendResult,
)
from jobpilot.core.enums import PipelineState
from jobpilot.services.local_chat import ChatTurn


class LoginRequest(BaseModel):
    api_key: str
    owner_id: str = "local-user"


class LoginResponse(BaseModel):
    token: str
    owner_id: str


class ProfileResponse(BaseModel):
    profile: dict[str, Any]
    sections: list[str] = Field(default_factory=list)


class PipelineStartRequest(BaseModel):
    role: str
    location: str | None = None
    max_items: int | None = None
    profile: dict[str, Any] | None = None


class ApproveCvsRequest(BaseModel):
    pipeline_id: str
    approval_id: str
    keep_job_ids: list[str] | None = None


class ApproveEmailsRequest(BaseModel):
    pipeline_id: str
    approval_id: str
    edits: list[DraftEdit] | None = None


class RejectRequest(BaseModel):
    pipeline_id: str
    approval_id: str


class ResetResponse(BaseModel):
    reset: bool


class PipelineStatusResponse(BaseModel):
    pipeline_id: str
    state: PipelineState
    target_role: str
    target_location: str
    max_items: int
    job_candidates: list[JobCandidate]
    cv_results: list[CVResult]
    email_drafts: list[EmailDraft]
    send_results: list[SendResult]
    pending_approval: ApprovalRecord | None
    activity_log: list[ActivityEntry]
    error: str | None
    error_recoverable: bool
    history_persisted: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, session: PipelineSession) -> "PipelineStatusResponse":
        return cls(
            pipeline_id=session.session_id,
            state=session.state,
            target_role=session.target_role,
            target_location=session.target_location,
            max_items=session.max_items,
            job_candidates=session.job_candidates,
            cv_results=session.cv_results,
            email_drafts=session.email_drafts,
            send_results=session.send_results,
            pending_approval=session.pending_approval,
            activity_log=session.activity_log,
            error=session.error,
            error_recoverable=session.error_recoverable,
            history_persisted=session.history_persisted,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class ChatRequest(BaseModel):
    message: str
    history: list[ChatTurn] = Field(default_factory=list)
    model: str | None = None
