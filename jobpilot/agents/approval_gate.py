from datetime import datetime, timedelta
from typing import Any

from jobpilot.agents.state import ApprovalRecord, PipelineSession, utcnow
from jobpilot.core.enums import ApprovalResolution, ApprovalType
from jobpilot.core.errors import ApprovalMismatchError


class ApprovalGate:
    """Suspension point that holds proposed artifacts until a human decides.

    All methods mutate the session passed in and must run under the
    session store's write lock.
    """

    def __init__(self, ttl_minutes: dict[ApprovalType, int] | None = None) -> None:
        self.ttl_minutes = ttl_minutes or {}

    def open(
        self,
        session: PipelineSession,
        approval_type: ApprovalType,
        content: list[dict[str, Any]],
        *,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        if session.pending_approval is not None:
            raise ApprovalMismatchError(
                f"Approval {session.pending_approval.approval_id} is still pending"
            )
        created = now or utcnow()
        ttl = self.ttl_minutes.get(approval_type)
        record = ApprovalRecord(
            approval_type=approval_type,
            created_at=created,
            expires_at=created + timedelta(minutes=ttl) if ttl else None,
            content_original=content,
        )
        session.pending_approval = record
        return record

    def is_expired(self, session: PipelineSession, *, now: datetime | None = None) -> bool:
        record = session.pending_approval
        if record is None or record.expires_at is None:
            return False
        return (now or utcnow()) >= record.expires_at

    def resolve(
        self,
        session: PipelineSession,
        approval_id: str,
        approval_type: ApprovalType,
        resolution: ApprovalResolution,
        *,
        modified: list[dict[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        record = self.pending(session, approval_id, approval_type)
        return self._finalize(session, record, resolution, modified=modified, now=now)

    def pending(self, session: PipelineSession, approval_id: str, approval_type: ApprovalType | None = None) -> ApprovalRecord:
        record = session.pending_approval
        if record is None:
            raise ApprovalMismatchError("No approval is pending for this pipeline")
        if record.approval_id != approval_id:
            raise ApprovalMismatchError(f"Approval {approval_id} is not the pending approval")
        if approval_type is not None and record.approval_type != approval_type:
            raise ApprovalMismatchError(
                f"Approval {approval_id} is a {record.approval_type.value} approval, not {approval_type.value}"
            )
        return record

    def expire(self, session: PipelineSession, *, now: datetime | None = None) -> ApprovalRecord | None:
        record = session.pending_approval
        if record is None:
            return None
        return self._finalize(session, record, ApprovalResolution.EXPIRED, now=now)

    def _finalize(
        self,
        session: PipelineSession,
        record: ApprovalRecord,
        resolution: ApprovalResolution,
        *,
        modified: list[dict[str, Any]] | None = None,
        now: datetime | None = None,
    ) -> ApprovalRecord:
        record.resolution = resolution
        record.resolved_at = now or utcnow()
        if modified is not None:
            record.content_modified = modified
        session.pending_approval = None
        session.resolved_approvals.append(record)
        return record
