"""Durable record of finished runs and gate decisions."""

from sqlalchemy.orm import Session, sessionmaker

from jobpilot.agents.state import ApprovalRecord, PipelineSession
from jobpilot.db import crud


class HistoryRecorder:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def record_decision(self, session: PipelineSession, approval: ApprovalRecord) -> None:
        with self.session_factory() as db:
            crud.add_audit_log(
                db,
                actor_type="user",
                actor_id=session.owner_id,
                action=f"approval.{approval.resolution.value}",
                entity_type="pipeline",
                entity_id=session.session_id,
                payload={
                    "approval_id": approval.approval_id,
                    "approval_type": approval.approval_type.value,
                    "items": len(approval.content_original),
                    "edited": approval.content_modified is not None,
                },
            )
            db.commit()

    def record_run(self, session: PipelineSession, *, outcome: str = "completed") -> int:
        """Write one row per send attempt plus a `pipeline.<outcome>` event; returns the row count."""
        drafts = {draft.job_id: draft for draft in session.email_drafts}
        cvs = {cv.job_id: cv for cv in session.cv_results}
        with self.session_factory() as db:
            for result in session.send_results:
                draft = drafts.get(result.job_id)
                cv = cvs.get(result.job_id)
                crud.add_sent_application(
                    db,
                    owner_id=session.owner_id,
                    session_id=session.session_id,
                    job_id=result.job_id,
                    company=result.company,
                    job_title=result.job_title,
                    hr_email=result.hr_email,
                    email_source=draft.email_source.value if draft else "none",
                    email_verified=draft.email_verified if draft else False,
                    subject=result.subject,
                    body=(draft.body or "") if draft else "",
                    ats_score=cv.ats_score.overall if cv and cv.ats_score else None,
                    document_path=cv.document_path if cv else None,
                    success=result.success,
                    message_id=result.message_id,
                    error=result.error,
                    sent_at=result.sent_at,
                )
            crud.add_audit_log(
                db,
                actor_type="system",
                actor_id=None,
                action=f"pipeline.{outcome}",
                entity_type="pipeline",
                entity_id=session.session_id,
                payload={
                    "owner_id": session.owner_id,
                    "role": session.target_role,
                    "location": session.target_location,
                    "jobs": len(session.job_candidates),
                    "sent": sum(1 for result in session.send_results if result.success),
                    "failed": sum(1 for result in session.send_results if not result.success),
                    "error": session.error,
                },
            )
            db.commit()
        return len(session.send_results)
