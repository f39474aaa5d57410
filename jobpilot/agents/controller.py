"""Pipeline state machine.

waiting_profile -> searching -> generating_cvs -> cv_review -> finding_emails
-> email_review -> sending -> done, with error reachable from any active
state and cancelled from either review state. Public operations validate
and flip state synchronously; the stages themselves run on the runner and
commit their results through compare-and-set transitions tagged with the
session id, so work belonging to a reset run is discarded.
"""

import re
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from jobpilot.agents.approval_gate import ApprovalGate
from jobpilot.agents.nodes import contacts, drafter, job_search, sender, tailor
from jobpilot.agents.session_store import SessionStore
from jobpilot.agents.state import ApprovalRecord, DraftEdit, EmailDraft, PipelineSession
from jobpilot.core.config import Settings
from jobpilot.core.enums import REVIEW_STATES, ApprovalResolution, ApprovalType, PipelineState, VerifyResult
from jobpilot.core.errors import (
    DocumentNotFoundError,
    InputValidationError,
    InvalidTransitionError,
    SessionBusyError,
    SessionNotFoundError,
    StageFatalError,
    StaleSessionError,
)
from jobpilot.core.logging import get_logger
from jobpilot.core.quota import get_quota_limiter
from jobpilot.services.email_discovery import EmailDiscoveryService, HunterClient
from jobpilot.services.history import HistoryRecorder
from jobpilot.services.job_search import build_job_search_provider
from jobpilot.services.mailer import build_email_sender
from jobpilot.services.renderer import DocumentBatchRenderer, build_render_engine
from jobpilot.services.writing import ApplicationWriter, build_llm_provider
from jobpilot.workers.runner import BackgroundRunner

logger = get_logger(__name__)

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")

# Field that receives a failing stage's partial output.
PARTIAL_FIELDS = {
    PipelineState.SEARCHING: "job_candidates",
    PipelineState.GENERATING_CVS: "cv_results",
    PipelineState.FINDING_EMAILS: "email_drafts",
    PipelineState.SENDING: "send_results",
}


class Runner(Protocol):
    def submit(self, name: str, task: Callable[[], None]) -> Any: ...


class PipelineController:
    def __init__(
        self,
        *,
        store: SessionStore,
        gate: ApprovalGate,
        runner: Runner,
        search_node: Callable,
        tailor_node: Callable,
        contacts_node: Callable,
        drafter_node: Callable,
        sender_node: Callable,
        history: HistoryRecorder | None = None,
        max_items_limit: int = 10,
        default_max_items: int = 5,
    ) -> None:
        self.store = store
        self.gate = gate
        self.runner = runner
        self.search_node = search_node
        self.tailor_node = tailor_node
        self.contacts_node = contacts_node
        self.drafter_node = drafter_node
        self.sender_node = sender_node
        self.history = history
        self.max_items_limit = max_items_limit
        self.default_max_items = default_max_items

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        runner: Runner | None = None,
        history: HistoryRecorder | None = None,
    ) -> "PipelineController":
        writer = ApplicationWriter(build_llm_provider(settings))
        hunter = HunterClient.from_settings(settings, quota=get_quota_limiter())
        renderer = DocumentBatchRenderer(build_render_engine(settings), settings.generated_cv_dir)
        return cls(
            store=SessionStore(activity_limit=settings.activity_log_limit),
            gate=ApprovalGate(
                {
                    ApprovalType.CV_REVIEW: settings.cv_review_ttl_minutes,
                    ApprovalType.EMAIL_SEND: settings.email_review_ttl_minutes,
                }
            ),
            runner=runner or BackgroundRunner(max_workers=settings.background_workers),
            search_node=job_search.make_node(build_job_search_provider(settings)),
            tailor_node=tailor.make_node(writer, renderer),
            contacts_node=contacts.make_node(
                EmailDiscoveryService(hunter),
                writer,
                allow_estimates=settings.allow_estimated_contacts,
            ),
            drafter_node=drafter.make_node(writer),
            sender_node=sender.make_node(build_email_sender(settings)),
            history=history,
            max_items_limit=settings.max_jobs_limit,
            default_max_items=settings.default_max_jobs,
        )

    # Public operations

    def start(
        self,
        owner_id: str,
        profile: dict[str, Any] | None,
        role: str | None,
        location: str | None,
        max_items: int | None = None,
    ) -> PipelineSession:
        if not profile:
            raise InputValidationError("Upload a résumé profile before starting the pipeline")
        role = (role or "").strip()
        location = (location or "").strip()
        if not role:
            raise InputValidationError("role is required")
        if not location:
            raise InputValidationError("location is required")
        if max_items is None:
            max_items = self.default_max_items
        if max_items < 1:
            raise InputValidationError("max_items must be at least 1")
        max_items = min(max_items, self.max_items_limit)

        self._expire_if_due(owner_id)
        session = PipelineSession(
            owner_id=owner_id,
            candidate_profile=profile,
            target_role=role,
            target_location=location,
            max_items=max_items,
        )
        created = self.store.create(session, advance_to=PipelineState.SEARCHING)
        logger.info(
            "Pipeline started",
            extra={"extra": {"owner_id": owner_id, "session_id": created.session_id, "role": role}},
        )
        self.runner.submit("search", lambda: self._run_search(owner_id, created.session_id))
        return self.store.get(owner_id, created.session_id)

    def status(self, owner_id: str, session_id: str | None = None) -> PipelineSession:
        self._expire_if_due(owner_id)
        return self.store.get(owner_id, session_id)

    def approve_cv_review(
        self,
        owner_id: str,
        session_id: str,
        approval_id: str,
        keep_job_ids: list[str] | None = None,
    ) -> PipelineSession:
        self._raise_if_expired(owner_id)
        decided: list[ApprovalRecord] = []

        def apply(session: PipelineSession) -> None:
            self.gate.pending(session, approval_id, ApprovalType.CV_REVIEW)
            known = {result.job_id for result in session.cv_results}
            if keep_job_ids is not None:
                unknown = sorted(set(keep_job_ids) - known)
                if unknown:
                    raise InputValidationError(f"Unknown job ids: {', '.join(unknown)}")
            kept = [
                result
                for result in session.cv_results
                if result.usable and (keep_job_ids is None or result.job_id in keep_job_ids)
            ]
            if not kept:
                raise InputValidationError("No usable CV selected; reject the pipeline or select at least one CV")
            modified = [result.model_dump(mode="json") for result in kept] if keep_job_ids is not None else None
            decided.append(
                self.gate.resolve(session, approval_id, ApprovalType.CV_REVIEW, ApprovalResolution.APPROVED, modified=modified)
            )
            session.cv_results = kept

        snapshot = self.store.transition(
            owner_id, session_id, PipelineState.CV_REVIEW, PipelineState.FINDING_EMAILS, apply
        )
        self._record_decision(snapshot, decided[0])
        self.store.log(owner_id, session_id, f"✅ Approved {len(snapshot.cv_results)} CVs; finding recruiting contacts")
        self.runner.submit("outreach", lambda: self._run_outreach(owner_id, session_id))
        return self.store.get(owner_id, session_id)

    def approve_email_send(
        self,
        owner_id: str,
        session_id: str,
        approval_id: str,
        edits: list[DraftEdit] | None = None,
    ) -> PipelineSession:
        self._raise_if_expired(owner_id)
        decided: list[ApprovalRecord] = []

        def apply(session: PipelineSession) -> None:
            self.gate.pending(session, approval_id, ApprovalType.EMAIL_SEND)
            drafts = apply_draft_edits(session.email_drafts, edits or [])
            if not any(draft.sendable for draft in drafts):
                raise InputValidationError("No draft has an address, subject and body; edit a draft or reject")
            modified = [draft.model_dump(mode="json") for draft in drafts] if edits else None
            decided.append(
                self.gate.resolve(session, approval_id, ApprovalType.EMAIL_SEND, ApprovalResolution.APPROVED, modified=modified)
            )
            session.email_drafts = drafts

        snapshot = self.store.transition(owner_id, session_id, PipelineState.EMAIL_REVIEW, PipelineState.SENDING, apply)
        self._record_decision(snapshot, decided[0])
        sendable = sum(1 for draft in snapshot.email_drafts if draft.sendable)
        self.store.log(owner_id, session_id, f"✅ Approved {sendable} emails; sending")
        self.runner.submit("send", lambda: self._run_send(owner_id, session_id))
        return self.store.get(owner_id, session_id)

    def reject(self, owner_id: str, session_id: str, approval_id: str) -> PipelineSession:
        self._raise_if_expired(owner_id)
        decided: list[ApprovalRecord] = []

        def apply(session: PipelineSession) -> None:
            record = self.gate.pending(session, approval_id)
            decided.append(self.gate.resolve(session, approval_id, record.approval_type, ApprovalResolution.REJECTED))
            if record.approval_type == ApprovalType.CV_REVIEW:
                session.cv_results = []
            else:
                session.email_drafts = []

        snapshot = self.store.transition(owner_id, session_id, REVIEW_STATES, PipelineState.CANCELLED, apply)
        self._record_decision(snapshot, decided[0])
        stage = "CV review" if decided[0].approval_type == ApprovalType.CV_REVIEW else "email review"
        self.store.log(owner_id, session_id, f"⚠️ Rejected at {stage}; pipeline cancelled")
        return self.store.get(owner_id, session_id)

    def reset(self, owner_id: str) -> bool:
        dropped = self.store.reset(owner_id)
        if dropped:
            logger.info("Pipeline reset", extra={"extra": {"owner_id": owner_id}})
        return dropped

    def document_path(self, owner_id: str, job_id: str) -> Path:
        session = self.store.get(owner_id)
        for result in session.cv_results:
            if result.job_id == job_id and result.document_path:
                path = Path(result.document_path)
                if path.is_file():
                    return path
        raise DocumentNotFoundError(f"No rendered document for job {job_id}")

    # Background stages

    def _run_search(self, owner_id: str, session_id: str) -> None:
        def work(session: PipelineSession, log: Callable[[str], None]) -> None:
            jobs = self.search_node(session, log)
            if not jobs:
                message = f"No jobs found for {session.target_role} in {session.target_location}"

                def no_jobs(current: PipelineSession) -> None:
                    current.error = message
                    current.error_recoverable = True

                self.store.transition(
                    owner_id, session_id, PipelineState.SEARCHING, PipelineState.ERROR, no_jobs, background=True
                )
                log(f"❌ {message}; try a broader role or location")
                return

            def keep_jobs(current: PipelineSession) -> None:
                current.job_candidates = jobs

            advanced = self.store.transition(
                owner_id, session_id, PipelineState.SEARCHING, PipelineState.GENERATING_CVS, keep_jobs, background=True
            )
            self._tailor(advanced, log)

        self._run_stage(owner_id, session_id, PipelineState.SEARCHING, work)

    def _tailor(self, session: PipelineSession, log: Callable[[str], None]) -> None:
        results = self.tailor_node(session, log)

        def open_review(current: PipelineSession) -> None:
            current.cv_results = results
            self.gate.open(current, ApprovalType.CV_REVIEW, [result.model_dump(mode="json") for result in results])

        self.store.transition(
            session.owner_id,
            session.session_id,
            PipelineState.GENERATING_CVS,
            PipelineState.CV_REVIEW,
            open_review,
            background=True,
        )
        usable = sum(1 for result in results if result.usable)
        log(f"⏸️ {usable} of {len(results)} CVs ready for review")

    def _run_outreach(self, owner_id: str, session_id: str) -> None:
        def work(session: PipelineSession, log: Callable[[str], None]) -> None:
            drafts = self.contacts_node(session, log)
            drafts = self.drafter_node(session, drafts, log)

            def open_review(current: PipelineSession) -> None:
                current.email_drafts = drafts
                self.gate.open(current, ApprovalType.EMAIL_SEND, [draft.model_dump(mode="json") for draft in drafts])

            self.store.transition(
                owner_id, session_id, PipelineState.FINDING_EMAILS, PipelineState.EMAIL_REVIEW, open_review, background=True
            )
            sendable = sum(1 for draft in drafts if draft.sendable)
            log(f"⏸️ {sendable} of {len(drafts)} emails ready for review")

        self._run_stage(owner_id, session_id, PipelineState.FINDING_EMAILS, work)

    def _run_send(self, owner_id: str, session_id: str) -> None:
        def work(session: PipelineSession, log: Callable[[str], None]) -> None:
            results = self.sender_node(session, log)

            def finish(current: PipelineSession) -> None:
                current.send_results = results

            done = self.store.transition(
                owner_id, session_id, PipelineState.SENDING, PipelineState.DONE, finish, background=True
            )
            sent = sum(1 for result in results if result.success)
            log(f"✅ Done: sent {sent} of {len(results)} applications")
            self._persist_history(done)

        self._run_stage(owner_id, session_id, PipelineState.SENDING, work)

    def _run_stage(
        self,
        owner_id: str,
        session_id: str,
        stage: PipelineState,
        work: Callable[[PipelineSession, Callable[[str], None]], None],
    ) -> None:
        def log(message: str) -> None:
            self.store.log(owner_id, session_id, message)

        current = stage
        try:
            session = self.store.get(owner_id, session_id)
            current = session.state
            work(session, log)
        except (StaleSessionError, SessionNotFoundError):
            logger.info("Discarded stage output for a reset pipeline", extra={"extra": {"session_id": session_id}})
        except StageFatalError as exc:
            self._fail(owner_id, session_id, exc, partial=exc.partial)
        except Exception as exc:
            logger.exception("Pipeline stage crashed", extra={"extra": {"session_id": session_id, "stage": current.value}})
            self._fail(owner_id, session_id, exc)

    def _fail(self, owner_id: str, session_id: str, exc: Exception, *, partial: list | None = None) -> None:
        message = str(exc) or exc.__class__.__name__
        failed_in: list[PipelineState] = []

        def mark_failed(session: PipelineSession) -> None:
            failed_in.append(session.state)
            field = PARTIAL_FIELDS.get(session.state)
            if partial is not None and field:
                setattr(session, field, partial)
            session.error = message
            session.error_recoverable = False

        try:
            failed = self.store.transition(
                owner_id,
                session_id,
                PARTIAL_FIELDS.keys(),
                PipelineState.ERROR,
                mark_failed,
                background=True,
            )
        except StaleSessionError:
            logger.info("Discarded failure of a reset pipeline", extra={"extra": {"session_id": session_id}})
            return
        except InvalidTransitionError:
            logger.error("Stage failed after leaving its state", extra={"extra": {"session_id": session_id, "error": message}})
            return
        self.store.log(owner_id, session_id, f"❌ Pipeline failed during {failed_in[0].value}: {message}")
        if failed_in[0] == PipelineState.SENDING and failed.send_results:
            # Emails delivered before the failure are recorded like a finished run.
            self._persist_history(failed, outcome="failed")

    # Expiry and history

    def _expire_if_due(self, owner_id: str) -> bool:
        session = self.store.peek(owner_id)
        if session is None or session.state not in REVIEW_STATES or not self.gate.is_expired(session):
            return False
        expired: list[ApprovalRecord] = []

        def expire(current: PipelineSession) -> None:
            record = self.gate.expire(current)
            if record is not None:
                expired.append(record)
            current.error = "The review window expired; the pipeline was cancelled"

        try:
            snapshot = self.store.transition(
                owner_id, session.session_id, session.state, PipelineState.CANCELLED, expire
            )
        except (InvalidTransitionError, SessionBusyError, SessionNotFoundError):
            # Another request resolved the gate first.
            return False
        if expired:
            self._record_decision(snapshot, expired[0])
        self.store.log(owner_id, session.session_id, "⚠️ Review window expired; pipeline cancelled")
        return True

    def _raise_if_expired(self, owner_id: str) -> None:
        if self._expire_if_due(owner_id):
            raise InvalidTransitionError("The review window expired and the pipeline was cancelled; start a new run")

    def _record_decision(self, session: PipelineSession, record: ApprovalRecord) -> None:
        if self.history is None:
            return
        try:
            self.history.record_decision(session, record)
        except SQLAlchemyError as exc:
            logger.error("Could not record approval decision", extra={"extra": {"error": str(exc)}})

    def _persist_history(self, session: PipelineSession, *, outcome: str = "completed") -> None:
        if self.history is None:
            return
        try:
            rows = self.history.record_run(session, outcome=outcome)
        except SQLAlchemyError as exc:
            logger.error("Could not persist application history", extra={"extra": {"error": str(exc)}})
            self.store.log(session.owner_id, session.session_id, "⚠️ Could not save the application history")
            return

        def mark(current: PipelineSession) -> None:
            current.history_persisted = True

        try:
            self.store.mutate(session.owner_id, session.session_id, mark, background=True)
        except StaleSessionError:
            return
        logger.info("Application history saved", extra={"extra": {"session_id": session.session_id, "rows": rows}})


def apply_draft_edits(drafts: list[EmailDraft], edits: list[DraftEdit]) -> list[EmailDraft]:
    """Apply reviewer edits; only the address, subject and body may change."""
    by_job = {draft.job_id: draft for draft in drafts}
    updated = dict(by_job)
    for edit in edits:
        draft = by_job.get(edit.job_id)
        if draft is None:
            raise InputValidationError(f"Unknown job id in edits: {edit.job_id}")
        changes: dict[str, Any] = {}
        if edit.subject is not None:
            changes["subject"] = edit.subject.strip()
        if edit.body is not None:
            changes["body"] = edit.body.strip()
        if edit.hr_email is not None:
            address = edit.hr_email.strip()
            if not EMAIL_RE.match(address):
                raise InputValidationError(f"Invalid email address for {draft.company}: {address!r}")
            if address.lower() != (draft.hr_email or "").lower():
                changes.update(hr_email=address, email_verified=False, email_verify_result=VerifyResult.UNKNOWN)
        edited = draft.model_copy(update=changes)
        if changes and edited.error and edited.hr_email and edited.subject and edited.body:
            # A reviewer who completes the draft resolves its missing contact or failed drafting.
            edited = edited.model_copy(update={"error": None})
        updated[edit.job_id] = edited
    return [updated[draft.job_id] for draft in drafts]
