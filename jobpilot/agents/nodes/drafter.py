from typing import Callable

from jobpilot.agents.nodes.contacts import retained_jobs
from jobpilot.agents.state import EmailDraft, PipelineSession
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, StageFatalError
from jobpilot.core.logging import get_logger
from jobpilot.services.writing import ApplicationWriter

logger = get_logger(__name__)

Log = Callable[[str], None]


def make_node(writer: ApplicationWriter) -> Callable[[PipelineSession, list[EmailDraft], Log], list[EmailDraft]]:
    def drafter_node(session: PipelineSession, drafts: list[EmailDraft], log: Log) -> list[EmailDraft]:
        jobs = {job.job_id: job for job in retained_jobs(session)}
        completed: list[EmailDraft] = []
        for draft in drafts:
            job = jobs[draft.job_id]
            # Drafts without a contact are still written so the reviewer can add an address.
            try:
                text = writer.draft_email(session.candidate_profile, job, draft.hr_email or "the hiring team")
            except ExternalServiceError as exc:
                if exc.kind == ServiceErrorKind.AUTH:
                    raise StageFatalError(
                        f"Email drafting rejected the LLM credentials: {exc.detail}",
                        partial=completed + drafts[len(completed):],
                    ) from exc
                completed.append(draft.model_copy(update={"error": draft.error or f"Drafting failed: {exc.detail}"}))
                log(f"⚠️ Could not draft the email for {job.company}")
                continue
            except Exception as exc:
                logger.exception("Email drafting failed", extra={"extra": {"job_id": draft.job_id}})
                completed.append(draft.model_copy(update={"error": draft.error or f"Drafting failed: {exc}"}))
                log(f"⚠️ Could not draft the email for {job.company}")
                continue

            completed.append(draft.model_copy(update={"subject": text["subject"], "body": text["body"]}))
            log(f"📧 Drafted email for {job.company} to {draft.hr_email or 'an unknown contact'}")
        return completed

    return drafter_node
