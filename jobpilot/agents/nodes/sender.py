from typing import Callable

from jobpilot.agents.state import PipelineSession, SendResult
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, StageFatalError
from jobpilot.core.logging import get_logger
from jobpilot.services.mailer import EmailSender, OutgoingEmail

logger = get_logger(__name__)

Log = Callable[[str], None]


def make_node(sender: EmailSender) -> Callable[[PipelineSession, Log], list[SendResult]]:
    def sender_node(session: PipelineSession, log: Log) -> list[SendResult]:
        documents = {cv.job_id: cv.document_path for cv in session.cv_results}
        results: list[SendResult] = []
        for draft in session.email_drafts:
            if not draft.sendable:
                log(f"⚠️ Skipping {draft.company}: {draft.error or 'missing address, subject or body'}")
                continue

            row = SendResult(
                job_id=draft.job_id,
                company=draft.company,
                job_title=draft.job_title,
                hr_email=draft.hr_email or "",
                subject=draft.subject or "",
                success=False,
            )
            email = OutgoingEmail(
                to=draft.hr_email or "",
                subject=draft.subject or "",
                body=draft.body or "",
                attachment=documents.get(draft.job_id),
                sender_name=session.candidate_name,
                company=draft.company,
            )
            try:
                sent = sender.send(email)
            except ExternalServiceError as exc:
                results.append(row.model_copy(update={"error": exc.detail}))
                if exc.kind == ServiceErrorKind.AUTH:
                    raise StageFatalError(f"Email sender rejected the credentials: {exc.detail}", partial=results) from exc
                log(f"❌ Failed to send to {draft.hr_email} ({draft.company}): {exc.detail}")
                continue
            except Exception as exc:
                logger.exception("Send failed", extra={"extra": {"job_id": draft.job_id}})
                results.append(row.model_copy(update={"error": str(exc) or exc.__class__.__name__}))
                log(f"❌ Failed to send to {draft.hr_email} ({draft.company}): {exc}")
                continue

            results.append(row.model_copy(update={"success": True, "message_id": sent.message_id}))
            log(f"✅ Sent application to {draft.hr_email} ({draft.company})")
        return results

    return sender_node
