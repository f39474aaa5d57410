from typing import Callable

from jobpilot.agents.state import EmailDraft, JobCandidate, PipelineSession
from jobpilot.core.enums import EmailSource, VerifyResult
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, StageFatalError
from jobpilot.services.email_discovery import EmailDiscoveryService
from jobpilot.services.writing import ApplicationWriter

Log = Callable[[str], None]


def retained_jobs(session: PipelineSession) -> list[JobCandidate]:
    """Jobs whose CV survived the review gate, in review order."""
    by_id = {job.job_id: job for job in session.job_candidates}
    return [
        by_id.get(cv.job_id) or JobCandidate(job_id=cv.job_id, title=cv.job_title, company=cv.company)
        for cv in session.cv_results
    ]


def make_node(
    discovery: EmailDiscoveryService,
    writer: ApplicationWriter | None = None,
    *,
    allow_estimates: bool = True,
) -> Callable[[PipelineSession, Log], list[EmailDraft]]:
    def estimate(job: JobCandidate, drafts: list[EmailDraft]) -> str | None:
        if writer is None or not allow_estimates:
            return None
        try:
            return writer.estimate_contact(job.company, job)
        except ExternalServiceError as exc:
            if exc.kind == ServiceErrorKind.AUTH:
                raise StageFatalError(f"Contact estimation rejected the LLM credentials: {exc.detail}", partial=drafts) from exc
            return None

    def contacts_node(session: PipelineSession, log: Log) -> list[EmailDraft]:
        drafts: list[EmailDraft] = []
        for job in retained_jobs(session):
            log(f"🔍 Looking up a recruiting contact at {job.company}")
            draft = EmailDraft(job_id=job.job_id, company=job.company, job_title=job.title)

            result = None
            try:
                result = discovery.find_contact(job.company, job.company_url or None)
            except ExternalServiceError as exc:
                if exc.kind == ServiceErrorKind.AUTH:
                    raise StageFatalError(f"Email discovery rejected the API key: {exc.detail}", partial=drafts) from exc
                log(f"⚠️ Contact lookup for {job.company} failed ({exc.kind.value})")

            if result is not None and result.found:
                drafts.append(
                    draft.model_copy(
                        update={
                            "hr_email": result.email,
                            "email_source": EmailSource.DISCOVERY_SERVICE,
                            "email_verified": result.verified,
                            "email_verify_result": result.verify_result,
                            "alternatives": result.alternatives,
                        }
                    )
                )
                log(f"📧 Found {result.email} at {job.company} ({result.verify_result.value})")
                continue

            guess = estimate(job, drafts)
            if guess:
                drafts.append(
                    draft.model_copy(
                        update={
                            "hr_email": guess,
                            "email_source": EmailSource.LLM_ESTIMATE,
                            "email_verified": False,
                            "email_verify_result": VerifyResult.UNKNOWN,
                        }
                    )
                )
                log(f"⚠️ Using estimated address {guess} for {job.company} (unverified)")
                continue

            reason = result.reason.value if result is not None and result.reason else "lookup_failed"
            drafts.append(draft.model_copy(update={"error": f"No recruiting contact found for {job.company} ({reason})"}))
            log(f"⚠️ No recruiting contact found for {job.company}")
        return drafts

    return contacts_node
