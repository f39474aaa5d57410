from typing import Callable

from jobpilot.agents.state import CVResult, PipelineSession
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, StageFatalError
from jobpilot.core.logging import get_logger
from jobpilot.services.renderer import DocumentBatchRenderer
from jobpilot.services.writing import ApplicationWriter, score_cv

logger = get_logger(__name__)

Log = Callable[[str], None]


def make_node(
    writer: ApplicationWriter,
    renderer: DocumentBatchRenderer | None = None,
) -> Callable[[PipelineSession, Log], list[CVResult]]:
    def tailor_node(session: PipelineSession, log: Log) -> list[CVResult]:
        results: list[CVResult] = []
        total = len(session.job_candidates)
        for idx, job in enumerate(session.job_candidates, start=1):
            log(f"📄 Tailoring CV {idx}/{total} for {job.title} at {job.company}")
            base = CVResult(job_id=job.job_id, company=job.company, job_title=job.title)
            try:
                cv = writer.tailor_cv(session.candidate_profile, job)
                ats, matched, missing, suggestions = score_cv(cv, job)
            except ExternalServiceError as exc:
                if exc.kind == ServiceErrorKind.AUTH:
                    raise StageFatalError(f"CV tailoring rejected the LLM credentials: {exc.detail}", partial=results) from exc
                results.append(base.model_copy(update={"error": exc.detail}))
                log(f"⚠️ CV for {job.company} failed: {exc.detail}")
                continue
            except Exception as exc:
                logger.exception("CV tailoring failed", extra={"extra": {"job_id": job.job_id}})
                results.append(base.model_copy(update={"error": str(exc) or exc.__class__.__name__}))
                log(f"⚠️ CV for {job.company} failed: {exc}")
                continue

            results.append(
                base.model_copy(
                    update={
                        "cv": cv,
                        "ats_score": ats,
                        "matched_keywords": matched,
                        "missing_keywords": missing,
                        "suggestions": suggestions,
                    }
                )
            )
            log(f"✅ CV ready for {job.company} (ATS {ats.overall})")

        usable = sum(1 for result in results if result.usable)
        if renderer is not None and usable:
            log(f"📄 Rendering {usable} PDF documents")
            results = renderer.render_batch(results, owner_id=session.owner_id)
            rendered = sum(1 for result in results if result.has_document)
            if rendered < usable:
                log(f"⚠️ Rendered {rendered} of {usable} PDFs; the rest can still be reviewed as text")
            else:
                log(f"✅ Rendered {rendered} PDFs")
        return results

    return tailor_node
