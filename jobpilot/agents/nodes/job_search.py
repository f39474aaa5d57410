from typing import Callable

from jobpilot.agents.state import JobCandidate, PipelineSession
from jobpilot.core.errors import ExternalServiceError, StageFatalError
from jobpilot.services.job_search import JobSearchProvider

Log = Callable[[str], None]


def make_node(provider: JobSearchProvider) -> Callable[[PipelineSession, Log], list[JobCandidate]]:
    def job_search_node(session: PipelineSession, log: Log) -> list[JobCandidate]:
        log(f"🔍 Searching for {session.target_role} jobs in {session.target_location}")
        try:
            found = provider.search(session.target_role, session.target_location, session.max_items)
        except ExternalServiceError as exc:
            raise StageFatalError(f"Job search failed ({exc.kind.value}): {exc.detail}") from exc

        jobs: list[JobCandidate] = []
        seen: set[str] = set()
        for job in found:
            if job.job_id in seen:
                continue
            seen.add(job.job_id)
            jobs.append(job)
        jobs = jobs[: session.max_items]

        if jobs:
            companies = ", ".join(job.company for job in jobs)
            log(f"✅ Found {len(jobs)} jobs: {companies}")
        return jobs

    return job_search_node
