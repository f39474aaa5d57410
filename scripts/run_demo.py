import json
import logging
from pathlib import Path

from jobpilot.agents.controller import PipelineController
from jobpilot.agents.state import DraftEdit
from jobpilot.core.config import get_settings
from jobpilot.core.enums import PipelineState
from jobpilot.core.logging import setup_logging
from jobpilot.services.email_discovery import domain_from_company
from jobpilot.workers.runner import InlineRunner

DEMO_PROFILE = {
    "personal_info": {"name": "Demo Candidate", "email": "demo@example.com", "location": "Lahore, Pakistan"},
    "summary": "Backend engineer building Python APIs and data pipelines.",
    "skills": ["Python", "FastAPI", "PostgreSQL", "Docker", "AWS"],
    "experience": [
        {
            "title": "Software Engineer",
            "company": "Example Corp",
            "start_date": "2021",
            "end_date": "Present",
            "bullets": ["Built REST services handling 2M requests/day", "Cut deploy time by 40% with CI/CD"],
        }
    ],
    "education": [{"degree": "BS Computer Science", "school": "Example University", "year": "2021"}],
}


def main() -> None:
    setup_logging(logging.WARNING, json_format=False)
    settings = get_settings().model_copy(update={"render_engine": "reportlab"})
    controller = PipelineController.from_settings(settings, runner=InlineRunner())
    owner_id = "demo-user"

    profile_path = Path("data/profile.json")
    profile = json.loads(profile_path.read_text(encoding="utf-8")) if profile_path.exists() else DEMO_PROFILE

    session = controller.start(owner_id, profile, "Python Developer", settings.default_location, 3)
    if session.state != PipelineState.CV_REVIEW:
        raise SystemExit(f"Pipeline stopped in {session.state.value}: {session.error}")
    print(f"CV review: {len(session.cv_results)} CVs, approval={session.pending_approval.approval_id}")

    session = controller.approve_cv_review(owner_id, session.session_id, session.pending_approval.approval_id)
    if session.state != PipelineState.EMAIL_REVIEW:
        raise SystemExit(f"Pipeline stopped in {session.state.value}: {session.error}")
    for draft in session.email_drafts:
        print(f"Draft: {draft.company} -> {draft.hr_email} [{draft.email_source.value}] {draft.error or ''}")

    # Without discovery credentials the mock run has no contacts; address them to a placeholder inbox.
    edits = [
        DraftEdit(job_id=draft.job_id, hr_email=f"careers@{domain_from_company(draft.company) or 'example.com'}")
        for draft in session.email_drafts
        if not draft.hr_email
    ]
    session = controller.approve_email_send(owner_id, session.session_id, session.pending_approval.approval_id, edits)
    print(f"Final state: {session.state.value}")
    for result in session.send_results:
        print(f"Sent: {result.company} -> {result.hr_email} success={result.success} {result.error or ''}")
    for entry in session.activity_log:
        print(f"[{entry.category.value}] {entry.message}")


if __name__ == "__main__":
    main()
