import httpx
import pytest
from fastapi.testclient import TestClient

from jobpilot.agents.approval_gate import ApprovalGate
from jobpilot.agents.controller import PipelineController
from jobpilot.agents.nodes import contacts, drafter, job_search, sender, tailor
from jobpilot.agents.session_store import SessionStore
from jobpilot.api.deps import get_chat_client, get_controller, get_profile_store
from jobpilot.api.main import app
from jobpilot.core.config import get_settings
from jobpilot.services.email_discovery import EmailDiscoveryService, HunterClient
from jobpilot.services.job_search import MockJobSearchProvider
from jobpilot.services.local_chat import LocalChatClient
from jobpilot.services.mailer import MockEmailSender
from jobpilot.services.profile_store import ProfileStore
from jobpilot.services.writing import ApplicationWriter, MockLLMProvider
from jobpilot.workers.runner import InlineRunner

PROFILE = {
    "personal_info": {"name": "Alex Carter", "email": "alex@example.com"},
    "summary": "Backend engineer focused on Python services.",
    "skills": ["Python", "FastAPI", "SQL"],
    "experience": [],
}


class DeferredRunner(InlineRunner):
    """Queues stages so requests observe the in-flight state."""

    def __init__(self) -> None:
        super().__init__()
        self.queued = []

    def submit(self, name, task):
        self.ran.append(name)
        self.queued.append(task)


def _controller(runner, mail):
    writer = ApplicationWriter(MockLLMProvider())
    return PipelineController(
        store=SessionStore(),
        gate=ApprovalGate(),
        runner=runner,
        search_node=job_search.make_node(MockJobSearchProvider()),
        tailor_node=tailor.make_node(writer),
        contacts_node=contacts.make_node(EmailDiscoveryService(HunterClient(api_key="")), writer=None),
        drafter_node=drafter.make_node(writer),
        sender_node=sender.make_node(mail),
    )


@pytest.fixture
def mail():
    return MockEmailSender()


@pytest.fixture
def runner():
    return InlineRunner()


@pytest.fixture
def client(runner, mail):
    controller = _controller(runner, mail)
    profiles = ProfileStore()
    app.dependency_overrides[get_controller] = lambda: controller
    app.dependency_overrides[get_profile_store] = lambda: profiles
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def headers(client):
    response = client.post("/auth/login", json={"api_key": get_settings().local_api_key, "owner_id": "owner-1"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_healthz(client):
    assert client.get("/healthz").json()["status"] == "ok"


def test_login_rejects_wrong_key(client):
    response = client.post("/auth/login", json={"api_key": "definitely-wrong"})
    assert response.status_code == 401


def test_pipeline_routes_require_a_token(client):
    assert client.get("/pipeline/status/pipeline_x").status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.post("/pipeline/start", json={"role": "Dev"}, headers=bad).status_code == 401


def test_start_without_profile_is_bad_request(client, headers):
    response = client.post("/pipeline/start", json={"role": "Python Developer", "location": "Remote"}, headers=headers)
    assert response.status_code == 400


def test_profile_upload_rejects_non_pdf(client, headers):
    files = {"file": ("resume.txt", b"plain text resume", "text/plain")}
    response = client.post("/pipeline/profile", files=files, headers=headers)
    assert response.status_code == 400
    assert client.get("/pipeline/profile", headers=headers).status_code == 404


def test_full_flow_over_http(client, headers, mail):
    start = client.post(
        "/pipeline/start",
        json={"role": "Python Developer", "location": "Remote", "max_items": 2, "profile": PROFILE},
        headers=headers,
    )
    assert start.status_code == 202
    body = start.json()
    pipeline_id = body["pipeline_id"]
    assert body["state"] == "cv_review"
    assert len(body["cv_results"]) == 2

    status = client.get(f"/pipeline/status/{pipeline_id}", headers=headers).json()
    approval_id = status["pending_approval"]["approval_id"]
    assert status["activity_log"]

    approved = client.post(
        "/pipeline/approve-cvs",
        json={"pipeline_id": pipeline_id, "approval_id": approval_id},
        headers=headers,
    )
    assert approved.status_code == 200
    review = approved.json()
    assert review["state"] == "email_review"
    # No discovery key and no estimates: every draft waits for a reviewer-supplied address.
    assert all(draft["hr_email"] is None and draft["error"] for draft in review["email_drafts"])

    edits = [{"job_id": review["email_drafts"][0]["job_id"], "hr_email": "jobs@northwindlabs.com"}]
    done = client.post(
        "/pipeline/approve-emails",
        json={"pipeline_id": pipeline_id, "approval_id": review["pending_approval"]["approval_id"], "edits": edits},
        headers=headers,
    )
    assert done.status_code == 200
    assert done.json()["state"] == "done"
    assert [email.to for email in mail.outbox] == ["jobs@northwindlabs.com"]


def test_approve_with_stale_approval_id_conflicts(client, headers):
    start = client.post(
        "/pipeline/start",
        json={"role": "Python Developer", "location": "Remote", "max_items": 1, "profile": PROFILE},
        headers=headers,
    ).json()

    response = client.post(
        "/pipeline/approve-cvs",
        json={"pipeline_id": start["pipeline_id"], "approval_id": "approval_old"},
        headers=headers,
    )
    assert response.status_code == 409


def test_reject_then_reset(client, headers):
    start = client.post(
        "/pipeline/start",
        json={"role": "Python Developer", "location": "Remote", "max_items": 1, "profile": PROFILE},
        headers=headers,
    ).json()

    rejected = client.post(
        "/pipeline/reject",
        json={"pipeline_id": start["pipeline_id"], "approval_id": start["pending_approval"]["approval_id"]},
        headers=headers,
    )
    assert rejected.json()["state"] == "cancelled"

    assert client.post("/pipeline/reset", headers=headers).json() == {"reset": True}
    assert client.get(f"/pipeline/status/{start['pipeline_id']}", headers=headers).status_code == 404
    assert client.post("/pipeline/reset", headers=headers).json() == {"reset": False}


def test_unknown_pipeline_and_document_are_not_found(client, headers):
    assert client.get("/pipeline/status/pipeline_missing", headers=headers).status_code == 404
    client.post(
        "/pipeline/start",
        json={"role": "Python Developer", "location": "Remote", "max_items": 1, "profile": PROFILE},
        headers=headers,
    )
    assert client.get("/pipeline/documents/job_1", headers=headers).status_code == 404


@pytest.mark.parametrize("runner", [DeferredRunner()])
def test_second_start_while_searching_is_busy(client, headers, runner):
    payload = {"role": "Python Developer", "location": "Remote", "profile": PROFILE}
    first = client.post("/pipeline/start", json=payload, headers=headers)
    assert first.status_code == 202
    assert first.json()["state"] == "searching"

    second = client.post("/pipeline/start", json=payload, headers=headers)
    assert second.status_code == 409
    assert second.json()["detail"] == "busy"


def test_local_chat_maps_connection_failure_to_503(client, headers):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    chat = LocalChatClient(
        base_url="http://localhost:11434/v1",
        default_model="llama3:8b",
        transport=httpx.MockTransport(refuse),
    )
    app.dependency_overrides[get_chat_client] = lambda: chat

    response = client.post("/chat/local", json={"message": "hello"}, headers=headers)
    assert response.status_code == 503
    assert response.json()["detail"]["kind"] == "connection"

    status = client.get("/chat/local/status", headers=headers).json()
    assert status["running"] is False
    assert status["active_model"] == "llama3:8b"
