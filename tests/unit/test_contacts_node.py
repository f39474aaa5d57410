import httpx
import pytest

from jobpilot.agents.nodes import contacts
from jobpilot.agents.state import CVResult, JobCandidate, PipelineSession
from jobpilot.core.enums import EmailSource, VerifyResult
from jobpilot.core.errors import StageFatalError
from jobpilot.core.quota import QuotaLimiter
from jobpilot.services.email_discovery import EmailDiscoveryService, HunterClient
from jobpilot.services.writing import ApplicationWriter, LLMProvider, MockLLMProvider

ESTIMATE = '{"emails": [{"email": "Jobs@Acme.com", "confidence": 60}]}'


class ScriptedLLM(LLMProvider):
    def __init__(self, reply):
        self.reply = reply
        self.prompts = []

    def generate(self, prompt, *, system=None):
        self.prompts.append(prompt)
        return self.reply


def _session(*companies):
    jobs = [
        JobCandidate(
            job_id=f"job_{idx}",
            title="Python Developer",
            company=name,
            company_url=f"https://{name.lower()}.com",
        )
        for idx, name in enumerate(companies, start=1)
    ]
    cvs = [CVResult(job_id=job.job_id, company=job.company, job_title=job.title, cv={}) for job in jobs]
    return PipelineSession(owner_id="owner-1", job_candidates=jobs, cv_results=cvs)


def _transport(calls, *, rejected=(), unreachable=False):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.url.path.endswith("/domain-search"):
            domain = request.url.params["domain"]
            if domain in rejected:
                return httpx.Response(401, json={"errors": [{"details": "invalid api key"}]})
            emails = [{"value": f"hr@{domain}", "confidence": 80, "department": "hr"}]
            return httpx.Response(200, json={"data": {"emails": emails}})
        return httpx.Response(200, json={"data": {"result": "deliverable"}})

    return httpx.MockTransport(handler)


def _discovery(calls, **kwargs):
    quota = kwargs.pop("quota", None)
    search_quota = kwargs.pop("search_quota", 25)
    client = HunterClient(api_key="k", transport=_transport(calls, **kwargs), quota=quota, search_quota=search_quota)
    return client, EmailDiscoveryService(client)


def test_discovered_address_is_used_and_verified():
    calls = []
    _, discovery = _discovery(calls)
    llm = ScriptedLLM(ESTIMATE)
    node = contacts.make_node(discovery, writer=ApplicationWriter(llm))
    log = []

    drafts = node(_session("Acme"), log.append)

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.hr_email == "hr@acme.com"
    assert draft.email_source == EmailSource.DISCOVERY_SERVICE
    assert draft.email_verified is True
    assert draft.email_verify_result == VerifyResult.DELIVERABLE
    assert draft.error is None
    assert llm.prompts == []
    assert calls == ["/v2/domain-search", "/v2/email-verifier"]


def test_exhausted_search_quota_falls_back_to_llm_estimate():
    calls = []
    client, discovery = _discovery(calls, quota=QuotaLimiter(use_redis=False), search_quota=1)
    client.domain_search("elsewhere.com")
    calls.clear()
    node = contacts.make_node(discovery, writer=ApplicationWriter(ScriptedLLM(ESTIMATE)))
    log = []

    drafts = node(_session("Acme"), log.append)

    draft = drafts[0]
    assert draft.hr_email == "jobs@acme.com"
    assert draft.email_source == EmailSource.LLM_ESTIMATE
    assert draft.email_verified is False
    assert draft.email_verify_result == VerifyResult.UNKNOWN
    assert draft.error is None
    assert calls == []
    assert any("failed (quota)" in line for line in log)


def test_unreachable_discovery_falls_back_to_llm_estimate():
    _, discovery = _discovery([], unreachable=True)
    node = contacts.make_node(discovery, writer=ApplicationWriter(ScriptedLLM(ESTIMATE)))

    drafts = node(_session("Acme"), lambda line: None)

    assert drafts[0].hr_email == "jobs@acme.com"
    assert drafts[0].email_source == EmailSource.LLM_ESTIMATE


def test_estimates_disabled_leaves_the_draft_without_contact():
    llm = ScriptedLLM(ESTIMATE)
    _, discovery = _discovery([], unreachable=True)
    node = contacts.make_node(discovery, writer=ApplicationWriter(llm), allow_estimates=False)

    drafts = node(_session("Acme"), lambda line: None)

    draft = drafts[0]
    assert draft.hr_email is None
    assert draft.email_source == EmailSource.NONE
    assert draft.error == "No recruiting contact found for Acme (lookup_failed)"
    assert draft.sendable is False
    assert llm.prompts == []


def test_unconfigured_discovery_and_empty_estimate_report_the_reason():
    calls = []
    discovery = EmailDiscoveryService(HunterClient(api_key="", transport=_transport(calls)))
    node = contacts.make_node(discovery, writer=ApplicationWriter(MockLLMProvider()))

    drafts = node(_session("Acme"), lambda line: None)

    assert drafts[0].hr_email is None
    assert drafts[0].email_source == EmailSource.NONE
    assert drafts[0].error == "No recruiting contact found for Acme (not_configured)"
    assert calls == []


def test_rejected_api_key_stops_the_stage_with_earlier_drafts():
    _, discovery = _discovery([], rejected={"globex.com"})
    node = contacts.make_node(discovery, writer=ApplicationWriter(ScriptedLLM(ESTIMATE)))

    with pytest.raises(StageFatalError) as exc:
        node(_session("Acme", "Globex", "Initech"), lambda line: None)

    assert "rejected the API key" in str(exc.value)
    assert [draft.company for draft in exc.value.partial] == ["Acme"]
    assert exc.value.partial[0].hr_email == "hr@acme.com"
