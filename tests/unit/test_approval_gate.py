from datetime import timedelta

import pytest

from jobpilot.agents.approval_gate import ApprovalGate
from jobpilot.agents.state import PipelineSession, utcnow
from jobpilot.core.enums import ApprovalResolution, ApprovalType
from jobpilot.core.errors import ApprovalMismatchError


def _gate():
    return ApprovalGate({ApprovalType.CV_REVIEW: 240, ApprovalType.EMAIL_SEND: 120})


def test_open_sets_expiry_from_type_ttl():
    session = PipelineSession(owner_id="o")
    now = utcnow()

    record = _gate().open(session, ApprovalType.EMAIL_SEND, [{"job_id": "j1"}], now=now)

    assert session.pending_approval is record
    assert record.resolution == ApprovalResolution.PENDING
    assert record.expires_at == now + timedelta(minutes=120)


def test_only_one_pending_approval():
    gate = _gate()
    session = PipelineSession(owner_id="o")
    gate.open(session, ApprovalType.CV_REVIEW, [])

    with pytest.raises(ApprovalMismatchError):
        gate.open(session, ApprovalType.EMAIL_SEND, [])


def test_resolve_validates_id_and_type():
    gate = _gate()
    session = PipelineSession(owner_id="o")
    record = gate.open(session, ApprovalType.CV_REVIEW, [{"job_id": "j1"}])

    with pytest.raises(ApprovalMismatchError):
        gate.resolve(session, "approval_wrong", ApprovalType.CV_REVIEW, ApprovalResolution.APPROVED)
    with pytest.raises(ApprovalMismatchError):
        gate.resolve(session, record.approval_id, ApprovalType.EMAIL_SEND, ApprovalResolution.APPROVED)

    resolved = gate.resolve(
        session,
        record.approval_id,
        ApprovalType.CV_REVIEW,
        ApprovalResolution.APPROVED,
        modified=[{"job_id": "j1", "kept": True}],
    )

    assert session.pending_approval is None
    assert session.resolved_approvals == [resolved]
    assert resolved.content_original == [{"job_id": "j1"}]
    assert resolved.content_modified == [{"job_id": "j1", "kept": True}]
    assert resolved.resolved_at is not None


def test_expiry():
    gate = _gate()
    session = PipelineSession(owner_id="o")
    now = utcnow()
    gate.open(session, ApprovalType.CV_REVIEW, [], now=now)

    assert gate.is_expired(session, now=now + timedelta(minutes=239)) is False
    assert gate.is_expired(session, now=now + timedelta(minutes=240)) is True

    record = gate.expire(session)
    assert record.resolution == ApprovalResolution.EXPIRED
    assert session.pending_approval is None


def test_gate_without_ttl_never_expires():
    gate = ApprovalGate()
    session = PipelineSession(owner_id="o")
    record = gate.open(session, ApprovalType.CV_REVIEW, [])

    assert record.expires_at is None
    assert gate.is_expired(session, now=utcnow() + timedelta(days=365)) is False
