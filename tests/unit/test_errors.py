import httpx
import pytest

from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind, classify_exception, kind_for_status


@pytest.mark.parametrize(
    ("status_code", "kind"),
    [
        (401, ServiceErrorKind.AUTH),
        (403, ServiceErrorKind.AUTH),
        (404, ServiceErrorKind.NOT_FOUND),
        (429, ServiceErrorKind.QUOTA),
        (502, ServiceErrorKind.UNKNOWN),
    ],
)
def test_kind_for_status(status_code, kind):
    assert kind_for_status(status_code) == kind


def test_typed_transport_errors_win_over_message():
    request = httpx.Request("GET", "https://api.test")
    error = classify_exception("hunter", httpx.ConnectError("quota exceeded", request=request))
    assert error.kind == ServiceErrorKind.CONNECTION

    timeout = classify_exception("hunter", httpx.ReadTimeout("slow", request=request))
    assert timeout.kind == ServiceErrorKind.CONNECTION


def test_status_errors_use_the_response_code():
    request = httpx.Request("GET", "https://api.test")
    response = httpx.Response(429, request=request, text="slow down")
    error = classify_exception("llm", httpx.HTTPStatusError("429", request=request, response=response))

    assert error.kind == ServiceErrorKind.QUOTA
    assert error.status_code == 429


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("connect ECONNREFUSED 127.0.0.1:11434", ServiceErrorKind.CONNECTION),
        ("Monthly quota reached", ServiceErrorKind.QUOTA),
        ("model llama9 not found", ServiceErrorKind.NOT_FOUND),
        ("something odd", ServiceErrorKind.UNKNOWN),
    ],
)
def test_opaque_errors_fall_back_to_message(message, kind):
    assert classify_exception("svc", RuntimeError(message)).kind == kind


def test_existing_typed_errors_pass_through():
    original = ExternalServiceError("smtp", ServiceErrorKind.AUTH, "login rejected")
    assert classify_exception("smtp", original) is original
