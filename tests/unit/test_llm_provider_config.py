import httpx
import pytest

from jobpilot.core.config import Settings
from jobpilot.core.errors import ExternalServiceError, ServiceErrorKind
from jobpilot.services.writing import MockLLMProvider, OpenAICompatibleLLMProvider, build_llm_provider


@pytest.mark.parametrize(
    ("overrides", "base_url"),
    [
        ({"llm_provider": "openai", "llm_base_url": "https://llm.internal/v1/"}, "https://llm.internal/v1"),
        ({"llm_provider": "groq", "llm_base_url": "https://api.openai.com/v1"}, "https://api.groq.com/openai/v1"),
    ],
)
def test_hosted_providers_resolve_base_url(overrides, base_url):
    provider = build_llm_provider(Settings(llm_api_key="dummy-key", **overrides))

    assert isinstance(provider, OpenAICompatibleLLMProvider)
    assert provider.base_url == base_url


def test_mock_is_the_default_provider():
    assert isinstance(build_llm_provider(Settings(llm_provider=" Mock ")), MockLLMProvider)


def test_hosted_provider_requires_a_key():
    with pytest.raises(ValueError):
        build_llm_provider(Settings(llm_provider="openai", llm_api_key=""))


def test_api_key_pasted_as_provider_name_is_not_echoed():
    pasted = "gsk_example_secret_value"
    with pytest.raises(ValueError) as exc:
        build_llm_provider(Settings(llm_provider=pasted, llm_api_key=""))

    assert "API key" in str(exc.value)
    assert pasted not in str(exc.value)


def _provider(handler):
    return OpenAICompatibleLLMProvider(
        api_key="k",
        model="m",
        base_url="https://llm.test/v1",
        temperature=0.2,
        max_tokens=100,
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


def test_openai_compatible_provider_returns_message_content():
    def handler(request):
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer k"
        return httpx.Response(200, json={"choices": [{"message": {"content": "  hello  "}}]})

    assert _provider(handler).generate("prompt") == "hello"


@pytest.mark.parametrize(
    ("status_code", "kind"),
    [(401, ServiceErrorKind.AUTH), (429, ServiceErrorKind.QUOTA), (500, ServiceErrorKind.UNKNOWN)],
)
def test_openai_compatible_provider_types_http_failures(status_code, kind):
    provider = _provider(lambda request: httpx.Response(status_code, text="failure"))
    with pytest.raises(ExternalServiceError) as exc:
        provider.generate("prompt")
    assert exc.value.kind == kind


def test_openai_compatible_provider_types_connection_failures():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalServiceError) as exc:
        _provider(handler).generate("prompt")
    assert exc.value.kind == ServiceErrorKind.CONNECTION
