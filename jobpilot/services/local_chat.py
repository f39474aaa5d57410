from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, Field

from jobpilot.core.config import Settings
from jobpilot.core.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a helpful, intelligent AI assistant running locally. "
    "You can help with any topic: coding, writing, math, analysis, or general questions. "
    "Be concise, accurate, and friendly. Use markdown formatting when it helps clarity."
)
NO_REPLY = "No response from model."


class ChatErrorKind(str, Enum):
    CONNECTION = "connection"
    MODEL_NOT_FOUND = "model_not_found"
    UNKNOWN = "unknown"


class ChatServiceError(Exception):
    def __init__(self, kind: ChatErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ChatTurn(BaseModel):
    role: str = "user"
    content: str = ""


class ChatReply(BaseModel):
    reply: str
    model: str


class ChatStatus(BaseModel):
    running: bool
    active_model: str
    available_models: list[str] = Field(default_factory=list)
    error: str | None = None


def connection_error(base_url: str) -> ChatServiceError:
    return ChatServiceError(
        ChatErrorKind.CONNECTION,
        f"Cannot connect to the local model server at {base_url}. Run \"ollama serve\" in a terminal.",
    )


def model_not_found_error(model: str) -> ChatServiceError:
    return ChatServiceError(
        ChatErrorKind.MODEL_NOT_FOUND,
        f"Model '{model}' not found. Run \"ollama list\" to see available models, then select the correct one.",
    )


def build_messages(message: str, history: list[ChatTurn | dict[str, Any]], max_turns: int) -> list[dict[str, str]]:
    turns = [turn if isinstance(turn, ChatTurn) else ChatTurn(**turn) for turn in history]
    recent = turns[-max_turns:] if max_turns > 0 else []
    messages = [{"role": "system", "content": SYSTEM_PROMPT}]
    for turn in recent:
        role = "assistant" if turn.role == "bot" else (turn.role or "user")
        messages.append({"role": role, "content": turn.content or ""})
    messages.append({"role": "user", "content": message.strip()})
    return messages


class LocalChatClient:
    """Chat proxy to a local OpenAI-compatible model server (Ollama's /v1 endpoint)."""

    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        timeout_seconds: float = 120,
        max_turns: int = 20,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.max_turns = max_turns
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalChatClient":
        return cls(
            base_url=settings.ollama_base_url,
            default_model=settings.ollama_model,
            timeout_seconds=settings.ollama_timeout_seconds,
            max_turns=settings.chat_history_turns,
        )

    def _client(self) -> httpx.Client:
        # Ollama ignores the key but OpenAI-compatible servers expect the header.
        return httpx.Client(
            timeout=self.timeout_seconds,
            transport=self.transport,
            headers={"Authorization": "Bearer ollama"},
        )

    def chat(self, message: str, history: list[ChatTurn | dict[str, Any]] | None = None, model: str | None = None) -> ChatReply:
        if not message or not message.strip():
            raise ValueError("message is required")
        selected = model or self.default_model
        payload = {
            "model": selected,
            "messages": build_messages(message, history or [], self.max_turns),
            "temperature": 0.7,
            "max_tokens": 2048,
        }
        try:
            with self._client() as client:
                response = client.post(f"{self.base_url}/chat/completions", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
            raise connection_error(self.base_url) from exc
        except httpx.HTTPError as exc:
            raise ChatServiceError(ChatErrorKind.UNKNOWN, str(exc) or exc.__class__.__name__) from exc

        if response.status_code == 404:
            raise model_not_found_error(selected)
        if response.status_code >= 400:
            detail = response.text[:300]
            if "model" in detail.lower() and "not found" in detail.lower():
                raise model_not_found_error(selected)
            raise ChatServiceError(ChatErrorKind.UNKNOWN, f"Chat request failed ({response.status_code}): {detail}")

        data = response.json()
        content = (data.get("choices") or [{}])[0].get("message", {}).get("content") or NO_REPLY
        return ChatReply(reply=str(content), model=selected)

    def status(self) -> ChatStatus:
        try:
            with self._client() as client:
                response = client.get(f"{self.base_url}/models")
            response.raise_for_status()
            models = [str(entry.get("id")) for entry in response.json().get("data") or [] if entry.get("id")]
        except (httpx.HTTPError, ValueError) as exc:
            logger.info("Local model server unreachable", extra={"extra": {"error": str(exc)}})
            return ChatStatus(
                running=False,
                active_model=self.default_model,
                error="Local model server not reachable. Run \"ollama serve\".",
            )
        return ChatStatus(running=True, active_model=self.default_model, available_models=models)
