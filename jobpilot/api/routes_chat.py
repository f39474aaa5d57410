from fastapi import APIRouter, Depends, HTTPException

from jobpilot.api.deps import get_chat_client, require_owner
from jobpilot.api.schemas import ChatRequest
from jobpilot.services.local_chat import ChatErrorKind, ChatReply, ChatServiceError, ChatStatus, LocalChatClient

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("/local", response_model=ChatReply)
def local_chat(
    payload: ChatRequest,
    owner_id: str = Depends(require_owner),
    client: LocalChatClient = Depends(get_chat_client),
) -> ChatReply:
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="message is required")
    try:
        return client.chat(payload.message, payload.history, payload.model)
    except ChatServiceError as exc:
        status_code = 503 if exc.kind == ChatErrorKind.CONNECTION else 502
        raise HTTPException(status_code=status_code, detail={"kind": exc.kind.value, "message": str(exc)}) from exc


@router.get("/local/status", response_model=ChatStatus)
def local_chat_status(
    owner_id: str = Depends(require_owner),
    client: LocalChatClient = Depends(get_chat_client),
) -> ChatStatus:
    return client.status()
