from functools import lru_cache

from fastapi import Header, HTTPException, status

from jobpilot.agents.controller import PipelineController
from jobpilot.core.config import get_settings
from jobpilot.core.errors import (
    ApprovalMismatchError,
    DocumentNotFoundError,
    InputValidationError,
    InvalidTransitionError,
    PipelineError,
    SessionBusyError,
    SessionNotFoundError,
)
from jobpilot.core.security import verify_session_token
from jobpilot.db.session import get_session_factory, init_db
from jobpilot.services.history import HistoryRecorder
from jobpilot.services.local_chat import LocalChatClient
from jobpilot.services.profile_store import ProfileStore

ERROR_STATUS: list[tuple[type[PipelineError], int]] = [
    (InputValidationError, status.HTTP_400_BAD_REQUEST),
    (SessionNotFoundError, status.HTTP_404_NOT_FOUND),
    (DocumentNotFoundError, status.HTTP_404_NOT_FOUND),
    (SessionBusyError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ApprovalMismatchError, status.HTTP_409_CONFLICT),
]


def http_error(exc: PipelineError) -> HTTPException:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            detail = "busy" if isinstance(exc, SessionBusyError) else str(exc)
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def require_owner(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1]
    owner_id = verify_session_token(token)
    if not owner_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session token")
    return owner_id


@lru_cache(maxsize=1)
def get_controller() -> PipelineController:
    settings = get_settings()
    init_db()
    return PipelineController.from_settings(settings, history=HistoryRecorder(get_session_factory()))


@lru_cache(maxsize=1)
def get_profile_store() -> ProfileStore:
    return ProfileStore()


@lru_cache(maxsize=1)
def get_chat_client() -> LocalChatClient:
    return LocalChatClient.from_settings(get_settings())
