from fastapi import APIRouter

from jobpilot.api.schemas import LoginRequest, LoginResponse
from jobpilot.core.security import create_session_token, validate_login_api_key

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest) -> LoginResponse:
    validate_login_api_key(payload.api_key)
    owner_id = payload.owner_id.strip() or "local-user"
    return LoginResponse(token=create_session_token(owner_id), owner_id=owner_id)
