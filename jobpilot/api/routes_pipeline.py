from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import FileResponse

from jobpilot.agents.controller import PipelineController
from jobpilot.api.deps import get_controller, get_profile_store, http_error, require_owner
from jobpilot.api.schemas import (
    ApproveCvsRequest,
    ApproveEmailsRequest,
    PipelineStartRequest,
    PipelineStatusResponse,
    ProfileResponse,
    RejectRequest,
    ResetResponse,
)
from jobpilot.core.config import get_settings
from jobpilot.core.errors import InputValidationError, PipelineError
from jobpilot.services.profile_parser import parse_profile_pdf
from jobpilot.services.profile_store import ProfileStore

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.post("/profile", response_model=ProfileResponse)
async def upload_profile(
    file: UploadFile = File(...),
    owner_id: str = Depends(require_owner),
    profiles: ProfileStore = Depends(get_profile_store),
) -> ProfileResponse:
    settings = get_settings()
    try:
        filename = file.filename or ""
        if not filename.lower().endswith(".pdf") and file.content_type != "application/pdf":
            raise InputValidationError("Only PDF files are supported")
        data = await file.read(settings.max_upload_bytes + 1)
        if len(data) > settings.max_upload_bytes:
            raise InputValidationError(f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB limit")
        profile = parse_profile_pdf(data, filename=filename)
    except PipelineError as exc:
        raise http_error(exc) from exc

    saved = profiles.save(owner_id, profile)
    return ProfileResponse(profile=saved, sections=saved["resume_source"]["section_names"])


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    owner_id: str = Depends(require_owner),
    profiles: ProfileStore = Depends(get_profile_store),
) -> ProfileResponse:
    profile = profiles.get(owner_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="No profile uploaded yet")
    return ProfileResponse(profile=profile, sections=(profile.get("resume_source") or {}).get("section_names", []))


@router.post("/start", response_model=PipelineStatusResponse, status_code=202)
def start_pipeline(
    payload: PipelineStartRequest,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
    profiles: ProfileStore = Depends(get_profile_store),
) -> PipelineStatusResponse:
    profile = payload.profile or profiles.get(owner_id)
    location = payload.location or get_settings().default_location
    try:
        session = controller.start(owner_id, profile, payload.role, location, payload.max_items)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return PipelineStatusResponse.from_session(session)


@router.get("/status/{pipeline_id}", response_model=PipelineStatusResponse)
def pipeline_status(
    pipeline_id: str,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> PipelineStatusResponse:
    try:
        session = controller.status(owner_id, pipeline_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return PipelineStatusResponse.from_session(session)


@router.post("/approve-cvs", response_model=PipelineStatusResponse)
def approve_cvs(
    payload: ApproveCvsRequest,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> PipelineStatusResponse:
    try:
        session = controller.approve_cv_review(owner_id, payload.pipeline_id, payload.approval_id, payload.keep_job_ids)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return PipelineStatusResponse.from_session(session)


@router.post("/approve-emails", response_model=PipelineStatusResponse)
def approve_emails(
    payload: ApproveEmailsRequest,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> PipelineStatusResponse:
    try:
        session = controller.approve_email_send(owner_id, payload.pipeline_id, payload.approval_id, payload.edits)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return PipelineStatusResponse.from_session(session)


@router.post("/reject", response_model=PipelineStatusResponse)
def reject(
    payload: RejectRequest,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> PipelineStatusResponse:
    try:
        session = controller.reject(owner_id, payload.pipeline_id, payload.approval_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return PipelineStatusResponse.from_session(session)


@router.post("/reset", response_model=ResetResponse)
def reset(
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> ResetResponse:
    return ResetResponse(reset=controller.reset(owner_id))


@router.get("/documents/{job_id}")
def download_document(
    job_id: str,
    owner_id: str = Depends(require_owner),
    controller: PipelineController = Depends(get_controller),
) -> FileResponse:
    try:
        path = controller.document_path(owner_id, job_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return FileResponse(path, media_type="application/pdf", filename=path.name)
