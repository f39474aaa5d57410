"""Exception hierarchy shared by the pipeline, its collaborators and the API layer."""

from enum import Enum

import httpx


class ServiceErrorKind(str, Enum):
    CONNECTION = "connection"
    NOT_FOUND = "not_found"
    QUOTA = "quota"
    AUTH = "auth"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """Base class for every error raised by the pipeline core."""


class InputValidationError(PipelineError):
    pass


class SessionNotFoundError(PipelineError):
    pass


class DocumentNotFoundError(PipelineError):
    pass


class SessionBusyError(PipelineError):
    def __init__(self, message: str = "busy") -> None:
        super().__init__(message)


class InvalidTransitionError(PipelineError):
    pass


class ApprovalMismatchError(PipelineError):
    pass


class StageFatalError(PipelineError):
    """Aborts the running stage; ``partial`` holds the items finished before the failure."""

    def __init__(self, message: str, partial: list | None = None) -> None:
        super().__init__(message)
        self.partial = partial


class StaleSessionError(PipelineError):
    """Raised when background work writes to a session that was reset or replaced."""


class ExternalServiceError(PipelineError):
    def __init__(self, service: str, kind: ServiceErrorKind, message: str, status_code: int | None = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.kind = kind
        self.status_code = status_code
        self.detail = message


def kind_for_status(status_code: int) -> ServiceErrorKind:
    if status_code in {401, 403}:
        return ServiceErrorKind.AUTH
    if status_code == 404:
        return ServiceErrorKind.NOT_FOUND
    if status_code == 429:
        return ServiceErrorKind.QUOTA
    return ServiceErrorKind.UNKNOWN


def _kind_from_message(message: str) -> ServiceErrorKind:
    lowered = message.lower()
    if "econnrefused" in lowered or "connection refused" in lowered or "connection error" in lowered:
        return ServiceErrorKind.CONNECTION
    if "quota" in lowered or "rate limit" in lowered or "too many requests" in lowered:
        return ServiceErrorKind.QUOTA
    if "not found" in lowered:
        return ServiceErrorKind.NOT_FOUND
    if "unauthorized" in lowered or "invalid api key" in lowered:
        return ServiceErrorKind.AUTH
    return ServiceErrorKind.UNKNOWN


def classify_exception(service: str, exc: Exception) -> ExternalServiceError:
    """Map a transport or upstream exception onto a typed ExternalServiceError.

    Typed information (httpx exception classes, HTTP status codes) wins. The
    message is only inspected for opaque upstream errors.
    """
    if isinstance(exc, ExternalServiceError):
        return exc
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return ExternalServiceError(service, ServiceErrorKind.CONNECTION, str(exc) or "connection failed")
    if isinstance(exc, httpx.TimeoutException):
        return ExternalServiceError(service, ServiceErrorKind.CONNECTION, str(exc) or "request timed out")
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        return ExternalServiceError(service, kind_for_status(status_code), exc.response.text[:300], status_code)
    if isinstance(exc, ConnectionError):
        return ExternalServiceError(service, ServiceErrorKind.CONNECTION, str(exc) or "connection failed")
    message = str(exc) or exc.__class__.__name__
    return ExternalServiceError(service, _kind_from_message(message), message)
