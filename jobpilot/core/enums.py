from enum import Enum


class PipelineState(str, Enum):
    WAITING_PROFILE = "waiting_profile"
    SEARCHING = "searching"
    GENERATING_CVS = "generating_cvs"
    CV_REVIEW = "cv_review"
    FINDING_EMAILS = "finding_emails"
    EMAIL_REVIEW = "email_review"
    SENDING = "sending"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"


IN_FLIGHT_STATES = frozenset(
    {
        PipelineState.SEARCHING,
        PipelineState.GENERATING_CVS,
        PipelineState.FINDING_EMAILS,
        PipelineState.SENDING,
    }
)
REVIEW_STATES = frozenset({PipelineState.CV_REVIEW, PipelineState.EMAIL_REVIEW})


class ApprovalType(str, Enum):
    CV_REVIEW = "cv_review"
    EMAIL_SEND = "email_send"


class ApprovalResolution(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class EmailSource(str, Enum):
    DISCOVERY_SERVICE = "discovery-service"
    LLM_ESTIMATE = "llm-estimate"
    NONE = "none"


class VerifyResult(str, Enum):
    DELIVERABLE = "deliverable"
    RISKY = "risky"
    UNDELIVERABLE = "undeliverable"
    UNKNOWN = "unknown"


class NotFoundReason(str, Enum):
    NOT_CONFIGURED = "not_configured"
    INVALID_DOMAIN = "invalid_domain"
    NO_ADDRESSES = "no_addresses"
    ALL_UNDELIVERABLE = "all_undeliverable"


class ActivityCategory(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SEARCH = "search"
    EMAIL = "email"
    DOCUMENT = "document"
    APPROVAL = "approval"
