"""Domain enumerations for RelayKit.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class Trade(str, Enum):
    """Trade a workspace, price list or prompt applies to."""

    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    GENERAL_CONTRACTOR = "general_contractor"


class SubscriptionStatus(str, Enum):
    """Billing state of a workspace."""

    ACTIVE = "active"
    TRIALING = "trialing"
    INACTIVE = "inactive"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


class MemberRole(str, Enum):
    """Role of a user inside a workspace."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class TrialLinkStatus(str, Enum):
    """State of a shareable trial link."""

    ACTIVE = "active"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class JobStatus(str, Enum):
    """Lifecycle of a job's estimate and PDF."""

    DRAFT = "draft"
    AI_PENDING = "ai_pending"
    AI_READY = "ai_ready"
    AI_ERROR = "ai_error"
    PDF_PENDING = "pdf_pending"
    COMPLETE = "complete"
    PDF_ERROR = "pdf_error"


class JobItemType(str, Enum):
    """Kind of child item attached to a job."""

    LINE_ITEM = "line_item"
    TEXT = "text"
    LINK = "link"
    FILE = "file"
    CHECKLIST = "checklist"


class JobFileKind(str, Enum):
    """Stored file attached to a job."""

    IMAGE = "image"
    PDF = "pdf"


class QueueStatus(str, Enum):
    """State of an estimate queue entry."""

    PENDING = "pending"
    RUNNING = "running"
    FAILED = "failed"


class PricingStatus(str, Enum):
    """Whether a material line received a server-side price."""

    MATCHED = "matched"
    MISSING = "missing"


class PricingSource(str, Enum):
    """Tier a material price was resolved from."""

    CUSTOMER = "customer"
    WORKSPACE = "workspace"
    CATALOG = "catalog"
    NONE = "none"


class MissingReason(str, Enum):
    """Why a material line has no price."""

    NO_MATCH = "no_match"
    LOW_CONFIDENCE = "low_confidence"
    TIMEOUT = "timeout"


class PromptSource(str, Enum):
    """Which layer supplied the estimator system prompt."""

    CUSTOMER_OVERRIDE = "customer_override"
    WORKSPACE_DEFAULT_ID = "workspace_default_id"
    WORKSPACE_DEFAULT_FLAG = "workspace_default_flag"
    TEMPLATE = "template"
    FALLBACK = "fallback"


class QueueRunOutcome(str, Enum):
    """Result of one queue-runner pass."""

    IDLE = "idle"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED = "failed"
    BUSY = "busy"


class SyncOperationStatus(str, Enum):
    """State of a client-side deferred operation."""

    PENDING = "pending"
    FAILED = "failed"
