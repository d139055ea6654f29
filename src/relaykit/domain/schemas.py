"""Pydantic v2 schemas for API request/response validation and the LLM draft contract."""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Create a user together with their first workspace."""

    email: str
    password: str = Field(min_length=8)
    name: str
    workspace_name: str
    trade: str = "general_contractor"


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    is_active: bool


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse
    workspace_id: str | None = None
    role: str | None = None


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


class WorkspaceSettingsUpdate(BaseModel):
    tax_rate_percent: float | None = Field(default=None, ge=0)
    markup_percent: float | None = Field(default=None, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)


class WorkspaceSettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workspace_id: str
    tax_rate_percent: float = 0
    markup_percent: float = 0
    hourly_rate: float = 0


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = None
    phone: str | None = None
    address: str | None = None


class CustomerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class LineItemIn(BaseModel):
    """A ``line_item`` child supplied on job create/update."""

    title: str = ""
    description: str = ""
    unit: str = ""
    unit_price: float = 0
    quantity: float = 0


class JobCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    customer_id: str | None = None
    client_name: str | None = None
    description_md: str | None = None
    due_date: date | None = None
    line_items: list[LineItemIn] = Field(default_factory=list)


class JobUpdate(BaseModel):
    """Partial job update. Supplying ``line_items`` replaces every existing line item."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    customer_id: str | None = None
    client_name: str | None = None
    description_md: str | None = None
    due_date: date | None = None
    line_items: list[LineItemIn] | None = None


class JobItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    content_json: dict[str, Any] | None = None
    order_index: int


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    customer_id: str | None = None
    title: str
    client_name: str | None = None
    description_md: str | None = None
    due_date: date | None = None
    status: str
    error_message: str | None = None
    estimated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items: list[JobItemResponse] = Field(default_factory=list)


class AiOutputResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    ai_json: dict[str, Any]
    created_at: datetime


class EstimateQueueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    workspace_id: str
    status: str
    attempts: int
    max_attempts: int
    error_message: str | None = None
    locked_at: datetime | None = None


# ---------------------------------------------------------------------------
# Templates / packages / invites
# ---------------------------------------------------------------------------


class TemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    template_items_json: list[dict[str, Any]] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    template_items_json: list[dict[str, Any]] | None = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    name: str
    description: str | None = None
    template_items_json: list[dict[str, Any]] | None = None


class InviteCreate(BaseModel):
    email: str
    role: str = "member"


class InviteAccept(BaseModel):
    token: str


class MemberResponse(BaseModel):
    user_id: str
    role: str
    created_at: datetime | None = None
    user_email: str | None = None


class MemberRoleUpdate(BaseModel):
    role: str


class TrialRedeem(BaseModel):
    token: str = ""


# ---------------------------------------------------------------------------
# Uploads / internal
# ---------------------------------------------------------------------------


class SignedUploadRequest(BaseModel):
    job_id: str
    filename: str
    content_type: str = "image/jpeg"


class SignedUploadResponse(BaseModel):
    upload_url: str
    storage_path: str
    expires_in: int


class UploadRecordRequest(BaseModel):
    job_id: str
    storage_path: str
    mime_type: str | None = None
    kind: str = "image"


class WorkerRunRequest(BaseModel):
    job_id: str | None = None


class PdfRequest(BaseModel):
    job_id: str
    force: bool = False


# ---------------------------------------------------------------------------
# LLM draft contract
# ---------------------------------------------------------------------------


class _Draft(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def null_to_default(cls, v, info: ValidationInfo):
        """Models sometimes emit ``null`` for fields they have nothing for."""
        if v is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return v


class DraftClient(_Draft):
    customer_name: str = Field("", alias="customerName")
    customer_email: str = Field("", alias="customerEmail")
    address: str = ""
    phone: str = ""
    preferred_date: str = Field("", alias="preferredDate")


class DraftLabor(_Draft):
    task: str = ""
    hours: float = 0


class DraftMaterial(_Draft):
    item: str = ""
    qty: float = 0
    cost: float = 0


class DraftEstimate(_Draft):
    estimate_number: str = Field("", alias="estimateNumber")
    project: str = ""
    job_description: str = Field("", alias="jobDescription")
    job_notes: str = Field("", alias="jobNotes")
    labor: list[DraftLabor] = Field(default_factory=list)
    materials: list[DraftMaterial] = Field(default_factory=list)


class ImageAnalysis(_Draft):
    image_url: str = ""
    observations: str = ""


class DraftEstimateResponse(_Draft):
    """What the estimator model must return. Material costs are ignored."""

    client: DraftClient = Field(default_factory=DraftClient)
    estimate: DraftEstimate = Field(default_factory=DraftEstimate)
    image_analysis: list[ImageAnalysis] = Field(default_factory=list)
