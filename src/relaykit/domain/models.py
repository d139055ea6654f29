"""SQLAlchemy ORM models for RelayKit.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for structured data (no JSONB)
- DateTime for timestamps, stored as naive UTC
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from relaykit.infra.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp with microseconds (SQLite stores no tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Auth / Workspaces
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user for authentication."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    last_login_at = Column(DateTime, nullable=True)

    memberships = relationship("WorkspaceMember", back_populates="user")


class Workspace(Base):
    """Tenant that owns jobs, customers, price lists and prompts."""

    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    trade = Column(String(30), nullable=False, default="general_contractor")
    default_ai_reference_config_id = Column(String(36), nullable=True)
    subscription_status = Column(String(20), nullable=False, default="trialing")
    trial_ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    members = relationship("WorkspaceMember", back_populates="workspace")


class WorkspaceMember(Base):
    """A user's membership (and role) in a workspace."""

    __tablename__ = "workspace_members"
    __table_args__ = (UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="member")  # owner, admin, member
    created_at = Column(DateTime, default=func.now())

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="memberships")


class WorkspaceSettings(Base):
    """Per-workspace pricing knobs applied to every estimate."""

    __tablename__ = "workspace_settings"

    workspace_id = Column(String(36), ForeignKey("workspaces.id"), primary_key=True)
    tax_rate_percent = Column(Float, nullable=False, default=0)
    markup_percent = Column(Float, nullable=False, default=0)
    hourly_rate = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


class Invite(Base):
    """Pending invitation to join a workspace. Only the token hash is stored."""

    __tablename__ = "invites"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="member")
    token_hash = Column(String(64), nullable=False, unique=True)
    invited_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    accepted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())


class TrialLink(Base):
    """Single-use link that starts a trial for a workspace. Only the token hash is stored."""

    __tablename__ = "trial_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="active")  # active, redeemed, expired
    created_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    expires_at = Column(DateTime, nullable=False)
    redeemed_at = Column(DateTime, nullable=True)
    redeemed_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=func.now())


class Customer(Base):
    """A contractor's client. Drives customer-tier prices and prompts."""

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class Job(Base):
    """A unit of estimating work owned by a workspace."""

    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    title = Column(String(200), nullable=False)
    client_name = Column(String(200), nullable=True)
    description_md = Column(Text, nullable=True)
    due_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="draft", index=True)
    error_message = Column(Text, nullable=True)
    estimated_at = Column(DateTime, nullable=True)
    # Running-generation marker; see services.estimate_orchestrator
    generation_started_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    items = relationship(
        "JobItem",
        back_populates="job",
        order_by="JobItem.order_index",
        cascade="all, delete-orphan",
    )
    files = relationship("JobFile", back_populates="job", cascade="all, delete-orphan")


class JobItem(Base):
    """Ordered child of a job (line item, note, link, file, checklist)."""

    __tablename__ = "job_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False, default="line_item")
    title = Column(String(200), nullable=False, default="")
    content_json = Column(JSON, default=dict)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())

    job = relationship("Job", back_populates="items")


class JobFile(Base):
    """A stored photo or generated PDF."""

    __tablename__ = "job_files"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    kind = Column(String(10), nullable=False, default="image")  # image, pdf
    storage_path = Column(String(500), nullable=False)
    mime_type = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    job = relationship("Job", back_populates="files")


class AiOutput(Base):
    """One generated estimate (``ai_json``). Append-only; never updated."""

    __tablename__ = "ai_outputs"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    ai_json = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)


class EstimateQueueEntry(Base):
    """Durable work item for background estimate generation."""

    __tablename__ = "estimate_queue"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, index=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    status = Column(String(10), nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    error_message = Column(Text, nullable=True)
    locked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Package(Base):
    """Public share page for a job's estimate."""

    __tablename__ = "packages"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id"), nullable=False, unique=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False)
    public_slug = Column(String(100), nullable=False, unique=True, index=True)
    is_public = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class Template(Base):
    """Reusable job skeleton (items to pre-populate a new job)."""

    __tablename__ = "templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(String(500), nullable=True)
    template_items_json = Column(JSON, default=list)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------


class WorkspacePricingMaterial(Base):
    """Workspace price list row; with ``customer_id`` set it is a customer override."""

    __tablename__ = "workspace_pricing_materials"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    trade = Column(String(30), nullable=False)
    description = Column(String(500), nullable=False)
    normalized_key = Column(String(500), nullable=False, index=True)
    unit = Column(String(50), nullable=True)
    unit_cost = Column(Float, nullable=False)
    source = Column(String(30), nullable=False, default="manual")
    created_at = Column(DateTime, default=func.now())


class CatalogMaterial(Base):
    """Global master price list, indexed by trade."""

    __tablename__ = "catalog_materials"

    id = Column(String(36), primary_key=True, default=_uuid)
    trade = Column(String(30), nullable=False, index=True)
    item_key = Column(String(500), nullable=False)
    description = Column(String(500), nullable=True)
    category = Column(String(100), nullable=True)
    sku = Column(String(100), nullable=True)
    unit = Column(String(50), nullable=True)
    unit_price = Column(Float, nullable=False)
    aliases = Column(Text, nullable=True)  # separated by , ; or |
    created_at = Column(DateTime, default=func.now())


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------


class AiReferenceConfig(Base):
    """Workspace (or customer) specific estimator system prompt."""

    __tablename__ = "ai_reference_configs"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True)
    trade = Column(String(30), nullable=True)
    name = Column(String(200), nullable=False)
    system_prompt = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, default=func.now())


class PromptTemplate(Base):
    """Versioned built-in system prompt per trade."""

    __tablename__ = "prompt_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    trade = Column(String(30), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    system_prompt = Column(Text, nullable=False)
    active = Column(Boolean, default=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=utcnow)
