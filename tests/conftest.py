"""Shared test infrastructure for the RelayKit test suite.

Provides:
- session_factory / db_session: async SQLite database (one file per test) with all tables
- test_settings: Settings with a fake Gemini key and short timeouts
- storage: LocalStorageProvider rooted in tmp_path
- fake_agent: EstimateAgent stand-in returning a canned draft
- make_workspace / make_job / make_pricing / make_catalog: row factories
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from relaykit.infra.database import Base
import relaykit.domain.models  # noqa: F401

from relaykit.agents.base import AgentResult
from relaykit.app.config import Settings
from relaykit.domain.models import (
    CatalogMaterial,
    Customer,
    Job,
    JobItem,
    Workspace,
    WorkspacePricingMaterial,
    WorkspaceSettings,
    utcnow,
)
from relaykit.domain.schemas import DraftEstimateResponse
from relaykit.infra.storage import LocalStorageProvider
from relaykit.services.catalog_matcher import normalize


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a fresh SQLite file.

    A file (rather than ``:memory:``) gives every session its own
    connection, so concurrent claims really race on SQLite's write lock.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Settings / collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings():
    return Settings(
        gemini_api_key="test-key",
        estimate_model="gemini-test",
        pricing_lookup_timeout_seconds=1.0,
        storage_timeout_seconds=1.0,
        generation_lock_ttl_seconds=600,
        estimate_queue_max_attempts=3,
        estimate_queue_lease_seconds=900,
    )


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(
        base_dir=str(tmp_path / "storage"),
        secret="test-secret",
        public_base_url="http://test",
    )


def draft_payload(labor=None, materials=None, **estimate) -> dict:
    """A draft as the model would return it (camelCase keys)."""
    return {
        "client": {"customerName": "Dana Client", "customerEmail": "dana@example.com"},
        "estimate": {
            "project": estimate.get("project", "Bathroom refresh"),
            "jobDescription": estimate.get("jobDescription", "Replace supply lines"),
            "jobNotes": estimate.get("jobNotes", ""),
            "labor": labor if labor is not None else [{"task": "Install", "hours": 2}],
            "materials": materials if materials is not None else [
                {"item": "PVC pipe", "qty": 3, "cost": 999}
            ],
        },
        "image_analysis": [],
    }


class FakeEstimateAgent:
    """Records every draft request and replays a canned result."""

    def __init__(self, result: AgentResult | None = None):
        self.result = result or AgentResult.success(
            DraftEstimateResponse.model_validate(draft_payload())
        )
        self.calls: list[dict] = []

    def respond_with(self, payload: dict) -> None:
        self.result = AgentResult.success(DraftEstimateResponse.model_validate(payload))

    async def draft(self, system_prompt, user_text, images=None):
        self.calls.append({"system_prompt": system_prompt, "user_text": user_text, "images": images or []})
        return self.result


@pytest.fixture
def fake_agent():
    return FakeEstimateAgent()


@pytest.fixture
def make_draft():
    return draft_payload


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_workspace(session_factory):
    """Factory for Workspace + WorkspaceSettings.

    Usage:
        ws = await make_workspace(hourly_rate=50, markup_percent=10, tax_rate_percent=8)
    """
    async def _factory(
        trade: str = "plumbing",
        subscription_status: str = "active",
        trial_ends_at=None,
        hourly_rate: float = 0,
        markup_percent: float = 0,
        tax_rate_percent: float = 0,
        with_settings: bool = True,
    ) -> Workspace:
        async with session_factory() as db:
            ws = Workspace(
                name="Acme Plumbing",
                trade=trade,
                subscription_status=subscription_status,
                trial_ends_at=trial_ends_at,
            )
            db.add(ws)
            await db.flush()
            if with_settings:
                db.add(WorkspaceSettings(
                    workspace_id=ws.id,
                    hourly_rate=hourly_rate,
                    markup_percent=markup_percent,
                    tax_rate_percent=tax_rate_percent,
                ))
            await db.commit()
            await db.refresh(ws)
            return ws

    return _factory


@pytest.fixture
def make_customer(session_factory):
    async def _factory(workspace_id: str, name: str = "Dana Client") -> Customer:
        async with session_factory() as db:
            customer = Customer(workspace_id=workspace_id, name=name)
            db.add(customer)
            await db.commit()
            await db.refresh(customer)
            return customer

    return _factory


@pytest.fixture
def make_job(session_factory):
    """Factory for Job rows with optional line items."""
    async def _factory(
        workspace_id: str,
        title: str = "Kitchen sink leak",
        status: str = "draft",
        customer_id: str | None = None,
        line_items: list[dict] | None = None,
        generation_started_at=None,
    ) -> Job:
        async with session_factory() as db:
            job = Job(
                workspace_id=workspace_id,
                customer_id=customer_id,
                title=title,
                client_name="Dana Client",
                description_md="Leaking supply line under the sink",
                status=status,
                generation_started_at=generation_started_at,
            )
            db.add(job)
            await db.flush()
            for index, item in enumerate(line_items or []):
                db.add(JobItem(
                    job_id=job.id,
                    type="line_item",
                    title=item.get("title", ""),
                    content_json={k: v for k, v in item.items() if k != "title"},
                    order_index=index,
                ))
            await db.commit()
            await db.refresh(job)
            return job

    return _factory


@pytest.fixture
def make_pricing(session_factory):
    """Factory for workspace (or customer, when ``customer_id`` is set) price rows."""
    async def _factory(
        workspace_id: str,
        description: str,
        unit_cost: float,
        trade: str = "plumbing",
        customer_id: str | None = None,
        normalized_key: str | None = None,
    ) -> WorkspacePricingMaterial:
        async with session_factory() as db:
            row = WorkspacePricingMaterial(
                workspace_id=workspace_id,
                customer_id=customer_id,
                trade=trade,
                description=description,
                normalized_key=normalized_key if normalized_key is not None else normalize(description),
                unit_cost=unit_cost,
            )
            db.add(row)
            await db.commit()
            return row

    return _factory


@pytest.fixture
def make_catalog(session_factory):
    async def _factory(
        item_key: str,
        unit_price: float,
        trade: str = "plumbing",
        description: str | None = None,
        aliases: str | None = None,
    ) -> CatalogMaterial:
        async with session_factory() as db:
            row = CatalogMaterial(
                trade=trade,
                item_key=item_key,
                description=description,
                aliases=aliases,
                unit_price=unit_price,
            )
            db.add(row)
            await db.commit()
            return row

    return _factory


@pytest.fixture
def expired_trial():
    return utcnow() - timedelta(days=1)
