"""Tests for the layered estimator system-prompt resolution."""

from datetime import timedelta

from relaykit.agents.prompts.estimate import ESTIMATE_SYSTEM_PROMPT
from relaykit.domain.enums import PromptSource
from relaykit.domain.models import AiReferenceConfig, PromptTemplate, Workspace, utcnow
from relaykit.services.prompt_resolver import ResolvedPrompt, resolve_prompt


async def _add(session_factory, *rows):
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


async def test_fallback_when_nothing_configured(db_session, make_workspace):
    ws = await make_workspace(trade="hvac")
    resolved = await resolve_prompt(db_session, ws.id)
    assert resolved.source == PromptSource.FALLBACK
    assert resolved.system_prompt == ESTIMATE_SYSTEM_PROMPT
    assert resolved.trade == "hvac"
    assert resolved.id is None


async def test_newest_active_trade_template(session_factory, db_session, make_workspace):
    ws = await make_workspace()
    now = utcnow()
    await _add(
        session_factory,
        PromptTemplate(trade="plumbing", name="v1", system_prompt="plumbing v1", version=1, created_at=now),
        PromptTemplate(trade="plumbing", name="v2", system_prompt="plumbing v2", version=2, created_at=now),
        PromptTemplate(trade="plumbing", name="v3", system_prompt="retired", version=3, active=False),
        PromptTemplate(trade="electrical", name="e", system_prompt="electrical", version=9),
    )
    resolved = await resolve_prompt(db_session, ws.id)
    assert resolved.source == PromptSource.TEMPLATE
    assert resolved.system_prompt == "plumbing v2"


async def test_workspace_default_flag_beats_template(session_factory, db_session, make_workspace):
    ws = await make_workspace()
    await _add(
        session_factory,
        PromptTemplate(trade="plumbing", name="t", system_prompt="template"),
        AiReferenceConfig(workspace_id=ws.id, name="house", system_prompt="house style", is_default=True),
    )
    resolved = await resolve_prompt(db_session, ws.id)
    assert resolved.source == PromptSource.WORKSPACE_DEFAULT_FLAG
    assert resolved.system_prompt == "house style"


async def test_workspace_default_id_beats_flag(session_factory, db_session, make_workspace):
    ws = await make_workspace()
    flagged = AiReferenceConfig(workspace_id=ws.id, name="flag", system_prompt="flagged", is_default=True)
    pointed = AiReferenceConfig(workspace_id=ws.id, name="ptr", system_prompt="pointed", trade="hvac")
    await _add(session_factory, flagged, pointed)
    async with session_factory() as db:
        workspace = await db.get(Workspace, ws.id)
        workspace.default_ai_reference_config_id = pointed.id
        await db.commit()

    resolved = await resolve_prompt(db_session, ws.id)
    assert resolved.source == PromptSource.WORKSPACE_DEFAULT_ID
    assert resolved.id == pointed.id
    assert resolved.trade == "hvac"


async def test_customer_override_wins(session_factory, db_session, make_workspace, make_customer):
    ws = await make_workspace()
    customer = await make_customer(ws.id)
    earlier = utcnow() - timedelta(days=1)
    await _add(
        session_factory,
        AiReferenceConfig(workspace_id=ws.id, name="flag", system_prompt="flagged", is_default=True),
        AiReferenceConfig(
            workspace_id=ws.id, customer_id=customer.id, name="old", system_prompt="old override",
            created_at=earlier,
        ),
        AiReferenceConfig(workspace_id=ws.id, customer_id=customer.id, name="new", system_prompt="new override"),
    )

    resolved = await resolve_prompt(db_session, ws.id, customer_id=customer.id)
    assert resolved.source == PromptSource.CUSTOMER_OVERRIDE
    assert resolved.system_prompt == "new override"

    without_customer = await resolve_prompt(db_session, ws.id)
    assert without_customer.source == PromptSource.WORKSPACE_DEFAULT_FLAG


async def test_blank_prompt_falls_through(session_factory, db_session, make_workspace, make_customer):
    ws = await make_workspace()
    customer = await make_customer(ws.id)
    await _add(
        session_factory,
        AiReferenceConfig(workspace_id=ws.id, customer_id=customer.id, name="blank", system_prompt="   "),
    )
    resolved = await resolve_prompt(db_session, ws.id, customer_id=customer.id)
    assert resolved.source == PromptSource.FALLBACK


async def test_later_layers_are_not_queried(db_session, make_workspace):
    ws = await make_workspace()
    queried = []

    async def first(db, ctx):
        queried.append("first")
        return None

    async def second(db, ctx):
        queried.append("second")
        return ResolvedPrompt(id="x", system_prompt="second", trade=ctx.trade, source=PromptSource.TEMPLATE)

    async def third(db, ctx):
        queried.append("third")
        return None

    resolved = await resolve_prompt(
        db_session,
        ws.id,
        strategies=[
            (PromptSource.CUSTOMER_OVERRIDE, first),
            (PromptSource.TEMPLATE, second),
            (PromptSource.FALLBACK, third),
        ],
    )
    assert resolved.system_prompt == "second"
    assert queried == ["first", "second"]
