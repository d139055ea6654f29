"""Estimator system-prompt resolution.

Layers are consulted in the order of ``PROMPT_STRATEGIES``; the first one
that yields a non-empty prompt wins and later layers are not queried:

    customer_override       -> ai_reference_configs for (workspace, customer)
    workspace_default_id    -> workspaces.default_ai_reference_config_id
    workspace_default_flag  -> ai_reference_configs.is_default
    template                -> newest active prompt_templates row for the trade
    fallback                -> built-in ESTIMATE_SYSTEM_PROMPT
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.agents.prompts.estimate import ESTIMATE_SYSTEM_PROMPT
from relaykit.domain.enums import PromptSource, Trade
from relaykit.domain.models import AiReferenceConfig, PromptTemplate, Workspace


@dataclass(frozen=True)
class ResolvedPrompt:
    id: Optional[str]
    system_prompt: str
    trade: str
    source: PromptSource


@dataclass(frozen=True)
class PromptContext:
    workspace_id: str
    trade: str
    customer_id: Optional[str]
    default_config_id: Optional[str]


PromptStrategy = Callable[[AsyncSession, PromptContext], Awaitable[Optional[ResolvedPrompt]]]


def _from_config(
    config: Optional[AiReferenceConfig], ctx: PromptContext, source: PromptSource
) -> Optional[ResolvedPrompt]:
    if config is None or not (config.system_prompt or "").strip():
        return None
    return ResolvedPrompt(
        id=config.id,
        system_prompt=config.system_prompt,
        trade=config.trade or ctx.trade,
        source=source,
    )


async def _customer_override(db: AsyncSession, ctx: PromptContext) -> Optional[ResolvedPrompt]:
    if not ctx.customer_id:
        return None
    result = await db.execute(
        select(AiReferenceConfig)
        .where(
            AiReferenceConfig.workspace_id == ctx.workspace_id,
            AiReferenceConfig.customer_id == ctx.customer_id,
        )
        .order_by(AiReferenceConfig.created_at.desc())
        .limit(1)
    )
    return _from_config(result.scalar_one_or_none(), ctx, PromptSource.CUSTOMER_OVERRIDE)


async def _workspace_default_id(db: AsyncSession, ctx: PromptContext) -> Optional[ResolvedPrompt]:
    if not ctx.default_config_id:
        return None
    result = await db.execute(
        select(AiReferenceConfig).where(AiReferenceConfig.id == ctx.default_config_id)
    )
    return _from_config(result.scalar_one_or_none(), ctx, PromptSource.WORKSPACE_DEFAULT_ID)


async def _workspace_default_flag(db: AsyncSession, ctx: PromptContext) -> Optional[ResolvedPrompt]:
    result = await db.execute(
        select(AiReferenceConfig)
        .where(
            AiReferenceConfig.workspace_id == ctx.workspace_id,
            AiReferenceConfig.is_default.is_(True),
        )
        .order_by(AiReferenceConfig.created_at.desc())
        .limit(1)
    )
    return _from_config(result.scalar_one_or_none(), ctx, PromptSource.WORKSPACE_DEFAULT_FLAG)


async def _trade_template(db: AsyncSession, ctx: PromptContext) -> Optional[ResolvedPrompt]:
    result = await db.execute(
        select(PromptTemplate)
        .where(PromptTemplate.trade == ctx.trade, PromptTemplate.active.is_(True))
        .order_by(PromptTemplate.version.desc(), PromptTemplate.created_at.desc())
        .limit(1)
    )
    template = result.scalar_one_or_none()
    if template is None or not (template.system_prompt or "").strip():
        return None
    return ResolvedPrompt(
        id=template.id,
        system_prompt=template.system_prompt,
        trade=ctx.trade,
        source=PromptSource.TEMPLATE,
    )


async def _fallback(db: AsyncSession, ctx: PromptContext) -> Optional[ResolvedPrompt]:
    return ResolvedPrompt(
        id=None,
        system_prompt=ESTIMATE_SYSTEM_PROMPT,
        trade=ctx.trade,
        source=PromptSource.FALLBACK,
    )


PROMPT_STRATEGIES: list[tuple[PromptSource, PromptStrategy]] = [
    (PromptSource.CUSTOMER_OVERRIDE, _customer_override),
    (PromptSource.WORKSPACE_DEFAULT_ID, _workspace_default_id),
    (PromptSource.WORKSPACE_DEFAULT_FLAG, _workspace_default_flag),
    (PromptSource.TEMPLATE, _trade_template),
    (PromptSource.FALLBACK, _fallback),
]


async def resolve_prompt(
    db: AsyncSession,
    workspace_id: str,
    customer_id: Optional[str] = None,
    trade: str = Trade.GENERAL_CONTRACTOR.value,
    strategies: Optional[list[tuple[PromptSource, PromptStrategy]]] = None,
) -> ResolvedPrompt:
    """Walk the strategies in order and return the first hit.

    The workspace's own trade takes precedence over ``trade``.
    """
    result = await db.execute(select(Workspace).where(Workspace.id == workspace_id))
    workspace = result.scalar_one_or_none()

    ctx = PromptContext(
        workspace_id=workspace_id,
        trade=(workspace.trade if workspace and workspace.trade else trade),
        customer_id=customer_id,
        default_config_id=workspace.default_ai_reference_config_id if workspace else None,
    )

    for _, strategy in strategies or PROMPT_STRATEGIES:
        resolved = await strategy(db, ctx)
        if resolved is not None:
            return resolved

    # Only reachable when a caller passes strategies without a fallback
    return await _fallback(db, ctx)
