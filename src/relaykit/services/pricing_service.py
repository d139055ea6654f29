"""Server-side material pricing for one estimate generation.

Loads the customer, workspace and catalog price tiers lazily (once per
generation, shared by every material line) and resolves each line
concurrently under a per-line timeout. A tier that fails to load or a
lookup that times out marks the line ``missing`` with reason ``timeout``;
lower tiers are not consulted in its place.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from relaykit.domain.enums import MissingReason, PricingSource, Trade
from relaykit.domain.models import CatalogMaterial, WorkspacePricingMaterial
from relaykit.services.catalog_matcher import (
    PriceTier,
    Resolution,
    rank_hints,
    resolve_unit_cost,
    split_aliases,
)

logger = logging.getLogger(__name__)

TierLoader = Callable[[], Awaitable[PriceTier]]

# Imported rows may carry their own normalized_key; it wins over the description
_ROW_KEY = func.coalesce(
    func.nullif(WorkspacePricingMaterial.normalized_key, ""), WorkspacePricingMaterial.description
)


# ---------------------------------------------------------------------------
# Tier loaders
# ---------------------------------------------------------------------------


async def load_customer_tier(
    session_factory: async_sessionmaker, workspace_id: str, trade: str, customer_id: str
) -> PriceTier:
    async with session_factory() as db:
        result = await db.execute(
            select(_ROW_KEY, WorkspacePricingMaterial.unit_cost).where(
                WorkspacePricingMaterial.workspace_id == workspace_id,
                WorkspacePricingMaterial.trade == trade,
                WorkspacePricingMaterial.customer_id == customer_id,
            )
        )
        return PriceTier.from_rows(PricingSource.CUSTOMER, result.all())


async def load_workspace_tier(
    session_factory: async_sessionmaker, workspace_id: str, trade: str
) -> PriceTier:
    async with session_factory() as db:
        result = await db.execute(
            select(_ROW_KEY, WorkspacePricingMaterial.unit_cost).where(
                WorkspacePricingMaterial.workspace_id == workspace_id,
                WorkspacePricingMaterial.trade == trade,
                WorkspacePricingMaterial.customer_id.is_(None),
            )
        )
        return PriceTier.from_rows(PricingSource.WORKSPACE, result.all())


async def load_catalog_tier(session_factory: async_sessionmaker, trade: str) -> PriceTier:
    """Global catalog. General contractors see every trade's items."""
    query = select(
        CatalogMaterial.item_key,
        CatalogMaterial.description,
        CatalogMaterial.aliases,
        CatalogMaterial.unit_price,
    )
    if trade != Trade.GENERAL_CONTRACTOR.value:
        query = query.where(CatalogMaterial.trade == trade)

    async with session_factory() as db:
        result = await db.execute(query)
        rows: list[tuple[str, float]] = []
        for item_key, description, aliases, unit_price in result.all():
            # Description first so hints show the human-readable name
            if description:
                rows.append((description, unit_price))
            rows.append((item_key, unit_price))
            rows.extend((alias, unit_price) for alias in split_aliases(aliases))
        return PriceTier.from_rows(PricingSource.CATALOG, rows)


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


@dataclass
class PricingSummary:
    materials: list[dict] = field(default_factory=list)
    missing_count: int = 0
    missing_timeout_count: int = 0


class PricingLookup:
    """Per-generation view over the three price tiers.

    Each tier is fetched at most once; concurrent lines awaiting the same
    tier share one in-flight load.
    """

    def __init__(self, loaders: list[tuple[PricingSource, TierLoader]], timeout_seconds: float = 5.0):
        self._loaders = loaders
        self._tasks: dict[PricingSource, asyncio.Task] = {}
        self.timeout_seconds = timeout_seconds

    @classmethod
    def for_job(
        cls,
        session_factory: async_sessionmaker,
        workspace_id: str,
        trade: str,
        customer_id: Optional[str],
        timeout_seconds: float = 5.0,
    ) -> "PricingLookup":
        loaders: list[tuple[PricingSource, TierLoader]] = []
        if customer_id:
            loaders.append((
                PricingSource.CUSTOMER,
                lambda: load_customer_tier(session_factory, workspace_id, trade, customer_id),
            ))
        loaders.append((
            PricingSource.WORKSPACE,
            lambda: load_workspace_tier(session_factory, workspace_id, trade),
        ))
        loaders.append((
            PricingSource.CATALOG,
            lambda: load_catalog_tier(session_factory, trade),
        ))
        return cls(loaders, timeout_seconds=timeout_seconds)

    def _tier_task(self, source: PricingSource, loader: TierLoader) -> asyncio.Task:
        task = self._tasks.get(source)
        if task is None:
            task = asyncio.ensure_future(loader())
            self._tasks[source] = task
        return task

    async def _tier(self, source: PricingSource, loader: TierLoader) -> PriceTier:
        # Shield so one line's timeout doesn't cancel the shared load
        return await asyncio.shield(self._tier_task(source, loader))

    async def _resolve(self, item: str) -> Resolution:
        tiers: list[PriceTier] = []
        for source, loader in self._loaders:
            tier = await self._tier(source, loader)
            resolution = resolve_unit_cost(item, [tier])
            if resolution.matched:
                return resolution
            tiers.append(tier)
        return resolve_unit_cost(item, tiers)

    async def resolve(self, item: str) -> Resolution:
        """Resolve one material name, mapping any lookup failure to ``timeout``."""
        try:
            return await asyncio.wait_for(self._resolve(item), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Pricing lookup timed out for item=%r", item)
        except Exception as exc:
            logger.warning("Pricing lookup failed for item=%r: %s", item, exc)
        return Resolution.missing(MissingReason.TIMEOUT)

    async def price_materials(self, materials: list[dict]) -> PricingSummary:
        """Price every material line concurrently, preserving order."""
        resolutions = await asyncio.gather(
            *(self.resolve(m.get("item", "")) for m in materials)
        )
        summary = PricingSummary()
        for material, resolution in zip(materials, resolutions):
            summary.materials.append(resolution.apply(material))
            if not resolution.matched:
                summary.missing_count += 1
                if resolution.missing_reason == MissingReason.TIMEOUT:
                    summary.missing_timeout_count += 1
        return summary

    async def hints(self, context: str, limit: int = 60) -> list[str]:
        """Catalog-candidate names for the prompt. Tiers that fail to load are skipped."""
        tiers: list[PriceTier] = []
        for source, loader in self._loaders:
            try:
                tiers.append(
                    await asyncio.wait_for(self._tier(source, loader), timeout=self.timeout_seconds)
                )
            except Exception as exc:
                logger.warning("Hint tier %s unavailable: %s", source.value, exc)
        return rank_hints(context, tiers, limit=limit)

    def close(self) -> None:
        """Cancel tier loads still in flight."""
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
