"""CSV import of workspace / customer price lists."""

import csv
import io
import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from relaykit.domain.enums import Trade
from relaykit.domain.models import Customer, WorkspacePricingMaterial
from relaykit.services.catalog_matcher import normalize

logger = logging.getLogger(__name__)

BATCH_SIZE = 500
MAX_REPORTED_ERRORS = 50

DESCRIPTION_HEADERS = ("description", "item_key")
COST_HEADERS = ("unit_cost", "unit_price", "price", "cost")


class PricingImportError(ValueError):
    """The upload as a whole is unusable (bad trade, headers or customer)."""


@dataclass
class ImportReport:
    inserted: int = 0
    skipped: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "inserted": self.inserted,
            "skipped": self.skipped,
            "errors": self.errors[:MAX_REPORTED_ERRORS],
        }


def _header_index(headers: list[str], names: tuple[str, ...]) -> int:
    lowered = [h.strip().lower() for h in headers]
    for name in names:
        if name in lowered:
            return lowered.index(name)
    return -1


def _cell(row: list[str], index: int) -> str:
    if index < 0 or index >= len(row):
        return ""
    return row[index].strip()


def _parse_cost(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_rows(text: str) -> tuple[list[str], list[list[str]]]:
    """Split CSV text into ``(headers, rows)``; blank rows are dropped."""
    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    rows = [row for row in reader if any(cell.strip() for cell in row)]
    if not rows:
        return [], []
    return [h.strip() for h in rows[0]], rows[1:]


async def import_pricing_csv(
    db: AsyncSession,
    workspace_id: str,
    trade: str,
    text: str,
    default_customer_id: Optional[str] = None,
) -> ImportReport:
    """Insert price rows from ``text``.

    Rows without a description or with a non-numeric cost are skipped and
    reported by their 1-based line number (header is line 1).
    """
    if trade not in {t.value for t in Trade}:
        raise PricingImportError("Invalid trade")

    headers, rows = parse_rows(text)
    if not headers:
        raise PricingImportError("CSV is missing headers")

    description_idx = _header_index(headers, DESCRIPTION_HEADERS)
    cost_idx = _header_index(headers, COST_HEADERS)
    unit_idx = _header_index(headers, ("unit",))
    normalized_idx = _header_index(headers, ("normalized_key",))
    customer_idx = _header_index(headers, ("customer_id",))
    if description_idx == -1 or cost_idx == -1:
        raise PricingImportError(
            "CSV must include description (or item_key) and unit_cost (or unit_price)"
        )

    customer_ids = {_cell(row, customer_idx) for row in rows} - {""}
    if default_customer_id:
        customer_ids.add(default_customer_id)
    if customer_ids:
        result = await db.execute(
            select(Customer.id).where(
                Customer.workspace_id == workspace_id,
                Customer.id.in_(customer_ids),
            )
        )
        unknown = customer_ids - set(result.scalars().all())
        if unknown:
            raise PricingImportError(f"Invalid customer_id: {sorted(unknown)[0]}")

    report = ImportReport()
    values: list[dict] = []
    for line_no, row in enumerate(rows, start=2):
        description = _cell(row, description_idx)
        if not description:
            report.skipped += 1
            report.errors.append({"row": line_no, "error": "Missing description"})
            continue
        cost = _parse_cost(_cell(row, cost_idx))
        if cost is None:
            report.skipped += 1
            report.errors.append({"row": line_no, "error": "Invalid unit_cost"})
            continue
        values.append({
            "workspace_id": workspace_id,
            "customer_id": _cell(row, customer_idx) or default_customer_id or None,
            "trade": trade,
            "description": description,
            "normalized_key": _cell(row, normalized_idx) or normalize(description),
            "unit": _cell(row, unit_idx) or None,
            "unit_cost": cost,
            "source": "upload",
        })

    for start in range(0, len(values), BATCH_SIZE):
        batch = values[start:start + BATCH_SIZE]
        await db.execute(insert(WorkspacePricingMaterial), batch)
        report.inserted += len(batch)
    await db.commit()

    logger.info(
        "Pricing import workspace=%s trade=%s inserted=%d skipped=%d",
        workspace_id, trade, report.inserted, report.skipped,
    )
    return report
