"""Estimate totals: labor pricing, markup, tax and half-unit rounding.

Bids are quoted in half-dollar steps, so every intermediate figure that
lands on the estimate is snapped with ``round_half``. Rounding is
half-up (``x.25`` goes to ``x.5``, ``-x.25`` goes to ``-x.0``), which is
not what the builtin ``round`` does.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Mapping


def round_half(value: float) -> float:
    """Snap ``value`` to the nearest 0.5, ties rounding up."""
    doubled = value * 2
    whole = math.floor(doubled)
    if doubled - whole >= 0.5:
        whole += 1
    return whole / 2


def _number(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def labor_line(task: str, hours, hourly_rate: float) -> dict:
    """Build a priced labor line. The rate is always the workspace rate."""
    hours = _number(hours)
    return {
        "task": (task or "").strip(),
        "hours": hours,
        "rate": hourly_rate,
        "total": round_half(hours * hourly_rate),
    }


@dataclass(frozen=True)
class Totals:
    labor_total: float
    materials_total: float
    subtotal: float
    markup_amount: float
    tax: float
    total: float


def compute_totals(
    labor: Iterable[Mapping],
    materials: Iterable[Mapping],
    hourly_rate: float,
    markup_percent: float,
    tax_rate_percent: float,
) -> Totals:
    """Compute estimate totals.

    Labor line totals are recomputed from ``hours * hourly_rate`` so a stale
    ``total`` on the input can never leak into the result. Materials
    contribute ``qty * cost`` unrounded; only the subtotal is snapped.
    """
    labor_total = sum(round_half(_number(line.get("hours")) * hourly_rate) for line in labor)
    materials_total = sum(_number(m.get("qty")) * _number(m.get("cost")) for m in materials)

    subtotal = round_half(materials_total + labor_total)
    markup_amount = round_half((subtotal * markup_percent) / 100)
    tax = round_half(((subtotal + markup_amount) * tax_rate_percent) / 100)
    total = round_half(subtotal + markup_amount + tax)

    return Totals(
        labor_total=labor_total,
        materials_total=materials_total,
        subtotal=subtotal,
        markup_amount=markup_amount,
        tax=tax,
        total=total,
    )
