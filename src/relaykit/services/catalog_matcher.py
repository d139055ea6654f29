"""Deterministic Catalog Matcher.

Pure-function module, NO LLM, NO database access.

Resolves free-text material names ("Tile, 12x12 white") to a unit cost
from three tiers of price lists, consulted in strict priority order:

    customer  ->  workspace  ->  catalog

The first tier with ANY accepted match wins; scores only rank candidates
inside a tier, never across tiers. Inside a tier the precedence is:

    1. exact normalized key
    2. substring containment (either direction), longest key wins
    3. token overlap: score = overlap*10 + min(len(a), len(b)),
       accepted when overlap >= 2, or overlap == 1 and score >= 12

Rows sharing a normalized key inside one tier collapse to their median
cost.
"""

from __future__ import annotations

import math
import re
import statistics
from dataclasses import dataclass, field
from typing import Iterable, Optional

from relaykit.domain.enums import MissingReason, PricingSource, PricingStatus

# ── Scoring constants ────────────────────────────────────────────────────────

MIN_TOKEN_LENGTH = 3
OVERLAP_WEIGHT = 10
MIN_SINGLE_OVERLAP_SCORE = 12

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ALIAS_SPLIT = re.compile(r"[,;|]")


# ── Text helpers ─────────────────────────────────────────────────────────────

def normalize(text: Optional[str]) -> str:
    """Lowercase, collapse non-alphanumerics to single spaces, trim."""
    return _NON_ALNUM.sub(" ", (text or "").lower()).strip()


def tokenize(text: Optional[str]) -> frozenset[str]:
    """Distinct normalized words of at least ``MIN_TOKEN_LENGTH`` characters."""
    return frozenset(t for t in normalize(text).split(" ") if len(t) >= MIN_TOKEN_LENGTH)


def split_aliases(aliases: Optional[str]) -> list[str]:
    """Split a catalog ``aliases`` cell on ``,`` ``;`` or ``|``."""
    if not aliases:
        return []
    return [a.strip() for a in _ALIAS_SPLIT.split(aliases) if a.strip()]


def token_score(a: frozenset[str], b: frozenset[str]) -> tuple[int, int]:
    """Return ``(overlap, score)`` for two token sets."""
    overlap = len(a & b)
    return overlap, overlap * OVERLAP_WEIGHT + min(len(a), len(b))


def is_accepted(overlap: int, score: int) -> bool:
    return overlap >= 2 or (overlap == 1 and score >= MIN_SINGLE_OVERLAP_SCORE)


# ── Result types ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TierMatch:
    """An accepted candidate inside one tier."""

    source: PricingSource
    key: str
    cost: float
    confidence: float
    method: str  # exact, substring, token


@dataclass(frozen=True)
class TierMiss:
    """No accepted candidate. ``near_miss_confidence`` is set when a
    single-token candidate existed but scored under the threshold."""

    source: PricingSource
    near_miss_confidence: Optional[float] = None


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one material name across all tiers."""

    cost: float
    source: PricingSource
    confidence: float
    missing_reason: Optional[MissingReason] = None

    @property
    def matched(self) -> bool:
        return self.missing_reason is None

    @classmethod
    def missing(
        cls, reason: MissingReason, confidence: float = 0.0
    ) -> "Resolution":
        return cls(
            cost=0.0,
            source=PricingSource.NONE,
            confidence=confidence,
            missing_reason=reason,
        )

    def apply(self, material: dict) -> dict:
        """Return ``material`` with server-side pricing fields. Any cost the
        draft carried is overwritten."""
        priced = {
            "item": material.get("item", ""),
            "qty": material.get("qty", 0),
            "cost": self.cost if self.matched else 0.0,
            "pricing_status": (PricingStatus.MATCHED if self.matched else PricingStatus.MISSING).value,
            "pricing_source": self.source.value,
            "pricing_confidence": round(self.confidence, 4),
        }
        if self.missing_reason is not None:
            priced["missing_reason"] = self.missing_reason.value
        return priced


# ── Tier ─────────────────────────────────────────────────────────────────────

@dataclass
class PriceTier:
    """Median-collapsed price list for one source.

    ``prices`` maps normalized key to cost; ``labels`` keeps the first
    human-readable name seen for each key (used for prompt hints).
    """

    source: PricingSource
    prices: dict[str, float] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    _tokens: dict[str, frozenset[str]] = field(default_factory=dict, repr=False)

    @classmethod
    def from_rows(
        cls, source: PricingSource, rows: Iterable[tuple[str, float]]
    ) -> "PriceTier":
        """Build a tier from ``(name, cost)`` pairs.

        Names are normalized; empty names and non-finite costs are skipped.
        """
        grouped: dict[str, list[float]] = {}
        labels: dict[str, str] = {}
        for name, cost in rows:
            key = normalize(name)
            if not key or cost is None:
                continue
            try:
                value = float(cost)
            except (TypeError, ValueError):
                continue
            if not math.isfinite(value):
                continue
            grouped.setdefault(key, []).append(value)
            labels.setdefault(key, (name or "").strip())

        tier = cls(source=source)
        # Sorted keys make tie-breaking independent of row order
        for key in sorted(grouped):
            tier.prices[key] = float(statistics.median(grouped[key]))
            tier.labels[key] = labels[key]
            tier._tokens[key] = tokenize(key)
        return tier

    def __len__(self) -> int:
        return len(self.prices)

    def tokens(self, key: str) -> frozenset[str]:
        return self._tokens.get(key) or tokenize(key)

    def match(self, target: str) -> TierMatch | TierMiss:
        """Find the best accepted candidate for an already-normalized ``target``."""
        if not target or not self.prices:
            return TierMiss(self.source)

        if target in self.prices:
            return TierMatch(self.source, target, self.prices[target], 1.0, "exact")

        best_sub: Optional[str] = None
        for key in self.prices:
            if key in target or target in key:
                if best_sub is None or len(key) > len(best_sub):
                    best_sub = key
        if best_sub is not None:
            shorter, longer = sorted((len(best_sub), len(target)))
            return TierMatch(
                self.source,
                best_sub,
                self.prices[best_sub],
                shorter / longer,
                "substring",
            )

        target_tokens = tokenize(target)
        if not target_tokens:
            return TierMiss(self.source)

        best_key: Optional[str] = None
        best_score = -1
        best_overlap = 0
        near_miss: Optional[float] = None
        for key in self.prices:
            key_tokens = self.tokens(key)
            overlap, score = token_score(target_tokens, key_tokens)
            if overlap == 0:
                continue
            confidence = overlap / max(len(target_tokens), len(key_tokens))
            if not is_accepted(overlap, score):
                near_miss = max(near_miss or 0.0, confidence)
                continue
            if score > best_score:
                best_key, best_score, best_overlap = key, score, overlap

        if best_key is None:
            return TierMiss(self.source, near_miss_confidence=near_miss)

        key_tokens = self.tokens(best_key)
        return TierMatch(
            self.source,
            best_key,
            self.prices[best_key],
            best_overlap / max(len(target_tokens), len(key_tokens)),
            "token",
        )


# ── Resolution ───────────────────────────────────────────────────────────────

def resolve_unit_cost(item: str, tiers: Iterable[PriceTier]) -> Resolution:
    """Resolve ``item`` against ``tiers`` in the order given.

    A miss is always ``no_match``; the best sub-threshold candidate's
    confidence, if any, is carried along for diagnostics.
    """
    target = normalize(item)
    near_miss: Optional[float] = None
    for tier in tiers:
        outcome = tier.match(target)
        if isinstance(outcome, TierMatch):
            return Resolution(
                cost=outcome.cost,
                source=outcome.source,
                confidence=outcome.confidence,
            )
        if outcome.near_miss_confidence is not None:
            near_miss = max(near_miss or 0.0, outcome.near_miss_confidence)

    return Resolution.missing(MissingReason.NO_MATCH, near_miss or 0.0)


def rank_hints(
    context: str, tiers: Iterable[PriceTier], limit: int = 60
) -> list[str]:
    """Pick up to ``limit`` price-list names sharing tokens with ``context``.

    Ranked by overlap count, then by tier priority (tiers earlier in the
    iterable first). Used only to steer the model toward names the
    matcher will recognise.
    """
    context_tokens = tokenize(context)
    if not context_tokens or limit <= 0:
        return []

    scored: list[tuple[int, int, str]] = []
    seen: set[str] = set()
    for priority, tier in enumerate(tiers):
        for key, label in tier.labels.items():
            if key in seen:
                continue
            overlap = len(context_tokens & tier.tokens(key))
            if overlap:
                seen.add(key)
                scored.append((-overlap, priority, label))

    scored.sort()
    return [label for _, _, label in scored[:limit]]
