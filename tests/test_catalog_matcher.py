"""Unit tests for the deterministic catalog matcher (no database)."""

import pytest

from relaykit.domain.enums import MissingReason, PricingSource
from relaykit.services.catalog_matcher import (
    PriceTier,
    Resolution,
    TierMatch,
    TierMiss,
    normalize,
    rank_hints,
    resolve_unit_cost,
    split_aliases,
    tokenize,
    token_score,
)


def tier(source: PricingSource, *rows):
    return PriceTier.from_rows(source, rows)


class TestTextHelpers:
    def test_normalize_collapses_punctuation(self):
        assert normalize("  Tile, 12x12 -- WHITE!! ") == "tile 12x12 white"

    def test_normalize_handles_none(self):
        assert normalize(None) == ""

    def test_tokenize_drops_short_words(self):
        assert tokenize("PVC pipe 1/2 in") == frozenset({"pvc", "pipe"})

    def test_split_aliases(self):
        assert split_aliases("ball valve; shutoff| stop valve , ") == [
            "ball valve",
            "shutoff",
            "stop valve",
        ]
        assert split_aliases(None) == []

    def test_token_score(self):
        assert token_score(frozenset({"copper"}), frozenset({"pipe", "copper"})) == (1, 11)
        assert token_score(frozenset({"copper", "elbow"}), frozenset({"pipe", "copper"})) == (1, 12)


class TestPriceTier:
    def test_duplicate_keys_collapse_to_median(self):
        t = tier(PricingSource.WORKSPACE, ("Wire Nut", 4), ("wire nut", 10), ("WIRE-NUT", 6))
        assert t.prices == {"wire nut": 6.0}

    def test_even_count_median_is_mean_of_middle(self):
        t = tier(PricingSource.WORKSPACE, ("tape", 2), ("tape", 4))
        assert t.prices["tape"] == 3.0

    def test_skips_empty_and_invalid_rows(self):
        t = tier(
            PricingSource.CATALOG,
            ("", 5),
            ("   ", 5),
            ("flux", None),
            ("solder", "abc"),
            ("teflon tape", float("inf")),
            ("pipe dope", "7.5"),
        )
        assert t.prices == {"pipe dope": 7.5}

    def test_exact_match(self):
        outcome = tier(PricingSource.CATALOG, ("PVC pipe", 4.25)).match("pvc pipe")
        assert outcome == TierMatch(PricingSource.CATALOG, "pvc pipe", 4.25, 1.0, "exact")

    def test_substring_prefers_longest_key(self):
        t = tier(PricingSource.CATALOG, ("pipe", 1), ("pvc pipe", 4))
        outcome = t.match("pvc pipe 10ft")
        assert isinstance(outcome, TierMatch)
        assert outcome.key == "pvc pipe"
        assert outcome.method == "substring"
        assert outcome.confidence == pytest.approx(len("pvc pipe") / len("pvc pipe 10ft"))

    def test_substring_either_direction(self):
        outcome = tier(PricingSource.CATALOG, ("copper pipe type l", 9)).match("copper pipe")
        assert isinstance(outcome, TierMatch)
        assert outcome.cost == 9

    def test_single_overlap_under_threshold_is_near_miss(self):
        outcome = tier(PricingSource.CATALOG, ("pipe copper", 7)).match(normalize("copper ab"))
        assert isinstance(outcome, TierMiss)
        assert outcome.near_miss_confidence == 0.5

    def test_single_overlap_at_threshold_is_accepted(self):
        outcome = tier(PricingSource.CATALOG, ("pipe copper", 7)).match(normalize("copper elbow"))
        assert isinstance(outcome, TierMatch)
        assert outcome.method == "token"
        assert outcome.confidence == 0.5

    def test_double_overlap_is_accepted(self):
        outcome = tier(PricingSource.CATALOG, ("brass ball valve", 18)).match("valve ball")
        assert isinstance(outcome, TierMatch)
        assert outcome.cost == 18
        assert outcome.confidence == pytest.approx(2 / 3)

    def test_highest_token_score_wins(self):
        t = tier(
            PricingSource.CATALOG,
            ("ball valve", 10),
            ("brass ball valve threaded", 30),
        )
        outcome = t.match(normalize("threaded brass valve"))
        assert isinstance(outcome, TierMatch)
        assert outcome.key == "brass ball valve threaded"

    def test_empty_tier(self):
        assert tier(PricingSource.CUSTOMER).match("anything") == TierMiss(PricingSource.CUSTOMER)


class TestResolveUnitCost:
    def test_higher_tier_wins_even_with_worse_match(self):
        customer = tier(PricingSource.CUSTOMER, ("pvc pipe", 5))
        workspace = tier(PricingSource.WORKSPACE, ("PVC pipe 10ft", 8))
        resolution = resolve_unit_cost("PVC pipe 10ft", [customer, workspace])
        assert resolution.cost == 5
        assert resolution.source == PricingSource.CUSTOMER
        assert resolution.matched

    def test_falls_through_to_catalog(self):
        customer = tier(PricingSource.CUSTOMER, ("drain auger", 40))
        workspace = tier(PricingSource.WORKSPACE)
        catalog = tier(PricingSource.CATALOG, ("PVC pipe", 3.5))
        resolution = resolve_unit_cost("pvc pipe", [customer, workspace, catalog])
        assert resolution.cost == 3.5
        assert resolution.source == PricingSource.CATALOG
        assert resolution.confidence == 1.0

    def test_unrelated_item_is_no_match(self):
        catalog = tier(PricingSource.CATALOG, ("PVC pipe", 3.5), ("copper elbow", 2))
        resolution = resolve_unit_cost("granite countertop", [catalog])
        assert resolution == Resolution.missing(MissingReason.NO_MATCH)
        assert resolution.source == PricingSource.NONE
        assert resolution.cost == 0.0

    def test_weak_candidate_is_no_match_with_confidence(self):
        catalog = tier(PricingSource.CATALOG, ("pipe copper", 7))
        resolution = resolve_unit_cost("copper ab", [catalog])
        assert resolution.missing_reason == MissingReason.NO_MATCH
        assert resolution.confidence == 0.5
        assert resolution.cost == 0.0

    def test_single_overlap_one_below_threshold_is_no_match(self):
        catalog = tier(PricingSource.CATALOG, ("copper pipe", 7))
        resolution = resolve_unit_cost("a copper", [catalog])
        assert not resolution.matched
        assert resolution.missing_reason == MissingReason.NO_MATCH
        assert resolution.cost == 0.0
        assert resolution.apply({"item": "a copper", "qty": 2})["missing_reason"] == "no_match"

    def test_empty_item(self):
        catalog = tier(PricingSource.CATALOG, ("pvc pipe", 1))
        assert resolve_unit_cost("  ", [catalog]).missing_reason == MissingReason.NO_MATCH

    def test_deterministic_across_row_order(self):
        rows = [("ball valve brass", 10), ("brass valve ball", 20), ("valve ball", 15)]
        first = resolve_unit_cost("ball valve", [tier(PricingSource.CATALOG, *rows)])
        second = resolve_unit_cost("ball valve", [tier(PricingSource.CATALOG, *reversed(rows))])
        assert first == second


class TestResolutionApply:
    def test_matched_overwrites_draft_cost(self):
        resolution = Resolution(cost=4.0, source=PricingSource.WORKSPACE, confidence=0.123456)
        priced = resolution.apply({"item": "PVC pipe", "qty": 3, "cost": 999})
        assert priced == {
            "item": "PVC pipe",
            "qty": 3,
            "cost": 4.0,
            "pricing_status": "matched",
            "pricing_source": "workspace",
            "pricing_confidence": 0.1235,
        }

    def test_missing_zeroes_cost_and_records_reason(self):
        priced = Resolution.missing(MissingReason.TIMEOUT).apply({"item": "Flux", "qty": 1, "cost": 12})
        assert priced["cost"] == 0.0
        assert priced["pricing_status"] == "missing"
        assert priced["pricing_source"] == "none"
        assert priced["missing_reason"] == "timeout"


class TestRankHints:
    def test_orders_by_overlap_then_tier(self):
        workspace = tier(PricingSource.WORKSPACE, ("Copper pipe", 5), ("Drain snake", 30))
        catalog = tier(PricingSource.CATALOG, ("Copper pipe fitting", 2), ("Pipe", 1), ("Copper pipe", 6))
        hints = rank_hints("replace copper pipe under sink", [workspace, catalog])
        assert hints == ["Copper pipe", "Copper pipe fitting", "Pipe"]

    def test_respects_limit(self):
        catalog = tier(PricingSource.CATALOG, *[(f"pipe size {n}", n) for n in range(10)])
        assert len(rank_hints("pipe", [catalog], limit=3)) == 3

    def test_no_context_tokens(self):
        catalog = tier(PricingSource.CATALOG, ("pipe", 1))
        assert rank_hints("a b", [catalog]) == []
