"""
Tests for effective-target resolution and allocation classification.
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from ccas.financial_analysis.allocation import (
    EffectiveTarget, resolve_effective_targets, classify_allocation
)
from ccas.financial_analysis.allocation.targets import (
    ITEM_ESTIMATE, ITEM_CHANGE_ORDER, choose_baseline_quote, quote_line_key
)


def _correlation(estimate_line_item_id=None, change_order_line_item_id=None, quote_id=None):
    return SimpleNamespace(
        estimate_line_item_id=estimate_line_item_id,
        change_order_line_item_id=change_order_line_item_id,
        quote_id=quote_id,
    )


def _quote(quote_id, accepted_date=None):
    return SimpleNamespace(id=quote_id, accepted_date=accepted_date)


def _quote_line(quote, cost, estimate_line_item_id=None, change_order_line_item_id=None):
    return SimpleNamespace(
        quote=quote,
        cost=cost,
        estimate_line_item_id=estimate_line_item_id,
        change_order_line_item_id=change_order_line_item_id,
    )


class TestResolveEffectiveTargets:
    """Tests for resolve_effective_targets."""

    def test_direct_estimate_item(self):
        targets = resolve_effective_targets(_correlation(estimate_line_item_id="e1"), {})
        assert targets == [EffectiveTarget(ITEM_ESTIMATE, "e1", 1.0)]

    def test_direct_change_order_item(self):
        targets = resolve_effective_targets(_correlation(change_order_line_item_id="c1"), {})
        assert targets == [EffectiveTarget(ITEM_CHANGE_ORDER, "c1", 1.0)]

    def test_direct_item_outside_eligible_set(self):
        targets = resolve_effective_targets(
            _correlation(estimate_line_item_id="e1"), {}, eligible={(ITEM_ESTIMATE, "e2")}
        )
        assert targets == []

    def test_quote_shares_follow_line_costs(self):
        quote = _quote("q1")
        lines = {"q1": [
            _quote_line(quote, 300, estimate_line_item_id="e1"),
            _quote_line(quote, 100, change_order_line_item_id="c1"),
        ]}
        targets = resolve_effective_targets(_correlation(quote_id="q1"), lines)

        shares = {target.key: target.share for target in targets}
        assert shares == {(ITEM_ESTIMATE, "e1"): 0.75, (ITEM_CHANGE_ORDER, "c1"): 0.25}
        assert sum(shares.values()) == pytest.approx(1.0)

    def test_quote_with_zero_costs_shares_equally(self):
        quote = _quote("q1")
        lines = {"q1": [
            _quote_line(quote, 0, estimate_line_item_id="e1"),
            _quote_line(quote, 0, estimate_line_item_id="e2"),
        ]}
        targets = resolve_effective_targets(_correlation(quote_id="q1"), lines)
        assert [target.share for target in targets] == [0.5, 0.5]

    def test_quote_restricted_to_eligible_items(self):
        quote = _quote("q1")
        lines = {"q1": [
            _quote_line(quote, 300, estimate_line_item_id="e1"),
            _quote_line(quote, 100, estimate_line_item_id="gone"),
        ]}
        targets = resolve_effective_targets(
            _correlation(quote_id="q1"), lines, eligible={(ITEM_ESTIMATE, "e1")}
        )
        assert targets == [EffectiveTarget(ITEM_ESTIMATE, "e1", 1.0)]

    def test_quote_not_accepted(self):
        assert resolve_effective_targets(_correlation(quote_id="q1"), {}) == []

    def test_quote_lines_without_item_are_skipped(self):
        quote = _quote("q1")
        lines = {"q1": [_quote_line(quote, 300)]}
        assert resolve_effective_targets(_correlation(quote_id="q1"), lines) == []


class TestChooseBaselineQuote:
    """Tests for choose_baseline_quote."""

    def test_most_recently_accepted_wins(self):
        older = _quote("q-old", datetime(2024, 1, 1))
        newer = _quote("q-new", datetime(2024, 2, 1))
        quote, cost, losers = choose_baseline_quote([
            _quote_line(older, 500, estimate_line_item_id="e1"),
            _quote_line(newer, 420, estimate_line_item_id="e1"),
        ])

        assert quote is newer
        assert cost == 420
        assert losers == ["q-old"]

    def test_missing_acceptance_date_is_oldest(self):
        undated = _quote("a", None)
        dated = _quote("b", datetime(2023, 6, 1))
        quote, _, _ = choose_baseline_quote([
            _quote_line(undated, 1, estimate_line_item_id="e1"),
            _quote_line(dated, 2, estimate_line_item_id="e1"),
        ])
        assert quote is dated

    def test_ties_break_on_id(self):
        when = datetime(2024, 1, 1)
        quote, _, _ = choose_baseline_quote([
            _quote_line(_quote("q2", when), 1, estimate_line_item_id="e1"),
            _quote_line(_quote("q1", when), 2, estimate_line_item_id="e1"),
        ])
        assert quote.id == "q1"

    def test_lines_of_winner_are_summed(self):
        quote = _quote("q1", datetime(2024, 1, 1))
        _, cost, losers = choose_baseline_quote([
            _quote_line(quote, 200.10, estimate_line_item_id="e1"),
            _quote_line(quote, 99.90, estimate_line_item_id="e1"),
        ])
        assert cost == 300.0
        assert losers == []

    def test_empty(self):
        assert choose_baseline_quote([]) == (None, 0.0, [])

    def test_quote_line_key(self):
        assert quote_line_key(_quote_line(None, 0, estimate_line_item_id="e1")) == (ITEM_ESTIMATE, "e1")
        assert quote_line_key(_quote_line(None, 0, change_order_line_item_id="c1")) == (ITEM_CHANGE_ORDER, "c1")
        assert quote_line_key(_quote_line(None, 0)) is None


class TestClassifyAllocation:
    """Tests for classify_allocation."""

    @pytest.mark.parametrize("allocated, baseline, expected", [
        (0, 500, "none"),
        (0.004, 500, "none"),
        (-50, 500, "none"),
        (250, 500, "partial"),
        (499.99, 500, "partial"),
        (499.996, 500, "full"),
        (500, 500, "full"),
        (650, 500, "full"),
        (0, 0, "none"),
        (10, 0, "full"),
    ])
    def test_classification(self, allocated, baseline, expected):
        assert classify_allocation(allocated, baseline, 0.005) == expected
