"""
Effective-target resolution for expense correlations.

A correlation names an estimate line item, a change order line item or a
whole quote. A quote is resolved one hop further, through its quote line
items, to the line items it bids against. These functions work on already
loaded objects and never query the database.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Any, Iterable, Tuple, Set

from ccas.utils.common import to_amount

logger = logging.getLogger(__name__)

ITEM_ESTIMATE = 'estimate'
ITEM_CHANGE_ORDER = 'change_order'

# (item type, line item id)
LineItemKey = Tuple[str, str]


@dataclass(frozen=True)
class EffectiveTarget:
    """A line item credited with a share of a correlation's amount."""

    item_type: str
    line_item_id: str
    share: float = 1.0

    @property
    def key(self) -> LineItemKey:
        return (self.item_type, self.line_item_id)


def quote_line_key(quote_line: Any) -> Optional[LineItemKey]:
    """Line item a quote line bids against, or None when it references neither kind."""
    if quote_line.estimate_line_item_id:
        return (ITEM_ESTIMATE, quote_line.estimate_line_item_id)
    if quote_line.change_order_line_item_id:
        return (ITEM_CHANGE_ORDER, quote_line.change_order_line_item_id)
    return None


def _acceptance_order(quote: Any) -> Tuple[float, str]:
    accepted = quote.accepted_date
    timestamp = accepted.timestamp() if isinstance(accepted, datetime) else float('-inf')
    # Most recent first, then lowest id
    return (-timestamp, quote.id)


def choose_baseline_quote(quote_lines: Iterable[Any]) -> Tuple[Optional[Any], float, List[str]]:
    """Pick the accepted quote that sets a line item's cost baseline.

    Args:
        quote_lines: Accepted quote lines referencing one line item

    Returns:
        Tuple of (winning quote or None, its cost for the item, ids of the
        losing quotes)
    """
    by_quote: Dict[str, List[Any]] = {}
    quotes: Dict[str, Any] = {}
    for line in quote_lines:
        by_quote.setdefault(line.quote.id, []).append(line)
        quotes[line.quote.id] = line.quote

    if not quotes:
        return None, 0.0, []

    ordered = sorted(quotes.values(), key=_acceptance_order)
    winner = ordered[0]
    cost = sum(line.cost for line in by_quote[winner.id])
    return winner, round(cost, 2), [quote.id for quote in ordered[1:]]


def resolve_effective_targets(
    correlation: Any,
    accepted_quote_lines: Dict[str, List[Any]],
    eligible: Optional[Set[LineItemKey]] = None
) -> List[EffectiveTarget]:
    """Resolve the line items a correlation pays for.

    Direct correlations resolve to their own line item. A quote correlation
    resolves to the line items its quote lines reference, with the amount
    shared in proportion to the quote line costs (equal shares when the
    costs are all zero). Quotes missing from ``accepted_quote_lines`` are not
    accepted and resolve to nothing.

    Args:
        correlation: Correlation record
        accepted_quote_lines: Accepted quote id -> its quote lines
        eligible: Optional set of line item keys the shares are restricted to

    Returns:
        List of EffectiveTarget whose shares sum to 1, or an empty list
    """
    if correlation.estimate_line_item_id:
        key = (ITEM_ESTIMATE, correlation.estimate_line_item_id)
    elif correlation.change_order_line_item_id:
        key = (ITEM_CHANGE_ORDER, correlation.change_order_line_item_id)
    else:
        key = None

    if key is not None:
        if eligible is not None and key not in eligible:
            return []
        return [EffectiveTarget(key[0], key[1], 1.0)]

    if not correlation.quote_id or correlation.quote_id not in accepted_quote_lines:
        return []

    weights: Dict[LineItemKey, float] = {}
    for line in accepted_quote_lines[correlation.quote_id]:
        line_key = quote_line_key(line)
        if line_key is None:
            continue
        if eligible is not None and line_key not in eligible:
            continue
        weights[line_key] = weights.get(line_key, 0.0) + max(to_amount(line.cost), 0.0)

    if not weights:
        return []

    total = sum(weights.values())
    if total <= 0:
        share = 1.0 / len(weights)
        return [EffectiveTarget(k[0], k[1], share) for k in sorted(weights)]

    return [EffectiveTarget(k[0], k[1], weights[k] / total) for k in sorted(weights)]
