"""
Candidate builders for allocation suggestions.

This module turns billable line items and unlinked receipts into match
candidates. Line item candidates are gathered across every construction
project, since vendor paperwork is often filed before its project is known.
"""

from typing import Dict, List, Any, Optional, Iterable

from sqlalchemy.orm import Session

from ccas.db.models import (
    Project, Estimate, ChangeOrder, QuoteLineItem, Quote, INTERNAL_CATEGORIES
)
from ccas.db.operations import get_expense, get_unlinked_receipts
from ccas.financial_analysis.allocation.targets import (
    ITEM_ESTIMATE, ITEM_CHANGE_ORDER, quote_line_key, choose_baseline_quote
)
from ccas.financial_analysis.matching.scoring import (
    MatchCandidate, MatchScore, MatchWeights, rank_candidates
)
from ccas.utils.common import to_date, round_money

import logging
logger = logging.getLogger(__name__)


def _accepted_quote_lines_by_item(session: Session) -> Dict:
    lines = session.query(QuoteLineItem).join(Quote).filter(Quote.status == 'accepted').all()
    by_item: Dict = {}
    for line in lines:
        key = quote_line_key(line)
        if key is not None:
            by_item.setdefault(key, []).append(line)
    return by_item


def _candidate(key, line, project_id: str, fallback_date, quote_lines: Optional[List]) -> MatchCandidate:
    amount = round_money(line.cost)
    reference_date = to_date(fallback_date)
    payee_id = payee_name = None

    if quote_lines:
        quote, amount, _ = choose_baseline_quote(quote_lines)
        reference_date = to_date(quote.date_received) or to_date(quote.accepted_date) or reference_date
        payee_id = quote.payee_id
        payee_name = quote.payee.payee_name if quote.payee else None

    return MatchCandidate(
        candidate_id=line.id,
        amount=amount,
        reference_date=reference_date,
        payee_id=payee_id,
        payee_name=payee_name,
        project_id=project_id,
        candidate_type='estimate_line_item' if key[0] == ITEM_ESTIMATE else 'change_order_line_item',
        description=line.description,
    )


def build_line_item_candidates(
    session: Session,
    internal_categories: Optional[Iterable[str]] = None
) -> List[MatchCandidate]:
    """Build candidates from every billable line item of every construction project.

    Each candidate carries the item's baseline cost and, when an accepted
    quote covers it, the quote's payee and date.

    Args:
        session: SQLAlchemy session
        internal_categories: Categories to leave out (defaults to the internal set)

    Returns:
        List of MatchCandidate
    """
    internal = set(internal_categories if internal_categories is not None else INTERNAL_CATEGORIES)
    quote_lines = _accepted_quote_lines_by_item(session)
    candidates = []

    estimates = session.query(Estimate).join(Project).filter(
        Project.category == 'construction',
        Estimate.is_current_version.is_(True),
        Estimate.status == 'approved'
    ).all()
    for estimate in estimates:
        for line in estimate.line_items:
            if line.deleted_at is not None or line.category in internal:
                continue
            key = (ITEM_ESTIMATE, line.id)
            candidates.append(_candidate(key, line, estimate.project_id, estimate.date_created,
                                         quote_lines.get(key)))

    change_orders = session.query(ChangeOrder).join(Project).filter(
        Project.category == 'construction',
        ChangeOrder.status == 'approved'
    ).all()
    for change_order in change_orders:
        for line in change_order.line_items:
            if line.deleted_at is not None or line.category in internal:
                continue
            key = (ITEM_CHANGE_ORDER, line.id)
            candidates.append(_candidate(key, line, change_order.project_id, change_order.approved_date,
                                         quote_lines.get(key)))

    logger.info(f"Built {len(candidates)} line item candidates")
    return candidates


def receipt_candidates(session: Session) -> List[MatchCandidate]:
    """Build candidates from receipts that no expense links to yet."""
    return [
        MatchCandidate(
            candidate_id=receipt.id,
            amount=round_money(receipt.amount),
            reference_date=to_date(receipt.captured_at),
            payee_id=receipt.payee_id,
            payee_name=receipt.payee.payee_name if receipt.payee else None,
            project_id=receipt.project_id,
            candidate_type='receipt',
            description=receipt.description,
        )
        for receipt in get_unlinked_receipts(session)
    ]


def suggest_receipts_for_expense(
    session: Session,
    expense_id: str,
    weights: Optional[MatchWeights] = None,
    limit: int = 5
) -> List[MatchScore]:
    """Rank unlinked receipts for an expense.

    Suggestions only; linking stays an explicit call to link_receipt.

    Args:
        session: SQLAlchemy session
        expense_id: Expense ID
        weights: Scoring weights
        limit: Maximum number of suggestions

    Returns:
        List of MatchScore with a positive score, best first
    """
    expense = get_expense(session, expense_id)
    if expense.receipt_id:
        return []
    ranked = rank_candidates(expense, receipt_candidates(session), weights)
    return [match for match in ranked if match.score > 0][:limit]
