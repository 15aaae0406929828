"""
Database operations for the Construction Cost Allocation System.

This module provides the query interface the allocation and rollup components
read through, plus the narrow set of writes they are allowed to make:
correlation records, expense splits and receipt links.
"""

import logging
from datetime import date
from typing import List, Dict, Any, Optional, Tuple, Iterable

from sqlalchemy.orm import Session
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from ccas.db.models import (
    Project, Estimate, ChangeOrder, Quote, Expense, ExpenseSplit, Receipt,
    EstimateLineItem, ChangeOrderLineItem, ExpenseLineItemCorrelation,
    CORRELATION_TARGETS
)
from ccas.utils.common import to_amount, to_date, amounts_equal
from ccas.utils.errors import ValidationError, NotFoundError, CorrelationConflictError

logger = logging.getLogger(__name__)

# Split rows must add up to the parent expense within a cent
SPLIT_TOLERANCE = 0.01

_TARGET_MODELS = {
    'estimated': EstimateLineItem,
    'change_order': ChangeOrderLineItem,
    'quoted': Quote,
}


def _require_id(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"A valid {label} id is required, got {value!r}")
    if len(value) > 40:
        raise ValidationError(f"Malformed {label} id: {value!r}")
    return value.strip()


def get_project(session: Session, project_id: str) -> Project:
    """Get a project by ID.

    Args:
        session: SQLAlchemy session
        project_id: Project ID

    Returns:
        Project object

    Raises:
        ValidationError: If the id is blank or malformed
        NotFoundError: If no project has this id
    """
    project_id = _require_id(project_id, "project")
    project = session.get(Project, project_id)
    if project is None:
        raise NotFoundError(f"Project not found: {project_id}")
    return project


def get_expense(session: Session, expense_id: str) -> Expense:
    """Get an expense by ID, raising NotFoundError when it does not exist."""
    expense_id = _require_id(expense_id, "expense")
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFoundError(f"Expense not found: {expense_id}")
    return expense


def get_current_approved_estimate(session: Session, project_id: str) -> Optional[Estimate]:
    """Get the authoritative estimate of a project.

    Only an estimate that is both the current version and approved counts.
    If the version chain is inconsistent and several qualify, the highest
    version wins.

    Args:
        session: SQLAlchemy session
        project_id: Project ID

    Returns:
        Estimate object or None
    """
    return session.query(Estimate).filter(
        Estimate.project_id == project_id,
        Estimate.is_current_version.is_(True),
        Estimate.status == 'approved'
    ).order_by(
        Estimate.version_number.desc(),
        Estimate.date_created.desc(),
        Estimate.id
    ).first()


def get_approved_change_orders(session: Session, project_id: str) -> List[ChangeOrder]:
    """Get approved change orders for a project.

    Args:
        session: SQLAlchemy session
        project_id: Project ID

    Returns:
        List of ChangeOrder objects
    """
    return session.query(ChangeOrder).filter(
        ChangeOrder.project_id == project_id,
        ChangeOrder.status == 'approved'
    ).order_by(ChangeOrder.change_order_number, ChangeOrder.id).all()


def get_accepted_quotes(session: Session, project_id: Optional[str] = None) -> List[Quote]:
    """Get accepted quotes, optionally for one project.

    Args:
        session: SQLAlchemy session
        project_id: Optional project ID

    Returns:
        List of Quote objects, most recently accepted first
    """
    query = session.query(Quote).filter(Quote.status == 'accepted')
    if project_id:
        query = query.filter(Quote.project_id == project_id)
    return query.order_by(Quote.accepted_date.desc(), Quote.id).all()


def get_project_expenses(session: Session, project_id: str) -> List[Expense]:
    """Get expenses whose parent record is attributed to a project.

    Args:
        session: SQLAlchemy session
        project_id: Project ID

    Returns:
        List of Expense objects
    """
    return session.query(Expense).filter(
        Expense.project_id == project_id
    ).order_by(Expense.expense_date, Expense.id).all()


def get_project_expense_splits(session: Session, project_id: str) -> List[ExpenseSplit]:
    """Get expense splits attributed to a project.

    Args:
        session: SQLAlchemy session
        project_id: Project ID

    Returns:
        List of ExpenseSplit objects
    """
    return session.query(ExpenseSplit).filter(
        ExpenseSplit.project_id == project_id
    ).order_by(ExpenseSplit.created_at, ExpenseSplit.id).all()


def get_expenses_by_date_range(
    session: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    project_id: Optional[str] = None
) -> List[Expense]:
    """Get expenses within a date range.

    Args:
        session: SQLAlchemy session
        start_date: Optional start date (inclusive)
        end_date: Optional end date (inclusive)
        project_id: Optional project ID

    Returns:
        List of Expense objects
    """
    query = session.query(Expense)

    start = to_date(start_date)
    end = to_date(end_date)
    if start:
        query = query.filter(Expense.expense_date >= start)
    if end:
        query = query.filter(Expense.expense_date <= end)
    if project_id:
        query = query.filter(Expense.project_id == project_id)

    return query.order_by(Expense.expense_date, Expense.id).all()


def get_correlations_for_line_items(
    session: Session,
    estimate_item_ids: Iterable[str] = (),
    co_item_ids: Iterable[str] = (),
    quote_ids: Iterable[str] = ()
) -> List[ExpenseLineItemCorrelation]:
    """Get correlations targeting any of the given line items or quotes.

    Args:
        session: SQLAlchemy session
        estimate_item_ids: Estimate line item IDs
        co_item_ids: Change order line item IDs
        quote_ids: Quote IDs

    Returns:
        List of ExpenseLineItemCorrelation objects
    """
    conditions = []
    estimate_item_ids = list(estimate_item_ids)
    co_item_ids = list(co_item_ids)
    quote_ids = list(quote_ids)

    if estimate_item_ids:
        conditions.append(ExpenseLineItemCorrelation.estimate_line_item_id.in_(estimate_item_ids))
    if co_item_ids:
        conditions.append(ExpenseLineItemCorrelation.change_order_line_item_id.in_(co_item_ids))
    if quote_ids:
        conditions.append(ExpenseLineItemCorrelation.quote_id.in_(quote_ids))

    if not conditions:
        return []

    return session.query(ExpenseLineItemCorrelation).filter(
        or_(*conditions)
    ).order_by(ExpenseLineItemCorrelation.created_at, ExpenseLineItemCorrelation.id).all()


def get_correlations_for_expense(session: Session, expense_id: str) -> List[ExpenseLineItemCorrelation]:
    """Get every correlation recorded for an expense or any of its splits."""
    return session.query(ExpenseLineItemCorrelation).filter(
        ExpenseLineItemCorrelation.expense_id == expense_id
    ).order_by(ExpenseLineItemCorrelation.created_at, ExpenseLineItemCorrelation.id).all()


def _find_correlation(session: Session, source_key: str, correlation_type: str) -> Optional[ExpenseLineItemCorrelation]:
    return session.query(ExpenseLineItemCorrelation).filter(
        ExpenseLineItemCorrelation.source_key == source_key,
        ExpenseLineItemCorrelation.correlation_type == correlation_type
    ).first()


def _check_existing(existing: ExpenseLineItemCorrelation, target_id: str) -> ExpenseLineItemCorrelation:
    if existing.target_id == target_id:
        return existing
    logger.warning(
        f"Correlation conflict for {existing.source_key}: already linked to "
        f"{existing.target_id} ({existing.correlation_type})"
    )
    raise CorrelationConflictError(
        f"{existing.source_key} is already correlated to a different "
        f"{existing.correlation_type} target ({existing.target_id})",
        existing_id=existing.id
    )


def create_correlation(
    session: Session,
    expense_id: str,
    *,
    estimate_line_item_id: Optional[str] = None,
    change_order_line_item_id: Optional[str] = None,
    quote_id: Optional[str] = None,
    expense_split_id: Optional[str] = None,
    auto_correlated: bool = False,
    confidence_score: Optional[float] = None,
    notes: Optional[str] = None
) -> ExpenseLineItemCorrelation:
    """Link an expense (or one of its splits) to a billable target.

    Exactly one of the target ids must be given; the correlation type follows
    from it. Repeating an identical insert returns the existing record.

    Args:
        session: SQLAlchemy session
        expense_id: Expense ID
        estimate_line_item_id: Target estimate line item
        change_order_line_item_id: Target change order line item
        quote_id: Target quote
        expense_split_id: Optional split of the expense being correlated
        auto_correlated: Whether the link was suggested by the system
        confidence_score: Suggestion score, if any
        notes: Free-form notes

    Returns:
        ExpenseLineItemCorrelation object

    Raises:
        ValidationError: If the target set is not exactly one id
        NotFoundError: If the expense, split or target does not exist
        CorrelationConflictError: If the source is already correlated to a
            different target of the same type
    """
    given = {
        'estimated': estimate_line_item_id,
        'change_order': change_order_line_item_id,
        'quoted': quote_id,
    }
    given = {key: value for key, value in given.items() if value}
    if len(given) != 1:
        raise ValidationError(
            "A correlation needs exactly one target: an estimate line item, "
            "a change order line item or a quote"
        )
    correlation_type, target_id = next(iter(given.items()))

    expense = get_expense(session, expense_id)

    split = None
    if expense_split_id:
        split = session.get(ExpenseSplit, expense_split_id)
        if split is None or split.expense_id != expense.id:
            raise NotFoundError(f"Split {expense_split_id} not found on expense {expense.id}")
    elif expense.is_split:
        raise ValidationError(
            f"Expense {expense.id} is split across projects; correlate one of its splits"
        )

    if session.get(_TARGET_MODELS[correlation_type], target_id) is None:
        raise NotFoundError(f"Correlation target not found: {correlation_type} {target_id}")

    source_key = f"split:{split.id}" if split else f"expense:{expense.id}"

    existing = _find_correlation(session, source_key, correlation_type)
    if existing is not None:
        return _check_existing(existing, target_id)

    correlation = ExpenseLineItemCorrelation(
        expense_id=expense.id,
        expense_split_id=split.id if split else None,
        source_key=source_key,
        correlation_type=correlation_type,
        auto_correlated=auto_correlated,
        confidence_score=confidence_score,
        notes=notes,
    )
    setattr(correlation, CORRELATION_TARGETS[correlation_type], target_id)

    try:
        with session.begin_nested():
            session.add(correlation)
            session.flush()
    except IntegrityError:
        # A concurrent request inserted the same source/type first
        winner = _find_correlation(session, source_key, correlation_type)
        if winner is None:
            raise
        return _check_existing(winner, target_id)

    logger.info(f"Correlated {source_key} to {correlation_type} {target_id}")
    return correlation


def delete_correlation(session: Session, correlation_id: str) -> None:
    """Delete a correlation.

    Args:
        session: SQLAlchemy session
        correlation_id: Correlation ID

    Raises:
        NotFoundError: If the correlation does not exist
    """
    correlation = session.get(ExpenseLineItemCorrelation, correlation_id)
    if correlation is None:
        raise NotFoundError(f"Correlation not found: {correlation_id}")
    session.delete(correlation)
    session.flush()


def validate_split_total(amount: float, split_amounts: List[float]) -> Tuple[bool, Optional[str]]:
    """Check that split amounts account for an expense amount.

    Args:
        amount: Parent expense amount
        split_amounts: Amounts of the proposed splits

    Returns:
        Tuple of (is_valid, error message or None)
    """
    if not split_amounts:
        return False, "At least one split is required"

    for split_amount in split_amounts:
        if to_amount(split_amount) <= 0:
            return False, f"Split amounts must be positive, got {split_amount}"

    total = sum(to_amount(value) for value in split_amounts)
    if not amounts_equal(total, to_amount(amount), SPLIT_TOLERANCE):
        return False, (
            f"Split total ${total:,.2f} does not match expense amount "
            f"${to_amount(amount):,.2f}"
        )

    return True, None


def create_expense_splits(session: Session, expense_id: str, splits: List[Dict[str, Any]]) -> List[ExpenseSplit]:
    """Distribute an expense across projects, replacing any existing splits.

    Correlations of the whole expense and of replaced splits are removed;
    the new splits start out unallocated.

    Args:
        session: SQLAlchemy session
        expense_id: Expense ID
        splits: List of dicts with project_id, split_amount and optional notes

    Returns:
        List of created ExpenseSplit objects

    Raises:
        ValidationError: If the splits do not add up or repeat a project
    """
    expense = get_expense(session, expense_id)

    amounts = [split.get('split_amount') for split in splits]
    valid, error = validate_split_total(expense.amount, amounts)
    if not valid:
        raise ValidationError(error)

    project_ids = [split.get('project_id') for split in splits]
    if len(set(project_ids)) != len(project_ids):
        raise ValidationError("An expense can be split to each project only once")
    for project_id in project_ids:
        get_project(session, project_id)

    _drop_correlations(session, expense)

    # Remove old rows first so the (expense, project) constraint holds
    expense.splits.clear()
    session.flush()

    total = to_amount(expense.amount)
    created = []
    for split in splits:
        split_amount = to_amount(split['split_amount'])
        row = ExpenseSplit(
            expense_id=expense.id,
            project_id=split['project_id'],
            split_amount=split_amount,
            split_percentage=round(split_amount / total * 100, 4) if total else None,
            notes=split.get('notes')
        )
        expense.splits.append(row)
        created.append(row)

    expense.is_split = True
    session.flush()

    logger.info(f"Split expense {expense.id} across {len(created)} projects")
    return created


def _drop_correlations(session: Session, expense: Expense) -> None:
    correlations = get_correlations_for_expense(session, expense.id)
    for correlation in correlations:
        session.delete(correlation)
    if correlations:
        logger.info(f"Removed {len(correlations)} correlations of expense {expense.id}")
    session.flush()

    # Collections loaded earlier may still hold the deleted rows
    session.expire(expense, ['correlations'])
    for split in expense.splits:
        session.expire(split, ['correlations'])


def delete_expense_splits(session: Session, expense_id: str) -> None:
    """Revert a split expense to a single-project expense.

    Correlations of the removed splits are deleted with them.

    Args:
        session: SQLAlchemy session
        expense_id: Expense ID
    """
    expense = get_expense(session, expense_id)
    _drop_correlations(session, expense)
    expense.splits.clear()
    expense.is_split = False
    session.flush()


def link_receipt(session: Session, expense_id: str, receipt_id: str) -> Expense:
    """Attach a receipt to an expense as documentation.

    Only the expense's receipt reference changes.

    Args:
        session: SQLAlchemy session
        expense_id: Expense ID
        receipt_id: Receipt ID

    Returns:
        Expense object
    """
    expense = get_expense(session, expense_id)
    receipt = session.get(Receipt, receipt_id)
    if receipt is None:
        raise NotFoundError(f"Receipt not found: {receipt_id}")

    expense.receipt_id = receipt.id
    session.flush()
    return expense


def unlink_receipt(session: Session, expense_id: str) -> Expense:
    """Detach the receipt from an expense."""
    expense = get_expense(session, expense_id)
    expense.receipt_id = None
    session.flush()
    return expense


def get_unlinked_receipts(session: Session) -> List[Receipt]:
    """Get receipts no expense points at yet.

    Args:
        session: SQLAlchemy session

    Returns:
        List of Receipt objects, newest first
    """
    linked = select(Expense.receipt_id).where(Expense.receipt_id.is_not(None))
    return session.query(Receipt).filter(
        Receipt.id.not_in(linked)
    ).order_by(Receipt.captured_at.desc(), Receipt.id).all()


def get_correlated_source_keys(session: Session, expense_ids: Iterable[str]) -> set:
    """Get the source keys among the given expenses that carry a correlation."""
    expense_ids = list(expense_ids)
    if not expense_ids:
        return set()
    rows = session.query(ExpenseLineItemCorrelation.source_key).filter(
        ExpenseLineItemCorrelation.expense_id.in_(expense_ids)
    ).distinct().all()
    return {row[0] for row in rows}
