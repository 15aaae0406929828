"""
Session event hooks that keep project financials current.

Flushes record which projects were touched by expense, split, quote, change
order, estimate or revenue changes; the commit then recomputes those
projects' rollups inside the same transaction.
"""

from itertools import chain
from typing import Any, Set, Tuple

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from ccas.config import get_section
from ccas.db.models import (
    Expense, ExpenseSplit, Quote, QuoteLineItem, ChangeOrder, Estimate,
    EstimateLineItem, ProjectRevenue, RevenueSplit
)
from ccas.financial_analysis.rollup.calculator import MarginCalculator

import logging
logger = logging.getLogger(__name__)

PENDING_PROJECTS_KEY = 'ccas_rollup_projects'
PENDING_LOOKUPS_KEY = 'ccas_rollup_lookups'

# Models carrying a project_id whose changes affect that project's rollup
PROJECT_SCOPED = (Expense, ExpenseSplit, Quote, ChangeOrder, Estimate, ProjectRevenue, RevenueSplit)

# Child model -> (lookup kind, parent id attribute)
PARENT_SCOPED = {
    ExpenseSplit: ('expense', 'expense_id'),
    RevenueSplit: ('revenue', 'revenue_id'),
    EstimateLineItem: ('estimate', 'estimate_id'),
    QuoteLineItem: ('quote', 'quote_id'),
}

_LOOKUP_MODELS = {
    'expense': Expense,
    'revenue': ProjectRevenue,
    'estimate': Estimate,
    'quote': Quote,
}


def _attribute_values(obj: Any, name: str) -> Set[str]:
    """Current and previous values of an attribute, so re-attribution touches both sides."""
    history = inspect(obj).attrs[name].history
    return {value for value in history.sum() if value}


def _collect_affected_projects(session: Session, flush_context) -> None:
    projects = session.info.setdefault(PENDING_PROJECTS_KEY, set())
    lookups = session.info.setdefault(PENDING_LOOKUPS_KEY, set())

    for obj in chain(session.new, session.dirty, session.deleted):
        if isinstance(obj, PROJECT_SCOPED):
            projects.update(_attribute_values(obj, 'project_id'))
        for model, (kind, attribute) in PARENT_SCOPED.items():
            if isinstance(obj, model):
                lookups.update((kind, value) for value in _attribute_values(obj, attribute))


def _resolve_lookups(session: Session, lookups: Set[Tuple[str, str]]) -> Set[str]:
    projects = set()
    for kind, model in _LOOKUP_MODELS.items():
        ids = [value for lookup_kind, value in lookups if lookup_kind == kind]
        if not ids:
            continue
        rows = session.query(model.project_id).filter(model.id.in_(ids)).all()
        projects.update(row[0] for row in rows if row[0])
    return projects


def _recompute_affected_projects(session: Session) -> None:
    if session.in_nested_transaction():
        return

    session.flush()
    projects = session.info.pop(PENDING_PROJECTS_KEY, set())
    lookups = session.info.pop(PENDING_LOOKUPS_KEY, set())
    projects |= _resolve_lookups(session, lookups)
    if not projects:
        return

    logger.debug(f"Recomputing rollups for {len(projects)} projects before commit")
    calculator = MarginCalculator(session, get_section('allocation'))
    for project_id in sorted(projects):
        calculator.apply_rollup(project_id)


def _discard_pending(session: Session, transaction) -> None:
    if transaction.parent is None:
        session.info.pop(PENDING_PROJECTS_KEY, None)
        session.info.pop(PENDING_LOOKUPS_KEY, None)


def register_rollup_triggers(target: Any) -> None:
    """Install the rollup hooks on a Session, sessionmaker or Session class.

    Registering the same target twice has no further effect.

    Args:
        target: Session instance, sessionmaker or Session subclass
    """
    if event.contains(target, 'after_flush', _collect_affected_projects):
        return
    event.listen(target, 'after_flush', _collect_affected_projects)
    event.listen(target, 'before_commit', _recompute_affected_projects)
    event.listen(target, 'after_transaction_end', _discard_pending)
    logger.debug(f"Registered rollup triggers on {target!r}")


def unregister_rollup_triggers(target: Any) -> None:
    """Remove hooks installed by register_rollup_triggers."""
    if not event.contains(target, 'after_flush', _collect_affected_projects):
        return
    event.remove(target, 'after_flush', _collect_affected_projects)
    event.remove(target, 'before_commit', _recompute_affected_projects)
    event.remove(target, 'after_transaction_end', _discard_pending)
