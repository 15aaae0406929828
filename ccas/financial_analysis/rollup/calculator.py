"""
Financial rollup calculator for the Construction Cost Allocation System.

This module derives a project's cached financial summary (costs, margins and
contingency) from its approved estimate, accepted quotes, approved change
orders, expenses and invoices. The derived fields are only ever written here.
"""

import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, UTC
from typing import Dict, List, Any, Optional

from sqlalchemy import func, or_

from ccas.db.models import (
    Project, Expense, ExpenseSplit, ProjectRevenue, RevenueSplit, Quote, QuoteLineItem
)
from ccas.db.operations import get_project, get_current_approved_estimate, get_approved_change_orders
from ccas.financial_analysis.base import BaseAnalyzer
from ccas.financial_analysis.allocation.targets import choose_baseline_quote
from ccas.utils.common import to_amount, round_money, calculate_percentage

# Project columns owned by the calculator
ROLLUP_FIELDS = (
    'total_expenses', 'total_invoiced', 'contracted_amount',
    'original_est_costs', 'adjusted_est_costs',
    'current_margin', 'current_margin_percentage', 'projected_margin',
    'original_margin', 'actual_margin',
    'contingency_amount', 'contingency_used', 'contingency_remaining',
    'original_margin_estimate_id',
)


@dataclass
class RollupResult:
    """Snapshot of the derived financial fields of one project."""

    project_id: str
    estimate_id: Optional[str] = None
    skipped: bool = False
    total_expenses: float = 0.0
    total_invoiced: float = 0.0
    contracted_amount: Optional[float] = None
    original_est_costs: Optional[float] = None
    adjusted_est_costs: Optional[float] = None
    current_margin: Optional[float] = None
    current_margin_percentage: float = 0.0
    projected_margin: Optional[float] = None
    original_margin: Optional[float] = None
    actual_margin: Optional[float] = None
    contingency_amount: float = 0.0
    contingency_used: float = 0.0
    contingency_remaining: float = 0.0
    original_margin_estimate_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def field_values(self) -> Dict[str, Any]:
        """Values to write onto the Project row."""
        return {name: getattr(self, name) for name in ROLLUP_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class MarginCalculator(BaseAnalyzer[RollupResult]):
    """Computes and stores a project's derived financial fields."""

    def analyze(self, **kwargs) -> RollupResult:
        """Implement the BaseAnalyzer interface.

        Args:
            **kwargs: Analysis parameters, including project_id

        Returns:
            Rollup result
        """
        return self.compute_rollup(kwargs.get('project_id'))

    def compute_rollup(self, project_id: str) -> RollupResult:
        """Compute a project's rollup without writing it.

        Args:
            project_id: Project ID

        Returns:
            RollupResult (``skipped`` for non-construction projects)
        """
        project = get_project(self.db_session, project_id)
        return self._compute(project)

    def recompute_project_margins(self, project_id: str) -> RollupResult:
        """Recompute and store a project's derived financial fields.

        Runs in its own transaction, or in a savepoint when the session is
        already inside one, so either every field is written or none is.
        Calling it again without intervening changes writes the same values.

        Args:
            project_id: Project ID

        Returns:
            RollupResult describing what was written
        """
        owns_transaction = not self.db_session.in_transaction()
        get_project(self.db_session, project_id)

        try:
            if owns_transaction:
                result = self.apply_rollup(project_id)
                self.db_session.commit()
            else:
                with self.db_session.begin_nested():
                    result = self.apply_rollup(project_id)
        except Exception:
            if owns_transaction:
                self.db_session.rollback()
            self.logger.exception(f"Rollup failed for project {project_id}")
            raise
        return result

    def apply_rollup(self, project_id: str) -> Optional[RollupResult]:
        """Lock the project row, recompute from fresh inputs and write the fields.

        Does no transaction handling of its own; the caller owns the
        transaction.

        Args:
            project_id: Project ID

        Returns:
            RollupResult, or None if the project no longer exists
        """
        started = time.perf_counter()
        project = self.db_session.query(Project).filter(
            Project.id == project_id
        ).with_for_update().populate_existing().one_or_none()
        if project is None:
            return None

        result = self._compute(project)
        if result.skipped:
            self.logger.info(f"Skipping rollup for {project.category} project {project.id}")
            return result

        for name, value in result.field_values().items():
            setattr(project, name, value)
        project.financials_updated_at = datetime.now(UTC)
        self.db_session.flush()

        elapsed = (time.perf_counter() - started) * 1000
        self.logger.info(
            f"Rollup for project {project.id}: contracted={result.contracted_amount} "
            f"expenses={result.total_expenses} margin={result.current_margin} ({elapsed:.1f} ms)"
        )
        for warning in result.warnings:
            self.logger.warning(warning)
        return result

    def _compute(self, project: Project) -> RollupResult:
        result = RollupResult(project_id=project.id)
        if project.category != 'construction':
            result.skipped = True
            return result

        result.total_expenses = self.total_expenses(project.id)
        result.total_invoiced = self.total_invoiced(project.id)
        result.actual_margin = round_money(result.total_invoiced - result.total_expenses)

        estimate = get_current_approved_estimate(self.db_session, project.id)
        if estimate is None:
            return result
        result.estimate_id = estimate.id

        change_orders = get_approved_change_orders(self.db_session, project.id)
        line_items = [line for line in estimate.line_items if line.deleted_at is None]

        original_costs = sum(line.cost for line in line_items)
        contract_value = self._contract_value(estimate, line_items)

        quoted_costs = self._accepted_quote_costs(line_items, result)
        adjusted_costs = sum(quoted_costs.get(line.id, line.cost) for line in line_items)
        adjusted_costs += sum(to_amount(co.cost_impact) for co in change_orders)

        contracted = contract_value + sum(to_amount(co.client_amount) for co in change_orders)

        result.original_est_costs = round_money(original_costs)
        result.adjusted_est_costs = round_money(adjusted_costs)
        result.contracted_amount = round_money(contracted)
        result.current_margin = round_money(contracted - result.total_expenses)
        percentage = calculate_percentage(result.current_margin, result.contracted_amount)
        result.current_margin_percentage = round(percentage, 2) if percentage is not None else 0.0
        result.projected_margin = round_money(contracted - adjusted_costs)

        if project.original_margin_estimate_id == estimate.id and project.original_margin is not None:
            result.original_margin = to_amount(project.original_margin)
        else:
            result.original_margin = round_money(contract_value - original_costs)
        result.original_margin_estimate_id = estimate.id

        contingency = max(to_amount(estimate.contingency_amount), 0.0)
        consumed = sum(to_amount(co.cost_impact) for co in change_orders if co.includes_contingency)
        result.contingency_amount = round_money(contingency)
        result.contingency_used = round_money(min(max(consumed, 0.0), contingency))
        result.contingency_remaining = round_money(max(contingency - result.contingency_used, 0.0))
        if consumed > contingency:
            result.warnings.append(
                f"Change orders consume ${consumed:,.2f} of contingency but only "
                f"${contingency:,.2f} is available on estimate {estimate.id}"
            )

        return result

    @staticmethod
    def _contract_value(estimate, line_items) -> float:
        """Client price of the estimate, falling back to the sum of line item prices."""
        if estimate.total_amount is not None:
            return to_amount(estimate.total_amount)
        return sum(to_amount(line.total) for line in line_items)

    def _accepted_quote_costs(self, line_items, result: RollupResult) -> Dict[str, float]:
        ids = [line.id for line in line_items]
        if not ids:
            return {}
        quote_lines = self.db_session.query(QuoteLineItem).join(Quote).filter(
            Quote.status == 'accepted',
            QuoteLineItem.estimate_line_item_id.in_(ids)
        ).all()

        by_item: Dict[str, List[QuoteLineItem]] = {}
        for line in quote_lines:
            by_item.setdefault(line.estimate_line_item_id, []).append(line)

        costs = {}
        for item_id, lines in by_item.items():
            quote, cost, losers = choose_baseline_quote(lines)
            costs[item_id] = cost
            if losers:
                result.warnings.append(
                    f"Line item {item_id} is referenced by {len(losers) + 1} accepted quotes; "
                    f"using quote {quote.id}"
                )
        return costs

    def _split_aware_total(self, parent, split, split_parent_id, project_id: str) -> float:
        session = self.db_session
        unsplit = session.query(func.coalesce(func.sum(parent.amount), 0)).filter(
            parent.project_id == project_id,
            or_(parent.is_split.is_(False), parent.is_split.is_(None))
        ).scalar()
        attributed = session.query(func.coalesce(func.sum(split.split_amount), 0)).filter(
            split.project_id == project_id
        ).scalar()

        covered = session.query(
            split_parent_id.label('parent_id'), func.sum(split.split_amount).label('covered')
        ).group_by(split_parent_id).subquery()
        parents = session.query(parent.amount, covered.c.covered).outerjoin(
            covered, covered.c.parent_id == parent.id
        ).filter(
            parent.project_id == project_id,
            parent.is_split.is_(True)
        ).all()

        total = to_amount(unsplit) + to_amount(attributed)
        for amount, split_total in parents:
            remainder = to_amount(amount) - to_amount(split_total)
            if remainder > self.epsilon:
                total += remainder
        return round_money(total)

    def total_expenses(self, project_id: str) -> float:
        """Expense total of a project without double counting split expenses.

        Unsplit expenses count in full. Split rows count for the project they
        are attributed to. A split parent attributed to this project also
        contributes whatever its splits leave unaccounted for. Receipts are
        documentation and never counted.

        Args:
            project_id: Project ID

        Returns:
            Total expenses
        """
        return self._split_aware_total(Expense, ExpenseSplit, ExpenseSplit.expense_id, project_id)

    def total_invoiced(self, project_id: str) -> float:
        """Invoiced revenue of a project, with the same split rules as expenses."""
        return self._split_aware_total(ProjectRevenue, RevenueSplit, RevenueSplit.revenue_id, project_id)
