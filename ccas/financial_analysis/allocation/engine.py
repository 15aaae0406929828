"""
Allocation engine for the Construction Cost Allocation System.

This module computes how much of each billable line item of a project is
covered by correlated vendor expenses, and lists the expenses that are not
yet correlated to anything.
"""

import time
from typing import Dict, List, Any, Optional, Set

from sqlalchemy import or_

from ccas.db.models import (
    Quote, QuoteLineItem, Expense, ExpenseSplit
)
from ccas.db.operations import (
    get_project, get_current_approved_estimate, get_approved_change_orders,
    get_correlations_for_line_items, get_project_expenses, get_project_expense_splits,
    get_correlated_source_keys
)
from ccas.financial_analysis.base import BaseAnalyzer
from ccas.financial_analysis.allocation.summary import (
    AllocationSummary, LineItemAllocation, classify_allocation,
    SOURCE_ESTIMATE, SOURCE_CHANGE_ORDER
)
from ccas.financial_analysis.allocation.targets import (
    ITEM_ESTIMATE, ITEM_CHANGE_ORDER, quote_line_key, choose_baseline_quote,
    resolve_effective_targets
)
from ccas.utils.common import to_amount, round_money


class AllocationEngine(BaseAnalyzer[AllocationSummary]):
    """Computes expense coverage of a project's billable line items."""

    def analyze(self, **kwargs) -> AllocationSummary:
        """Implement the BaseAnalyzer interface.

        Args:
            **kwargs: Analysis parameters, including project_id

        Returns:
            Allocation summary
        """
        return self.compute_allocation_summary(kwargs.get('project_id'))

    def compute_allocation_summary(self, project_id: str) -> AllocationSummary:
        """Compute the allocation summary of a project.

        Args:
            project_id: Project ID

        Returns:
            AllocationSummary
        """
        started = time.perf_counter()
        project = get_project(self.db_session, project_id)
        summary = AllocationSummary(project_id=project.id)

        if project.category != 'construction':
            summary.add_warning(
                f"Project {project.id} is a {project.category} project; "
                f"only construction projects track allocations"
            )
            return summary

        estimate = get_current_approved_estimate(self.db_session, project.id)
        if estimate is None:
            self.logger.info(f"Project {project.id} has no approved estimate; nothing to allocate")
            return summary
        summary.estimate_id = estimate.id

        items, deleted_keys = self._collect_billable_items(estimate, project.id)
        by_key = {(self._item_type(item), item.line_item_id): item for item in items}

        quote_lines = self._quote_lines_for(by_key)
        self._apply_baselines(by_key, quote_lines, summary)
        self._apply_correlations(by_key, deleted_keys, quote_lines, project.id, summary)

        for item in items:
            item.allocated_amount = round_money(item.allocated_amount)
            if item.allocated_amount < 0:
                message = (
                    f"Line item {item.line_item_id} has a net negative allocation of "
                    f"{item.allocated_amount:.2f} from refunds; reported as 0"
                )
                item.warnings.append(message)
                summary.add_warning(message)
                item.allocated_amount = 0.0
            item.allocation_status = classify_allocation(item.allocated_amount, item.baseline_cost, self.epsilon)
        summary.line_items = items

        elapsed = (time.perf_counter() - started) * 1000
        self.logger.info(
            f"Allocation summary for project {project.id}: "
            f"{summary.allocated_count}/{summary.total_external_line_items} items allocated "
            f"({elapsed:.1f} ms)"
        )
        for warning in summary.warnings:
            self.logger.warning(warning)
        return summary

    @staticmethod
    def _item_type(item: LineItemAllocation) -> str:
        return ITEM_ESTIMATE if item.source == SOURCE_ESTIMATE else ITEM_CHANGE_ORDER

    def _collect_billable_items(self, estimate, project_id: str):
        """Billable items of the estimate and approved change orders, plus keys of soft-deleted ones."""
        items = []
        deleted_keys = set()

        for line in sorted(estimate.line_items, key=lambda line: (line.sort_order or 0, line.id)):
            if line.deleted_at is not None:
                deleted_keys.add((ITEM_ESTIMATE, line.id))
                continue
            if self.is_internal(line.category):
                continue
            items.append(LineItemAllocation(
                line_item_id=line.id,
                source=SOURCE_ESTIMATE,
                category=line.category,
                description=line.description,
                estimated_cost=round_money(line.cost),
                baseline_cost=round_money(line.cost),
            ))

        for change_order in get_approved_change_orders(self.db_session, project_id):
            for line in sorted(change_order.line_items, key=lambda line: line.id):
                if line.deleted_at is not None:
                    deleted_keys.add((ITEM_CHANGE_ORDER, line.id))
                    continue
                if self.is_internal(line.category):
                    continue
                items.append(LineItemAllocation(
                    line_item_id=line.id,
                    source=SOURCE_CHANGE_ORDER,
                    change_order_id=change_order.id,
                    category=line.category,
                    description=line.description,
                    estimated_cost=round_money(line.cost),
                    baseline_cost=round_money(line.cost),
                ))

        return items, deleted_keys

    def _quote_lines_for(self, by_key: Dict) -> List[QuoteLineItem]:
        estimate_ids = [key[1] for key in by_key if key[0] == ITEM_ESTIMATE]
        co_ids = [key[1] for key in by_key if key[0] == ITEM_CHANGE_ORDER]
        conditions = []
        if estimate_ids:
            conditions.append(QuoteLineItem.estimate_line_item_id.in_(estimate_ids))
        if co_ids:
            conditions.append(QuoteLineItem.change_order_line_item_id.in_(co_ids))
        if not conditions:
            return []
        return self.db_session.query(QuoteLineItem).join(Quote).filter(
            or_(*conditions)
        ).all()

    def _apply_baselines(self, by_key: Dict, quote_lines: List[QuoteLineItem],
                         summary: AllocationSummary) -> None:
        accepted_by_item: Dict = {}
        for quote_line in quote_lines:
            if quote_line.quote.status != 'accepted':
                continue
            accepted_by_item.setdefault(quote_line_key(quote_line), []).append(quote_line)

        for key, item_quote_lines in accepted_by_item.items():
            item = by_key.get(key)
            if item is None:
                continue
            quote, cost, losers = choose_baseline_quote(item_quote_lines)
            item.quote_id = quote.id
            item.quoted_cost = cost
            item.baseline_cost = cost
            if losers:
                message = (
                    f"Line item {item.line_item_id} is referenced by {len(losers) + 1} accepted quotes; "
                    f"using quote {quote.id} (most recently accepted)"
                )
                item.warnings.append(message)
                summary.add_warning(message)

    def _apply_correlations(self, by_key: Dict, deleted_keys: Set, quote_lines: List[QuoteLineItem],
                            project_id: str, summary: AllocationSummary) -> None:
        all_keys = set(by_key) | deleted_keys
        estimate_ids = [key[1] for key in all_keys if key[0] == ITEM_ESTIMATE]
        co_ids = [key[1] for key in all_keys if key[0] == ITEM_CHANGE_ORDER]

        # Quotes that can pay for these items, plus the project's own quotes
        quotes: Dict[str, Quote] = {}
        for quote_line in quote_lines:
            quotes[quote_line.quote.id] = quote_line.quote
        for quote in self.db_session.query(Quote).filter(Quote.project_id == project_id):
            quotes[quote.id] = quote

        accepted_quote_lines = {
            quote_id: list(quote.line_items)
            for quote_id, quote in quotes.items()
            if quote.status == 'accepted'
        }

        correlations = get_correlations_for_line_items(
            self.db_session, estimate_ids, co_ids, list(quotes)
        )
        eligible = set(by_key)

        for correlation in correlations:
            if correlation.expense_split_id is None and correlation.expense is not None \
                    and correlation.expense.is_split:
                summary.add_warning(
                    f"Correlation {correlation.id} covers the whole of expense {correlation.expense_id}, "
                    f"which is split across projects; it is not counted"
                )
                continue

            amount = correlation.contributing_amount

            if correlation.quote_id:
                quote = quotes[correlation.quote_id]
                if quote.status != 'accepted':
                    summary.add_warning(
                        f"Correlation {correlation.id} points at quote {quote.id} "
                        f"with status '{quote.status}'; it is not counted"
                    )
                    continue
            else:
                direct_key = (
                    (ITEM_ESTIMATE, correlation.estimate_line_item_id)
                    if correlation.estimate_line_item_id
                    else (ITEM_CHANGE_ORDER, correlation.change_order_line_item_id)
                )
                if direct_key in deleted_keys:
                    summary.add_warning(
                        f"Correlation {correlation.id} points at deleted line item {direct_key[1]}; "
                        f"it is not counted"
                    )
                    continue

            targets = resolve_effective_targets(correlation, accepted_quote_lines, eligible)
            if not targets:
                if correlation.quote_id:
                    summary.add_warning(
                        f"Correlation {correlation.id} points at quote {correlation.quote_id}, "
                        f"which covers no billable line item of this project"
                    )
                continue

            for target in targets:
                item = by_key[target.key]
                item.allocated_amount += amount * target.share
                item.correlation_ids.append(correlation.id)

    def list_unallocated_expenses(self, project_id: str) -> List[Dict[str, Any]]:
        """List vendor expenses of a project that carry no correlation.

        Unsplit expenses are listed whole; split expenses are listed per
        split attributed to this project. Internal categories are left out.

        Args:
            project_id: Project ID

        Returns:
            List of expense dictionaries, oldest first
        """
        project = get_project(self.db_session, project_id)
        if project.category != 'construction':
            return []

        entries = []
        for expense in get_project_expenses(self.db_session, project.id):
            if expense.is_split or self.is_internal(expense.category):
                continue
            entries.append(self._unallocated_entry(expense, None))

        for split in get_project_expense_splits(self.db_session, project.id):
            if self.is_internal(split.expense.category):
                continue
            entries.append(self._unallocated_entry(split.expense, split))

        correlated = get_correlated_source_keys(
            self.db_session, {entry['expense_id'] for entry in entries}
        )
        unallocated = [entry for entry in entries if entry['source_key'] not in correlated]
        unallocated.sort(key=lambda e: (e['expense_date'] is None, e['expense_date'], e['source_key']))

        self.logger.info(f"Project {project.id} has {len(unallocated)} unallocated expenses")
        return unallocated

    @staticmethod
    def _unallocated_entry(expense: Expense, split: Optional[ExpenseSplit]) -> Dict[str, Any]:
        return {
            'expense_id': expense.id,
            'split_id': split.id if split else None,
            'source_key': f"split:{split.id}" if split else f"expense:{expense.id}",
            'amount': to_amount(split.split_amount if split else expense.amount),
            'expense_date': expense.expense_date,
            'category': expense.category,
            'payee_name': expense.payee.payee_name if expense.payee else None,
            'description': expense.description,
        }
