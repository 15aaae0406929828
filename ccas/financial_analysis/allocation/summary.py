"""
Result types for the allocation engine.

This module defines the per-line-item allocation record, the per-category
grouping used for display and the project-level summary.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from ccas.utils.common import DEFAULT_EPSILON, round_money

STATUS_FULL = 'full'
STATUS_PARTIAL = 'partial'
STATUS_NONE = 'none'
ALLOCATION_STATUSES = (STATUS_FULL, STATUS_PARTIAL, STATUS_NONE)

SOURCE_ESTIMATE = 'estimate'
SOURCE_CHANGE_ORDER = 'change_order'


def classify_allocation(allocated: float, baseline: float, epsilon: float = DEFAULT_EPSILON) -> str:
    """Classify how much of a baseline cost is covered.

    Args:
        allocated: Summed contributing expense amounts; the engine clamps
            net refunds to 0 before classifying, so 'none' means nothing is allocated
        baseline: Cost baseline of the line item
        epsilon: Rounding tolerance

    Returns:
        'full', 'partial' or 'none'
    """
    if allocated <= epsilon:
        return STATUS_NONE
    if allocated >= baseline - epsilon:
        return STATUS_FULL
    return STATUS_PARTIAL


@dataclass
class LineItemAllocation:
    """Allocation state of one billable line item."""

    line_item_id: str
    source: str
    category: str
    description: Optional[str]
    estimated_cost: float
    baseline_cost: float
    quoted_cost: Optional[float] = None
    quote_id: Optional[str] = None
    change_order_id: Optional[str] = None
    allocated_amount: float = 0.0
    allocation_status: str = STATUS_NONE
    correlation_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def remaining_amount(self) -> float:
        return max(round_money(self.baseline_cost - self.allocated_amount), 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_item_id': self.line_item_id,
            'source': self.source,
            'change_order_id': self.change_order_id,
            'category': self.category,
            'description': self.description,
            'estimated_cost': self.estimated_cost,
            'quoted_cost': self.quoted_cost,
            'quote_id': self.quote_id,
            'baseline_cost': self.baseline_cost,
            'allocated_amount': self.allocated_amount,
            'remaining_amount': self.remaining_amount,
            'allocation_status': self.allocation_status,
            'correlation_ids': list(self.correlation_ids),
            'warnings': list(self.warnings),
        }


@dataclass
class CategoryGroup:
    """Line items of one category with their subtotals."""

    category: str
    items: List[LineItemAllocation] = field(default_factory=list)

    @property
    def estimated_total(self) -> float:
        return round_money(sum(item.estimated_cost for item in self.items))

    @property
    def quoted_total(self) -> float:
        return round_money(sum(item.quoted_cost for item in self.items if item.quoted_cost is not None))

    @property
    def baseline_total(self) -> float:
        return round_money(sum(item.baseline_cost for item in self.items))

    @property
    def allocated_total(self) -> float:
        return round_money(sum(item.allocated_amount for item in self.items))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'category': self.category,
            'estimated_total': self.estimated_total,
            'quoted_total': self.quoted_total,
            'baseline_total': self.baseline_total,
            'allocated_total': self.allocated_total,
            'items': [item.to_dict() for item in self.items],
        }


@dataclass
class AllocationSummary:
    """Coverage of a project's billable line items by vendor expenses.

    A project without an approved estimate produces an empty summary with
    ``allocation_percent`` of 100: nothing is required and nothing is pending.
    """

    project_id: str
    estimate_id: Optional[str] = None
    line_items: List[LineItemAllocation] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_external_line_items(self) -> int:
        return len(self.line_items)

    @property
    def allocated_count(self) -> int:
        return sum(1 for item in self.line_items if item.allocation_status != STATUS_NONE)

    @property
    def pending_count(self) -> int:
        return self.total_external_line_items - self.allocated_count

    @property
    def allocation_percent(self) -> float:
        if self.total_external_line_items == 0:
            return 100.0
        return round(self.allocated_count / self.total_external_line_items * 100, 2)

    @property
    def total_baseline(self) -> float:
        return round_money(sum(item.baseline_cost for item in self.line_items))

    @property
    def total_allocated(self) -> float:
        return round_money(sum(item.allocated_amount for item in self.line_items))

    @property
    def categories(self) -> List[CategoryGroup]:
        groups: Dict[str, CategoryGroup] = {}
        for item in self.line_items:
            groups.setdefault(item.category, CategoryGroup(item.category)).items.append(item)
        return [groups[name] for name in sorted(groups)]

    def status_counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in ALLOCATION_STATUSES}
        for item in self.line_items:
            counts[item.allocation_status] += 1
        return counts

    def add_warning(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'project_id': self.project_id,
            'estimate_id': self.estimate_id,
            'total_external_line_items': self.total_external_line_items,
            'allocated_count': self.allocated_count,
            'pending_count': self.pending_count,
            'allocation_percent': self.allocation_percent,
            'total_baseline': self.total_baseline,
            'total_allocated': self.total_allocated,
            'status_counts': self.status_counts(),
            'categories': [group.to_dict() for group in self.categories],
            'warnings': list(self.warnings),
        }
