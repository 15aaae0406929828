"""
Report data source registry for the Construction Cost Allocation System.

Every reportable entity is declared here with the columns it exposes, their
types, the operators each accepts and a default sort. The report executor
never accepts a table or column name that is not listed in this registry.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_
from sqlalchemy.sql import Select

from ccas.db.models import (
    Project, Estimate, EstimateLineItem, ChangeOrder, Quote, QuoteLineItem,
    Expense, Payee, ExpenseLineItemCorrelation, INTERNAL_CATEGORIES
)
from ccas.utils.errors import ValidationError

# Bump whenever a data source, field or operator set changes
REGISTRY_VERSION = 4

STRING = 'string'
NUMBER = 'number'
DATE = 'date'
BOOLEAN = 'boolean'
# Timestamp columns; a date-only filter value covers the whole day
DATETIME = 'datetime'
FIELD_TYPES = (STRING, NUMBER, DATE, DATETIME, BOOLEAN)

OPERATORS = (
    'equals', 'not_equals', 'in', 'between', 'contains',
    'greater_than', 'less_than', 'is_null', 'is_not_null'
)

DEFAULT_OPERATORS = {
    STRING: ('equals', 'not_equals', 'in', 'contains', 'is_null', 'is_not_null'),
    NUMBER: ('equals', 'not_equals', 'in', 'between', 'greater_than', 'less_than', 'is_null', 'is_not_null'),
    DATE: ('equals', 'not_equals', 'between', 'greater_than', 'less_than', 'is_null', 'is_not_null'),
    DATETIME: ('equals', 'not_equals', 'between', 'greater_than', 'less_than', 'is_null', 'is_not_null'),
    BOOLEAN: ('equals',),
}


@dataclass(frozen=True)
class ReportField:
    """One output column of a data source."""

    name: str
    field_type: str = STRING
    operators: Optional[Tuple[str, ...]] = None

    @property
    def allowed_operators(self) -> Tuple[str, ...]:
        return self.operators or DEFAULT_OPERATORS[self.field_type]


@dataclass(frozen=True)
class DataSource:
    """A reportable entity: its query, its columns and its default sort."""

    name: str
    description: str
    query: Callable[[], Select]
    fields: Tuple[ReportField, ...]
    default_sort: str
    default_sort_dir: str = 'desc'

    def get_field(self, name: str) -> Optional[ReportField]:
        for report_field in self.fields:
            if report_field.name == name:
                return report_field
        return None

    @property
    def field_names(self) -> List[str]:
        return [report_field.name for report_field in self.fields]


def _fields(*entries) -> Tuple[ReportField, ...]:
    return tuple(ReportField(*entry) if isinstance(entry, tuple) else ReportField(entry) for entry in entries)


def _projects_query() -> Select:
    has_approved_estimate = select(Estimate.id).where(
        Estimate.project_id == Project.id,
        Estimate.status == 'approved',
        Estimate.is_current_version.is_(True)
    ).correlate(Project).exists()
    has_expenses = select(Expense.id).where(Expense.project_id == Project.id).correlate(Project).exists()
    has_accepted_quote = select(Quote.id).where(
        Quote.project_id == Project.id, Quote.status == 'accepted'
    ).correlate(Project).exists()
    has_pending_change_orders = select(ChangeOrder.id).where(
        ChangeOrder.project_id == Project.id, ChangeOrder.status == 'pending'
    ).correlate(Project).exists()

    return select(
        Project.id.label('id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        Project.client_name.label('client_name'),
        Project.status.label('status'),
        Project.category.label('category'),
        Project.start_date.label('start_date'),
        Project.end_date.label('end_date'),
        Project.contracted_amount.label('contracted_amount'),
        Project.total_expenses.label('total_expenses'),
        Project.total_invoiced.label('total_invoiced'),
        Project.original_est_costs.label('original_est_costs'),
        Project.adjusted_est_costs.label('adjusted_est_costs'),
        Project.current_margin.label('current_margin'),
        Project.current_margin_percentage.label('current_margin_percentage'),
        Project.projected_margin.label('projected_margin'),
        Project.original_margin.label('original_margin'),
        Project.contingency_remaining.label('contingency_remaining'),
        Project.created_at.label('created_at'),
        has_approved_estimate.label('has_approved_estimate'),
        has_expenses.label('has_expenses'),
        has_accepted_quote.label('has_accepted_quote'),
        has_pending_change_orders.label('has_pending_change_orders'),
    )


def _expenses_query() -> Select:
    is_allocated = select(ExpenseLineItemCorrelation.id).where(
        ExpenseLineItemCorrelation.expense_id == Expense.id
    ).correlate(Expense).exists()

    return select(
        Expense.id.label('id'),
        Expense.expense_date.label('expense_date'),
        Expense.amount.label('amount'),
        Expense.category.label('category'),
        Expense.transaction_type.label('transaction_type'),
        Expense.description.label('description'),
        Expense.approval_status.label('approval_status'),
        Expense.is_split.label('is_split'),
        Expense.project_id.label('project_id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        Project.client_name.label('client_name'),
        Payee.payee_name.label('payee_name'),
        Expense.receipt_id.is_not(None).label('has_receipt'),
        is_allocated.label('is_allocated'),
        Expense.created_at.label('created_at'),
    ).select_from(Expense).outerjoin(
        Project, Expense.project_id == Project.id
    ).outerjoin(
        Payee, Expense.payee_id == Payee.id
    )


def _quotes_query() -> Select:
    line_item_count = select(func.count(QuoteLineItem.id)).where(
        QuoteLineItem.quote_id == Quote.id
    ).correlate(Quote).scalar_subquery()

    return select(
        Quote.id.label('id'),
        Quote.quote_number.label('quote_number'),
        Quote.status.label('status'),
        Quote.total_amount.label('total_amount'),
        Quote.date_received.label('date_received'),
        Quote.accepted_date.label('accepted_date'),
        Quote.project_id.label('project_id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        Project.client_name.label('client_name'),
        Payee.payee_name.label('payee_name'),
        line_item_count.label('line_item_count'),
    ).select_from(Quote).outerjoin(
        Project, Quote.project_id == Project.id
    ).outerjoin(
        Payee, Quote.payee_id == Payee.id
    )


def _time_entries_query() -> Select:
    return select(
        Expense.id.label('id'),
        Expense.expense_date.label('expense_date'),
        Expense.hours.label('hours'),
        Expense.amount.label('amount'),
        Expense.description.label('description'),
        Expense.approval_status.label('approval_status'),
        Expense.project_id.label('project_id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        Project.client_name.label('client_name'),
        Payee.payee_name.label('worker_name'),
        Payee.hourly_rate.label('hourly_rate'),
        (Expense.hours * Payee.hourly_rate).label('labor_cost'),
    ).select_from(Expense).outerjoin(
        Project, Expense.project_id == Project.id
    ).outerjoin(
        Payee, Expense.payee_id == Payee.id
    ).where(Expense.category == 'labor_internal')


def _quote_count(*conditions):
    return select(func.count(QuoteLineItem.id)).select_from(QuoteLineItem).join(
        Quote, QuoteLineItem.quote_id == Quote.id
    ).where(
        QuoteLineItem.estimate_line_item_id == EstimateLineItem.id, *conditions
    ).correlate(EstimateLineItem).scalar_subquery()


def _estimate_line_items_query() -> Select:
    quote_count = _quote_count()
    accepted_count = _quote_count(Quote.status == 'accepted')
    pending_count = _quote_count(Quote.status == 'pending')

    return select(
        EstimateLineItem.id.label('id'),
        EstimateLineItem.estimate_id.label('estimate_id'),
        Estimate.estimate_number.label('estimate_number'),
        Estimate.status.label('estimate_status'),
        Estimate.is_current_version.label('is_current_version'),
        Estimate.project_id.label('project_id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        EstimateLineItem.category.label('category'),
        EstimateLineItem.description.label('description'),
        EstimateLineItem.quantity.label('quantity'),
        EstimateLineItem.total.label('total'),
        EstimateLineItem.total_cost.label('total_cost'),
        EstimateLineItem.category.in_(INTERNAL_CATEGORIES).label('is_internal'),
        quote_count.label('quote_count'),
        (quote_count > 0).label('has_quotes'),
        (accepted_count > 0).label('has_accepted_quote'),
        accepted_count.label('accepted_quote_count'),
        pending_count.label('pending_quote_count'),
    ).select_from(EstimateLineItem).join(
        Estimate, EstimateLineItem.estimate_id == Estimate.id
    ).outerjoin(
        Project, Estimate.project_id == Project.id
    ).where(EstimateLineItem.deleted_at.is_(None))


def _internal_costs_query() -> Select:
    return select(
        Expense.id.label('id'),
        Expense.expense_date.label('expense_date'),
        Expense.category.label('category'),
        Expense.hours.label('hours'),
        Expense.amount.label('amount'),
        Expense.description.label('description'),
        Expense.project_id.label('project_id'),
        Project.project_number.label('project_number'),
        Project.project_name.label('project_name'),
        Project.client_name.label('client_name'),
        Project.status.label('status'),
        Payee.payee_name.label('worker_name'),
        Payee.hourly_rate.label('hourly_rate'),
        Estimate.estimate_number.label('estimate_number'),
    ).select_from(Expense).outerjoin(
        Project, Expense.project_id == Project.id
    ).outerjoin(
        Payee, Expense.payee_id == Payee.id
    ).outerjoin(
        Estimate, and_(
            Estimate.project_id == Project.id,
            Estimate.status == 'approved',
            Estimate.is_current_version.is_(True)
        )
    ).where(Expense.category.in_(INTERNAL_CATEGORIES))


REGISTRY: Dict[str, DataSource] = {
    'projects': DataSource(
        name='projects',
        description='Projects with their cached financial summary',
        query=_projects_query,
        fields=_fields(
            'id', 'project_number', 'project_name', 'client_name', 'status', 'category',
            ('start_date', DATE), ('end_date', DATE),
            ('contracted_amount', NUMBER), ('total_expenses', NUMBER), ('total_invoiced', NUMBER),
            ('original_est_costs', NUMBER), ('adjusted_est_costs', NUMBER),
            ('current_margin', NUMBER), ('current_margin_percentage', NUMBER),
            ('projected_margin', NUMBER), ('original_margin', NUMBER),
            ('contingency_remaining', NUMBER), ('created_at', DATETIME),
            ('has_approved_estimate', BOOLEAN), ('has_expenses', BOOLEAN),
            ('has_accepted_quote', BOOLEAN), ('has_pending_change_orders', BOOLEAN),
        ),
        default_sort='created_at',
    ),
    'expenses': DataSource(
        name='expenses',
        description='Expenses with project and payee names',
        query=_expenses_query,
        fields=_fields(
            'id', ('expense_date', DATE), ('amount', NUMBER), 'category', 'transaction_type',
            'description', 'approval_status', ('is_split', BOOLEAN), 'project_id',
            'project_number', 'project_name', 'client_name', 'payee_name',
            ('has_receipt', BOOLEAN), ('is_allocated', BOOLEAN), ('created_at', DATETIME),
        ),
        default_sort='expense_date',
    ),
    'quotes': DataSource(
        name='quotes',
        description='Vendor quotes with project and payee names',
        query=_quotes_query,
        fields=_fields(
            'id', 'quote_number', 'status', ('total_amount', NUMBER),
            ('date_received', DATE), ('accepted_date', DATETIME), 'project_id',
            'project_number', 'project_name', 'client_name', 'payee_name',
            ('line_item_count', NUMBER),
        ),
        default_sort='date_received',
    ),
    'time_entries': DataSource(
        name='time_entries',
        description='Internal labor entries with worker rate and cost',
        query=_time_entries_query,
        fields=_fields(
            'id', ('expense_date', DATE), ('hours', NUMBER), ('amount', NUMBER),
            'description', 'approval_status', 'project_id', 'project_number',
            'project_name', 'client_name', 'worker_name', ('hourly_rate', NUMBER),
            ('labor_cost', NUMBER),
        ),
        default_sort='expense_date',
    ),
    'estimate_line_items': DataSource(
        name='estimate_line_items',
        description='Estimate line items with their quote coverage',
        query=_estimate_line_items_query,
        fields=_fields(
            'id', 'estimate_id', 'estimate_number', 'estimate_status',
            ('is_current_version', BOOLEAN), 'project_id', 'project_number', 'project_name',
            'category', 'description', ('quantity', NUMBER), ('total', NUMBER),
            ('total_cost', NUMBER), ('is_internal', BOOLEAN), ('quote_count', NUMBER),
            ('has_quotes', BOOLEAN), ('has_accepted_quote', BOOLEAN),
            ('accepted_quote_count', NUMBER), ('pending_quote_count', NUMBER),
        ),
        default_sort='project_number',
        default_sort_dir='asc',
    ),
    'internal_costs': DataSource(
        name='internal_costs',
        description='Internal labor and management costs by project',
        query=_internal_costs_query,
        fields=_fields(
            'id', ('expense_date', DATE), 'category', ('hours', NUMBER), ('amount', NUMBER),
            'description', 'project_id', 'project_number', 'project_name', 'client_name',
            'status', 'worker_name', ('hourly_rate', NUMBER), 'estimate_number',
        ),
        default_sort='expense_date',
    ),
}


def get_data_source(name: str) -> DataSource:
    """Look up a data source by name.

    Args:
        name: Data source name

    Returns:
        DataSource

    Raises:
        ValidationError: If the name is not registered
    """
    source = REGISTRY.get(name) if isinstance(name, str) else None
    if source is None:
        raise ValidationError(
            f"Unknown data source '{name}'. Available: {', '.join(sorted(REGISTRY))}"
        )
    return source


def list_data_sources() -> List[str]:
    """Names of all registered data sources."""
    return sorted(REGISTRY)
