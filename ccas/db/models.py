"""
Database models for the Construction Cost Allocation System.

This module defines the SQLAlchemy models that represent the database schema
for projects, estimates, change orders, quotes, expenses and the correlation
records that tie vendor expenses to the line items they pay for.
"""

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey,
    Text, Numeric, Date, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, UTC
import uuid

Base = declarative_base()

# Project categories
PROJECT_CATEGORIES = ('construction', 'system', 'overhead')

# Line item / expense categories. Internal ones are covered by tracked labor
# hours, never by vendor expenses.
LINE_ITEM_CATEGORIES = (
    'labor_internal', 'subcontractors', 'materials', 'equipment',
    'permits', 'management', 'other'
)
EXPENSE_CATEGORIES = LINE_ITEM_CATEGORIES + (
    'tools', 'software', 'vehicle_maintenance', 'gas', 'meals',
    'office_expenses', 'vehicle_expenses'
)
INTERNAL_CATEGORIES = ('labor_internal', 'management')

ESTIMATE_STATUSES = ('draft', 'sent', 'approved', 'rejected', 'expired')
CHANGE_ORDER_STATUSES = ('pending', 'approved', 'rejected')
QUOTE_STATUSES = ('pending', 'accepted', 'rejected', 'expired')

# correlation_type -> target column on ExpenseLineItemCorrelation
CORRELATION_TARGETS = {
    'estimated': 'estimate_line_item_id',
    'change_order': 'change_order_line_item_id',
    'quoted': 'quote_id',
}


def _uuid():
    return str(uuid.uuid4())


def _now():
    return datetime.now(UTC)


def _money():
    return Numeric(15, 2, asdecimal=False)


class Payee(Base):
    """Vendor, subcontractor or internal worker that expenses and quotes are attributed to."""

    __tablename__ = 'payees'

    id = Column(String(40), primary_key=True, default=_uuid)
    payee_name = Column(String(255), nullable=False)
    full_name = Column(String(255))
    is_internal = Column(Boolean, default=False)
    hourly_rate = Column(_money())

    __table_args__ = (
        Index('idx_payees_name', 'payee_name'),
    )

    def __repr__(self):
        return f"<Payee(id='{self.id}', name='{self.payee_name}')>"


class Project(Base):
    """Project model; the financial fields are derived state owned by the rollup calculator."""

    __tablename__ = 'projects'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_number = Column(String(50))
    project_name = Column(String(255), nullable=False)
    client_name = Column(String(255))
    status = Column(String(30), default='estimating')
    category = Column(String(20), nullable=False, default='construction')
    start_date = Column(Date)
    end_date = Column(Date)
    created_at = Column(DateTime, default=_now)

    # Derived financial summary, recomputed on every relevant change
    contracted_amount = Column(_money())
    total_expenses = Column(_money())
    total_invoiced = Column(_money())
    original_est_costs = Column(_money())
    adjusted_est_costs = Column(_money())
    current_margin = Column(_money())
    current_margin_percentage = Column(Numeric(7, 2, asdecimal=False))
    projected_margin = Column(_money())
    original_margin = Column(_money())
    actual_margin = Column(_money())
    contingency_amount = Column(_money())
    contingency_used = Column(_money())
    contingency_remaining = Column(_money())
    original_margin_estimate_id = Column(String(40))
    financials_updated_at = Column(DateTime)

    # Relationships
    estimates = relationship("Estimate", back_populates="project", cascade="all, delete-orphan")
    change_orders = relationship("ChangeOrder", back_populates="project", cascade="all, delete-orphan")
    quotes = relationship("Quote", back_populates="project", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="project")
    revenues = relationship("ProjectRevenue", back_populates="project")

    __table_args__ = (
        Index('idx_projects_number', 'project_number'),
        Index('idx_projects_status', 'status'),
        Index('idx_projects_category', 'category'),
    )

    def __repr__(self):
        return f"<Project(id='{self.id}', number='{self.project_number}', category='{self.category}')>"


class Estimate(Base):
    """Estimate model; versions form a chain through parent_estimate_id."""

    __tablename__ = 'estimates'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    estimate_number = Column(String(50))
    parent_estimate_id = Column(String(40), ForeignKey('estimates.id', ondelete='SET NULL'))
    version_number = Column(Integer, default=1)
    is_current_version = Column(Boolean, default=True)
    status = Column(String(20), default='draft')
    total_amount = Column(_money())
    contingency_amount = Column(_money())
    date_created = Column(DateTime, default=_now)

    # Relationships
    project = relationship("Project", back_populates="estimates")
    line_items = relationship("EstimateLineItem", back_populates="estimate", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_estimates_project', 'project_id'),
        Index('idx_estimates_status', 'status'),
        Index('idx_estimates_current', 'is_current_version'),
    )

    def __repr__(self):
        return f"<Estimate(id='{self.id}', number='{self.estimate_number}', v{self.version_number}, status='{self.status}')>"


class EstimateLineItem(Base):
    """Estimate line item model."""

    __tablename__ = 'estimate_line_items'

    id = Column(String(40), primary_key=True, default=_uuid)
    estimate_id = Column(String(40), ForeignKey('estimates.id', ondelete='CASCADE'), nullable=False)
    category = Column(String(50), nullable=False)
    description = Column(Text)
    quantity = Column(Numeric(10, 2, asdecimal=False))
    price_per_unit = Column(_money())
    total = Column(_money())
    cost_per_unit = Column(_money())
    total_cost = Column(_money())
    sort_order = Column(Integer, default=0)
    deleted_at = Column(DateTime)

    # Relationships
    estimate = relationship("Estimate", back_populates="line_items")
    quote_line_items = relationship("QuoteLineItem", back_populates="estimate_line_item")
    correlations = relationship("ExpenseLineItemCorrelation", back_populates="estimate_line_item",
                                cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_estimate_line_items_estimate', 'estimate_id'),
        Index('idx_estimate_line_items_category', 'category'),
    )

    @property
    def cost(self) -> float:
        """Total cost, falling back to unit cost times quantity."""
        if self.total_cost is not None:
            return float(self.total_cost)
        return float(self.cost_per_unit or 0) * float(self.quantity or 0)

    def __repr__(self):
        return f"<EstimateLineItem(id='{self.id}', category='{self.category}', total_cost={self.total_cost})>"


class ChangeOrder(Base):
    """Change order model."""

    __tablename__ = 'change_orders'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    change_order_number = Column(String(50))
    description = Column(Text)
    status = Column(String(20), default='pending')
    cost_impact = Column(_money())
    client_amount = Column(_money())
    margin_impact = Column(_money())
    includes_contingency = Column(Boolean, default=False)
    contingency_billed_to_client = Column(_money())
    approved_date = Column(Date)

    # Relationships
    project = relationship("Project", back_populates="change_orders")
    line_items = relationship("ChangeOrderLineItem", back_populates="change_order", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_change_orders_project', 'project_id'),
        Index('idx_change_orders_status', 'status'),
    )

    def __repr__(self):
        return f"<ChangeOrder(id='{self.id}', number='{self.change_order_number}', status='{self.status}')>"


class ChangeOrderLineItem(Base):
    """Change order line item model."""

    __tablename__ = 'change_order_line_items'

    id = Column(String(40), primary_key=True, default=_uuid)
    change_order_id = Column(String(40), ForeignKey('change_orders.id', ondelete='CASCADE'), nullable=False)
    category = Column(String(50), nullable=False)
    description = Column(Text)
    quantity = Column(Numeric(10, 2, asdecimal=False))
    cost_per_unit = Column(_money())
    total_cost = Column(_money())
    price_per_unit = Column(_money())
    total = Column(_money())
    deleted_at = Column(DateTime)

    # Relationships
    change_order = relationship("ChangeOrder", back_populates="line_items")
    quote_line_items = relationship("QuoteLineItem", back_populates="change_order_line_item")
    correlations = relationship("ExpenseLineItemCorrelation", back_populates="change_order_line_item",
                                cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_co_line_items_change_order', 'change_order_id'),
        Index('idx_co_line_items_category', 'category'),
    )

    @property
    def cost(self) -> float:
        """Total cost, falling back to unit cost times quantity."""
        if self.total_cost is not None:
            return float(self.total_cost)
        return float(self.cost_per_unit or 0) * float(self.quantity or 0)

    def __repr__(self):
        return f"<ChangeOrderLineItem(id='{self.id}', category='{self.category}', total_cost={self.total_cost})>"


class Quote(Base):
    """Vendor quote model."""

    __tablename__ = 'quotes'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    estimate_id = Column(String(40), ForeignKey('estimates.id', ondelete='SET NULL'))
    payee_id = Column(String(40), ForeignKey('payees.id', ondelete='SET NULL'))
    quote_number = Column(String(50))
    status = Column(String(20), default='pending')
    total_amount = Column(_money())
    date_received = Column(Date)
    accepted_date = Column(DateTime)

    # Relationships
    project = relationship("Project", back_populates="quotes")
    payee = relationship("Payee")
    line_items = relationship("QuoteLineItem", back_populates="quote", cascade="all, delete-orphan")
    correlations = relationship("ExpenseLineItemCorrelation", back_populates="quote",
                                cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_quotes_project', 'project_id'),
        Index('idx_quotes_status', 'status'),
        Index('idx_quotes_payee', 'payee_id'),
    )

    def __repr__(self):
        return f"<Quote(id='{self.id}', number='{self.quote_number}', status='{self.status}')>"


class QuoteLineItem(Base):
    """Quote line item; bids against one estimate line item or one change order line item."""

    __tablename__ = 'quote_line_items'

    id = Column(String(40), primary_key=True, default=_uuid)
    quote_id = Column(String(40), ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False)
    estimate_line_item_id = Column(String(40), ForeignKey('estimate_line_items.id', ondelete='SET NULL'))
    change_order_line_item_id = Column(String(40), ForeignKey('change_order_line_items.id', ondelete='SET NULL'))
    category = Column(String(50))
    description = Column(Text)
    quantity = Column(Numeric(10, 2, asdecimal=False))
    cost_per_unit = Column(_money())
    total_cost = Column(_money())

    # Relationships
    quote = relationship("Quote", back_populates="line_items")
    estimate_line_item = relationship("EstimateLineItem", back_populates="quote_line_items")
    change_order_line_item = relationship("ChangeOrderLineItem", back_populates="quote_line_items")

    __table_args__ = (
        CheckConstraint(
            'NOT (estimate_line_item_id IS NOT NULL AND change_order_line_item_id IS NOT NULL)',
            name='ck_quote_line_item_single_target'
        ),
        Index('idx_quote_line_items_quote', 'quote_id'),
        Index('idx_quote_line_items_estimate_item', 'estimate_line_item_id'),
        Index('idx_quote_line_items_co_item', 'change_order_line_item_id'),
    )

    @property
    def cost(self) -> float:
        """Total cost, falling back to unit cost times quantity."""
        if self.total_cost is not None:
            return float(self.total_cost)
        return float(self.cost_per_unit or 0) * float(self.quantity or 0)

    def __repr__(self):
        return f"<QuoteLineItem(id='{self.id}', quote='{self.quote_id}', total_cost={self.total_cost})>"


class Receipt(Base):
    """Captured receipt. Documentation only: never part of any financial total."""

    __tablename__ = 'receipts'

    id = Column(String(40), primary_key=True, default=_uuid)
    amount = Column(_money())
    captured_at = Column(DateTime, default=_now)
    payee_id = Column(String(40), ForeignKey('payees.id', ondelete='SET NULL'))
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='SET NULL'))
    description = Column(Text)
    image_url = Column(String(500))
    approval_status = Column(String(20), default='pending')

    payee = relationship("Payee")

    __table_args__ = (
        Index('idx_receipts_captured_at', 'captured_at'),
    )

    def __repr__(self):
        return f"<Receipt(id='{self.id}', amount={self.amount})>"


class Expense(Base):
    """Expense model; one bill, check, card charge or time entry against a project."""

    __tablename__ = 'expenses'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='SET NULL'))
    payee_id = Column(String(40), ForeignKey('payees.id', ondelete='SET NULL'))
    category = Column(String(50), nullable=False, default='other')
    transaction_type = Column(String(30), default='expense')
    amount = Column(_money(), nullable=False)
    expense_date = Column(Date, nullable=False)
    description = Column(Text)
    approval_status = Column(String(20), default='pending')
    is_split = Column(Boolean, default=False)
    receipt_id = Column(String(40), ForeignKey('receipts.id', ondelete='SET NULL'))
    hours = Column(Numeric(6, 2, asdecimal=False))
    created_at = Column(DateTime, default=_now)

    # Relationships
    project = relationship("Project", back_populates="expenses")
    payee = relationship("Payee")
    receipt = relationship("Receipt")
    splits = relationship("ExpenseSplit", back_populates="expense", cascade="all, delete-orphan")
    correlations = relationship("ExpenseLineItemCorrelation", back_populates="expense",
                                cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_expenses_project', 'project_id'),
        Index('idx_expenses_date', 'expense_date'),
        Index('idx_expenses_category', 'category'),
        Index('idx_expenses_payee', 'payee_id'),
    )

    def __repr__(self):
        return f"<Expense(id='{self.id}', amount={self.amount}, date={self.expense_date})>"


class ExpenseSplit(Base):
    """Portion of one expense attributed to a project."""

    __tablename__ = 'expense_splits'

    id = Column(String(40), primary_key=True, default=_uuid)
    expense_id = Column(String(40), ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    split_amount = Column(_money(), nullable=False)
    split_percentage = Column(Numeric(7, 4, asdecimal=False))
    notes = Column(Text)
    created_at = Column(DateTime, default=_now)

    # Relationships
    expense = relationship("Expense", back_populates="splits")
    project = relationship("Project")
    correlations = relationship("ExpenseLineItemCorrelation", back_populates="expense_split",
                                cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('expense_id', 'project_id', name='uq_expense_split_project'),
        Index('idx_expense_splits_project', 'project_id'),
    )

    def __repr__(self):
        return f"<ExpenseSplit(expense='{self.expense_id}', project='{self.project_id}', amount={self.split_amount})>"


class ProjectRevenue(Base):
    """Invoiced revenue against a project."""

    __tablename__ = 'project_revenues'

    id = Column(String(40), primary_key=True, default=_uuid)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='SET NULL'))
    invoice_number = Column(String(50))
    amount = Column(_money(), nullable=False)
    invoice_date = Column(Date)
    description = Column(Text)
    is_split = Column(Boolean, default=False)

    # Relationships
    project = relationship("Project", back_populates="revenues")
    splits = relationship("RevenueSplit", back_populates="revenue", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_project_revenues_project', 'project_id'),
    )

    def __repr__(self):
        return f"<ProjectRevenue(id='{self.id}', amount={self.amount})>"


class RevenueSplit(Base):
    """Portion of one invoice attributed to a project."""

    __tablename__ = 'revenue_splits'

    id = Column(String(40), primary_key=True, default=_uuid)
    revenue_id = Column(String(40), ForeignKey('project_revenues.id', ondelete='CASCADE'), nullable=False)
    project_id = Column(String(40), ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    split_amount = Column(_money(), nullable=False)
    split_percentage = Column(Numeric(7, 4, asdecimal=False))

    revenue = relationship("ProjectRevenue", back_populates="splits")

    __table_args__ = (
        UniqueConstraint('revenue_id', 'project_id', name='uq_revenue_split_project'),
        Index('idx_revenue_splits_project', 'project_id'),
    )

    def __repr__(self):
        return f"<RevenueSplit(revenue='{self.revenue_id}', project='{self.project_id}', amount={self.split_amount})>"


class ExpenseLineItemCorrelation(Base):
    """Links one expense (or one expense split) to exactly one billable target."""

    __tablename__ = 'expense_line_item_correlations'

    id = Column(String(40), primary_key=True, default=_uuid)
    expense_id = Column(String(40), ForeignKey('expenses.id', ondelete='CASCADE'), nullable=False)
    expense_split_id = Column(String(40), ForeignKey('expense_splits.id', ondelete='CASCADE'))
    # "expense:<id>" or "split:<id>"; non-null so the unique constraint holds for unsplit expenses
    source_key = Column(String(60), nullable=False)
    estimate_line_item_id = Column(String(40), ForeignKey('estimate_line_items.id', ondelete='CASCADE'))
    change_order_line_item_id = Column(String(40), ForeignKey('change_order_line_items.id', ondelete='CASCADE'))
    quote_id = Column(String(40), ForeignKey('quotes.id', ondelete='CASCADE'))
    correlation_type = Column(String(20), nullable=False)
    auto_correlated = Column(Boolean, default=False)
    confidence_score = Column(Numeric(5, 2, asdecimal=False))
    notes = Column(Text)
    created_at = Column(DateTime, default=_now)

    # Relationships
    expense = relationship("Expense", back_populates="correlations")
    expense_split = relationship("ExpenseSplit", back_populates="correlations")
    estimate_line_item = relationship("EstimateLineItem", back_populates="correlations")
    change_order_line_item = relationship("ChangeOrderLineItem", back_populates="correlations")
    quote = relationship("Quote", back_populates="correlations")

    __table_args__ = (
        UniqueConstraint('source_key', 'correlation_type', name='uq_correlation_source_type'),
        CheckConstraint(
            "(CASE WHEN estimate_line_item_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN change_order_line_item_id IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN quote_id IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name='ck_correlation_single_target'
        ),
        Index('idx_correlations_expense', 'expense_id'),
        Index('idx_correlations_estimate_item', 'estimate_line_item_id'),
        Index('idx_correlations_co_item', 'change_order_line_item_id'),
        Index('idx_correlations_quote', 'quote_id'),
    )

    @property
    def target_id(self) -> str:
        return self.estimate_line_item_id or self.change_order_line_item_id or self.quote_id

    @property
    def contributing_amount(self) -> float:
        """Split amount when the correlation names a split, else the full expense amount."""
        if self.expense_split is not None:
            return float(self.expense_split.split_amount or 0)
        if self.expense is not None:
            return float(self.expense.amount or 0)
        return 0.0

    def __repr__(self):
        return f"<ExpenseLineItemCorrelation(id='{self.id}', type='{self.correlation_type}', target='{self.target_id}')>"
