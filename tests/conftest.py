"""
Pytest fixtures shared by all test packages.
"""

from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ccas.config import set_config, reset_config
from ccas.db.models import (
    Base, Payee, Project, Estimate, EstimateLineItem, ChangeOrder, ChangeOrderLineItem,
    Quote, QuoteLineItem, Receipt, Expense, ExpenseSplit, ProjectRevenue, RevenueSplit
)


class ModelFactory:
    """Builds and flushes model rows with sensible defaults."""

    def __init__(self, session):
        self.session = session

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def payee(self, payee_name="Acme Supply", **kwargs):
        return self._add(Payee(payee_name=payee_name, **kwargs))

    def project(self, project_name="Test Project", category="construction", **kwargs):
        kwargs.setdefault("project_number", "P-100")
        return self._add(Project(project_name=project_name, category=category, **kwargs))

    def estimate(self, project, status="approved", **kwargs):
        kwargs.setdefault("estimate_number", "E-1")
        return self._add(Estimate(project_id=project.id, status=status, **kwargs))

    def line_item(self, estimate, cost, category="materials", description=None, **kwargs):
        line = EstimateLineItem(
            estimate_id=estimate.id,
            category=category,
            description=description or f"{category} work",
            total_cost=cost,
            **kwargs
        )
        self._add(line)
        self.session.refresh(estimate)
        return line

    def change_order(self, project, status="approved", **kwargs):
        kwargs.setdefault("change_order_number", "CO-1")
        return self._add(ChangeOrder(project_id=project.id, status=status, **kwargs))

    def co_line_item(self, change_order, cost, category="materials", description=None, **kwargs):
        line = ChangeOrderLineItem(
            change_order_id=change_order.id,
            category=category,
            description=description or f"{category} change",
            total_cost=cost,
            **kwargs
        )
        self._add(line)
        self.session.refresh(change_order)
        return line

    def quote(self, project, lines=(), status="accepted", payee=None, **kwargs):
        """Create a quote; ``lines`` is a list of (line item, cost) pairs."""
        if status == "accepted":
            kwargs.setdefault("accepted_date", datetime(2024, 2, 1, 9, 0))
        quote = self._add(Quote(
            project_id=project.id,
            status=status,
            payee_id=payee.id if payee else None,
            **kwargs
        ))
        for line_item, cost in lines:
            quote_line = QuoteLineItem(quote_id=quote.id, total_cost=cost)
            if isinstance(line_item, ChangeOrderLineItem):
                quote_line.change_order_line_item_id = line_item.id
            else:
                quote_line.estimate_line_item_id = line_item.id
            self._add(quote_line)
        self.session.refresh(quote)
        return quote

    def expense(self, project, amount, category="materials", expense_date=date(2024, 3, 1),
                payee=None, **kwargs):
        return self._add(Expense(
            project_id=project.id if project else None,
            amount=amount,
            category=category,
            expense_date=expense_date,
            payee_id=payee.id if payee else None,
            **kwargs
        ))

    def split(self, expense, project, amount):
        expense.is_split = True
        return self._add(ExpenseSplit(expense_id=expense.id, project_id=project.id, split_amount=amount))

    def revenue(self, project, amount, **kwargs):
        return self._add(ProjectRevenue(project_id=project.id, amount=amount, **kwargs))

    def revenue_split(self, revenue, project, amount):
        revenue.is_split = True
        return self._add(RevenueSplit(revenue_id=revenue.id, project_id=project.id, split_amount=amount))

    def receipt(self, amount, payee=None, captured_at=datetime(2024, 3, 1, 12, 0), **kwargs):
        return self._add(Receipt(
            amount=amount,
            payee_id=payee.id if payee else None,
            captured_at=captured_at,
            **kwargs
        ))


@pytest.fixture(scope="function")
def test_config():
    """Create a test configuration."""
    config = {
        "database": {
            "db_type": "sqlite",
            "db_path": ":memory:",
            "echo": False
        },
        "logging": {
            "level": "WARNING",
            "file": None
        }
    }
    set_config(config)
    yield config
    reset_config()


@pytest.fixture(scope="function")
def test_engine(test_config):
    """Create a fresh in-memory database engine with the full schema."""
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session(test_engine):
    """Create a test database session."""
    Session = sessionmaker(bind=test_engine)
    session = Session()

    yield session

    # Roll back any uncommitted changes after each test
    session.rollback()

    # Clean up the session
    session.close()


@pytest.fixture(scope="function")
def factory(test_session):
    """Model factory bound to the test session."""
    return ModelFactory(test_session)
