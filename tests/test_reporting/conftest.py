"""
Pytest fixtures for testing the reporting system.
"""

from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import event

from ccas.db.operations import create_correlation
from ccas.reporting.executor import ReportExecutor


@pytest.fixture
def executor(test_session):
    """Report executor with a small maximum limit."""
    return ReportExecutor(test_session, {"default_limit": 20, "max_limit": 50})


@pytest.fixture
def statement_log(test_engine):
    """Record every SQL statement the engine executes."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(test_engine, "before_cursor_execute", _record)
    yield statements
    event.remove(test_engine, "before_cursor_execute", _record)


@pytest.fixture
def report_data(factory, test_session):
    """Two projects with expenses, quotes, labor entries and line items."""
    vendor = factory.payee("Acme Supply")
    worker = factory.payee("Dana Reyes", is_internal=True, hourly_rate=45)
    kitchen = factory.project("Kitchen 50% Off", project_number="K-1", client_name="Lee")
    garage = factory.project("Garage", project_number="G-1", client_name="Park")
    office = factory.project("Office", project_number="O-1", category="overhead")

    estimate = factory.estimate(kitchen, estimate_number="E-K1")
    cabinets = factory.line_item(estimate, 3000, description="Cabinets")
    factory.line_item(estimate, 900, category="labor_internal", description="Install crew")
    factory.quote(kitchen, [(cabinets, 2800)], payee=vendor, quote_number="Q-1",
                  date_received=date(2024, 2, 1), total_amount=2800)
    factory.quote(garage, [], status="pending", quote_number="Q-2",
                  date_received=date(2024, 2, 10), total_amount=1200)

    receipt = factory.receipt(250)
    lumber = factory.expense(kitchen, 250, payee=vendor, expense_date=date(2024, 3, 1),
                             description="Lumber order", receipt_id=receipt.id)
    paint = factory.expense(kitchen, 80, payee=vendor, expense_date=date(2024, 3, 5),
                            description="Paint")
    tools = factory.expense(garage, 1200, category="equipment", expense_date=date(2024, 3, 9),
                            description="Saw rental")
    hours = factory.expense(kitchen, 360, category="labor_internal", payee=worker, hours=8,
                            expense_date=date(2024, 3, 2), description="Cabinet install")
    management = factory.expense(garage, 150, category="management", payee=worker, hours=2,
                                 expense_date=date(2024, 3, 3))
    factory.expense(office, 40, category="office_expenses", expense_date=date(2024, 3, 4))

    create_correlation(test_session, lumber.id, estimate_line_item_id=cabinets.id)

    return SimpleNamespace(
        kitchen=kitchen, garage=garage, office=office, cabinets=cabinets,
        lumber=lumber, paint=paint, tools=tools, hours=hours, management=management,
    )
