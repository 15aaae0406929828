"""
Pytest fixtures for integration tests.

These fixtures point the global configuration at a temporary SQLite file so
the command-line interface runs end to end against a real database.
"""

import logging
from datetime import date
from types import SimpleNamespace

import pytest

from ccas.config import set_config, reset_config
from ccas.db.init import initialize
from ccas.db.models import Project, Estimate, EstimateLineItem, Expense, Payee
from ccas.db.operations import create_correlation
from ccas.db.session import session_scope, dispose_db


@pytest.fixture
def cli_config(tmp_path):
    """Configuration with a file database in a temporary directory."""
    config = {
        "database": {
            "db_type": "sqlite",
            "db_path": str(tmp_path / "ccas.db"),
            "echo": False
        },
        "logging": {
            "level": "WARNING",
            "file": None
        }
    }
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level

    dispose_db()
    set_config(config)
    yield config
    dispose_db()
    reset_config()

    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)


@pytest.fixture
def seeded_db(cli_config):
    """Initialized database with one priced construction project."""
    initialize()

    with session_scope() as session:
        payee = Payee(payee_name="Granite Works")
        project = Project(project_name="Kitchen Remodel", project_number="K-42", category="construction")
        session.add_all([payee, project])
        session.flush()

        estimate = Estimate(project_id=project.id, estimate_number="E-1", status="approved",
                            total_amount=10000)
        session.add(estimate)
        session.flush()

        counters = EstimateLineItem(estimate_id=estimate.id, category="materials",
                                    description="Granite counters", total_cost=4000)
        session.add(counters)
        session.flush()

        paid = Expense(project_id=project.id, payee_id=payee.id, amount=1500, category="materials",
                       expense_date=date(2024, 3, 1), description="Counter deposit")
        open_expense = Expense(project_id=project.id, payee_id=payee.id, amount=2500,
                               category="materials", expense_date=date(2024, 3, 20),
                               description="Granite counters balance")
        session.add_all([paid, open_expense])
        session.flush()

        create_correlation(session, paid.id, estimate_line_item_id=counters.id)

        ids = SimpleNamespace(
            project_id=project.id,
            line_item_id=counters.id,
            paid_expense_id=paid.id,
            open_expense_id=open_expense.id,
        )

    return ids
