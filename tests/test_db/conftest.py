"""
Pytest fixtures for database tests.
"""

from types import SimpleNamespace

import pytest


@pytest.fixture(scope="function")
def sample_project(factory):
    """A construction project with an approved estimate, a quote and one expense."""
    payee = factory.payee("Framing Co")
    project = factory.project("Kitchen Remodel")
    estimate = factory.estimate(project, total_amount=10000, contingency_amount=500)
    framing = factory.line_item(estimate, 4000, category="subcontractors", description="Framing")
    drywall = factory.line_item(estimate, 1500, category="materials", description="Drywall")
    change_order = factory.change_order(project, cost_impact=300, client_amount=450)
    co_line = factory.co_line_item(change_order, 300, description="Extra outlet")
    quote = factory.quote(project, [(framing, 3800)], payee=payee, quote_number="Q-1")
    expense = factory.expense(project, 1200, category="subcontractors", payee=payee)

    return SimpleNamespace(
        payee=payee,
        project=project,
        estimate=estimate,
        framing=framing,
        drywall=drywall,
        change_order=change_order,
        co_line=co_line,
        quote=quote,
        expense=expense,
    )
