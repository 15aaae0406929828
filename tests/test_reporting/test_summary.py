"""
Tests for Markdown and HTML summary rendering.
"""

from datetime import date

import pytest

from ccas.financial_analysis.engine import FinancialAnalysisEngine
from ccas.reporting.summary import SummaryRenderer


@pytest.fixture
def renderer():
    return SummaryRenderer()


@pytest.fixture
def priced_project(factory):
    project = factory.project("Bathroom", project_number="B-7")
    estimate = factory.estimate(project, total_amount=5000, contingency_amount=200)
    tile = factory.line_item(estimate, 1200, description="Tile | grout")
    factory.line_item(estimate, 600, category="labor_internal")
    factory.expense(project, 1200)
    return project, tile


class TestAllocationSummary:
    """Tests for rendering allocation summaries."""

    def test_markdown(self, renderer, priced_project, test_session):
        project, tile = priced_project
        summary = FinancialAnalysisEngine(test_session).compute_allocation_summary(project.id)

        text = renderer.render_allocation_summary(summary.to_dict())

        assert text.startswith("# Allocation Summary")
        assert "## materials" in text
        assert "Tile \\| grout" in text
        assert "$1,200.00" in text
        assert "labor_internal" not in text

    def test_no_estimate(self, renderer, factory, test_session):
        project = factory.project("Empty")
        summary = FinancialAnalysisEngine(test_session).compute_allocation_summary(project.id)

        text = renderer.render_allocation_summary(summary.to_dict())

        assert "No billable line items." in text
        assert "100.0%" in text

    def test_html(self, renderer, factory, test_session):
        project = factory.project("Empty")
        summary = FinancialAnalysisEngine(test_session).compute_allocation_summary(project.id)

        html = renderer.render_allocation_summary(summary.to_dict(), format="html")

        assert "<h1>Allocation Summary</h1>" in html
        assert "<table>" in html


class TestRollup:
    """Tests for rendering project financials."""

    def test_markdown(self, renderer, priced_project, test_session):
        project, _ = priced_project
        rollup = FinancialAnalysisEngine(test_session).compute_rollup(project.id)

        text = renderer.render_rollup(
            rollup.to_dict(), {"project_name": "Bathroom", "project_number": "B-7"}
        )

        assert "Project: Bathroom (B-7)" in text
        assert "| Contracted amount | $5,000.00 |" in text
        assert "| Total expenses | $1,200.00 |" in text
        assert "No approved estimate yet" not in text

    def test_skipped_project(self, renderer, factory, test_session):
        project = factory.project("Office", project_number="O-1", category="overhead")
        rollup = FinancialAnalysisEngine(test_session).compute_rollup(project.id)

        text = renderer.render_rollup(rollup.to_dict())

        assert f"Project: {project.id}" in text
        assert "only apply to construction projects" in text
        assert "Contracted amount" not in text

    def test_without_estimate(self, renderer, factory, test_session):
        project = factory.project("New Build")
        rollup = FinancialAnalysisEngine(test_session).compute_rollup(project.id)

        text = renderer.render_rollup(rollup.to_dict(), {"project_name": "New Build"})

        assert "No approved estimate yet" in text
        assert "N/A" in text


class TestReport:
    """Tests for rendering report results."""

    def _result(self, rows):
        return {
            "data_source": "expenses",
            "rows": rows,
            "row_count": len(rows),
            "total_count": 9,
            "execution_time_ms": 1.5,
            "registry_version": 3,
            "limit": 2,
        }

    def test_table(self, renderer):
        text = renderer.render_report(self._result([
            {"id": "a", "amount": 1234.5, "description": "Pipe | fittings", "has_receipt": True,
             "expense_date": date(2024, 3, 1)},
            {"id": "b", "amount": 10.0, "description": None, "has_receipt": False,
             "expense_date": date(2024, 3, 2)},
        ]))

        assert "# Report: expenses" in text
        assert "2 of 9 rows" in text
        assert "| id | amount | description | has_receipt | expense_date |" in text
        assert "| a | 1,234.50 | Pipe \\| fittings | yes | 2024-03-01 | " in text
        assert "| b | 10.00 |  | no | 2024-03-02 | " in text

    def test_no_rows(self, renderer):
        text = renderer.render_report(self._result([]))

        assert "No rows." in text

    def test_html_table(self, renderer):
        html = renderer.render_report(self._result([{"id": "a", "amount": 1.0}]), format="html")

        assert "<table>" in html
        assert "<td>a</td>" in html

    def test_unsupported_format(self, renderer):
        with pytest.raises(ValueError):
            renderer.render_report(self._result([]), format="pdf")


class TestTemplateDirectory:
    """Tests for template directory configuration."""

    def test_custom_directory(self, tmp_path):
        (tmp_path / "report.md.j2").write_text("custom {{ result.data_source }}")
        renderer = SummaryRenderer({"templates_dir": str(tmp_path)})

        assert renderer.render_report({"data_source": "quotes", "rows": []}) == "custom quotes"
