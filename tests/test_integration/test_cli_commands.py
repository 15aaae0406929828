"""
Integration tests for the command-line interface.
"""

import json

import pytest

from ccas.cli import main, parse_filter
from ccas.utils.errors import ValidationError


def _run(capsys, *argv):
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


class TestParseFilter:
    """Tests for command-line filter parsing."""

    def test_with_value(self):
        assert parse_filter("category:equals:materials") == {
            "field": "category", "operator": "equals", "value": "materials"
        }

    def test_value_may_contain_colons(self):
        assert parse_filter("description:contains:a:b")["value"] == "a:b"

    def test_without_value(self):
        assert parse_filter("payee_name:is_null") == {
            "field": "payee_name", "operator": "is_null", "value": None
        }

    @pytest.mark.parametrize("text", ["category", ":equals:x", "category::x"])
    def test_malformed(self, text):
        with pytest.raises(ValidationError):
            parse_filter(text)


class TestDatabaseCommands:
    """Tests for the db commands."""

    def test_init_and_reinit(self, cli_config, capsys):
        code, out, _ = _run(capsys, "db", "init")
        assert code == 0
        assert "Database initialized" in out

        code, _, err = _run(capsys, "db", "init")
        assert code == 1
        assert "--force" in err

        code, _, _ = _run(capsys, "db", "init", "--force")
        assert code == 0


class TestAllocationCommands:
    """Tests for the allocation commands."""

    def test_summary_json(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "allocation", "summary", seeded_db.project_id, "--json")

        assert code == 0
        summary = json.loads(out)
        assert summary["project_id"] == seeded_db.project_id
        assert summary["total_external_line_items"] == 1
        assert summary["total_allocated"] == pytest.approx(1500)

    def test_summary_markdown(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "allocation", "summary", seeded_db.project_id)

        assert code == 0
        assert out.startswith("# Allocation Summary")
        assert "Granite counters" in out

    def test_unallocated(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "allocation", "unallocated", seeded_db.project_id, "--json")

        assert code == 0
        expenses = json.loads(out)
        assert [expense["expense_id"] for expense in expenses] == [seeded_db.open_expense_id]

    def test_suggest(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "allocation", "suggest", seeded_db.open_expense_id, "--json")

        assert code == 0
        suggestion = json.loads(out)
        assert suggestion["expense_id"] == seeded_db.open_expense_id
        assert suggestion["candidates"][0]["candidate_id"] == seeded_db.line_item_id

    def test_receipts_none(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "allocation", "receipts", seeded_db.open_expense_id)

        assert code == 0
        assert "No matching receipts" in out

    def test_unknown_expense(self, seeded_db, capsys):
        code, _, err = _run(capsys, "allocation", "suggest", "missing-id")

        assert code == 2
        assert err.startswith("Error:")


class TestRollupCommands:
    """Tests for the rollup commands."""

    def test_commits_keep_financials_current(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "report", "run", "projects", "--json")

        assert code == 0
        row = json.loads(out)["rows"][0]
        assert row["total_expenses"] == pytest.approx(4000)
        assert row["contracted_amount"] == pytest.approx(10000)
        assert row["current_margin"] == pytest.approx(6000)

    def test_recompute(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "rollup", "recompute", seeded_db.project_id, "--json")

        assert code == 0
        rollup = json.loads(out)
        assert rollup["estimate_id"] is not None
        assert rollup["original_est_costs"] == pytest.approx(4000)
        assert rollup["projected_margin"] == pytest.approx(6000)

    def test_show_markdown(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "rollup", "show", seeded_db.project_id)

        assert code == 0
        assert "Project: Kitchen Remodel (K-42)" in out
        assert "$10,000.00" in out


class TestReportCommands:
    """Tests for the report commands."""

    def test_run_with_filters(self, seeded_db, capsys):
        code, out, _ = _run(
            capsys, "report", "run", "expenses",
            "--filter", "amount:greater_than:2000",
            "--filter", "is_allocated:equals:false",
            "--sort-by", "amount",
        )

        assert code == 0
        assert "1 of 1 rows" in out
        assert "Granite counters balance" in out

    def test_run_json_limit(self, seeded_db, capsys):
        code, out, _ = _run(capsys, "report", "run", "expenses", "--limit", "1", "--json")

        result = json.loads(out)
        assert code == 0
        assert result["row_count"] == 1
        assert result["total_count"] == 2

    def test_unknown_field(self, seeded_db, capsys):
        code, out, err = _run(capsys, "report", "run", "expenses", "--filter", "secret:equals:x")

        assert code == 2
        assert out == ""
        assert "Error: Unknown field 'secret'" in err

    def test_unknown_source(self, seeded_db, capsys):
        code, _, err = _run(capsys, "report", "run", "invoices")

        assert code == 2
        assert "Unknown data source" in err

    def test_sources(self, cli_config, capsys):
        code, out, _ = _run(capsys, "report", "sources")

        assert code == 0
        assert "estimate_line_items" in out
        assert "has_receipt" in out


class TestMain:
    """Tests for argument handling in main."""

    @pytest.mark.parametrize("argv", [[], ["db"], ["report"]])
    def test_missing_command(self, cli_config, capsys, argv):
        code, out, _ = _run(capsys, *argv)

        assert code == 2
        assert "usage" in out.lower()
