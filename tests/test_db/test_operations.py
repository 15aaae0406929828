"""
Tests for database operations.
"""

from datetime import date

import pytest

from ccas.db.models import ExpenseLineItemCorrelation, ExpenseSplit
from ccas.db.operations import (
    get_project, get_expense, get_current_approved_estimate, get_approved_change_orders,
    get_accepted_quotes, get_expenses_by_date_range, get_correlations_for_line_items,
    get_correlations_for_expense, create_correlation, delete_correlation,
    validate_split_total, create_expense_splits, delete_expense_splits,
    link_receipt, unlink_receipt, get_unlinked_receipts, get_correlated_source_keys
)
from ccas.utils.errors import ValidationError, NotFoundError, CorrelationConflictError


class TestLookups:
    """Tests for read operations."""

    def test_get_project(self, test_session, sample_project):
        assert get_project(test_session, sample_project.project.id) is sample_project.project

    @pytest.mark.parametrize("bad_id", ["", "   ", None, 42, "x" * 41])
    def test_get_project_malformed_id(self, test_session, bad_id):
        with pytest.raises(ValidationError):
            get_project(test_session, bad_id)

    def test_get_project_missing(self, test_session):
        with pytest.raises(NotFoundError):
            get_project(test_session, "does-not-exist")

    def test_get_expense_missing(self, test_session):
        with pytest.raises(NotFoundError):
            get_expense(test_session, "does-not-exist")

    def test_current_approved_estimate(self, factory, test_session):
        project = factory.project()
        factory.estimate(project, status="approved", version_number=1, is_current_version=False)
        current = factory.estimate(project, status="approved", version_number=2)
        factory.estimate(project, status="draft", version_number=3)

        assert get_current_approved_estimate(test_session, project.id) is current

    def test_no_approved_estimate(self, factory, test_session):
        project = factory.project()
        factory.estimate(project, status="sent")
        assert get_current_approved_estimate(test_session, project.id) is None

    def test_approved_change_orders(self, factory, test_session, sample_project):
        factory.change_order(sample_project.project, status="pending", change_order_number="CO-2")
        orders = get_approved_change_orders(test_session, sample_project.project.id)
        assert [order.id for order in orders] == [sample_project.change_order.id]

    def test_accepted_quotes(self, factory, test_session, sample_project):
        factory.quote(sample_project.project, [(sample_project.drywall, 1400)], status="pending")
        assert get_accepted_quotes(test_session, sample_project.project.id) == [sample_project.quote]

    def test_expenses_by_date_range(self, factory, test_session, sample_project):
        factory.expense(sample_project.project, 50, expense_date=date(2024, 5, 1))
        expenses = get_expenses_by_date_range(
            test_session, start_date="2024-04-01", end_date=date(2024, 5, 31)
        )
        assert [expense.amount for expense in expenses] == [50]


class TestCorrelations:
    """Tests for correlation writes."""

    def test_create_correlation(self, test_session, sample_project):
        correlation = create_correlation(
            test_session, sample_project.expense.id,
            estimate_line_item_id=sample_project.framing.id,
            confidence_score=85,
            auto_correlated=True,
        )

        assert correlation.correlation_type == "estimated"
        assert correlation.source_key == f"expense:{sample_project.expense.id}"
        assert correlation.target_id == sample_project.framing.id
        assert correlation.auto_correlated is True

    def test_identical_insert_is_noop(self, test_session, sample_project):
        first = create_correlation(
            test_session, sample_project.expense.id, estimate_line_item_id=sample_project.framing.id
        )
        second = create_correlation(
            test_session, sample_project.expense.id, estimate_line_item_id=sample_project.framing.id
        )

        assert first.id == second.id
        assert test_session.query(ExpenseLineItemCorrelation).count() == 1

    def test_conflicting_target_raises(self, test_session, sample_project):
        first = create_correlation(
            test_session, sample_project.expense.id, estimate_line_item_id=sample_project.framing.id
        )
        with pytest.raises(CorrelationConflictError) as excinfo:
            create_correlation(
                test_session, sample_project.expense.id, estimate_line_item_id=sample_project.drywall.id
            )

        assert excinfo.value.existing_id == first.id
        assert test_session.query(ExpenseLineItemCorrelation).count() == 1

    def test_different_types_coexist(self, test_session, sample_project):
        create_correlation(test_session, sample_project.expense.id, estimate_line_item_id=sample_project.framing.id)
        create_correlation(test_session, sample_project.expense.id, quote_id=sample_project.quote.id)

        types = {c.correlation_type for c in get_correlations_for_expense(test_session, sample_project.expense.id)}
        assert types == {"estimated", "quoted"}

    @pytest.mark.parametrize("targets", [
        {},
        {"estimate_line_item_id": "a", "quote_id": "b"},
    ])
    def test_exactly_one_target(self, test_session, sample_project, targets):
        with pytest.raises(ValidationError):
            create_correlation(test_session, sample_project.expense.id, **targets)

    def test_missing_target(self, test_session, sample_project):
        with pytest.raises(NotFoundError):
            create_correlation(test_session, sample_project.expense.id, change_order_line_item_id="nope")

    def test_split_correlation(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        split = factory.split(sample_project.expense, other, 400)

        correlation = create_correlation(
            test_session, sample_project.expense.id,
            expense_split_id=split.id,
            change_order_line_item_id=sample_project.co_line.id,
        )

        assert correlation.source_key == f"split:{split.id}"
        assert correlation.correlation_type == "change_order"

    def test_split_of_other_expense_rejected(self, factory, test_session, sample_project):
        other_expense = factory.expense(sample_project.project, 80)
        split = factory.split(other_expense, sample_project.project, 80)
        with pytest.raises(NotFoundError):
            create_correlation(
                test_session, sample_project.expense.id,
                expense_split_id=split.id,
                estimate_line_item_id=sample_project.framing.id,
            )

    def test_lookup_and_delete(self, test_session, sample_project):
        correlation = create_correlation(
            test_session, sample_project.expense.id, quote_id=sample_project.quote.id
        )
        found = get_correlations_for_line_items(test_session, quote_ids=[sample_project.quote.id])
        assert found == [correlation]
        assert get_correlated_source_keys(test_session, [sample_project.expense.id]) == {correlation.source_key}

        delete_correlation(test_session, correlation.id)
        assert get_correlations_for_line_items(test_session, quote_ids=[sample_project.quote.id]) == []

        with pytest.raises(NotFoundError):
            delete_correlation(test_session, correlation.id)

    def test_lookup_without_ids(self, test_session):
        assert get_correlations_for_line_items(test_session) == []
        assert get_correlated_source_keys(test_session, []) == set()


class TestSplits:
    """Tests for expense splits."""

    @pytest.mark.parametrize("amount, splits, valid", [
        (1000, [500, 500], True),
        (1000, [500, 499.995], True),
        (1000, [500, 400], False),
        (1000, [1000, 0], False),
        (1000, [], False),
    ])
    def test_validate_split_total(self, amount, splits, valid):
        is_valid, error = validate_split_total(amount, splits)
        assert is_valid is valid
        assert (error is None) is valid

    def test_create_splits(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        splits = create_expense_splits(test_session, sample_project.expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600, "notes": "shared delivery"},
        ])

        assert sample_project.expense.is_split is True
        assert [split.split_percentage for split in splits] == [50.0, 50.0]
        assert splits[1].notes == "shared delivery"

    def test_resplit_replaces(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        create_expense_splits(test_session, sample_project.expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])
        create_expense_splits(test_session, sample_project.expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 200},
            {"project_id": other.id, "split_amount": 1000},
        ])

        amounts = sorted(split.split_amount for split in test_session.query(ExpenseSplit).all())
        assert amounts == [200, 1000]

    def test_total_mismatch(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        with pytest.raises(ValidationError):
            create_expense_splits(test_session, sample_project.expense.id, [
                {"project_id": sample_project.project.id, "split_amount": 600},
                {"project_id": other.id, "split_amount": 500},
            ])

    def test_duplicate_project(self, test_session, sample_project):
        with pytest.raises(ValidationError):
            create_expense_splits(test_session, sample_project.expense.id, [
                {"project_id": sample_project.project.id, "split_amount": 600},
                {"project_id": sample_project.project.id, "split_amount": 600},
            ])

    def test_delete_splits(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        create_expense_splits(test_session, sample_project.expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])
        delete_expense_splits(test_session, sample_project.expense.id)

        assert sample_project.expense.is_split is False
        assert test_session.query(ExpenseSplit).count() == 0

    def test_split_removes_whole_expense_correlation(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        expense = sample_project.expense
        create_correlation(test_session, expense.id, estimate_line_item_id=sample_project.framing.id)

        create_expense_splits(test_session, expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])

        assert test_session.query(ExpenseLineItemCorrelation).count() == 0
        assert get_correlations_for_expense(test_session, expense.id) == []

    def test_resplit_removes_split_correlations(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        expense = sample_project.expense
        ours, _ = create_expense_splits(test_session, expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])
        create_correlation(test_session, expense.id, expense_split_id=ours.id,
                           estimate_line_item_id=sample_project.framing.id)

        create_expense_splits(test_session, expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 300},
            {"project_id": other.id, "split_amount": 900},
        ])

        assert test_session.query(ExpenseLineItemCorrelation).count() == 0

    def test_unsplit_removes_split_correlations(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        expense = sample_project.expense
        ours, _ = create_expense_splits(test_session, expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])
        create_correlation(test_session, expense.id, expense_split_id=ours.id,
                           estimate_line_item_id=sample_project.framing.id)

        delete_expense_splits(test_session, expense.id)

        assert test_session.query(ExpenseLineItemCorrelation).count() == 0
        correlation = create_correlation(test_session, expense.id, estimate_line_item_id=sample_project.framing.id)
        assert correlation.contributing_amount == 1200

    def test_whole_correlation_of_split_expense_rejected(self, factory, test_session, sample_project):
        other = factory.project("Garage", project_number="P-200")
        expense = sample_project.expense
        create_expense_splits(test_session, expense.id, [
            {"project_id": sample_project.project.id, "split_amount": 600},
            {"project_id": other.id, "split_amount": 600},
        ])

        with pytest.raises(ValidationError):
            create_correlation(test_session, expense.id, estimate_line_item_id=sample_project.framing.id)


class TestReceipts:
    """Tests for receipt linking."""

    def test_link_changes_only_the_reference(self, factory, test_session, sample_project):
        receipt = factory.receipt(1250, payee=sample_project.payee)
        expense = link_receipt(test_session, sample_project.expense.id, receipt.id)

        assert expense.receipt_id == receipt.id
        assert expense.amount == 1200
        assert receipt.amount == 1250
        assert get_unlinked_receipts(test_session) == []

        unlink_receipt(test_session, expense.id)
        assert get_unlinked_receipts(test_session) == [receipt]

    def test_link_missing_receipt(self, test_session, sample_project):
        with pytest.raises(NotFoundError):
            link_receipt(test_session, sample_project.expense.id, "nope")
