"""
Main engine for financial analysis in the Construction Cost Allocation System.

This module provides the main entry point used by the command line and other
callers. It wires the allocation engine, the match scorer and the margin
calculator together over one database session.
"""

from typing import Dict, List, Any, Optional
from sqlalchemy.orm import Session

from ccas.config import get_config
from ccas.db.operations import get_expense
from ccas.financial_analysis.allocation import AllocationEngine, AllocationSummary
from ccas.financial_analysis.matching import (
    MatchWeights, build_line_item_candidates, rank_candidates,
    suggest_line_item_allocation, calculate_match_confidence,
    suggest_receipts_for_expense
)
from ccas.financial_analysis.rollup import MarginCalculator, RollupResult

import logging
logger = logging.getLogger(__name__)


class FinancialAnalysisEngine:
    """Main financial analysis engine."""

    def __init__(self, db_session: Session, config: Optional[Dict[str, Any]] = None):
        """Initialize the financial analysis engine.

        Args:
            db_session: Database session
            config: Optional full configuration dictionary (defaults to the global config)
        """
        self.db_session = db_session
        self.config = config if config is not None else get_config()

        allocation_config = self.config.get('allocation', {})
        matching_config = self.config.get('matching', {})

        self.allocation_engine = AllocationEngine(db_session, allocation_config)
        self.margin_calculator = MarginCalculator(db_session, allocation_config)
        self.weights = MatchWeights.from_config(matching_config)
        self.suggestion_threshold = matching_config.get('suggestion_threshold', 40)

    def compute_allocation_summary(self, project_id: str) -> AllocationSummary:
        """Compute the allocation summary of a project.

        Args:
            project_id: Project ID

        Returns:
            AllocationSummary
        """
        return self.allocation_engine.compute_allocation_summary(project_id)

    def list_unallocated_expenses(self, project_id: str) -> List[Dict[str, Any]]:
        """List a project's expenses that are not correlated to anything."""
        return self.allocation_engine.list_unallocated_expenses(project_id)

    def suggest_allocation(self, expense_id: str, limit: int = 5) -> Dict[str, Any]:
        """Suggest the line item an expense most likely pays for.

        Args:
            expense_id: Expense ID
            limit: Number of ranked candidates to return

        Returns:
            Dictionary with the suggested line item id, the confidence score,
            whether it clears the configured threshold and the top candidates
        """
        expense = get_expense(self.db_session, expense_id)
        candidates = build_line_item_candidates(
            self.db_session, self.allocation_engine.internal_categories
        )

        suggestion = suggest_line_item_allocation(expense, candidates, self.weights)
        confidence = calculate_match_confidence(expense, candidates, self.weights)
        ranked = [match for match in rank_candidates(expense, candidates, self.weights) if match.score > 0]

        logger.info(
            f"Suggestion for expense {expense.id}: {suggestion} "
            f"(confidence {confidence}, {len(candidates)} candidates)"
        )
        return {
            'expense_id': expense.id,
            'line_item_id': suggestion,
            'confidence': confidence,
            'suggested': suggestion is not None and confidence >= self.suggestion_threshold,
            'threshold': self.suggestion_threshold,
            'candidates': [match.to_dict() for match in ranked[:limit]],
        }

    def suggest_receipts(self, expense_id: str, limit: int = 5) -> List[Dict[str, Any]]:
        """Rank unlinked receipts for an expense."""
        return [
            match.to_dict()
            for match in suggest_receipts_for_expense(self.db_session, expense_id, self.weights, limit)
        ]

    def compute_rollup(self, project_id: str) -> RollupResult:
        """Compute a project's financial rollup without storing it."""
        return self.margin_calculator.compute_rollup(project_id)

    def recompute_project_margins(self, project_id: str) -> RollupResult:
        """Recompute and store a project's financial rollup.

        Args:
            project_id: Project ID

        Returns:
            RollupResult
        """
        return self.margin_calculator.recompute_project_margins(project_id)

    def analyze_project(self, project_id: str) -> Dict[str, Any]:
        """Allocation coverage and financial rollup of a project, without writing.

        Args:
            project_id: Project ID

        Returns:
            Dictionary with 'allocation' and 'rollup' entries
        """
        logger.info(f"Analyzing project: {project_id}")
        return {
            'allocation': self.compute_allocation_summary(project_id).to_dict(),
            'rollup': self.compute_rollup(project_id).to_dict(),
        }
