"""
Matching package for the Construction Cost Allocation System.

This package scores expenses against candidate line items and receipts to
suggest allocations.
"""

from ccas.financial_analysis.matching.scoring import (
    MatchWeights, MatchSubject, MatchCandidate, MatchScore,
    score_candidate, rank_candidates, calculate_match_confidence,
    suggest_line_item_allocation
)
from ccas.financial_analysis.matching.candidates import (
    build_line_item_candidates, receipt_candidates, suggest_receipts_for_expense
)

__all__ = [
    'MatchWeights',
    'MatchSubject',
    'MatchCandidate',
    'MatchScore',
    'score_candidate',
    'rank_candidates',
    'calculate_match_confidence',
    'suggest_line_item_allocation',
    'build_line_item_candidates',
    'receipt_candidates',
    'suggest_receipts_for_expense'
]
