"""
Match scoring for allocation suggestions.

This module scores how well an expense (or receipt) matches a candidate
vendor document or line item, using additive bonuses for amount, date,
payee and project agreement. Scores are advisory; nothing here writes.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Any, Optional, Tuple

from ccas.utils.common import to_amount, to_date, days_between, DEFAULT_EPSILON

import logging
logger = logging.getLogger(__name__)


@dataclass
class MatchWeights:
    """Bonus points and tolerances used by the scorer."""

    exact_amount: int = 40
    near_amount: int = 25
    same_day: int = 30
    within_3_days: int = 20
    within_7_days: int = 10
    same_payee: int = 20
    same_project: int = 10
    amount_tolerance_percent: float = 0.05
    amount_tolerance_floor: float = 5.0
    exact_epsilon: float = DEFAULT_EPSILON

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> 'MatchWeights':
        """Build weights from the ``matching`` configuration section.

        Args:
            config: Matching configuration section

        Returns:
            MatchWeights
        """
        config = config or {}
        weights = dict(config.get('weights', {}))
        for key in ('amount_tolerance_percent', 'amount_tolerance_floor'):
            if key in config:
                weights[key] = config[key]
        known = set(cls.__dataclass_fields__)
        unknown = set(weights) - known
        if unknown:
            logger.warning(f"Ignoring unknown matching weights: {sorted(unknown)}")
        return cls(**{key: value for key, value in weights.items() if key in known})


@dataclass
class MatchSubject:
    """The expense or receipt being matched."""

    amount: Optional[float]
    reference_date: Optional[date]
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    project_id: Optional[str] = None


@dataclass
class MatchCandidate:
    """A line item or document the subject could be allocated to."""

    candidate_id: str
    amount: Optional[float]
    reference_date: Optional[date] = None
    payee_id: Optional[str] = None
    payee_name: Optional[str] = None
    project_id: Optional[str] = None
    candidate_type: str = 'estimate_line_item'
    description: Optional[str] = None


@dataclass
class MatchScore:
    """Score of one candidate with the reasons it was awarded."""

    candidate: MatchCandidate
    score: int
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidate_id': self.candidate.candidate_id,
            'candidate_type': self.candidate.candidate_type,
            'description': self.candidate.description,
            'amount': self.candidate.amount,
            'reference_date': self.candidate.reference_date,
            'project_id': self.candidate.project_id,
            'score': self.score,
            'reasons': list(self.reasons),
        }


def as_subject(source: Any) -> MatchSubject:
    """Coerce an Expense, Receipt or MatchSubject into a MatchSubject.

    Args:
        source: Object with amount, a date attribute and payee/project fields

    Returns:
        MatchSubject
    """
    if isinstance(source, MatchSubject):
        return source

    reference_date = getattr(source, 'expense_date', None)
    if reference_date is None:
        reference_date = getattr(source, 'captured_at', None)

    payee = getattr(source, 'payee', None)
    payee_name = getattr(source, 'payee_name', None) or (payee.payee_name if payee is not None else None)

    return MatchSubject(
        amount=to_amount(source.amount) if source.amount is not None else None,
        reference_date=to_date(reference_date),
        payee_id=getattr(source, 'payee_id', None),
        payee_name=payee_name,
        project_id=getattr(source, 'project_id', None),
    )


def _same_payee(subject: MatchSubject, candidate: MatchCandidate) -> bool:
    if subject.payee_id and candidate.payee_id:
        return subject.payee_id == candidate.payee_id
    if subject.payee_name and candidate.payee_name:
        return subject.payee_name.strip().lower() == candidate.payee_name.strip().lower()
    return False


def score_candidate(expense: Any, candidate: MatchCandidate,
                    weights: Optional[MatchWeights] = None) -> Tuple[int, List[str]]:
    """Score one candidate against an expense.

    Args:
        expense: Expense, Receipt or MatchSubject
        candidate: Candidate to score
        weights: Scoring weights (defaults to MatchWeights())

    Returns:
        Tuple of (score, list of reasons)
    """
    weights = weights or MatchWeights()
    subject = as_subject(expense)
    score = 0
    reasons = []

    if subject.amount is not None and candidate.amount is not None:
        difference = abs(subject.amount - candidate.amount)
        tolerance = max(abs(subject.amount) * weights.amount_tolerance_percent, weights.amount_tolerance_floor)
        if difference <= weights.exact_epsilon:
            score += weights.exact_amount
            reasons.append('exact amount')
        elif difference <= tolerance:
            score += weights.near_amount
            reasons.append('amount within tolerance')

    gap = days_between(subject.reference_date, candidate.reference_date)
    if gap is not None:
        if gap == 0:
            score += weights.same_day
            reasons.append('same day')
        elif gap <= 3:
            score += weights.within_3_days
            reasons.append('within 3 days')
        elif gap <= 7:
            score += weights.within_7_days
            reasons.append('within 7 days')

    if _same_payee(subject, candidate):
        score += weights.same_payee
        reasons.append('same payee')

    if subject.project_id and candidate.project_id and subject.project_id == candidate.project_id:
        score += weights.same_project
        reasons.append('same project')

    return score, reasons


def rank_candidates(expense: Any, candidates: List[MatchCandidate],
                    weights: Optional[MatchWeights] = None) -> List[MatchScore]:
    """Score every candidate and order them best first.

    Ties are broken by the most recent candidate date, then by candidate id.

    Args:
        expense: Expense, Receipt or MatchSubject
        candidates: Candidates to score
        weights: Scoring weights

    Returns:
        List of MatchScore, best first
    """
    subject = as_subject(expense)
    scored = []
    for candidate in candidates:
        score, reasons = score_candidate(subject, candidate, weights)
        scored.append(MatchScore(candidate, score, reasons))

    def sort_key(match: MatchScore):
        reference = to_date(match.candidate.reference_date)
        return (-match.score, -(reference.toordinal() if reference else 0), match.candidate.candidate_id)

    return sorted(scored, key=sort_key)


def calculate_match_confidence(expense: Any, candidates: List[MatchCandidate],
                               weights: Optional[MatchWeights] = None) -> int:
    """Best score among the candidates, between 0 and 100.

    Args:
        expense: Expense, Receipt or MatchSubject
        candidates: Candidates to score
        weights: Scoring weights

    Returns:
        Confidence score
    """
    ranked = rank_candidates(expense, candidates, weights)
    if not ranked:
        return 0
    return max(0, min(100, ranked[0].score))


def suggest_line_item_allocation(expense: Any, candidates: List[MatchCandidate],
                                 weights: Optional[MatchWeights] = None) -> Optional[str]:
    """Suggest the candidate an expense most likely pays for.

    The raw best match is returned whatever its score; callers apply their
    own threshold through calculate_match_confidence.

    Args:
        expense: Expense, Receipt or MatchSubject
        candidates: Candidates to score
        weights: Scoring weights

    Returns:
        Candidate id, or None when no candidate scores above zero
    """
    ranked = rank_candidates(expense, candidates, weights)
    if not ranked or ranked[0].score <= 0:
        return None
    return ranked[0].candidate.candidate_id
