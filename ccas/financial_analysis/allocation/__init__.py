"""
Allocation package for the Construction Cost Allocation System.

This package computes how vendor expenses cover a project's billable
estimate and change order line items.
"""

from ccas.financial_analysis.allocation.engine import AllocationEngine
from ccas.financial_analysis.allocation.summary import (
    AllocationSummary, LineItemAllocation, CategoryGroup, classify_allocation
)
from ccas.financial_analysis.allocation.targets import EffectiveTarget, resolve_effective_targets

__all__ = [
    'AllocationEngine',
    'AllocationSummary',
    'LineItemAllocation',
    'CategoryGroup',
    'classify_allocation',
    'EffectiveTarget',
    'resolve_effective_targets'
]
