"""
Rollup package for the Construction Cost Allocation System.

This package computes the derived financial fields of a project and keeps
them current through session event hooks.
"""

from ccas.financial_analysis.rollup.calculator import MarginCalculator, RollupResult, ROLLUP_FIELDS
from ccas.financial_analysis.rollup.triggers import register_rollup_triggers, unregister_rollup_triggers

__all__ = [
    'MarginCalculator',
    'RollupResult',
    'ROLLUP_FIELDS',
    'register_rollup_triggers',
    'unregister_rollup_triggers'
]
