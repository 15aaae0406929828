"""
Financial analysis package for the Construction Cost Allocation System.

This package contains the allocation engine, the allocation match scorer and
the project margin calculator.
"""

from ccas.financial_analysis.engine import FinancialAnalysisEngine

__all__ = ['FinancialAnalysisEngine']
