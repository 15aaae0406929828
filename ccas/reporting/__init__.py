"""
Reporting for the Construction Cost Allocation System.

Declarative reports over the registered data sources and Markdown/HTML
summaries rendered from the package templates.
"""

from ccas.reporting.executor import ReportExecutor, boolean_filter, DEFAULT_LIMIT, MAX_LIMIT
from ccas.reporting.registry import (
    REGISTRY, REGISTRY_VERSION, DataSource, ReportField, get_data_source, list_data_sources
)
from ccas.reporting.schemas import ReportFilter, ReportRequest, ReportResult
from ccas.reporting.summary import SummaryRenderer

__all__ = [
    'ReportExecutor',
    'boolean_filter',
    'DEFAULT_LIMIT',
    'MAX_LIMIT',
    'REGISTRY',
    'REGISTRY_VERSION',
    'DataSource',
    'ReportField',
    'get_data_source',
    'list_data_sources',
    'ReportFilter',
    'ReportRequest',
    'ReportResult',
    'SummaryRenderer',
]
