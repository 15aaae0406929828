"""
Request and result models for the report executor.

The models check the shape of a report request. Whether a field or
operator is allowed for a data source is decided against the registry by
the executor.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReportFilter(BaseModel):
    """One declarative filter: field, operator and value."""

    model_config = ConfigDict(extra='forbid')

    field: str
    operator: str
    value: Any = None

    @field_validator('field', 'operator')
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class ReportRequest(BaseModel):
    """A report request as received from a caller."""

    model_config = ConfigDict(extra='forbid')

    data_source: str
    filters: List[ReportFilter] = Field(default_factory=list)
    sort_by: Optional[str] = None
    sort_dir: str = 'desc'
    limit: Optional[int] = None

    @field_validator('sort_dir')
    @classmethod
    def normalize_sort_dir(cls, value: str) -> str:
        return value.strip().lower()


class ReportResult(BaseModel):
    """Rows of an executed report with count and timing metadata."""

    data_source: str
    rows: List[Dict[str, Any]]
    row_count: int
    total_count: int
    execution_time_ms: float
    registry_version: int
    limit: int
