"""
Report executor for the Construction Cost Allocation System.

This module runs declarative report requests (data source, filters, sort and
limit) against the registered data sources. Field names, operators and sort
columns are checked against the registry before any query is built; values
are always bound parameters.
"""

import time
import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Any, Optional, Union, Callable

import pydantic
from sqlalchemy import select, func, and_, not_, or_
from sqlalchemy.orm import Session

from ccas.reporting.registry import (
    DataSource, ReportField, get_data_source, OPERATORS, REGISTRY_VERSION,
    NUMBER, DATE, DATETIME, BOOLEAN
)
from ccas.reporting.schemas import ReportFilter, ReportRequest, ReportResult
from ccas.utils.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 10000

# Values meaning "no filter" for a field
_EMPTY_VALUES = (None, '')
_ANY_VALUES = ('any', 'all')
_TRUE_VALUES = ('true', 't', 'yes', '1')
_FALSE_VALUES = ('false', 'f', 'no', '0')

FilterInput = Union[Dict[str, Any], ReportFilter]


def _parse_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def boolean_filter(field: str, state: Any) -> Optional[Dict[str, Any]]:
    """Map a tri-state boolean choice to a filter entry.

    Args:
        field: Boolean field name
        state: True, False, or None / "any" for no preference

    Returns:
        Filter dictionary, or None when the field must be left out entirely
    """
    if state is None or (isinstance(state, str) and state.strip().lower() in _ANY_VALUES + ('',)):
        return None
    parsed = _parse_boolean(state)
    if parsed is None:
        raise ValidationError(f"Boolean filter '{field}' must be true, false or any, got {state!r}")
    return {'field': field, 'operator': 'equals', 'value': parsed}


def _is_empty(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() in _EMPTY_VALUES
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return value is None


def _day_start(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def _day_end(value: Union[date, datetime]) -> datetime:
    """Exclusive upper bound: the start of the following day for a date."""
    if isinstance(value, datetime):
        return value + timedelta(microseconds=1)
    return _day_start(value) + timedelta(days=1)


def _split_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return [value]


class ReportExecutor:
    """Executes declarative report requests against the registry."""

    def __init__(self, db_session: Session, config: Optional[Dict[str, Any]] = None):
        """Initialize the report executor.

        Args:
            db_session: Database session
            config: Optional configuration dictionary (the ``reporting`` section)
        """
        self.db_session = db_session
        self.config = config or {}
        self.default_limit = int(self.config.get('default_limit', DEFAULT_LIMIT))
        self.max_limit = int(self.config.get('max_limit', MAX_LIMIT))

    def execute_report(
        self,
        data_source: str,
        filters: Optional[Union[Dict[str, FilterInput], List[FilterInput]]] = None,
        sort_by: Optional[str] = None,
        sort_dir: str = 'desc',
        limit: Optional[int] = None
    ) -> ReportResult:
        """Execute a report.

        Args:
            data_source: Registered data source name
            filters: Mapping of arbitrary keys to {field, operator, value}, or a list of them
            sort_by: Field to sort by (defaults to the data source's default sort)
            sort_dir: 'asc' or 'desc'
            limit: Maximum number of rows, clamped to [1, max_limit]

        Returns:
            ReportResult

        Raises:
            ValidationError: If the source, a field, an operator, a value or
                the sort is not acceptable; raised before any query runs
        """
        started = time.perf_counter()
        request = self._build_request(data_source, filters, sort_by, sort_dir, limit)
        source = get_data_source(request.data_source)
        predicates = [self._build_predicate(source, report_filter) for report_filter in request.filters]
        predicates = [predicate for predicate in predicates if predicate is not None]
        sort_field = self._resolve_sort(source, request.sort_by)
        if request.sort_dir not in ('asc', 'desc'):
            raise ValidationError(f"Sort direction must be 'asc' or 'desc', got '{request.sort_dir}'")
        row_limit = self.clamp_limit(request.limit)

        base = source.query().subquery('report_source')
        statement = select(*base.c)
        for predicate in predicates:
            statement = statement.where(predicate(base))

        total_count = self.db_session.execute(
            select(func.count()).select_from(statement.subquery())
        ).scalar_one()

        column = base.c[sort_field.name]
        order = column.asc() if request.sort_dir == 'asc' else column.desc()
        statement = statement.order_by(order.nulls_last(), base.c[source.fields[0].name]).limit(row_limit)

        rows = [dict(row._mapping) for row in self.db_session.execute(statement)]
        elapsed = round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            f"Report '{source.name}' returned {len(rows)} of {total_count} rows "
            f"with {len(predicates)} filters in {elapsed} ms"
        )
        return ReportResult(
            data_source=source.name,
            rows=rows,
            row_count=len(rows),
            total_count=total_count,
            execution_time_ms=elapsed,
            registry_version=REGISTRY_VERSION,
            limit=row_limit,
        )

    def execute(self, request: ReportRequest) -> ReportResult:
        """Execute an already built ReportRequest."""
        return self.execute_report(
            request.data_source, request.filters, request.sort_by, request.sort_dir, request.limit
        )

    def clamp_limit(self, limit: Optional[int]) -> int:
        """Clamp a requested row limit to [1, max_limit]."""
        if limit is None:
            limit = self.default_limit
        return max(1, min(int(limit), self.max_limit))

    def _build_request(self, data_source, filters, sort_by, sort_dir, limit) -> ReportRequest:
        if isinstance(filters, dict):
            filter_list = list(filters.values())
        else:
            filter_list = list(filters or [])
        filter_list = [f.model_dump() if isinstance(f, ReportFilter) else f for f in filter_list]

        try:
            return ReportRequest(
                data_source=data_source,
                filters=filter_list,
                sort_by=sort_by,
                sort_dir=sort_dir or 'desc',
                limit=limit,
            )
        except pydantic.ValidationError as e:
            details = '; '.join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
            )
            raise ValidationError(f"Malformed report request: {details}") from e

    def _resolve_sort(self, source: DataSource, sort_by: Optional[str]) -> ReportField:
        name = sort_by or source.default_sort
        sort_field = source.get_field(name)
        if sort_field is None:
            raise ValidationError(
                f"Cannot sort '{source.name}' by unknown field '{name}'. "
                f"Available fields: {', '.join(source.field_names)}"
            )
        return sort_field

    def _coerce(self, report_field: ReportField, value: Any) -> Any:
        if report_field.field_type == NUMBER:
            try:
                return float(value)
            except (TypeError, ValueError):
                raise ValidationError(f"Field '{report_field.name}' expects a number, got {value!r}")
        if report_field.field_type == DATE:
            if isinstance(value, (date, datetime)):
                return value
            try:
                return date.fromisoformat(str(value).strip()[:10])
            except ValueError:
                raise ValidationError(f"Field '{report_field.name}' expects an ISO date, got {value!r}")
        if report_field.field_type == DATETIME:
            if isinstance(value, (date, datetime)):
                return value
            text = str(value).strip()
            try:
                if len(text) <= 10:
                    return date.fromisoformat(text)
                return datetime.fromisoformat(text)
            except ValueError:
                raise ValidationError(f"Field '{report_field.name}' expects an ISO date or timestamp, got {value!r}")
        if report_field.field_type == BOOLEAN:
            parsed = _parse_boolean(value)
            if parsed is None:
                raise ValidationError(f"Field '{report_field.name}' expects true or false, got {value!r}")
            return parsed
        return str(value)

    @staticmethod
    def _day_predicate(name: str, operator: str, day: date) -> Callable:
        """Compare a timestamp column against a whole calendar day."""
        start, end = _day_start(day), _day_end(day)
        if operator == 'equals':
            return lambda base: and_(base.c[name] >= start, base.c[name] < end)
        if operator == 'not_equals':
            return lambda base: or_(base.c[name] < start, base.c[name] >= end)
        if operator == 'greater_than':
            return lambda base: base.c[name] >= end
        return lambda base: base.c[name] < start

    def _build_predicate(self, source: DataSource, report_filter: ReportFilter) -> Optional[Callable]:
        """Validate one filter and return a function building its predicate, or None to omit it."""
        report_field = source.get_field(report_filter.field)
        if report_field is None:
            raise ValidationError(
                f"Unknown field '{report_filter.field}' for data source '{source.name}'. "
                f"Available fields: {', '.join(source.field_names)}"
            )

        operator = report_filter.operator
        if operator not in OPERATORS:
            raise ValidationError(
                f"Unknown operator '{operator}'. Supported operators: {', '.join(OPERATORS)}"
            )
        if operator not in report_field.allowed_operators:
            raise ValidationError(
                f"Operator '{operator}' is not allowed for field '{report_field.name}' "
                f"({report_field.field_type}); allowed: {', '.join(report_field.allowed_operators)}"
            )

        name = report_field.name
        if operator == 'is_null':
            return lambda base: base.c[name].is_(None)
        if operator == 'is_not_null':
            return lambda base: base.c[name].is_not(None)

        value = report_filter.value
        if _is_empty(value):
            return None

        if report_field.field_type == BOOLEAN:
            if isinstance(value, str) and value.strip().lower() in _ANY_VALUES:
                return None
            if self._coerce(report_field, value):
                return lambda base: base.c[name]
            return lambda base: or_(not_(base.c[name]), base.c[name].is_(None))

        if operator == 'in':
            values = [self._coerce(report_field, item) for item in _split_list(value)]
            if not values:
                return None
            return lambda base: base.c[name].in_(values)

        if operator == 'between':
            bounds = _split_list(value)
            if len(bounds) != 2:
                raise ValidationError(
                    f"Operator 'between' on '{name}' needs exactly two values, got {value!r}"
                )
            low, high = (self._coerce(report_field, bound) for bound in bounds)
            if report_field.field_type == DATETIME:
                start, end = _day_start(low), _day_end(high)
                return lambda base: and_(base.c[name] >= start, base.c[name] < end)
            return lambda base: base.c[name].between(low, high)

        coerced = self._coerce(report_field, value)
        if report_field.field_type == DATETIME and not isinstance(coerced, datetime):
            return self._day_predicate(name, operator, coerced)
        if operator == 'equals':
            return lambda base: base.c[name] == coerced
        if operator == 'not_equals':
            return lambda base: base.c[name] != coerced
        if operator == 'greater_than':
            return lambda base: base.c[name] > coerced
        if operator == 'less_than':
            return lambda base: base.c[name] < coerced
        # contains: case-insensitive substring match with wildcards escaped
        needle = str(coerced).lower()
        return lambda base: func.lower(base.c[name]).contains(needle, autoescape=True)
