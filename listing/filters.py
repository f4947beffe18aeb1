"""
listing/filters.py -- Declarative filter specifications for paginated listings.

A FilterRegistry describes one listing type: where rows come from, which
columns are returned, which soft-delete predicates always apply, how rows are
ordered, and which client query parameters are accepted. Each accepted
parameter is a FilterSpec: its type, its valid range, and a predicate
producer that turns the validated value into a SQLAlchemy expression with the
value as a bound parameter.

Because predicates are produced from validated values and SQLAlchemy column
objects, client text never reaches the SQL string. Column names come only
from the registry definitions in records/listings.py.

Integer syntax follows PHP's FILTER_VALIDATE_INT, which existing clients rely on:
surrounding whitespace and a leading sign are allowed, nothing else is, and
the value must fit a signed 64-bit integer. Dates are strict YYYY-MM-DD.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from types import MappingProxyType
from typing import Any, Optional

from sqlalchemy import extract
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.expression import FromClause

from core.config import FISCAL_YEAR_LOOKAHEAD, MAX_DB_INT, MIN_DB_INT, MIN_FISCAL_YEAR
from core.errors import ValidationError

_INT_RE = re.compile(r"^[+-]?\d+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Sign plus the 19 digits of 2**63. Anything longer cannot be in range, and
# int() is never asked to convert it.
_MAX_INT_CHARS = 20

KIND_POSITIVE_INT = "positive_int"
KIND_YEAR = "year"
KIND_DATE = "date"


def parse_int(raw: Any) -> Optional[int]:
    """Parse a client-supplied integer. Returns None if it is not one.

    Values outside the signed 64-bit range are not integers as far as the
    database is concerned, so they are rejected here too.
    """
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, str):
        text = raw.strip()
        if len(text) > _MAX_INT_CHARS or not _INT_RE.match(text):
            return None
        value = int(text)
    else:
        return None
    if not MIN_DB_INT <= value <= MAX_DB_INT:
        return None
    return value


def parse_date(raw: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD date. Returns None for any other shape or an impossible date."""
    if isinstance(raw, date) and not isinstance(raw, datetime):
        return raw
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not _DATE_RE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class FilterSpec:
    """One accepted query parameter and the predicate it compiles to."""

    name: str
    kind: str
    predicate: Callable[[Any], ColumnElement]
    min_value: int = 1
    max_value: Optional[int] = None

    def bounds(self, today: date) -> tuple[int, Optional[int]]:
        """Inclusive range for this parameter. Year bounds move with the calendar."""
        if self.kind == KIND_YEAR:
            return MIN_FISCAL_YEAR, today.year + FISCAL_YEAR_LOOKAHEAD
        return self.min_value, self.max_value

    def coerce(self, raw: Any, today: date) -> Any:
        """Validate a raw value and return it typed, or raise ValidationError."""
        if self.kind == KIND_DATE:
            parsed = parse_date(raw)
            if parsed is None:
                raise ValidationError(self.name, f"Invalid '{self.name}' format. Use YYYY-MM-DD.")
            return parsed

        value = parse_int(raw)
        low, high = self.bounds(today)
        if value is None or value < low or (high is not None and value > high):
            raise ValidationError(self.name, self._error_message(low, high))
        return value

    def _error_message(self, low: int, high: Optional[int]) -> str:
        if self.kind == KIND_YEAR:
            return (
                f"Invalid query parameter format for {self.name}. "
                f"Must be a valid year (YYYY) between {low} and {high}."
            )
        if high is None and low == 1:
            return f"Invalid query parameter format for {self.name}. Must be a positive integer."
        if high is None:
            return f"Invalid query parameter format for {self.name}. Must be an integer >= {low}."
        return f"Invalid query parameter format for {self.name}. Must be an integer between {low} and {high}."


def positive_int_filter(name: str, column: ColumnElement) -> FilterSpec:
    """Equality filter on an integer column, value >= 1."""
    return FilterSpec(name=name, kind=KIND_POSITIVE_INT, predicate=lambda value: column == value)


def year_filter(name: str, column: ColumnElement) -> FilterSpec:
    """Matches rows whose date column falls in the given calendar year."""
    return FilterSpec(name=name, kind=KIND_YEAR, predicate=lambda value: extract("year", column) == value)


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def date_from_filter(name: str, column: ColumnElement, timestamp: bool = False) -> FilterSpec:
    """Rows on or after the given day. timestamp=True for DateTime columns."""

    def predicate(day: date) -> ColumnElement:
        return column >= (_start_of_day(day) if timestamp else day)

    return FilterSpec(name=name, kind=KIND_DATE, predicate=predicate)


def date_to_filter(name: str, column: ColumnElement, timestamp: bool = False) -> FilterSpec:
    """Rows on or before the given day, the whole day included."""

    def predicate(day: date) -> ColumnElement:
        if timestamp:
            return column < _start_of_day(day + timedelta(days=1))
        return column <= day

    return FilterSpec(name=name, kind=KIND_DATE, predicate=predicate)


@dataclass(frozen=True)
class FilterRegistry:
    """Static description of one listing type. Immutable after construction.

    count_column is what COUNT() runs over (the primary entity's id);
    order_timestamp and order_id give the fixed most-recent-first ordering.
    ordered_pairs lists (lower, upper) filter names whose values, when both
    are supplied, must not be reversed (e.g. start_date before end_date).
    """

    name: str
    source: FromClause
    columns: tuple
    count_column: ColumnElement
    base_predicates: tuple
    order_timestamp: ColumnElement
    order_id: ColumnElement
    filters: Mapping[str, FilterSpec] = field(default_factory=dict)
    ordered_pairs: tuple = ()

    def get(self, param: str) -> Optional[FilterSpec]:
        return self.filters.get(param)

    def __contains__(self, param: str) -> bool:
        return param in self.filters


def make_registry(
    name: str,
    *,
    source: FromClause,
    columns: Iterable,
    count_column: ColumnElement,
    base_predicates: Iterable[ColumnElement],
    order_timestamp: ColumnElement,
    order_id: ColumnElement,
    filters: Iterable[FilterSpec],
    ordered_pairs: Iterable[tuple[str, str]] = (),
) -> FilterRegistry:
    """Build a FilterRegistry, keyed by parameter name. Duplicate names are a bug."""
    by_name: dict[str, FilterSpec] = {}
    for spec in filters:
        if spec.name in by_name:
            raise ValueError(f"Duplicate filter '{spec.name}' in registry '{name}'")
        by_name[spec.name] = spec
    pairs = tuple(ordered_pairs)
    for lower, upper in pairs:
        if lower not in by_name or upper not in by_name:
            raise ValueError(f"Ordered pair ({lower}, {upper}) names an unknown filter in registry '{name}'")
    return FilterRegistry(
        name=name,
        source=source,
        columns=tuple(columns),
        count_column=count_column,
        base_predicates=tuple(base_predicates),
        order_timestamp=order_timestamp,
        order_id=order_id,
        filters=MappingProxyType(by_name),
        ordered_pairs=pairs,
    )
