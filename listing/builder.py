"""
listing/builder.py -- Turns raw query parameters into a paired COUNT/DATA query.

build_query() is pure: it validates, then returns a ListingQuery holding the
validated filter set and page request. Execution belongs to
records/store.RecordStore.fetch_page().

Invariants:
  - Known parameters with bad values raise ValidationError naming the field.
    Unknown parameters are ignored.
  - limit outside [1, max_limit] is rejected, never clamped. A page whose
    offset would not fit a 64-bit integer is rejected as well.
  - The soft-delete base predicates are always ANDed in; client filters can
    only narrow the result, never widen it.
  - count_statement() and data_statement() read the same predicate tuple, so
    total_records always describes the rows the data query pages through.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.sql import Select

from core.config import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, MAX_DB_INT, MAX_PAGE_SIZE
from core.errors import ValidationError
from listing.filters import FilterRegistry, parse_int

logger = logging.getLogger("checkin.listing")


@dataclass(frozen=True)
class PageDefaults:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_PAGE_SIZE
    max_limit: int = MAX_PAGE_SIZE


@dataclass(frozen=True)
class PageRequest:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass(frozen=True)
class QueryFilterSet:
    """Validated client filters for one request.

    values maps parameter name to coerced value (for logging and echoing);
    predicates holds the base predicates, then any scope predicates, then the
    client predicates.
    """

    values: Mapping[str, Any]
    predicates: tuple


def total_pages(total_records: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return math.ceil(total_records / limit)


@dataclass(frozen=True)
class PageResult:
    page: int
    limit: int
    total_records: int

    @property
    def total_pages(self) -> int:
        return total_pages(self.total_records, self.limit)

    def to_dict(self) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total_records": self.total_records,
            "total_pages": self.total_pages,
        }


@dataclass(frozen=True)
class ListingQuery:
    registry: FilterRegistry
    filters: QueryFilterSet
    page: PageRequest

    def count_statement(self) -> Select:
        """SELECT COUNT(...) over the filtered rows. No ordering, no paging."""
        return select(func.count(self.registry.count_column)).select_from(self.registry.source).where(
            *self.filters.predicates
        )

    def data_statement(self) -> Select:
        """One page of rows, most recent first, ties broken by id descending."""
        return (
            select(*self.registry.columns)
            .select_from(self.registry.source)
            .where(*self.filters.predicates)
            .order_by(self.registry.order_timestamp.desc(), self.registry.order_id.desc())
            .limit(self.page.limit)
            .offset(self.page.offset)
        )

    def result(self, total_records: int) -> PageResult:
        return PageResult(page=self.page.page, limit=self.page.limit, total_records=total_records)


def _parse_page(raw_params: Mapping[str, Any], defaults: PageDefaults) -> PageRequest:
    page = defaults.page
    if "page" in raw_params:
        page = parse_int(raw_params["page"])
        if page is None or page < 1:
            raise ValidationError("page", "Invalid query parameter format for page. Must be a positive integer.")

    limit = defaults.limit
    if "limit" in raw_params:
        limit = parse_int(raw_params["limit"])
        if limit is None or not 1 <= limit <= defaults.max_limit:
            raise ValidationError(
                "limit",
                f"Invalid query parameter format for limit. Must be an integer between 1 and {defaults.max_limit}.",
            )

    # OFFSET is bound as a 64-bit integer too.
    if (page - 1) * limit > MAX_DB_INT:
        raise ValidationError("page", "Invalid query parameter format for page. Page is out of range.")
    return PageRequest(page=page, limit=limit)


def _check_ordered_pairs(registry: FilterRegistry, values: Mapping[str, Any]) -> None:
    for lower, upper in registry.ordered_pairs:
        if lower in values and upper in values and values[upper] < values[lower]:
            raise ValidationError(upper, f"'{upper}' cannot be before '{lower}'.")


def build_query(
    raw_params: Mapping[str, Any],
    registry: FilterRegistry,
    defaults: PageDefaults = PageDefaults(),
    today: Optional[date] = None,
    scope: tuple = (),
) -> ListingQuery:
    """Validate raw client parameters against a registry and return the query pair.

    Filters with an empty-string value are treated as not supplied. The first
    invalid filter (in registry order) raises, then ordered pairs, then
    page/limit are checked. scope holds server-side predicates (such as the
    calling key's site) that are ANDed in after the base predicates.
    """
    today = today or date.today()

    values: dict[str, Any] = {}
    predicates = list(registry.base_predicates) + list(scope)
    for name, spec in registry.filters.items():
        raw = raw_params.get(name)
        if raw is None or (isinstance(raw, str) and raw == ""):
            continue
        value = spec.coerce(raw, today)
        values[name] = value
        predicates.append(spec.predicate(value))
    _check_ordered_pairs(registry, values)

    page = _parse_page(raw_params, defaults)
    logger.debug(
        "Built %s listing query: filters=%s scoped=%s page=%d limit=%d",
        registry.name,
        values,
        bool(scope),
        page.page,
        page.limit,
    )
    return ListingQuery(
        registry=registry,
        filters=QueryFilterSet(values=values, predicates=tuple(predicates)),
        page=page,
    )
