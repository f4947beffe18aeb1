"""
tests/test_query_builder.py -- Unit tests for listing/builder.py and listing/filters.py.

Pure tests: no database. Statements are compiled to strings to check their
shape, never executed here (see test_record_store.py for execution).
"""

from __future__ import annotations

from datetime import date, datetime

import pytest

from core.errors import ValidationError
from listing.builder import PageDefaults, PageResult, build_query, total_pages
from listing.filters import make_registry, parse_date, parse_int, positive_int_filter
from records.listings import ALLOCATION_REPORT_ALL, ALLOCATIONS, CHECKIN_REPORT_ALL, CHECKIN_REPORT_SITE, FORUM_POSTS
from records.store import budget_allocations, budgets, check_ins

TODAY = date(2024, 5, 1)


def _build(params: dict, registry=ALLOCATIONS, **kwargs):
    return build_query(params, registry, today=TODAY, **kwargs)


class TestParseInt:
    @pytest.mark.parametrize("raw,expected", [("5", 5), (" 12 ", 12), ("+3", 3), ("-4", -4), (7, 7)])
    def test_accepted(self, raw, expected) -> None:
        assert parse_int(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "5.0", "1e3", "0x10", "", "5 5", True, None, 2.0])
    def test_rejected(self, raw) -> None:
        assert parse_int(raw) is None

    @pytest.mark.parametrize("raw,expected", [("9223372036854775807", 2**63 - 1), ("-9223372036854775808", -(2**63))])
    def test_64_bit_edges_accepted(self, raw, expected) -> None:
        assert parse_int(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["9223372036854775808", "-9223372036854775809", "99999999999999999999", "1" * 5000, 2**63],
    )
    def test_beyond_64_bits_rejected(self, raw) -> None:
        assert parse_int(raw) is None


class TestParseDate:
    def test_accepted(self) -> None:
        assert parse_date(" 2024-02-29 ") == date(2024, 2, 29)

    @pytest.mark.parametrize("raw", ["2023-02-29", "2024-1-05", "05/01/2024", "2024-05-01T00:00", "", None, 20240501])
    def test_rejected(self, raw) -> None:
        assert parse_date(raw) is None


class TestFilters:
    def test_no_params_gives_defaults(self) -> None:
        query = _build({})
        assert query.filters.values == {}
        assert query.page.page == 1
        assert query.page.limit == 50
        assert query.filters.predicates == ALLOCATIONS.base_predicates

    def test_valid_filters_are_coerced(self) -> None:
        query = _build({"grant_id": " 5 ", "department_id": "2", "fiscal_year": "2024"})
        assert query.filters.values == {"fiscal_year": 2024, "grant_id": 5, "department_id": 2}
        assert len(query.filters.predicates) == len(ALLOCATIONS.base_predicates) + 3

    def test_empty_filter_value_is_ignored(self) -> None:
        assert _build({"grant_id": ""}).filters.values == {}

    def test_unknown_params_are_ignored(self) -> None:
        query = _build({"foo": "bar", "sort": "amount", "topic_id": "x"})
        assert query.filters.values == {}

    @pytest.mark.parametrize("raw", ["0", "-3", "abc", "5.0", "1,2"])
    def test_invalid_positive_int(self, raw) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"grant_id": raw})
        assert excinfo.value.field == "grant_id"
        assert "positive integer" in excinfo.value.message

    @pytest.mark.parametrize("name", ["grant_id", "budget_id", "user_id"])
    @pytest.mark.parametrize("raw", ["99999999999999999999", "1" * 5000, "9223372036854775808"])
    def test_oversized_filter_value_names_the_filter(self, name, raw) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({name: raw})
        assert excinfo.value.field == name
        assert "positive integer" in excinfo.value.message

    def test_largest_64_bit_filter_value_is_accepted(self) -> None:
        assert _build({"grant_id": "9223372036854775807"}).filters.values == {"grant_id": 2**63 - 1}

    def test_fiscal_year_bounds_follow_the_calendar(self) -> None:
        assert _build({"fiscal_year": "1900"}).filters.values == {"fiscal_year": 1900}
        assert _build({"fiscal_year": "2034"}).filters.values == {"fiscal_year": 2034}
        for raw in ("1899", "2035", "abc", "24"):
            with pytest.raises(ValidationError) as excinfo:
                _build({"fiscal_year": raw})
            assert excinfo.value.field == "fiscal_year"
            assert "between 1900 and 2034" in excinfo.value.message

    def test_first_invalid_filter_in_registry_order_is_reported(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"user_id": "x", "fiscal_year": "abc"})
        assert excinfo.value.field == "fiscal_year"

    def test_filters_are_checked_before_paging(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"limit": "500", "budget_id": "nope"})
        assert excinfo.value.field == "budget_id"

    def test_duplicate_filter_names_are_refused(self) -> None:
        with pytest.raises(ValueError):
            make_registry(
                "broken",
                source=budget_allocations,
                columns=(budget_allocations.c.id,),
                count_column=budget_allocations.c.id,
                base_predicates=(),
                order_timestamp=budget_allocations.c.transaction_date,
                order_id=budget_allocations.c.id,
                filters=(
                    positive_int_filter("budget_id", budget_allocations.c.budget_id),
                    positive_int_filter("budget_id", budget_allocations.c.budget_id),
                ),
            )


class TestPaging:
    def test_offset(self) -> None:
        query = _build({"page": "3", "limit": "20"})
        assert query.page.offset == 40

    @pytest.mark.parametrize("limit", ["1", "100"])
    def test_limit_edges_accepted(self, limit) -> None:
        assert _build({"limit": limit}).page.limit == int(limit)

    @pytest.mark.parametrize("limit", ["0", "101", "150", "abc", ""])
    def test_limit_out_of_range_is_rejected(self, limit) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"limit": limit})
        assert excinfo.value.field == "limit"
        assert "between 1 and 100" in excinfo.value.message

    @pytest.mark.parametrize("page", ["0", "-1", "x", ""])
    def test_bad_page_is_rejected(self, page) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"page": page})
        assert excinfo.value.field == "page"

    def test_custom_defaults(self) -> None:
        defaults = PageDefaults(page=1, limit=10, max_limit=50)
        assert _build({}, FORUM_POSTS, defaults=defaults).page.limit == 10
        with pytest.raises(ValidationError):
            _build({"limit": "51"}, FORUM_POSTS, defaults=defaults)

    def test_page_beyond_results_is_not_an_error(self) -> None:
        assert _build({"page": "999"}).page.offset == 998 * 50

    @pytest.mark.parametrize("page", ["99999999999999999999", "1" * 5000])
    def test_oversized_page_is_rejected(self, page) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"page": page})
        assert excinfo.value.field == "page"

    def test_oversized_limit_is_rejected(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"limit": "99999999999999999999"})
        assert excinfo.value.field == "limit"

    def test_page_whose_offset_overflows_is_rejected(self) -> None:
        # The page itself fits in 64 bits; (page - 1) * limit does not.
        with pytest.raises(ValidationError) as excinfo:
            _build({"page": "9223372036854775807", "limit": "100"})
        assert excinfo.value.field == "page"
        assert "out of range" in excinfo.value.message

    def test_largest_page_with_limit_one_is_accepted(self) -> None:
        query = _build({"page": "9223372036854775807", "limit": "1"})
        assert query.page.offset == 2**63 - 2


class TestStatements:
    def test_count_statement_has_no_order_or_limit(self) -> None:
        sql = str(_build({"grant_id": "987654"}).count_statement())
        assert "count(" in sql.lower()
        assert "ORDER BY" not in sql
        assert "LIMIT" not in sql
        assert "987654" not in sql

    def test_data_statement_orders_most_recent_first(self) -> None:
        sql = str(_build({"page": "2", "limit": "10"}).data_statement())
        assert "ORDER BY budget_allocations.transaction_date DESC, budget_allocations.id DESC" in sql
        assert "LIMIT" in sql
        assert "OFFSET" in sql

    def test_both_statements_share_soft_delete_predicates(self) -> None:
        query = _build({"user_id": "4"})
        for stmt in (query.count_statement(), query.data_statement()):
            sql = str(stmt)
            assert "budget_allocations.deleted_at IS NULL" in sql
            assert "budgets.deleted_at IS NULL" in sql
            assert "budget_allocations.created_by_user_id = " in sql

    def test_filter_values_are_bound(self) -> None:
        stmt = _build({"department_id": "31337"}).data_statement()
        assert "31337" not in str(stmt)
        assert 31337 in stmt.compile().params.values()


class TestReportRegistries:
    def test_dates_are_parsed(self) -> None:
        query = _build({"start_date": "2024-01-01", "end_date": "2024-01-31"}, CHECKIN_REPORT_ALL)
        assert query.filters.values == {"start_date": date(2024, 1, 1), "end_date": date(2024, 1, 31)}

    @pytest.mark.parametrize("name", ["start_date", "end_date"])
    @pytest.mark.parametrize("raw", ["2024-13-01", "2024/01/01", "yesterday", "2024-02-30"])
    def test_bad_date_names_the_parameter(self, name, raw) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({name: raw}, CHECKIN_REPORT_ALL)
        assert excinfo.value.field == name
        assert excinfo.value.message == f"Invalid '{name}' format. Use YYYY-MM-DD."

    def test_end_before_start_is_rejected(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            _build({"start_date": "2024-02-01", "end_date": "2024-01-31"}, ALLOCATION_REPORT_ALL)
        assert excinfo.value.field == "end_date"
        assert excinfo.value.message == "'end_date' cannot be before 'start_date'."

    def test_same_start_and_end_day_is_accepted(self) -> None:
        query = _build({"start_date": "2024-02-01", "end_date": "2024-02-01"}, ALLOCATION_REPORT_ALL)
        assert len(query.filters.values) == 2

    def test_end_date_covers_the_whole_day_on_timestamps(self) -> None:
        stmt = _build({"end_date": "2024-01-31"}, CHECKIN_REPORT_ALL).data_statement()
        sql = str(stmt)
        assert "check_ins.check_in_time < " in sql
        assert datetime(2024, 2, 1) in stmt.compile().params.values()

    def test_report_limit_cap(self) -> None:
        defaults = PageDefaults(page=1, limit=50, max_limit=1000)
        assert _build({"limit": "1000"}, CHECKIN_REPORT_ALL, defaults=defaults).page.limit == 1000
        with pytest.raises(ValidationError) as excinfo:
            _build({"limit": "1001"}, CHECKIN_REPORT_ALL, defaults=defaults)
        assert "between 1 and 1000" in excinfo.value.message

    def test_site_scope_drops_the_site_filter(self) -> None:
        assert "site_id" in CHECKIN_REPORT_ALL
        assert "site_id" not in CHECKIN_REPORT_SITE
        query = _build({"site_id": "4"}, CHECKIN_REPORT_SITE)
        assert query.filters.values == {}

    def test_scope_predicates_follow_base_predicates(self) -> None:
        scope = (check_ins.c.site_id == 7,)
        query = _build({}, CHECKIN_REPORT_SITE, scope=scope)
        assert query.filters.predicates[: len(CHECKIN_REPORT_SITE.base_predicates)] == CHECKIN_REPORT_SITE.base_predicates
        assert len(query.filters.predicates) == len(CHECKIN_REPORT_SITE.base_predicates) + 1
        for stmt in (query.count_statement(), query.data_statement()):
            assert "check_ins.site_id = " in str(stmt)

    def test_allocation_user_filter_is_the_budget_owner(self) -> None:
        sql = str(_build({"user_id": "3"}, ALLOCATION_REPORT_ALL).data_statement())
        assert "budgets.user_id = " in sql
        assert "budget_owner_user_id" in sql

    def test_ordered_pair_with_unknown_filter_is_refused(self) -> None:
        with pytest.raises(ValueError):
            make_registry(
                "broken",
                source=budgets,
                columns=(budgets.c.id,),
                count_column=budgets.c.id,
                base_predicates=(),
                order_timestamp=budgets.c.fiscal_year_start,
                order_id=budgets.c.id,
                filters=(positive_int_filter("grant_id", budgets.c.grant_id),),
                ordered_pairs=(("start_date", "end_date"),),
            )


class TestPageResult:
    @pytest.mark.parametrize("total,limit,pages", [(0, 50, 0), (1, 50, 1), (50, 50, 1), (51, 50, 2), (120, 50, 3)])
    def test_total_pages(self, total, limit, pages) -> None:
        assert total_pages(total, limit) == pages

    def test_zero_limit_gives_zero_pages(self) -> None:
        assert total_pages(10, 0) == 0

    def test_to_dict(self) -> None:
        assert PageResult(page=2, limit=50, total_records=120).to_dict() == {
            "page": 2,
            "limit": 50,
            "total_records": 120,
            "total_pages": 3,
        }
