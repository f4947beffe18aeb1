"""
records/listings.py -- Filter registries for the paginated listing endpoints.

Each registry is built once at import time and never mutated. Adding a new
filter means adding one FilterSpec line here; the builder, the count query and
the data query pick it up together.

ALLOCATIONS  -- GET /api/v1/allocations
    budget_allocations JOIN budgets, newest transaction first.
    fiscal_year   year of budgets.fiscal_year_start, 1900..current_year+10
    grant_id      budgets.grant_id
    department_id budgets.department_id
    budget_id     budget_allocations.budget_id
    user_id       budget_allocations.created_by_user_id

FORUM_POSTS  -- GET /api/v1/forum/posts
    forum_posts JOIN forum_topics, newest post first.
    topic_id      forum_posts.topic_id
    user_id       forum_posts.user_id
    api_key_id    forum_posts.created_by_api_key_id

Every registry hides rows whose own deleted_at or whose parent's deleted_at is set.

The report registries below the listings take start_date/end_date (YYYY-MM-DD,
end not before start) and page up to MAX_REPORT_PAGE_SIZE rows.
"""

from listing.filters import date_from_filter, date_to_filter, make_registry, positive_int_filter, year_filter
from records.store import budget_allocations, budgets, check_ins, forum_posts, forum_topics

ALLOCATIONS = make_registry(
    "allocations",
    source=budget_allocations.join(budgets, budget_allocations.c.budget_id == budgets.c.id),
    columns=(
        budget_allocations.c.id,
        budget_allocations.c.budget_id,
        budget_allocations.c.transaction_date,
        budget_allocations.c.amount,
        budget_allocations.c.description,
        budget_allocations.c.created_by_user_id,
        budget_allocations.c.created_at,
        budgets.c.name.label("budget_name"),
        budgets.c.fiscal_year_start,
        budgets.c.grant_id,
        budgets.c.department_id,
    ),
    count_column=budget_allocations.c.id,
    base_predicates=(
        budget_allocations.c.deleted_at.is_(None),
        budgets.c.deleted_at.is_(None),
    ),
    order_timestamp=budget_allocations.c.transaction_date,
    order_id=budget_allocations.c.id,
    filters=(
        year_filter("fiscal_year", budgets.c.fiscal_year_start),
        positive_int_filter("grant_id", budgets.c.grant_id),
        positive_int_filter("department_id", budgets.c.department_id),
        positive_int_filter("budget_id", budget_allocations.c.budget_id),
        positive_int_filter("user_id", budget_allocations.c.created_by_user_id),
    ),
)

FORUM_POSTS = make_registry(
    "forum_posts",
    source=forum_posts.join(forum_topics, forum_posts.c.topic_id == forum_topics.c.id),
    columns=(
        forum_posts.c.id,
        forum_posts.c.topic_id,
        forum_topics.c.title.label("topic_title"),
        forum_posts.c.content,
        forum_posts.c.user_id,
        forum_posts.c.created_by_api_key_id,
        forum_posts.c.created_at,
    ),
    count_column=forum_posts.c.id,
    base_predicates=(
        forum_posts.c.deleted_at.is_(None),
        forum_topics.c.deleted_at.is_(None),
    ),
    order_timestamp=forum_posts.c.created_at,
    order_id=forum_posts.c.id,
    filters=(
        positive_int_filter("topic_id", forum_posts.c.topic_id),
        positive_int_filter("user_id", forum_posts.c.user_id),
        positive_int_filter("api_key_id", forum_posts.c.created_by_api_key_id),
    ),
)


# ---------------------------------------------------------------------------
# Reports -- GET /api/v1/reports/{report_type}
#
# Each report has one registry per permission scope. The narrower scope keeps
# only the filters its callers may use; its row restriction (site or budget
# owner) is passed to build_query() as a scope predicate by the route.
# ---------------------------------------------------------------------------

_CHECKIN_REPORT_COLUMNS = (
    check_ins.c.id,
    check_ins.c.site_id,
    check_ins.c.first_name,
    check_ins.c.last_name,
    check_ins.c.check_in_time,
    check_ins.c.client_email,
    check_ins.c.notified_staff_id,
)

_CHECKIN_DATE_FILTERS = (
    date_from_filter("start_date", check_ins.c.check_in_time, timestamp=True),
    date_to_filter("end_date", check_ins.c.check_in_time, timestamp=True),
)

_ALLOCATION_REPORT_COLUMNS = (
    budget_allocations.c.id,
    budget_allocations.c.budget_id,
    budgets.c.name.label("budget_name"),
    budgets.c.department_id,
    budgets.c.grant_id,
    budgets.c.user_id.label("budget_owner_user_id"),
    budget_allocations.c.transaction_date,
    budget_allocations.c.amount,
    budget_allocations.c.description,
    budget_allocations.c.created_at,
)

_ALLOCATION_DATE_FILTERS = (
    date_from_filter("start_date", budget_allocations.c.transaction_date),
    date_to_filter("end_date", budget_allocations.c.transaction_date),
)


def _checkin_report(name, filters):
    return make_registry(
        name,
        source=check_ins,
        columns=_CHECKIN_REPORT_COLUMNS,
        count_column=check_ins.c.id,
        base_predicates=(check_ins.c.deleted_at.is_(None),),
        order_timestamp=check_ins.c.check_in_time,
        order_id=check_ins.c.id,
        filters=filters,
        ordered_pairs=(("start_date", "end_date"),),
    )


def _allocation_report(name, filters):
    return make_registry(
        name,
        source=budget_allocations.join(budgets, budget_allocations.c.budget_id == budgets.c.id),
        columns=_ALLOCATION_REPORT_COLUMNS,
        count_column=budget_allocations.c.id,
        base_predicates=(
            budget_allocations.c.deleted_at.is_(None),
            budgets.c.deleted_at.is_(None),
        ),
        order_timestamp=budget_allocations.c.transaction_date,
        order_id=budget_allocations.c.id,
        filters=filters,
        ordered_pairs=(("start_date", "end_date"),),
    )


# read:all_checkin_data -- any site, optionally narrowed with ?site_id=.
CHECKIN_REPORT_ALL = _checkin_report(
    "checkin_report_all",
    (positive_int_filter("site_id", check_ins.c.site_id),) + _CHECKIN_DATE_FILTERS,
)

# read:site_checkin_data -- the key's own site only.
CHECKIN_REPORT_SITE = _checkin_report("checkin_report_site", _CHECKIN_DATE_FILTERS)

# read:all_allocation_data
ALLOCATION_REPORT_ALL = _allocation_report(
    "allocation_report_all",
    (
        positive_int_filter("department_id", budgets.c.department_id),
        positive_int_filter("grant_id", budgets.c.grant_id),
        positive_int_filter("budget_id", budget_allocations.c.budget_id),
        positive_int_filter("user_id", budgets.c.user_id),
    )
    + _ALLOCATION_DATE_FILTERS,
)

# read:own_allocation_data -- budgets owned by the key's user only.
ALLOCATION_REPORT_OWN = _allocation_report(
    "allocation_report_own",
    (positive_int_filter("budget_id", budget_allocations.c.budget_id),) + _ALLOCATION_DATE_FILTERS,
)
