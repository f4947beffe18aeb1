"""
api/routes/v1/reports.py -- Paginated detail reports for the Check-In API.

Routes:
  GET /reports/{report_type} -- report_type is checkin_detail or allocation_detail

Every report requires generate:reports. The rows a key may see are then
decided by a second, report-specific permission:

  checkin_detail
    read:all_checkin_data     all sites; ?site_id= narrows to one site
    read:site_checkin_data    the key's own site; the key must have one
  allocation_detail
    read:all_allocation_data  all budgets; ?department_id=, ?grant_id=,
                              ?budget_id=, ?user_id= (budget owner)
    read:own_allocation_data  budgets owned by the key's user; ?budget_id=

A key holding neither scope gets 403. Parameters the narrower scope does not
accept are ignored and logged. Common parameters: start_date, end_date
(YYYY-MM-DD, end not before start), page, limit (default 50, max 1000).

Checks run in this order: authentication and generate:reports, report type
(400), scope (403), then parameters (400).
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import PaginationMeta, ReportPage
from auth.dependencies import require_permission
from auth.models import AuthenticatedPrincipal
from auth.permissions import authorize
from core.config import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, MAX_REPORT_PAGE_SIZE, get_settings
from core.errors import Forbidden, ValidationError
from listing.builder import PageDefaults, build_query
from listing.filters import FilterRegistry
from records.listings import ALLOCATION_REPORT_ALL, ALLOCATION_REPORT_OWN, CHECKIN_REPORT_ALL, CHECKIN_REPORT_SITE
from records.store import RecordStore, budgets, check_ins

logger = logging.getLogger("checkin.api.reports")

router = APIRouter()

_settings = get_settings()

_REPORT_DEFAULTS = PageDefaults(page=DEFAULT_PAGE, limit=DEFAULT_PAGE_SIZE, max_limit=MAX_REPORT_PAGE_SIZE)

# Parameters every report understands; anything else outside the chosen
# registry is reported as ignored.
_COMMON_PARAMS = frozenset({"start_date", "end_date", "page", "limit"})


@dataclass(frozen=True)
class ReportScope:
    """One permission tier of a report.

    restrict builds the row restriction from the principal; it returns None
    when the key lacks the association the tier depends on.
    """

    permission: str
    registry: FilterRegistry
    restrict: Optional[Callable[[AuthenticatedPrincipal], Optional[tuple]]] = None
    missing_association: str = ""


def _own_site(principal: AuthenticatedPrincipal) -> Optional[tuple]:
    if not principal.site_id:
        return None
    return (check_ins.c.site_id == principal.site_id,)


def _own_budgets(principal: AuthenticatedPrincipal) -> Optional[tuple]:
    if not principal.user_id:
        return None
    return (budgets.c.user_id == principal.user_id,)


# Widest scope first. The first tier the key holds wins.
REPORTS: dict[str, tuple[ReportScope, ...]] = {
    "checkin_detail": (
        ReportScope("read:all_checkin_data", CHECKIN_REPORT_ALL),
        ReportScope(
            "read:site_checkin_data",
            CHECKIN_REPORT_SITE,
            restrict=_own_site,
            missing_association="Permission 'read:site_checkin_data' requires the API key to have an associated site ID.",
        ),
    ),
    "allocation_detail": (
        ReportScope("read:all_allocation_data", ALLOCATION_REPORT_ALL),
        ReportScope(
            "read:own_allocation_data",
            ALLOCATION_REPORT_OWN,
            restrict=_own_budgets,
            missing_association="Permission 'read:own_allocation_data' requires the API key to have an associated user ID.",
        ),
    ),
}


def resolve_scope(report_type: str, principal: AuthenticatedPrincipal) -> tuple[FilterRegistry, tuple]:
    """Pick the registry and row restriction for this key, or raise Forbidden."""
    tiers = REPORTS[report_type]
    for tier in tiers:
        if not authorize(principal, tier.permission):
            continue
        if tier.restrict is None:
            return tier.registry, ()
        restriction = tier.restrict(principal)
        if restriction is None:
            logger.info("API key %d holds %s but has no association for it", principal.credential_id, tier.permission)
            raise Forbidden(tier.missing_association)
        return tier.registry, restriction
    logger.info("API key %d has no scope for report %s", principal.credential_id, report_type)
    raise Forbidden(
        "Permission denied. Requires " + " or ".join(f"'{tier.permission}'" for tier in tiers) + "."
    )


def _log_ignored_params(params, registry: FilterRegistry, principal: AuthenticatedPrincipal) -> None:
    ignored = sorted(name for name in params if name not in registry and name not in _COMMON_PARAMS)
    if ignored:
        logger.warning(
            "Parameters %s ignored for API key %d under %s",
            ", ".join(ignored),
            principal.credential_id,
            registry.name,
        )


@limiter.limit(_settings.listing_rate_limit)
@router.get("/reports/{report_type}", response_model=ReportPage)
def generate_report(
    request: Request,
    report_type: str,
    principal: AuthenticatedPrincipal = Depends(require_permission("generate:reports")),
) -> ReportPage:
    """Return one page of a detail report, newest first."""
    report_type = report_type.strip()
    if report_type not in REPORTS:
        raise ValidationError(
            "type",
            "Invalid 'type' parameter. Allowed types: " + ", ".join(REPORTS) + ".",
        )
    registry, restriction = resolve_scope(report_type, principal)
    _log_ignored_params(request.query_params, registry, principal)

    store: RecordStore = request.app.state.records
    query = build_query(request.query_params, registry, _REPORT_DEFAULTS, scope=restriction)
    rows, page = store.fetch_page(query)
    return ReportPage(
        report_type=report_type,
        data=rows,
        pagination=PaginationMeta(**page.to_dict()),
    )
