"""
api/routes/v1/allocations.py -- Budget allocation listing for the Check-In API.

Routes:
  GET /allocations -- paginated, filterable list of live allocations

Query parameters (see records/listings.ALLOCATIONS):
  fiscal_year, grant_id, department_id, budget_id, user_id -- optional filters
  page  (default 1), limit (default 50, max 100)

Unknown parameters are ignored; a known parameter with a bad value is a 400
naming the parameter. Requires the read:budget_allocations permission.
"""

from fastapi import APIRouter, Depends, Request

from api.limiter import limiter
from api.models import AllocationPage, AllocationRow, PaginationMeta
from auth.dependencies import require_permission
from auth.models import AuthenticatedPrincipal
from core.config import get_settings
from listing.builder import build_query
from records.listings import ALLOCATIONS
from records.store import RecordStore

router = APIRouter()

_settings = get_settings()


@limiter.limit(_settings.listing_rate_limit)
@router.get("/allocations", response_model=AllocationPage)
def list_allocations(
    request: Request,
    principal: AuthenticatedPrincipal = Depends(require_permission("read:budget_allocations")),
) -> AllocationPage:
    """Return one page of allocations, most recent transaction first."""
    store: RecordStore = request.app.state.records
    query = build_query(request.query_params, ALLOCATIONS, request.app.state.page_defaults)
    rows, page = store.fetch_page(query)
    return AllocationPage(
        data=[AllocationRow(**row) for row in rows],
        pagination=PaginationMeta(**page.to_dict()),
    )
