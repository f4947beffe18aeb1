"""
API request and response models for the Check-In API REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in records/models.py and
auth/models.py, which own the internal domain representation. Route handlers
map between the two.
"""

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.config import MAX_DB_INT

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    field is set only for query-parameter validation failures and names the
    offending parameter.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    field: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health. status is "degraded" when a component reports an error."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class PaginationMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total_records: int
    total_pages: int


# ---------------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------------


class AllocationRow(BaseModel):
    """One budget allocation with its parent budget's identifying fields."""

    model_config = ConfigDict(frozen=True)

    id: int
    budget_id: int
    transaction_date: date
    amount: float
    description: Optional[str]
    created_by_user_id: Optional[int]
    created_at: str
    budget_name: str
    fiscal_year_start: date
    grant_id: Optional[int]
    department_id: Optional[int]


class AllocationPage(BaseModel):
    """Response for GET /api/v1/allocations."""

    model_config = ConfigDict(frozen=True)

    data: list[AllocationRow]
    pagination: PaginationMeta


# ---------------------------------------------------------------------------
# Forum
# ---------------------------------------------------------------------------


class ForumPostCreate(BaseModel):
    """Request body for POST /api/v1/forum/posts."""

    model_config = ConfigDict(str_strip_whitespace=True)

    topic_id: int = Field(ge=1, le=MAX_DB_INT)
    post_body: str = Field(min_length=1, max_length=10000)


class ForumPostResponse(BaseModel):
    """A stored forum post, as returned after creation."""

    model_config = ConfigDict(frozen=True)

    id: int
    topic_id: int
    content: str
    created_at: str
    user_id: Optional[int]
    created_by_api_key_id: Optional[int]


class ForumPostRow(BaseModel):
    """One row of the forum post listing, with the topic title joined in."""

    model_config = ConfigDict(frozen=True)

    id: int
    topic_id: int
    topic_title: str
    content: str
    user_id: Optional[int]
    created_by_api_key_id: Optional[int]
    created_at: str


class ForumPostPage(BaseModel):
    """Response for GET /api/v1/forum/posts."""

    model_config = ConfigDict(frozen=True)

    data: list[ForumPostRow]
    pagination: PaginationMeta


# ---------------------------------------------------------------------------
# Check-ins
# ---------------------------------------------------------------------------


class CheckInResponse(BaseModel):
    """Response for GET /api/v1/checkins/{checkin_id}."""

    model_config = ConfigDict(frozen=True)

    id: int
    site_id: int
    first_name: str
    last_name: str
    check_in_time: datetime
    client_email: Optional[str]
    notified_staff_id: Optional[int]
    created_at: str


class CheckInNoteCreate(BaseModel):
    """Request body for POST /api/v1/checkins/{checkin_id}/notes."""

    model_config = ConfigDict(str_strip_whitespace=True)

    note_text: str = Field(min_length=1, max_length=10000)


class CheckInNoteResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    check_in_id: int
    note_text: str
    created_by_api_key_id: Optional[int]
    created_at: str


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportPage(BaseModel):
    """Response for GET /api/v1/reports/{report_type}.

    Row shape depends on report_type, so rows are passed through as mappings.
    """

    model_config = ConfigDict(frozen=True)

    report_type: str
    data: list[dict[str, Any]]
    pagination: PaginationMeta
