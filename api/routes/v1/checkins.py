"""
api/routes/v1/checkins.py -- Check-in lookup and note routes for the Check-In API.

Routes:
  GET  /checkins/{checkin_id}       -- one live check-in
  POST /checkins/{checkin_id}/notes -- attach a note, attributed to the calling API key

Auth policy:
  GET  /checkins/{checkin_id}:       read:checkin_data
  POST /checkins/{checkin_id}/notes: create:checkin_note

The path id must be a positive integer (400 invalid_id_format otherwise). A
missing or soft-deleted check-in is a 404 checkin_not_found.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.limiter import limiter
from api.models import CheckInNoteCreate, CheckInNoteResponse, CheckInResponse, ErrorDetail
from auth.dependencies import require_permission
from auth.models import AuthenticatedPrincipal
from core.config import get_settings
from core.errors import InvalidIdentifier
from listing.filters import parse_int
from records.store import RecordStore

logger = logging.getLogger("checkin.api.checkins")

router = APIRouter()

_settings = get_settings()


def _parse_checkin_id(raw: str) -> int:
    checkin_id = parse_int(raw)
    if checkin_id is None or checkin_id < 1:
        raise InvalidIdentifier("checkin_id", "Invalid Check-in ID format. ID must be a positive integer.")
    return checkin_id


def _not_found(checkin_id: int) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="checkin_not_found", message=f"Check-in not found for ID: {checkin_id}.").model_dump(),
    )


@limiter.limit(_settings.listing_rate_limit)
@router.get("/checkins/{checkin_id}", response_model=CheckInResponse)
def get_check_in(
    request: Request,
    checkin_id: str,
    principal: AuthenticatedPrincipal = Depends(require_permission("read:checkin_data")),
) -> CheckInResponse:
    store: RecordStore = request.app.state.records
    check_in_id = _parse_checkin_id(checkin_id)
    check_in = store.get_check_in(check_in_id)
    if check_in is None:
        raise _not_found(check_in_id)
    return CheckInResponse(
        id=check_in.id,
        site_id=check_in.site_id,
        first_name=check_in.first_name,
        last_name=check_in.last_name,
        check_in_time=check_in.check_in_time,
        client_email=check_in.client_email,
        notified_staff_id=check_in.notified_staff_id,
        created_at=check_in.created_at,
    )


@limiter.limit(_settings.write_rate_limit)
@router.post("/checkins/{checkin_id}/notes", response_model=CheckInNoteResponse, status_code=201)
def create_check_in_note(
    request: Request,
    checkin_id: str,
    body: CheckInNoteCreate,
    principal: AuthenticatedPrincipal = Depends(require_permission("create:checkin_note")),
) -> CheckInNoteResponse:
    """Attach a note to a live check-in. note_text is trimmed and must not be empty."""
    store: RecordStore = request.app.state.records
    check_in_id = _parse_checkin_id(checkin_id)
    note = store.create_checkin_note(check_in_id, body.note_text, api_key_id=principal.credential_id)
    if note is None:
        raise _not_found(check_in_id)
    logger.info("API key %d added note %d to check-in %d", principal.credential_id, note.id, check_in_id)
    return CheckInNoteResponse(
        id=note.id,
        check_in_id=note.check_in_id,
        note_text=note.note_text,
        created_by_api_key_id=note.created_by_api_key_id,
        created_at=note.created_at,
    )
