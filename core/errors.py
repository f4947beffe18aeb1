"""
core/errors.py -- Error taxonomy shared by the auth, listing and records layers.

Every error carries the HTTP status and machine-readable code it maps to, so
api/main.py renders all of them through one exception handler into the
{"error": {"code", "message"}} envelope.

Rules:
  ValidationError names the offending field and is always shown to the client.
  NotAuthenticated and Forbidden use fixed messages -- the client never learns
      whether a key was wrong, revoked, or unknown.
  DataAccessError carries a generic message only. The driver exception is
      logged by the layer that caught it and chained via `raise ... from`, but
      never rendered.

Layer rule: core/ is the kernel. No imports from api/, auth/, listing/, records/.
"""

from __future__ import annotations


class ApiError(Exception):
    """Base class for errors that map onto the JSON error envelope."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ValidationError(ApiError):
    """Malformed or out-of-range client input. Always reported with the field."""

    status_code = 400
    code = "invalid_query_param"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message, "field": self.field}


class NotAuthenticated(ApiError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required. Invalid or missing API key."


class Forbidden(ApiError):
    status_code = 403
    code = "forbidden"
    message = "Permission denied. API key lacks the required permission."


class DataAccessError(ApiError):
    """Underlying store failure. The message is generic by construction."""

    status_code = 500
    code = "data_access_error"
    message = "A database error occurred while processing the request."


class InvalidIdentifier(ValidationError):
    """A path identifier that is not a positive integer."""

    code = "invalid_id_format"
