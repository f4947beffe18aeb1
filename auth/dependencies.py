"""
auth/dependencies.py -- FastAPI Depends() helpers for API-key authentication.

Two header slots are checked in priority order:
  1. Authorization: Bearer <key>  -- scheme matched case-insensitively.
  2. X-API-Key: <key>             -- for clients that cannot set Authorization.

extract_presented_key() is the only place that knows header names; the
verifier just receives the extracted string (or None).

get_current_principal() raises NotAuthenticated (401) when the key is missing
or invalid. require_permission(...) builds a dependency that additionally
raises Forbidden (403) unless every listed permission is held. Both errors are
rendered by the ApiError handler in api/main.py.

Layer rule: no imports from api/, listing/, or records/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
import re

from fastapi import Request

from auth.models import AuthenticatedPrincipal
from auth.permissions import authorize, normalize_required
from auth.tokens import CredentialVerifier
from core.errors import Forbidden, NotAuthenticated

logger = logging.getLogger("checkin.auth")

_BEARER_RE = re.compile(r"^Bearer\s+(.*)$", re.IGNORECASE)


def extract_presented_key(request: Request) -> str | None:
    """Return the raw API key from the request headers, or None."""
    auth_header = request.headers.get("Authorization", "")
    match = _BEARER_RE.match(auth_header)
    if match and match.group(1).strip():
        return match.group(1).strip()

    api_key = request.headers.get("X-API-Key", "").strip()
    return api_key or None


def get_current_principal(request: Request) -> AuthenticatedPrincipal:
    """Require a valid API key. Raises NotAuthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: AuthenticatedPrincipal = Depends(get_current_principal)): ...
    """
    verifier: CredentialVerifier = request.app.state.verifier
    principal = verifier.authenticate(extract_presented_key(request))
    if principal is None:
        raise NotAuthenticated()
    request.state.principal = principal
    return principal


def require_permission(*required: str):
    """Build a dependency that admits only keys holding every listed permission.

    Use as a FastAPI dependency:
        @router.get("/allocations")
        def route(principal = Depends(require_permission("read:budget_allocations"))): ...
    """
    needed = normalize_required(required)

    def _dependency(request: Request) -> AuthenticatedPrincipal:
        principal = get_current_principal(request)
        if not authorize(principal, needed):
            logger.info("API key %d denied; requires %s", principal.credential_id, ", ".join(needed))
            raise Forbidden()
        return principal

    return _dependency
