"""
auth/permissions.py -- Flat permission-string authorization.

A principal is entitled to exactly the strings in its stored JSON list. There
are no wildcards, roles, or hierarchies: "read:budget_allocations" grants
nothing but itself.

Parsing is deny-by-default. Anything that is not a JSON list of strings
yields the empty set, and the anomaly is logged with the key id so an operator
can fix the row. One legacy shape is tolerated: a JSON string that itself
contains the list (the value was encoded twice on the way in).

Layer rule: no imports from api/, listing/, or records/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from auth.models import AuthenticatedPrincipal

logger = logging.getLogger("checkin.auth")

# Every permission a key may be granted. The CLI refuses anything else at
# creation time; authorize() itself does not consult this set.
ALLOWED_PERMISSIONS: frozenset[str] = frozenset(
    {
        "read:checkin_data",
        "create:checkin_note",
        "read:budget_allocations",
        "create:forum_post",
        "read:all_forum_posts",
        "read:recent_forum_posts",
        "generate:reports",
        "read:all_checkin_data",
        "read:site_checkin_data",
        "read:all_allocation_data",
        "read:own_allocation_data",
    }
)


def parse_entitlements(raw, credential_id: int | None = None) -> frozenset[str]:
    """Parse a stored entitlement value into a set of permission strings.

    Accepts the serialized JSON text or an already-decoded list. Returns the
    empty set for None, blank text, malformed JSON, a non-list shape, or a
    list holding anything other than strings.
    """
    if raw is None:
        return frozenset()

    value = raw
    if isinstance(value, str):
        if not value.strip():
            return frozenset()
        try:
            value = json.loads(value)
            if isinstance(value, str):
                value = json.loads(value)
        except ValueError:
            logger.warning("Malformed permission list for API key %s; denying all", credential_id)
            return frozenset()

    if not isinstance(value, list):
        logger.warning(
            "Permission list for API key %s is a %s, not a list; denying all",
            credential_id,
            type(value).__name__,
        )
        return frozenset()
    if not all(isinstance(p, str) for p in value):
        logger.warning("Permission list for API key %s holds non-string entries; denying all", credential_id)
        return frozenset()
    return frozenset(value)


def normalize_required(required: str | Iterable[str]) -> list[str]:
    """Turn one permission or many into a list."""
    if isinstance(required, str):
        return [required]
    return list(required)


def has_permissions(entitlements: frozenset[str], required: str | Iterable[str]) -> bool:
    """True iff every required permission is in the entitlement set."""
    return all(perm in entitlements for perm in normalize_required(required))


def authorize(principal: AuthenticatedPrincipal, required: str | Iterable[str]) -> bool:
    """Decide whether the principal holds every required permission.

    Returns False if any permission is missing or if the stored list could
    not be parsed.
    """
    entitlements = parse_entitlements(principal.raw_permissions, principal.credential_id)
    return has_permissions(entitlements, required)
