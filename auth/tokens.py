"""
auth/tokens.py -- API key generation, hashing, and verification.

Security design decisions:
  API keys: secrets.token_hex(32) gives 256 bits of entropy. Keys look like
       ck_<64 hex chars>; the 3-char prefix makes leaked keys easy to grep for.

  Hashing: bcrypt with a fresh salt per key, so two identical raw keys never
       share a stored hash. The price is that a presented key cannot be looked
       up by hash -- CredentialVerifier loads every active record and runs
       bcrypt.checkpw() against each, stopping at the first match. checkpw
       compares in constant time; the scan as a whole is not (the position of
       the matching record leaks through total latency), which is acceptable
       for the small number of keys this service issues.

  Failure semantics: authenticate() returns None for a missing key, an
       unknown key, a revoked key, and a store failure alike. The caller
       (auth/dependencies.py) turns None into a generic 401, so clients cannot
       tell the cases apart. Store failures are still logged here.

  last_used_at: stamped best-effort after a match. A failed stamp is logged
       and swallowed -- it must never turn a valid key into a 401.

Layer rule: no imports from api/, listing/, or records/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

import bcrypt

from auth.models import AuthenticatedPrincipal
from core.errors import DataAccessError

if TYPE_CHECKING:
    from auth.models import CredentialRecord

logger = logging.getLogger("checkin.auth")

_KEY_PREFIX = "ck_"
_DISPLAY_PREFIX_LEN = 11

# bcrypt only looks at the first 72 bytes of its input. Issued keys are 67
# bytes; anything longer cannot be one of ours.
_BCRYPT_MAX_BYTES = 72
_BCRYPT_ROUNDS = 12


# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key in the format: ck_<64 hex chars>."""
    return f"{_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str, rounds: int = _BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the raw key.

    rounds is the bcrypt cost factor; tests pass the minimum (4).
    """
    return bcrypt.hashpw(raw_key.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def display_prefix(raw_key: str) -> str:
    """First characters of the raw key, stored so operators can tell keys apart."""
    return raw_key[:_DISPLAY_PREFIX_LEN]


def verify_api_key(raw_key: str, key_hash: str) -> bool:
    """Return True if the raw key matches the bcrypt hash.

    A corrupt stored hash (ValueError from bcrypt) is treated as a mismatch
    so one bad row cannot lock every other key out.
    """
    try:
        return bcrypt.checkpw(raw_key.encode("utf-8"), key_hash.encode("utf-8"))
    except ValueError:
        logger.warning("Unreadable API key hash encountered during verification")
        return False


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Authenticates presented API keys against a credential store.

    The store is injected, so the same verifier works against CredentialStore,
    CachedCredentialStore, or a test double. It only needs:
        list_active_credentials() -> list[CredentialRecord]
        touch_last_used(credential_id) -> None

    Usage:
        verifier = CredentialVerifier(store)
        principal = verifier.authenticate(raw_key)   # None = not authenticated
    """

    def __init__(self, store) -> None:
        self.store = store

    def authenticate(self, presented: str | None) -> AuthenticatedPrincipal | None:
        """Return the principal for a valid, active key, or None.

        No store access happens when nothing was presented.
        """
        if not presented:
            return None
        if len(presented.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            return None

        try:
            records = self.store.list_active_credentials()
        except DataAccessError:
            # Already logged with the driver exception by the store.
            logger.error("API key verification failed: credential store unavailable")
            return None

        for record in records:
            if not record.is_active:
                continue
            if verify_api_key(presented, record.key_hash):
                self._touch(record)
                return _to_principal(record)
        return None

    def _touch(self, record: CredentialRecord) -> None:
        try:
            self.store.touch_last_used(record.id)
        except DataAccessError:
            logger.warning("Could not stamp last_used_at for API key %d; continuing", record.id)


def _to_principal(record: CredentialRecord) -> AuthenticatedPrincipal:
    return AuthenticatedPrincipal(
        credential_id=record.id,
        raw_permissions=record.permissions if record.permissions is not None else "[]",
        user_id=record.associated_user_id,
        site_id=record.associated_site_id,
    )
