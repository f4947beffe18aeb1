"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in records/models.py -- dataclasses own domain shape; stores, the verifier and
routes do the work.

Layer rule: no imports from api/, listing/, or records/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class CredentialRecord:
    """A stored API key: its one-way hash plus the entitlements it grants.

    Security design:
    - key_hash is bcrypt(raw_key) with a per-record salt. Because the salt is
      random, the same raw key hashes differently on every insert, so the
      store cannot look a key up by hash -- verification scans active records
      and runs bcrypt.checkpw() against each.
    - key_prefix (first 11 chars of the raw key) is stored for display
      purposes only. It is never used to select candidates.
    - permissions is the serialized JSON list of permission strings exactly
      as stored. Parsing (and tolerating bad data) is the authorizer's job.
    - A record is active while revoked_at is None. Revocation happens out of
      band (CLI); the verifier only ever touches last_used_at.
    """

    name: str
    key_hash: str
    key_prefix: str
    permissions: str | None = None  # JSON list of permission strings
    associated_user_id: int | None = None
    associated_site_id: int | None = None
    id: int | None = None
    created_at: str | None = None
    last_used_at: str | None = None
    revoked_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None


@dataclass(frozen=True)
class AuthenticatedPrincipal:
    """Result of a successful verification. Request-scoped, never persisted.

    raw_permissions is never None: an absent stored value becomes "[]" so the
    authorizer always has something to parse and denies by default.
    """

    credential_id: int
    raw_permissions: str = "[]"
    user_id: int | None = None
    site_id: int | None = None
