"""
auth/store.py -- SQLAlchemy Core persistence layer for API-key credentials.

Pattern: Repository + Data Mapper (same as records/store.py).
CredentialStore is the repository; _row_to_credential is the mapper.
The verifier, dependencies and CLI never touch SQL directly.

Contract consumed by the verifier (auth/tokens.py):
  list_active_credentials() -> list[CredentialRecord]
  touch_last_used(credential_id) -> None
Both convert driver failures into core.errors.DataAccessError after logging
the original exception, so callers never see SQLAlchemy internals.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB: shares DATABASE_URL with the record tables (see core/config.py).

Layer rule: no imports from api/, listing/, or records/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import CredentialRecord
from core.config import get_settings
from core.errors import DataAccessError

logger = logging.getLogger("checkin.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("api_key_hash", String(60), nullable=False),  # bcrypt, salted per record
    Column("key_prefix", String(12), nullable=False),  # display only
    Column("associated_permissions", Text),  # JSON array of permission strings
    Column("associated_user_id", Integer),
    Column("associated_site_id", Integer),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32)),
    Column("revoked_at", String(32)),  # NULL = active
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL lets readers proceed without blocking during writes. Set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for CredentialRecord entities.

    Usage:
        store = CredentialStore()
        key_id = store.create_credential(record)
        active = store.list_active_credentials()
        store.revoke_credential(key_id)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Verifier contract
    # ------------------------------------------------------------------

    def list_active_credentials(self) -> list[CredentialRecord]:
        """Return every non-revoked credential, oldest first.

        Fetch order is stable (by id) so verification order is deterministic.
        """
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(
                    _api_keys.select().where(_api_keys.c.revoked_at.is_(None)).order_by(_api_keys.c.id)
                ).fetchall()
        except SQLAlchemyError as exc:
            logger.exception("Failed to load active API keys")
            raise DataAccessError() from exc
        return [_row_to_credential(r) for r in rows]

    def touch_last_used(self, credential_id: int) -> None:
        """Stamp last_used_at on a key after a successful verification."""
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _api_keys.update().where(_api_keys.c.id == credential_id).values(last_used_at=_now_iso())
                )
                conn.commit()
        except SQLAlchemyError as exc:
            logger.exception("Failed to update last_used_at for API key %d", credential_id)
            raise DataAccessError() from exc

    # ------------------------------------------------------------------
    # Key management (CLI and tests)
    # ------------------------------------------------------------------

    def create_credential(self, record: CredentialRecord) -> int:
        """Insert a new credential record and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    name=record.name,
                    api_key_hash=record.key_hash,
                    key_prefix=record.key_prefix,
                    associated_permissions=record.permissions,
                    associated_user_id=record.associated_user_id,
                    associated_site_id=record.associated_site_id,
                    created_at=_now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_credential(self, credential_id: int) -> CredentialRecord | None:
        """Look up a credential by primary key, revoked or not."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.id == credential_id)).fetchone()
        return _row_to_credential(row) if row is not None else None

    def list_credentials(self) -> list[CredentialRecord]:
        """Return all credentials, newest first, including revoked ones."""
        with self.engine.connect() as conn:
            rows = conn.execute(_api_keys.select().order_by(_api_keys.c.id.desc())).fetchall()
        return [_row_to_credential(r) for r in rows]

    def revoke_credential(self, credential_id: int) -> bool:
        """Deactivate a key. Returns True if an active key was revoked.

        Revoking an already-revoked key is a no-op and returns False, so the
        original revoked_at timestamp is preserved.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == credential_id) & _api_keys.c.revoked_at.is_(None))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def serialize_permissions(permissions: list[str]) -> str:
    """Encode a permission list the way the api_keys table stores it."""
    return json.dumps(list(permissions))


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_credential(row) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        name=row.name,
        key_hash=row.api_key_hash,
        key_prefix=row.key_prefix,
        permissions=row.associated_permissions,
        associated_user_id=row.associated_user_id,
        associated_site_id=row.associated_site_id,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
        revoked_at=row.revoked_at,
    )
