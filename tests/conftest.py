"""
tests/conftest.py -- Shared test fixtures for Check-In API tests.

This module provides:
  - sqlite_url(): a named shared-memory SQLite URI, unique per caller
  - make_key(): inserts an API key with a cheap bcrypt cost, returns (raw, id)
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus seeded keys for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Keys are hashed with bcrypt cost 4 so that the verifier's linear scan stays
fast; checkpw reads the cost from the stored hash.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# Set before any core import so get_settings() never points at a file on disk.
os.environ.setdefault("DATABASE_URL", "sqlite:///file:checkin_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import CredentialRecord
from auth.store import CredentialStore, serialize_permissions
from auth.tokens import CredentialVerifier, display_prefix, generate_api_key, hash_api_key
from listing.builder import PageDefaults
from records.store import RecordStore

# Rate limits are exercised by slowapi itself; keep them out of route tests.
limiter.enabled = False

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def sqlite_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def make_key(
    store: CredentialStore,
    permissions: list[str] | str | None,
    name: str = "test key",
    user_id: int | None = None,
    site_id: int | None = None,
) -> tuple[str, int]:
    """Create a key and return (raw_key, id).

    permissions may be a list (serialized as the table stores it), a raw
    string (to plant malformed data), or None.
    """
    raw = generate_api_key()
    stored = serialize_permissions(permissions) if isinstance(permissions, list) else permissions
    key_id = store.create_credential(
        CredentialRecord(
            name=name,
            key_hash=hash_api_key(raw, rounds=4),
            key_prefix=display_prefix(raw),
            permissions=stored,
            associated_user_id=user_id,
            associated_site_id=site_id,
        )
    )
    return raw, key_id


def _patch_lifespan(credentials: CredentialStore, records: RecordStore):
    """Return an async context manager that replaces the real lifespan.

    The credential store is used without the TTL cache so revocations in a
    test take effect on the next request.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.credentials = credentials
        app.state.verifier = CredentialVerifier(credentials)
        app.state.records = records
        app.state.page_defaults = PageDefaults()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    records: RecordStore
    credentials: CredentialStore
    keys: dict[str, tuple[str, int]]

    def headers(self, label: str) -> dict[str, str]:
        return {"X-API-Key": self.keys[label][0]}


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for API integration tests.

    Each test module gets its own database, named after the module. Keys:
      allocations  -- read:budget_allocations
      forum        -- every forum permission
      nothing      -- an empty permission list
      malformed    -- a permission column that is not JSON
      revoked      -- read:budget_allocations, revoked before the client starts
      checkins     -- read:checkin_data, create:checkin_note
      reports_all  -- generate:reports with both all-data report scopes
      reports_scoped       -- generate:reports with the site and own-budget
                              scopes; user 7, site 1
      reports_unassociated -- the same scopes, but no user or site
      reports_only -- generate:reports and no report scope
    """
    url = sqlite_url(f"test_{request.module.__name__.rsplit('.', 1)[-1]}")
    credentials = CredentialStore(db_url=url)
    records = RecordStore(db_url=url)

    keys = {
        "allocations": make_key(credentials, ["read:budget_allocations"], name="allocations"),
        "forum": make_key(
            credentials,
            ["read:all_forum_posts", "read:recent_forum_posts", "create:forum_post"],
            name="forum",
        ),
        "nothing": make_key(credentials, [], name="nothing"),
        "malformed": make_key(credentials, "read:budget_allocations", name="malformed"),
        "revoked": make_key(credentials, ["read:budget_allocations"], name="revoked"),
        "checkins": make_key(credentials, ["read:checkin_data", "create:checkin_note"], name="checkins"),
        "reports_all": make_key(
            credentials,
            ["generate:reports", "read:all_checkin_data", "read:all_allocation_data"],
            name="reports_all",
        ),
        "reports_scoped": make_key(
            credentials,
            ["generate:reports", "read:site_checkin_data", "read:own_allocation_data"],
            name="reports_scoped",
            user_id=7,
            site_id=1,
        ),
        "reports_unassociated": make_key(
            credentials,
            ["generate:reports", "read:site_checkin_data", "read:own_allocation_data"],
            name="reports_unassociated",
        ),
        "reports_only": make_key(credentials, ["generate:reports"], name="reports_only"),
    }
    credentials.revoke_credential(keys["revoked"][1])

    app.router.lifespan_context = _patch_lifespan(credentials, records)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, records=records, credentials=credentials, keys=keys)

    records.close()
    credentials.close()
