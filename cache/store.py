"""
cache/store.py -- Short-TTL in-process cache for the active-credential list.

Wraps any object with the Credential Store Accessor contract
(list_active_credentials / touch_last_used) and serves the active list from
memory for at most `ttl` seconds. The wrapper has the same contract, so the
verifier cannot tell whether it is talking to the cache or the store.

Staleness bound:
  A key revoked through this wrapper (revoke_credential) is dropped at once.
  A key revoked by another process (e.g. the CLI) is still accepted for at
  most `ttl` seconds. ttl=0 disables caching entirely.
  A load that was already running when invalidate() was called is returned
  to its caller but never stored.

Failures are never cached: if the inner store raises, the exception
propagates and the next call retries the store.

Usage:
    cached = CachedCredentialStore(CredentialStore(), ttl=15)
    records = cached.list_active_credentials()
    cached.invalidate()
"""

from __future__ import annotations

import threading
import time
from typing import Optional

_DEFAULT_TTL = 15  # seconds


class CachedCredentialStore:
    def __init__(self, inner, ttl: int = _DEFAULT_TTL) -> None:
        self.inner = inner
        self.ttl = ttl
        self._lock = threading.Lock()
        self._records: Optional[list] = None
        self._cached_at = 0.0
        self._generation = 0  # bumped by invalidate()

    def list_active_credentials(self) -> list:
        """Return the cached active list if it hasn't expired, else reload it."""
        if self.ttl <= 0:
            return self.inner.list_active_credentials()
        with self._lock:
            if self._records is not None and time.monotonic() - self._cached_at <= self.ttl:
                return list(self._records)
            generation = self._generation
        records = self.inner.list_active_credentials()
        with self._lock:
            # An invalidate() during the load means the list may predate a
            # revocation. Serve it to this caller only.
            if self._generation == generation:
                self._records = list(records)
                self._cached_at = time.monotonic()
        return list(records)

    def touch_last_used(self, credential_id: int) -> None:
        self.inner.touch_last_used(credential_id)

    def revoke_credential(self, credential_id: int) -> bool:
        """Revoke through the inner store and drop the cached list."""
        revoked = self.inner.revoke_credential(credential_id)
        self.invalidate()
        return revoked

    def invalidate(self) -> None:
        with self._lock:
            self._records = None
            self._cached_at = 0.0
            self._generation += 1

    def close(self) -> None:
        self.invalidate()
        self.inner.close()
