"""
Fiscal Documents - Numbering Collaborator
=========================================
Protocol + in-memory implementation of `next_number(tenant_id, series)`.

Doctrine:
- The provider is the ONLY mutual-exclusion boundary of document creation.
- Numbers are strictly increasing per (tenant_id, series), start at 1,
  and are never handed out twice, even when the document using them is
  later rejected or voided.
- The DB-backed provider lives in fiscal.storage.django_store.
"""

from __future__ import annotations

import threading
from typing import Protocol

from fiscal.documents.validation import validate_series


class NumberingProvider(Protocol):
    def next_number(self, tenant_id: str, series: str) -> int:
        """Atomically reserve and return the next number for the series."""
        ...


class InMemoryNumberingProvider:
    """
    Thread-safe in-memory numbering provider.

    One lock per (tenant_id, series) so unrelated series never contend.
    """

    def __init__(self, start_at: int = 1):
        if not isinstance(start_at, int) or start_at < 1:
            raise ValueError("start_at must be int >= 1.")
        self._start_at = start_at
        self._registry_lock = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._next: dict[tuple[str, str], int] = {}

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def next_number(self, tenant_id: str, series: str) -> int:
        if not tenant_id:
            raise ValueError("tenant_id must be a non-empty string.")
        validate_series(series)
        key = (tenant_id, series)
        with self._lock_for(key):
            number = self._next.get(key, self._start_at)
            self._next[key] = number + 1
            return number

    def seed(self, tenant_id: str, series: str, last_issued: int) -> None:
        """Continue an existing series after `last_issued` (migration helper)."""
        key = (tenant_id, series)
        with self._lock_for(key):
            self._next[key] = max(self._next.get(key, self._start_at), last_issued + 1)

    def peek(self, tenant_id: str, series: str) -> int:
        """Inspect the next number without consuming it (test helper)."""
        key = (tenant_id, series)
        with self._lock_for(key):
            return self._next.get(key, self._start_at)
