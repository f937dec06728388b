"""
Fiscal Storage - In-Memory Record Store
=======================================
Thread-safe dict-backed RecordStore with the same unique constraints as
the database schema. Used by tests and the sandbox smoke run.
"""

from __future__ import annotations

import copy
import threading
from typing import Optional

from fiscal.storage.protocol import (
    RECORD_ATTEMPT,
    RECORD_DOCUMENT,
    UQ_ATTEMPT_NUMBER,
    UQ_DOCUMENT_NUMBER,
    UQ_DOCUMENT_RELATED,
    DuplicateRecordError,
    StorageError,
    check_record_type,
)

# (constraint name, fields). Rows with None in a key are exempt.
_CONSTRAINTS = {
    RECORD_DOCUMENT: (
        (UQ_DOCUMENT_NUMBER, ("tenant_id", "series", "number")),
        (UQ_DOCUMENT_RELATED, ("related_document_id",)),
    ),
    RECORD_ATTEMPT: (
        (UQ_ATTEMPT_NUMBER, ("document_id", "attempt_number")),
    ),
}


def _matches(record: dict, matcher: dict) -> bool:
    return all(record.get(key) == value for key, value in matcher.items())


class InMemoryRecordStore:
    def __init__(self):
        self._lock = threading.Lock()
        self._tables: dict[str, dict[str, dict]] = {
            RECORD_DOCUMENT: {},
            RECORD_ATTEMPT: {},
        }

    def _violated(self, record_type: str, candidate: dict) -> Optional[str]:
        """Return the first constraint candidate would break, if any."""
        table = self._tables[record_type]
        for name, fields in _CONSTRAINTS[record_type]:
            key = tuple(candidate.get(field) for field in fields)
            if any(part is None for part in key):
                continue
            for other_id, other in table.items():
                if other_id == candidate["id"]:
                    continue
                if tuple(other.get(field) for field in fields) == key:
                    return name
        return None

    def get(self, record_type: str, record_id: str) -> Optional[dict]:
        check_record_type(record_type)
        with self._lock:
            record = self._tables[record_type].get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def insert(self, record_type: str, fields: dict) -> dict:
        check_record_type(record_type)
        record_id = fields.get("id")
        if not record_id:
            raise StorageError("Records require a non-empty 'id'.")
        record = copy.deepcopy(fields)
        with self._lock:
            table = self._tables[record_type]
            if record_id in table:
                raise DuplicateRecordError(record_type, "pk")
            violated = self._violated(record_type, record)
            if violated:
                raise DuplicateRecordError(record_type, violated)
            table[record_id] = record
            return copy.deepcopy(record)

    def update(self, record_type: str, fields: dict, matcher: dict) -> int:
        check_record_type(record_type)
        if "id" in fields:
            raise StorageError("Record ids are immutable.")
        changes = copy.deepcopy(fields)
        with self._lock:
            table = self._tables[record_type]
            matched = [record for record in table.values() if _matches(record, matcher)]
            for record in matched:
                violated = self._violated(record_type, {**record, **changes})
                if violated:
                    raise DuplicateRecordError(record_type, violated)
            for record in matched:
                record.update(copy.deepcopy(changes))
            return len(matched)

    def find(self, record_type: str, matcher: dict) -> list[dict]:
        check_record_type(record_type)
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._tables[record_type].values()
                if _matches(record, matcher)
            ]
