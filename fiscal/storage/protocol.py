"""
Fiscal Storage - Record Store Contract
======================================
The pipeline persists through a keyed record store, never through an ORM
directly. Records are plain dicts; matchers are {field: value} equality
filters combined with AND.

Unique constraints every implementation enforces:
    uq_fiscal_doc_series_number  fiscal_document (tenant_id, series, number)
    uq_fiscal_doc_related        fiscal_document (related_document_id) when not null
    uq_fiscal_attempt_number     submission_attempt (document_id, attempt_number)
"""

from __future__ import annotations

from typing import Optional, Protocol

RECORD_DOCUMENT = "fiscal_document"
RECORD_ATTEMPT = "submission_attempt"

RECORD_TYPES = frozenset({RECORD_DOCUMENT, RECORD_ATTEMPT})

UQ_DOCUMENT_NUMBER = "uq_fiscal_doc_series_number"
UQ_DOCUMENT_RELATED = "uq_fiscal_doc_related"
UQ_ATTEMPT_NUMBER = "uq_fiscal_attempt_number"


class StorageError(Exception):
    """Base error for record store operations."""
    pass


class UnknownRecordType(StorageError):
    def __init__(self, record_type: str):
        self.record_type = record_type
        super().__init__(f"Unknown record type '{record_type}'.")


class DuplicateRecordError(StorageError):
    """A write would violate a unique constraint."""

    def __init__(self, record_type: str, constraint: Optional[str]):
        self.record_type = record_type
        self.constraint = constraint
        super().__init__(
            f"Duplicate {record_type} record (constraint: {constraint or 'unknown'})."
        )


class RecordStore(Protocol):
    def get(self, record_type: str, record_id: str) -> Optional[dict]:
        ...

    def insert(self, record_type: str, fields: dict) -> dict:
        """Insert and return the stored record. Raises DuplicateRecordError."""
        ...

    def update(self, record_type: str, fields: dict, matcher: dict) -> int:
        """Apply fields to every matching record. Returns the match count."""
        ...

    def find(self, record_type: str, matcher: dict) -> list[dict]:
        ...


def check_record_type(record_type: str) -> None:
    if record_type not in RECORD_TYPES:
        raise UnknownRecordType(record_type)
