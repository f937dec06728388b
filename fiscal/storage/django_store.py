"""
Fiscal Storage - Django ORM Adapter
===================================
RecordStore and NumberingProvider backed by the fiscal.document_store app.

Every write runs inside transaction.atomic(). A unique-constraint
IntegrityError is translated into DuplicateRecordError carrying the
constraint name, so callers never import django.db.
"""

from __future__ import annotations

import logging
from typing import Optional

from django.db import IntegrityError, transaction

from fiscal.document_store.models import (
    FiscalDocumentRecord,
    SeriesCounter,
    SubmissionAttemptRecord,
)
from fiscal.documents.validation import validate_series
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

logger = logging.getLogger("fiscal.storage")

_MODELS = {
    RECORD_DOCUMENT: FiscalDocumentRecord,
    RECORD_ATTEMPT: SubmissionAttemptRecord,
}

_KNOWN_CONSTRAINTS = {
    RECORD_DOCUMENT: (UQ_DOCUMENT_NUMBER, UQ_DOCUMENT_RELATED),
    RECORD_ATTEMPT: (UQ_ATTEMPT_NUMBER,),
}


def _extract_constraint_name(exc: IntegrityError) -> Optional[str]:
    cause = getattr(exc, "__cause__", None)
    diag = getattr(cause, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    if isinstance(constraint_name, str) and constraint_name:
        return constraint_name
    return None


def _constraint_for(record_type: str, exc: IntegrityError) -> Optional[str]:
    """
    Name the violated constraint.

    PostgreSQL reports it directly. SQLite only names the columns, so the
    message is matched against each constraint's column list.
    """
    name = _extract_constraint_name(exc)
    if name:
        return name
    message = str(exc)
    for constraint in _KNOWN_CONSTRAINTS[record_type]:
        if constraint in message:
            return constraint
    if "related_document_id" in message:
        return UQ_DOCUMENT_RELATED
    if "series" in message and "number" in message:
        return UQ_DOCUMENT_NUMBER
    if "attempt_number" in message:
        return UQ_ATTEMPT_NUMBER
    return None


def _normalize(row: dict) -> dict:
    for key in ("signed_payload", "acknowledgment"):
        value = row.get(key)
        if value is not None and not isinstance(value, bytes):
            row[key] = bytes(value)
    return row


class DjangoRecordStore:
    def get(self, record_type: str, record_id: str) -> Optional[dict]:
        check_record_type(record_type)
        row = _MODELS[record_type].objects.filter(pk=record_id).values().first()
        return _normalize(row) if row is not None else None

    def insert(self, record_type: str, fields: dict) -> dict:
        check_record_type(record_type)
        if not fields.get("id"):
            raise StorageError("Records require a non-empty 'id'.")
        model = _MODELS[record_type]
        try:
            with transaction.atomic():
                model.objects.create(**fields)
        except IntegrityError as exc:
            constraint = _constraint_for(record_type, exc)
            logger.warning(f"Insert of {record_type} {fields['id']} hit {constraint}")
            raise DuplicateRecordError(record_type, constraint) from exc
        return self.get(record_type, fields["id"])

    def update(self, record_type: str, fields: dict, matcher: dict) -> int:
        check_record_type(record_type)
        if "id" in fields:
            raise StorageError("Record ids are immutable.")
        model = _MODELS[record_type]
        try:
            with transaction.atomic():
                return model.objects.filter(**matcher).update(**fields)
        except IntegrityError as exc:
            raise DuplicateRecordError(record_type, _constraint_for(record_type, exc)) from exc

    def find(self, record_type: str, matcher: dict) -> list[dict]:
        check_record_type(record_type)
        rows = _MODELS[record_type].objects.filter(**matcher).values()
        return [_normalize(dict(row)) for row in rows]


class DbNumberingProvider:
    """
    Numbering backed by fiscal_series_counters.

    The counter row is locked with select_for_update inside the
    transaction, so concurrent callers for one series queue on the row
    while other series proceed.
    """

    def next_number(self, tenant_id: str, series: str) -> int:
        if not tenant_id:
            raise ValueError("tenant_id must be a non-empty string.")
        validate_series(series)
        try:
            return self._increment(tenant_id, series)
        except IntegrityError:
            # Lost the race to create the counter row; it exists now.
            return self._increment(tenant_id, series)

    @staticmethod
    def _increment(tenant_id: str, series: str) -> int:
        with transaction.atomic():
            counter, _ = SeriesCounter.objects.select_for_update().get_or_create(
                tenant_id=tenant_id,
                series=series,
                defaults={"last_number": 0},
            )
            counter.last_number += 1
            counter.save(update_fields=["last_number"])
            return counter.last_number
