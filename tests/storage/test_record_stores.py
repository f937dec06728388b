"""
Tests for fiscal.storage - the in-memory store and the Django adapter
enforce the same unique constraints.
"""

from __future__ import annotations

import pytest

from conftest import T0, Harness, invoice_draft
from fiscal.documents.models import DocumentState, FiscalDocument
from fiscal.gateway.responses import parse_cdr
from fiscal.storage.memory import InMemoryRecordStore
from fiscal.storage.protocol import (
    RECORD_ATTEMPT,
    RECORD_DOCUMENT,
    UQ_ATTEMPT_NUMBER,
    UQ_DOCUMENT_NUMBER,
    UQ_DOCUMENT_RELATED,
    DuplicateRecordError,
    StorageError,
    UnknownRecordType,
)


def _record(document_id: str, number: int, **changes) -> dict:
    draft = invoice_draft()
    document = FiscalDocument(
        id=document_id,
        tenant_id=draft.tenant_id,
        document_type=draft.document_type,
        series=draft.series,
        number=number,
        issuer_tax_id=draft.issuer_tax_id,
        recipient_tax_id=draft.recipient_tax_id,
        recipient_name=draft.recipient_name,
        currency=draft.currency,
        line_items=draft.line_items,
        totals=draft.totals,
        state=DocumentState.DRAFT,
        created_at=T0,
        updated_at=T0,
    )
    record = document.to_record()
    record.update(changes)
    return record


def _attempt(attempt_id: str, document_id: str, attempt_number: int) -> dict:
    return {
        "id": attempt_id,
        "document_id": document_id,
        "attempt_number": attempt_number,
        "started_at": T0,
        "finished_at": T0,
        "outcome": "FAILURE",
        "authority_code": "0130",
        "authority_message": "Service unavailable",
    }


def _exercise_constraints(store) -> None:
    store.insert(RECORD_DOCUMENT, _record("doc-1", 1))

    with pytest.raises(DuplicateRecordError) as exc_info:
        store.insert(RECORD_DOCUMENT, _record("doc-2", 1))
    assert exc_info.value.constraint == UQ_DOCUMENT_NUMBER

    store.insert(RECORD_DOCUMENT, _record("waybill-1", 2, related_document_id="doc-1"))
    with pytest.raises(DuplicateRecordError) as exc_info:
        store.insert(RECORD_DOCUMENT, _record("waybill-2", 3, related_document_id="doc-1"))
    assert exc_info.value.constraint == UQ_DOCUMENT_RELATED

    # Null related ids never collide.
    store.insert(RECORD_DOCUMENT, _record("doc-3", 4))
    store.insert(RECORD_DOCUMENT, _record("doc-4", 5))

    store.insert(RECORD_ATTEMPT, _attempt("a-1", "doc-1", 1))
    with pytest.raises(DuplicateRecordError) as exc_info:
        store.insert(RECORD_ATTEMPT, _attempt("a-2", "doc-1", 1))
    assert exc_info.value.constraint == UQ_ATTEMPT_NUMBER


def _exercise_guarded_update(store) -> None:
    store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
    matched = store.update(
        RECORD_DOCUMENT,
        {"state": "SIGNED", "signed_payload": b"<signed/>"},
        {"id": "doc-1", "state": "DRAFT"},
    )
    assert matched == 1
    # The same guard no longer matches once the state moved on.
    assert store.update(RECORD_DOCUMENT, {"state": "VOIDED"}, {"id": "doc-1", "state": "DRAFT"}) == 0
    stored = store.get(RECORD_DOCUMENT, "doc-1")
    assert stored["state"] == "SIGNED"
    assert stored["signed_payload"] == b"<signed/>"
    assert [r["id"] for r in store.find(RECORD_DOCUMENT, {"state": "SIGNED"})] == ["doc-1"]


class TestInMemoryRecordStore:
    def test_unique_constraints(self):
        _exercise_constraints(InMemoryRecordStore())

    def test_state_guarded_update(self):
        _exercise_guarded_update(InMemoryRecordStore())

    def test_returned_records_are_copies(self):
        store = InMemoryRecordStore()
        store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
        store.get(RECORD_DOCUMENT, "doc-1")["state"] = "ACCEPTED"
        assert store.get(RECORD_DOCUMENT, "doc-1")["state"] == "DRAFT"

    def test_ids_are_immutable(self):
        store = InMemoryRecordStore()
        store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
        with pytest.raises(StorageError):
            store.update(RECORD_DOCUMENT, {"id": "doc-9"}, {"id": "doc-1"})

    def test_duplicate_primary_key(self):
        store = InMemoryRecordStore()
        store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
        with pytest.raises(DuplicateRecordError) as exc_info:
            store.insert(RECORD_DOCUMENT, _record("doc-1", 2))
        assert exc_info.value.constraint == "pk"

    def test_unknown_record_type(self):
        with pytest.raises(UnknownRecordType):
            InMemoryRecordStore().get("invoice", "doc-1")


@pytest.mark.django_db
class TestDjangoRecordStore:
    @pytest.fixture
    def store(self):
        from fiscal.storage.django_store import DjangoRecordStore

        return DjangoRecordStore()

    def test_unique_constraints(self, store):
        _exercise_constraints(store)

    def test_state_guarded_update(self, store):
        _exercise_guarded_update(store)

    def test_record_round_trips_into_document(self, store):
        store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
        document = FiscalDocument.from_record(store.get(RECORD_DOCUMENT, "doc-1"))
        assert document.totals == invoice_draft().totals
        assert document.created_at == T0

    def test_rows_are_never_deleted(self, store):
        from fiscal.document_store.models import FiscalDocumentRecord

        store.insert(RECORD_DOCUMENT, _record("doc-1", 1))
        with pytest.raises(PermissionError):
            FiscalDocumentRecord.objects.get(pk="doc-1").delete()

    def test_numbering_provider(self):
        from fiscal.storage.django_store import DbNumberingProvider

        provider = DbNumberingProvider()
        assert [provider.next_number("tenant-a", "F001") for _ in range(3)] == [1, 2, 3]
        assert provider.next_number("tenant-a", "T001") == 1
        assert provider.next_number("tenant-b", "F001") == 1

    def test_full_issuance_on_the_database(self, store, key_material):
        from fiscal.storage.django_store import DbNumberingProvider

        harness = Harness(
            key_material, store=store, numbering=DbNumberingProvider(), derive=False
        )
        try:
            document = harness.issue(invoice_draft("120.00"))
            assert document.state is DocumentState.ACCEPTED
            assert document.number == 1
            attempts = harness.machine.list_attempts(document.id)
            assert [attempt.attempt_number for attempt in attempts] == [1]
            stored = harness.machine.get(document.id)
            assert stored.signed_payload == document.signed_payload
            assert isinstance(stored.acknowledgment, bytes)
            assert parse_cdr(stored.acknowledgment).reference_id == stored.authority_reference_id
        finally:
            harness.close()
