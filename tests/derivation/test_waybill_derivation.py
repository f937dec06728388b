"""
Tests for fiscal.derivation - rules, weight estimate and the exactly-once
waybill derivation driven by DocumentIssued.
"""

from __future__ import annotations

import dataclasses
import xml.etree.ElementTree as ET
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal

import pytest

from conftest import T0, Harness, invoice_draft
from fiscal.derivation.rules import (
    CatchAllRule,
    GrandTotalThresholdRule,
    RecipientOverrideRule,
    default_rules,
    evaluate_rules,
)
from fiscal.derivation.weight import WeightEstimator
from fiscal.documents.canonical import CAC_NS, CBC_NS
from fiscal.documents.models import DocumentState, DocumentType, FiscalDocument, Totals
from fiscal.errors import DuplicateDerivation, ValidationError
from fiscal.storage.protocol import RECORD_DOCUMENT


def _invoice(grand_total: str = "800.00", recipient: str = "20100070970", **changes) -> FiscalDocument:
    draft = invoice_draft(grand_total, recipient_tax_id=recipient)
    document = FiscalDocument(
        id="invoice-1",
        tenant_id=draft.tenant_id,
        document_type=draft.document_type,
        series=draft.series,
        number=1,
        issuer_tax_id=draft.issuer_tax_id,
        recipient_tax_id=draft.recipient_tax_id,
        recipient_name=draft.recipient_name,
        currency=draft.currency,
        line_items=draft.line_items,
        totals=draft.totals,
        state=DocumentState.ACCEPTED,
        created_at=T0,
        updated_at=T0,
    )
    return dataclasses.replace(document, **changes)


# ══════════════════════════════════════════════════════════════
# RULES
# ══════════════════════════════════════════════════════════════

class TestRules:
    def test_above_threshold_requires_waybill(self):
        decision = evaluate_rules(default_rules(Decimal("500.00")), _invoice("800.00"))
        assert decision.requires_waybill
        assert decision.rule == "grand_total_threshold"

    def test_threshold_is_exclusive(self):
        decision = evaluate_rules(default_rules(Decimal("500.00")), _invoice("500.00"))
        assert not decision.requires_waybill
        assert decision.rule == "catch_all"

    def test_catch_all_default(self):
        decision = evaluate_rules(default_rules(Decimal("500.00"), True), _invoice("10.00"))
        assert decision.requires_waybill

    def test_recipient_override_wins(self):
        rules = default_rules(Decimal("500.00"), recipient_overrides={"20100070970": False})
        decision = evaluate_rules(rules, _invoice("9000.00"))
        assert not decision.requires_waybill
        assert decision.rule == "recipient_override"

    def test_first_answer_wins(self):
        rules = (RecipientOverrideRule(), GrandTotalThresholdRule(Decimal("1")), CatchAllRule(False))
        assert evaluate_rules(rules, _invoice("2.00")).rule == "grand_total_threshold"

    def test_no_rules_means_no_waybill(self):
        decision = evaluate_rules((), _invoice())
        assert (decision.requires_waybill, decision.rule) == (False, "none")

    def test_negative_threshold_refused(self):
        with pytest.raises(ValueError):
            GrandTotalThresholdRule(Decimal("-1"))


# ══════════════════════════════════════════════════════════════
# WEIGHT
# ══════════════════════════════════════════════════════════════

class TestWeightEstimator:
    def test_total_and_quantity(self):
        # 800 / 100 + 4 units * 0.5
        assert WeightEstimator().estimate(_invoice("800.00")) == Decimal("10.00")

    def test_minimum_weight(self):
        invoice = _invoice("0.00", totals=Totals.zero(), line_items=())
        assert WeightEstimator().estimate(invoice) == Decimal("1.00")

    def test_without_line_items(self):
        assert WeightEstimator().estimate(_invoice("800.00", line_items=())) == Decimal("16.00")

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            WeightEstimator(total_divisor=Decimal("0"))


# ══════════════════════════════════════════════════════════════
# ENGINE
# ══════════════════════════════════════════════════════════════

class TestDerivationEngine:
    def test_accepted_invoice_above_threshold_gets_waybill(self, harness):
        invoice = harness.issue(invoice_draft("800.00"))
        harness.settle()

        waybill = harness.machine.find_by_related(invoice.id)
        assert waybill is not None
        assert waybill.document_type is DocumentType.WAYBILL
        assert waybill.state is DocumentState.ACCEPTED
        assert waybill.full_number == "T001-1"
        assert waybill.totals == Totals.zero()
        assert waybill.recipient_tax_id == invoice.recipient_tax_id
        assert waybill.line_items == invoice.line_items
        assert waybill.shipment.weight_kg == Decimal("10.00")
        assert waybill.shipment.transfer_date == date(2026, 3, 3)
        assert waybill.shipment.transfer_reason == "01"

        root = ET.fromstring(waybill.signed_payload)
        reference = root.find(f"{{{CAC_NS}}}AdditionalDocumentReference/{{{CBC_NS}}}ID")
        assert reference.text == invoice.full_number

        assert [(e.invoice_id, e.waybill_id) for e in harness.derived.payloads] == [
            (invoice.id, waybill.id)
        ]
        assert harness.sandbox.submissions_of(waybill.archive_name) == 1

    def test_invoice_below_threshold_gets_nothing(self, harness):
        invoice = harness.issue(invoice_draft("100.00"))
        harness.settle()
        assert harness.machine.find_by_related(invoice.id) is None
        assert harness.derived.payloads == []

    def test_catch_all_true_derives_small_invoice(self, key_material):
        harness = Harness(key_material, default_requires_waybill=True)
        try:
            invoice = harness.issue(invoice_draft("100.00"))
            harness.settle()
            assert harness.machine.find_by_related(invoice.id) is not None
        finally:
            harness.close()

    def test_redelivered_event_derives_once(self, harness):
        invoice = harness.issue(invoice_draft("800.00"))
        harness.settle()
        event = _accepted_event(harness, invoice.id)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: harness.derivation.handle_issued(event), range(8)))
        harness.settle()

        waybills = harness.store.find(RECORD_DOCUMENT, {"related_document_id": invoice.id})
        assert len(waybills) == 1
        assert len(harness.derived.payloads) == 1
        waybill = FiscalDocument.from_record(waybills[0])
        assert harness.sandbox.submissions_of(waybill.archive_name) == 1

    def test_second_waybill_for_invoice_is_refused(self, harness):
        invoice = harness.issue(invoice_draft("800.00"))
        harness.settle()
        with pytest.raises(DuplicateDerivation):
            harness.machine.create(harness.derivation.build_waybill_draft(invoice))

    def test_waybill_needs_an_accepted_invoice(self, harness):
        draft_invoice = harness.machine.create(invoice_draft("800.00"))
        with pytest.raises(ValidationError, match="not ACCEPTED"):
            harness.machine.create(harness.derivation.build_waybill_draft(draft_invoice))

    def test_rejected_and_waybill_events_are_ignored(self, harness):
        harness.sandbox.reject_next()
        invoice = harness.issue(invoice_draft("800.00"))
        harness.settle()
        event = _issued_event(harness, invoice.id)
        assert event.outcome is DocumentState.REJECTED
        assert harness.derivation.handle_issued(event) is None

    def test_waybill_left_unsigned_is_completed_on_redelivery(self, harness):
        invoice = harness.issue(invoice_draft("100.00"))
        harness.settle()
        waybill = harness.machine.create(harness.derivation.build_waybill_draft(invoice))
        assert waybill.state is DocumentState.DRAFT

        completed = harness.derivation.handle_issued(_accepted_event(harness, invoice.id))
        assert completed.id == waybill.id
        assert completed.state is DocumentState.ACCEPTED


def _issued_event(harness: Harness, document_id: str):
    return next(e for e in harness.issued.payloads if e.document_id == document_id)


def _accepted_event(harness: Harness, document_id: str):
    event = _issued_event(harness, document_id)
    assert event.outcome is DocumentState.ACCEPTED
    return event
