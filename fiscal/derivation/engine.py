"""
Fiscal Derivation - Rule Engine
===============================
Listens for accepted invoices and issues the dependent waybill.

Exactly-once per invoice, even when the bus redelivers:
1. A per-invoice lock serializes concurrent deliveries in this process.
2. A store lookup by related_document_id finds a waybill already derived.
3. The store's unique constraint on related_document_id is the final
   guard; DuplicateDerivation means "already derived".

A redelivered event for an existing waybill only finishes what an
interrupted delivery left undone (signing, first submission). It never
files the waybill a second time.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Iterable, Optional

from fiscal.derivation.rules import DerivationRule, evaluate_rules
from fiscal.derivation.weight import WeightEstimator
from fiscal.documents.models import (
    DocumentDraft,
    DocumentState,
    DocumentType,
    FiscalDocument,
    Shipment,
    Totals,
    TransportMode,
)
from fiscal.errors import DuplicateDerivation
from fiscal.events.bus import EventBus
from fiscal.events.topics import DOCUMENT_ISSUED, WAYBILL_DERIVED, DocumentIssued, WaybillDerived
from fiscal.lifecycle.locks import KeyedLocks
from fiscal.lifecycle.machine import DocumentStateMachine
from fiscal.time import Clock, SystemClock

logger = logging.getLogger("fiscal.derivation")

SUBSCRIBER_NAME = "derivation"
SALE_TRANSFER_REASON = "01"


class DerivationRuleEngine:
    def __init__(
        self,
        machine: DocumentStateMachine,
        bus: EventBus,
        rules: Iterable[DerivationRule],
        *,
        waybill_series: str,
        weight_estimator: Optional[WeightEstimator] = None,
        transfer_delay_days: int = 1,
        transport_mode: TransportMode = TransportMode.PUBLIC,
        clock: Optional[Clock] = None,
    ):
        self._machine = machine
        self._bus = bus
        self._rules = tuple(rules)
        self._waybill_series = waybill_series
        self._weight = weight_estimator or WeightEstimator()
        self._transfer_delay = timedelta(days=transfer_delay_days)
        self._transport_mode = transport_mode
        self._clock = clock or SystemClock()
        self._locks = KeyedLocks()

    def register(self) -> None:
        self._bus.subscribe(DOCUMENT_ISSUED, self.handle_issued, SUBSCRIBER_NAME)

    def handle_issued(self, event: DocumentIssued) -> Optional[FiscalDocument]:
        if event.document_type is not DocumentType.INVOICE:
            return None
        if event.outcome is not DocumentState.ACCEPTED:
            return None

        with self._locks.hold(event.document_id):
            waybill = self._machine.find_by_related(event.document_id)
            if waybill is not None:
                logger.info(
                    f"Invoice {event.document_id} already has waybill {waybill.id}"
                )
            else:
                invoice = self._machine.get(event.document_id)
                decision = evaluate_rules(self._rules, invoice)
                if not decision.requires_waybill:
                    logger.info(
                        f"No waybill for invoice {invoice.id} (rule: {decision.rule})"
                    )
                    return None
                logger.info(f"Waybill required for invoice {invoice.id} (rule: {decision.rule})")
                waybill = self._create_waybill(invoice)
                if waybill is None:
                    return None
            return self._complete(waybill)

    def _create_waybill(self, invoice: FiscalDocument) -> Optional[FiscalDocument]:
        try:
            waybill = self._machine.create(self.build_waybill_draft(invoice))
        except DuplicateDerivation:
            logger.info(f"Waybill for invoice {invoice.id} was derived concurrently")
            return self._machine.find_by_related(invoice.id)
        self._bus.publish(
            WAYBILL_DERIVED,
            WaybillDerived(
                invoice_id=invoice.id,
                waybill_id=waybill.id,
                tenant_id=invoice.tenant_id,
                occurred_at=self._clock.now_utc(),
            ),
        )
        return waybill

    def _complete(self, waybill: FiscalDocument) -> FiscalDocument:
        if waybill.state is DocumentState.DRAFT:
            waybill = self._machine.sign(waybill.id)
        if waybill.state is DocumentState.SIGNED and waybill.attempt_count == 0:
            waybill = self._machine.submit(waybill.id)
        return waybill

    def build_waybill_draft(self, invoice: FiscalDocument) -> DocumentDraft:
        return DocumentDraft(
            tenant_id=invoice.tenant_id,
            document_type=DocumentType.WAYBILL,
            series=self._waybill_series,
            issuer_tax_id=invoice.issuer_tax_id,
            recipient_tax_id=invoice.recipient_tax_id,
            recipient_name=invoice.recipient_name,
            currency=invoice.currency,
            line_items=invoice.line_items,
            totals=Totals.zero(),
            related_document_id=invoice.id,
            shipment=Shipment(
                weight_kg=self._weight.estimate(invoice),
                transfer_date=invoice.created_at.date() + self._transfer_delay,
                transfer_reason=SALE_TRANSFER_REASON,
                transport_mode=self._transport_mode,
            ),
        )
