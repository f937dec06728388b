"""
Shared fixtures for the fiscal pipeline tests.

`harness` wires a complete pipeline around an in-memory store, the sandbox
authority and a FixedClock. The retry scheduler is NOT started: tests
advance the clock and call `harness.scheduler.run_due()` instead.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from fiscal.derivation.engine import DerivationRuleEngine
from fiscal.derivation.rules import default_rules
from fiscal.documents.models import DocumentDraft
from fiscal.documents.numbering import InMemoryNumberingProvider
from fiscal.events.bus import EventBus
from fiscal.events.registry import SubscriberRegistry
from fiscal.events.topics import DOCUMENT_ISSUED, DOCUMENT_STALLED, WAYBILL_DERIVED
from fiscal.gateway.client import GatewayClient
from fiscal.gateway.envelope import GatewayCredentials
from fiscal.gateway.sandbox import SandboxAuthority
from fiscal.lifecycle.machine import DocumentStateMachine
from fiscal.retry.policy import RetryPolicy
from fiscal.retry.scheduler import SubmissionRetryScheduler
from fiscal.signing.keys import StaticKeyProvider, generate_self_signed
from fiscal.signing.signer import DocumentSigner
from fiscal.storage.memory import InMemoryRecordStore
from fiscal.time import FixedClock

TENANT_ID = "tenant-a"
ISSUER_TAX_ID = "20123456789"
RECIPIENT_TAX_ID = "20100070970"
T0 = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


def invoice_draft(grand_total: str = "800.00", **overrides) -> DocumentDraft:
    total = Decimal(grand_total)
    tax = (total * Decimal("0.18") / Decimal("1.18")).quantize(Decimal("0.01"))
    base = total - tax
    data = {
        "tenant_id": TENANT_ID,
        "document_type": "INVOICE",
        "series": "F001",
        "issuer_tax_id": ISSUER_TAX_ID,
        "recipient_tax_id": RECIPIENT_TAX_ID,
        "recipient_name": "Comercial Andina S.A.C.",
        "currency": "PEN",
        "line_items": [
            {
                "code": "P-001",
                "description": "Steel bracket",
                "quantity": "4",
                "unit_price": str((base / 4).quantize(Decimal("0.01"))),
                "line_total": str(base),
            }
        ],
        "totals": {"taxable_base": str(base), "tax": str(tax), "grand_total": str(total)},
    }
    data.update(overrides)
    return DocumentDraft.from_dict(data)


class Recorder:
    """Bus subscriber that keeps every payload it receives."""

    def __init__(self):
        self.payloads = []

    def __call__(self, payload) -> None:
        self.payloads.append(payload)


class Harness:
    def __init__(
        self,
        key_material,
        *,
        threshold: str = "500.00",
        default_requires_waybill: bool = False,
        max_attempts: int = 3,
        transport=None,
        store=None,
        numbering=None,
        sandbox=None,
        derive: bool = True,
    ):
        self.clock = FixedClock(T0)
        self.store = store or InMemoryRecordStore()
        self.numbering = numbering or InMemoryNumberingProvider()
        self.sandbox = sandbox or SandboxAuthority()
        self.gateway = GatewayClient(
            "https://sandbox.test",
            GatewayCredentials("20123456789MODDATOS", "moddatos"),
            transport=transport or self.sandbox.transport(),
        )
        self.registry = SubscriberRegistry()
        self.bus = EventBus(self.registry, workers=4, max_deliveries=2)
        self.scheduler = SubmissionRetryScheduler(
            RetryPolicy(base_delay=1.0, max_delay=8.0, max_attempts=max_attempts),
            self.clock,
        )
        self.keys = StaticKeyProvider(key_material)
        self.machine = DocumentStateMachine(
            self.store,
            self.numbering,
            DocumentSigner(),
            self.keys,
            self.gateway,
            self.scheduler,
            self.bus,
            self.clock,
        )
        self.derivation = DerivationRuleEngine(
            self.machine,
            self.bus,
            default_rules(Decimal(threshold), default_requires_waybill),
            waybill_series="T001",
            clock=self.clock,
        )
        if derive:
            self.derivation.register()
        self.issued = Recorder()
        self.stalled = Recorder()
        self.derived = Recorder()
        self.bus.subscribe(DOCUMENT_ISSUED, self.issued, "audit")
        self.bus.subscribe(DOCUMENT_STALLED, self.stalled, "audit")
        self.bus.subscribe(WAYBILL_DERIVED, self.derived, "audit")

    def issue(self, draft: Optional[DocumentDraft] = None):
        document = self.machine.create(draft or invoice_draft())
        self.machine.sign(document.id)
        return self.machine.submit(document.id)

    def settle(self) -> None:
        assert self.bus.flush(timeout=10)

    def close(self) -> None:
        self.bus.shutdown()
        self.gateway.close()


@pytest.fixture(scope="session")
def key_material():
    return generate_self_signed("TEST ISSUER 20123456789", valid_from=T0)


@pytest.fixture
def harness(key_material):
    h = Harness(key_material)
    yield h
    h.close()
