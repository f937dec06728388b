"""
Fiscal Event Bus - Typed Topics
===============================
A Topic binds a name to the payload dataclass it carries. Publishing a
payload of the wrong type is refused at the publisher.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar

from fiscal.documents.models import DocumentState, DocumentType, Totals
from fiscal.events.errors import InvalidTopicName

P = TypeVar("P")


def validate_topic_name(topic_name: str) -> None:
    """`component.subject.action`: at least three non-empty dotted segments."""
    if not isinstance(topic_name, str) or not topic_name:
        raise InvalidTopicName(str(topic_name or ""))
    parts = topic_name.split(".")
    if len(parts) < 3 or not all(part and part == part.strip() for part in parts):
        raise InvalidTopicName(topic_name)


@dataclass(frozen=True)
class Topic(Generic[P]):
    name: str
    payload_type: type

    def __post_init__(self) -> None:
        validate_topic_name(self.name)
        if not isinstance(self.payload_type, type):
            raise TypeError("payload_type must be a class.")

    @property
    def source(self) -> str:
        """The publishing component (first name segment)."""
        return self.name.split(".", 1)[0]

    def accepts(self, payload: object) -> bool:
        return isinstance(payload, self.payload_type)


def _event_id() -> str:
    return str(uuid.uuid4())


# ══════════════════════════════════════════════════════════════
# PAYLOADS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DocumentIssued:
    """A document reached ACCEPTED or REJECTED."""

    document_id: str
    tenant_id: str
    document_type: DocumentType
    outcome: DocumentState
    totals: Totals
    recipient_tax_id: str
    occurred_at: datetime
    related_document_id: Optional[str] = None
    event_id: str = field(default_factory=_event_id)

    def __post_init__(self) -> None:
        if self.outcome not in (DocumentState.ACCEPTED, DocumentState.REJECTED):
            raise ValueError("DocumentIssued outcome must be ACCEPTED or REJECTED.")


@dataclass(frozen=True)
class DocumentSubmissionStalled:
    """Automatic retries gave up; the document is SIGNED awaiting an operator."""

    document_id: str
    tenant_id: str
    attempts: int
    last_error: Optional[str]
    occurred_at: datetime
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True)
class WaybillDerived:
    invoice_id: str
    waybill_id: str
    tenant_id: str
    occurred_at: datetime
    event_id: str = field(default_factory=_event_id)


DOCUMENT_ISSUED: Topic[DocumentIssued] = Topic("lifecycle.document.issued", DocumentIssued)
DOCUMENT_STALLED: Topic[DocumentSubmissionStalled] = Topic(
    "lifecycle.document.stalled", DocumentSubmissionStalled
)
WAYBILL_DERIVED: Topic[WaybillDerived] = Topic("derivation.waybill.derived", WaybillDerived)
