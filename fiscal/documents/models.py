"""
Fiscal Documents - Data Model
=============================
FiscalDocument is the unit the lifecycle state machine drives.
SubmissionAttempt is append-only telemetry owned by the state machine.

Records exchanged with the store are plain dicts: decimals travel as
strings, enums as their values, the signed payload as bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from fiscal.errors import ValidationError


CENTS = Decimal("0.01")


# ══════════════════════════════════════════════════════════════
# ENUMS
# ══════════════════════════════════════════════════════════════

class DocumentType(Enum):
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"
    WAYBILL = "WAYBILL"

    @property
    def authority_code(self) -> str:
        """Catalogue 01 code used in archive names and status queries."""
        return _AUTHORITY_CODES[self]

    @property
    def is_waybill_family(self) -> bool:
        return self is DocumentType.WAYBILL


_AUTHORITY_CODES = {
    DocumentType.INVOICE: "01",
    DocumentType.CREDIT_NOTE: "07",
    DocumentType.DEBIT_NOTE: "08",
    DocumentType.WAYBILL: "09",
}


class DocumentState(Enum):
    DRAFT = "DRAFT"
    SIGNED = "SIGNED"
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    VOIDED = "VOIDED"

    @property
    def is_signed_or_later(self) -> bool:
        return self is not DocumentState.DRAFT and self is not DocumentState.VOIDED


class AttemptOutcome(Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    TIMEOUT = "TIMEOUT"


class TransportMode(Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


# ══════════════════════════════════════════════════════════════
# VALUE COERCION
# ══════════════════════════════════════════════════════════════

def to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number.", field=field_name)
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number.", field=field_name)
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be finite.", field=field_name)
    return result


def money_text(value: Decimal) -> str:
    return str(value.quantize(CENTS))


def _optional_bytes(value: Any) -> Optional[bytes]:
    if value is None or isinstance(value, bytes):
        return value
    return bytes(value)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


# ══════════════════════════════════════════════════════════════
# VALUE OBJECTS
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LineItem:
    code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_total: Decimal
    unit_code: str = "NIU"

    @classmethod
    def from_record(cls, data: dict) -> "LineItem":
        if not isinstance(data, dict):
            raise ValidationError("line item must be a mapping.", field="line_items")
        return cls(
            code=str(data.get("code") or ""),
            description=str(data.get("description") or ""),
            quantity=to_decimal(data.get("quantity"), "quantity"),
            unit_price=to_decimal(data.get("unit_price"), "unit_price"),
            line_total=to_decimal(data.get("line_total"), "line_total"),
            unit_code=str(data.get("unit_code") or "NIU"),
        )

    def to_record(self) -> dict:
        return {
            "code": self.code,
            "description": self.description,
            "quantity": str(self.quantity),
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "unit_code": self.unit_code,
        }


@dataclass(frozen=True)
class Totals:
    taxable_base: Decimal
    tax: Decimal
    grand_total: Decimal

    @classmethod
    def zero(cls) -> "Totals":
        return cls(Decimal("0.00"), Decimal("0.00"), Decimal("0.00"))

    @classmethod
    def from_record(cls, data: dict) -> "Totals":
        if not isinstance(data, dict):
            raise ValidationError("totals must be a mapping.", field="totals")
        return cls(
            taxable_base=to_decimal(data.get("taxable_base"), "taxable_base"),
            tax=to_decimal(data.get("tax"), "tax"),
            grand_total=to_decimal(data.get("grand_total"), "grand_total"),
        )

    def to_record(self) -> dict:
        return {
            "taxable_base": money_text(self.taxable_base),
            "tax": money_text(self.tax),
            "grand_total": money_text(self.grand_total),
        }


@dataclass(frozen=True)
class Shipment:
    """Transport data carried only by waybills."""

    weight_kg: Decimal
    transfer_date: date
    transfer_reason: str = "01"
    transport_mode: TransportMode = TransportMode.PUBLIC
    destination: str = ""

    @classmethod
    def from_record(cls, data: dict) -> "Shipment":
        if not isinstance(data, dict):
            raise ValidationError("shipment must be a mapping.", field="shipment")
        raw_date = data.get("transfer_date")
        try:
            transfer_date = (
                raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date))
            )
        except ValueError:
            raise ValidationError("transfer_date must be an ISO date.", field="transfer_date")
        try:
            mode = TransportMode(data.get("transport_mode", TransportMode.PUBLIC.value))
        except ValueError:
            raise ValidationError("transport_mode is not valid.", field="transport_mode")
        return cls(
            weight_kg=to_decimal(data.get("weight_kg"), "weight_kg"),
            transfer_date=transfer_date,
            transfer_reason=str(data.get("transfer_reason") or "01"),
            transport_mode=mode,
            destination=str(data.get("destination") or ""),
        )

    def to_record(self) -> dict:
        return {
            "weight_kg": money_text(self.weight_kg),
            "transfer_date": self.transfer_date.isoformat(),
            "transfer_reason": self.transfer_reason,
            "transport_mode": self.transport_mode.value,
            "destination": self.destination,
        }


# ══════════════════════════════════════════════════════════════
# CREATION INPUT
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DocumentDraft:
    """Creation request accepted by DocumentStateMachine.create."""

    tenant_id: str
    document_type: DocumentType
    series: str
    issuer_tax_id: str
    recipient_tax_id: str
    recipient_name: str
    currency: str
    line_items: tuple[LineItem, ...]
    totals: Totals
    related_document_id: Optional[str] = None
    shipment: Optional[Shipment] = None

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentDraft":
        """Coerce a raw request mapping. Raises ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("draft must be a mapping.")
        raw_type = data.get("document_type")
        if isinstance(raw_type, DocumentType):
            document_type = raw_type
        else:
            try:
                document_type = DocumentType(str(raw_type))
            except ValueError:
                raise ValidationError(
                    f"document_type '{raw_type}' is not valid.", field="document_type"
                )
        raw_items = data.get("line_items") or ()
        if not isinstance(raw_items, (list, tuple)):
            raise ValidationError("line_items must be a sequence.", field="line_items")
        items = tuple(
            item if isinstance(item, LineItem) else LineItem.from_record(item)
            for item in raw_items
        )
        raw_totals = data.get("totals")
        totals = raw_totals if isinstance(raw_totals, Totals) else Totals.from_record(raw_totals)
        raw_shipment = data.get("shipment")
        shipment = None
        if raw_shipment is not None:
            shipment = (
                raw_shipment
                if isinstance(raw_shipment, Shipment)
                else Shipment.from_record(raw_shipment)
            )
        return cls(
            tenant_id=str(data.get("tenant_id") or ""),
            document_type=document_type,
            series=str(data.get("series") or ""),
            issuer_tax_id=str(data.get("issuer_tax_id") or ""),
            recipient_tax_id=str(data.get("recipient_tax_id") or ""),
            recipient_name=str(data.get("recipient_name") or ""),
            currency=str(data.get("currency") or ""),
            line_items=items,
            totals=totals,
            related_document_id=_optional_str(data.get("related_document_id")),
            shipment=shipment,
        )


# ══════════════════════════════════════════════════════════════
# FISCAL DOCUMENT
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FiscalDocument:
    id: str
    tenant_id: str
    document_type: DocumentType
    series: str
    number: int
    issuer_tax_id: str
    recipient_tax_id: str
    recipient_name: str
    currency: str
    line_items: tuple[LineItem, ...]
    totals: Totals
    state: DocumentState
    created_at: datetime
    updated_at: datetime
    signed_payload: Optional[bytes] = None
    content_hash: Optional[str] = None
    authority_reference_id: Optional[str] = None
    acknowledgment: Optional[bytes] = None
    last_error: Optional[str] = None
    related_document_id: Optional[str] = None
    shipment: Optional[Shipment] = None
    attempt_count: int = 0
    chain_attempts: int = 0

    @property
    def archive_name(self) -> str:
        """`{issuerTaxId}-{documentTypeCode}-{series}-{number}`"""
        return (
            f"{self.issuer_tax_id}-{self.document_type.authority_code}-"
            f"{self.series}-{self.number}"
        )

    @property
    def full_number(self) -> str:
        return f"{self.series}-{self.number}"

    @property
    def is_terminal(self) -> bool:
        return self.state in (DocumentState.ACCEPTED, DocumentState.VOIDED)

    def with_changes(self, **changes: Any) -> "FiscalDocument":
        return replace(self, **changes)

    @classmethod
    def from_record(cls, record: dict) -> "FiscalDocument":
        raw_shipment = record.get("shipment")
        return cls(
            id=str(record["id"]),
            tenant_id=str(record["tenant_id"]),
            document_type=DocumentType(record["document_type"]),
            series=str(record["series"]),
            number=int(record["number"]),
            issuer_tax_id=str(record["issuer_tax_id"]),
            recipient_tax_id=str(record["recipient_tax_id"]),
            recipient_name=str(record["recipient_name"]),
            currency=str(record["currency"]),
            line_items=tuple(LineItem.from_record(item) for item in record.get("line_items") or ()),
            totals=Totals.from_record(record["totals"]),
            state=DocumentState(record["state"]),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
            signed_payload=_optional_bytes(record.get("signed_payload")),
            content_hash=record.get("content_hash"),
            authority_reference_id=record.get("authority_reference_id"),
            acknowledgment=_optional_bytes(record.get("acknowledgment")),
            last_error=record.get("last_error"),
            related_document_id=_optional_str(record.get("related_document_id")),
            shipment=Shipment.from_record(raw_shipment) if raw_shipment else None,
            attempt_count=int(record.get("attempt_count") or 0),
            chain_attempts=int(record.get("chain_attempts") or 0),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_type": self.document_type.value,
            "series": self.series,
            "number": self.number,
            "issuer_tax_id": self.issuer_tax_id,
            "recipient_tax_id": self.recipient_tax_id,
            "recipient_name": self.recipient_name,
            "currency": self.currency,
            "line_items": [item.to_record() for item in self.line_items],
            "totals": self.totals.to_record(),
            "state": self.state.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "signed_payload": self.signed_payload,
            "content_hash": self.content_hash,
            "authority_reference_id": self.authority_reference_id,
            "acknowledgment": self.acknowledgment,
            "last_error": self.last_error,
            "related_document_id": self.related_document_id,
            "shipment": self.shipment.to_record() if self.shipment else None,
            "attempt_count": self.attempt_count,
            "chain_attempts": self.chain_attempts,
        }

    def summary(self) -> dict:
        """Caller-facing view without the signed payload and acknowledgment bytes."""
        record = self.to_record()
        record.pop("signed_payload")
        record["has_acknowledgment"] = record.pop("acknowledgment") is not None
        record["full_number"] = self.full_number
        return record


@dataclass(frozen=True)
class SubmissionAttempt:
    id: str
    document_id: str
    attempt_number: int
    started_at: datetime
    outcome: AttemptOutcome
    finished_at: Optional[datetime] = None
    authority_code: Optional[str] = None
    authority_message: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict) -> "SubmissionAttempt":
        return cls(
            id=str(record["id"]),
            document_id=str(record["document_id"]),
            attempt_number=int(record["attempt_number"]),
            started_at=record["started_at"],
            outcome=AttemptOutcome(record["outcome"]),
            finished_at=record.get("finished_at"),
            authority_code=record.get("authority_code"),
            authority_message=record.get("authority_message"),
        )

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "attempt_number": self.attempt_number,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "outcome": self.outcome.value,
            "authority_code": self.authority_code,
            "authority_message": self.authority_message,
        }
