"""
Fiscal Documents - Draft Validation
===================================
Structural checks run before any number is consumed.
Cross-record checks (the related invoice must be ACCEPTED) live in the
state machine, which owns store access.
"""

from __future__ import annotations

from decimal import Decimal

from fiscal.documents.models import DocumentDraft, DocumentType
from fiscal.errors import ValidationError


MAX_SERIES_LENGTH = 4
MAX_TAX_ID_LENGTH = 15
ZERO = Decimal("0")


def _require_text(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required.", field=field_name)


def _require_identifier(value: str, field_name: str) -> None:
    _require_text(value, field_name)
    if len(value) > MAX_TAX_ID_LENGTH or any(ch.isspace() for ch in value):
        raise ValidationError(
            f"{field_name} must be a compact identifier of at most "
            f"{MAX_TAX_ID_LENGTH} characters.",
            field=field_name,
        )


def _require_non_negative(value: Decimal, field_name: str) -> None:
    if value < ZERO:
        raise ValidationError(f"{field_name} must be non-negative.", field=field_name)


def validate_series(series: str) -> None:
    _require_text(series, "series")
    if (
        len(series) > MAX_SERIES_LENGTH
        or not series.isascii()
        or not series.isalnum()
    ):
        raise ValidationError(
            f"series must be 1-{MAX_SERIES_LENGTH} alphanumeric characters.",
            field="series",
        )


def validate_draft(draft: DocumentDraft) -> None:
    """Raise ValidationError on the first violated rule."""
    if not isinstance(draft, DocumentDraft):
        raise ValidationError("draft must be a DocumentDraft.")

    _require_text(draft.tenant_id, "tenant_id")
    validate_series(draft.series)
    _require_identifier(draft.issuer_tax_id, "issuer_tax_id")
    _require_identifier(draft.recipient_tax_id, "recipient_tax_id")
    _require_text(draft.recipient_name, "recipient_name")

    if len(draft.currency) != 3 or not draft.currency.isalpha() or not draft.currency.isupper():
        raise ValidationError("currency must be an ISO 4217 code.", field="currency")

    if not draft.line_items:
        raise ValidationError("line_items must not be empty.", field="line_items")
    for index, item in enumerate(draft.line_items, start=1):
        _require_text(item.description, f"line_items[{index}].description")
        if item.quantity <= ZERO:
            raise ValidationError(
                f"line_items[{index}].quantity must be positive.",
                field="quantity",
            )
        _require_non_negative(item.unit_price, f"line_items[{index}].unit_price")
        _require_non_negative(item.line_total, f"line_items[{index}].line_total")

    _require_non_negative(draft.totals.taxable_base, "totals.taxable_base")
    _require_non_negative(draft.totals.tax, "totals.tax")
    _require_non_negative(draft.totals.grand_total, "totals.grand_total")

    if draft.document_type is DocumentType.WAYBILL:
        if draft.shipment is None:
            raise ValidationError("waybills require shipment data.", field="shipment")
        if draft.shipment.weight_kg <= ZERO:
            raise ValidationError("shipment weight must be positive.", field="weight_kg")
    else:
        if draft.shipment is not None:
            raise ValidationError(
                "shipment data is only allowed on waybills.", field="shipment"
            )
        if draft.related_document_id is not None:
            raise ValidationError(
                "related_document_id is only allowed on waybills.",
                field="related_document_id",
            )
