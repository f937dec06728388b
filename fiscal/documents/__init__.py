"""
Fiscal Documents - Public API
=============================
"""

from fiscal.documents.canonical import build_canonical_payload, serialize_document
from fiscal.documents.models import (
    AttemptOutcome,
    DocumentDraft,
    DocumentState,
    DocumentType,
    FiscalDocument,
    LineItem,
    Shipment,
    SubmissionAttempt,
    Totals,
    TransportMode,
)
from fiscal.documents.numbering import InMemoryNumberingProvider, NumberingProvider
from fiscal.documents.validation import validate_draft, validate_series

__all__ = [
    "AttemptOutcome",
    "DocumentDraft",
    "DocumentState",
    "DocumentType",
    "FiscalDocument",
    "LineItem",
    "Shipment",
    "SubmissionAttempt",
    "Totals",
    "TransportMode",
    "InMemoryNumberingProvider",
    "NumberingProvider",
    "build_canonical_payload",
    "serialize_document",
    "validate_draft",
    "validate_series",
]
