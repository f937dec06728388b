"""
Fiscal Lifecycle - Transition Table
===================================
    DRAFT     -> SIGNED, VOIDED
    SIGNED    -> SUBMITTED, REJECTED (local technical rejection), VOIDED
    SUBMITTED -> ACCEPTED, REJECTED, SIGNED (transport failure)
    REJECTED  -> SIGNED (manual resubmit only), VOIDED
    ACCEPTED  -> (terminal)
    VOIDED    -> (terminal)
"""

from __future__ import annotations

from typing import Optional

from fiscal.documents.models import DocumentState
from fiscal.errors import InvalidTransition

ALLOWED_TRANSITIONS: dict[DocumentState, frozenset[DocumentState]] = {
    DocumentState.DRAFT: frozenset({DocumentState.SIGNED, DocumentState.VOIDED}),
    DocumentState.SIGNED: frozenset(
        {DocumentState.SUBMITTED, DocumentState.REJECTED, DocumentState.VOIDED}
    ),
    DocumentState.SUBMITTED: frozenset(
        {DocumentState.ACCEPTED, DocumentState.REJECTED, DocumentState.SIGNED}
    ),
    DocumentState.REJECTED: frozenset({DocumentState.SIGNED, DocumentState.VOIDED}),
    DocumentState.ACCEPTED: frozenset(),
    DocumentState.VOIDED: frozenset(),
}


def can_transition(current: DocumentState, target: DocumentState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(
    current: DocumentState,
    target: DocumentState,
    document_id: Optional[str] = None,
) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value, document_id=document_id)
