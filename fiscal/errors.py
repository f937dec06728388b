"""
Fiscal Errors - Taxonomy
========================
Every failure the pipeline can report carries a machine-readable code.

ValidationError      -> malformed input, rejected before any transition
SigningUnavailable   -> key material missing or unusable
TransportFailure     -> network / timeout / malformed reply (retried)
AuthorityRejection   -> well-formed business rejection (never auto-retried)
ConcurrencyConflict  -> duplicate number assignment (must never happen)
"""

from __future__ import annotations

from typing import Optional


class FiscalError(Exception):
    """Base error for the issuance pipeline."""

    code = "FISCAL_ERROR"

    def __init__(self, message: str, *, document_id: Optional[str] = None):
        self.message = message
        self.document_id = document_id
        super().__init__(message)


class ValidationError(FiscalError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **kwargs):
        self.field = field
        super().__init__(message, **kwargs)


class SigningUnavailable(FiscalError):
    code = "SIGNING_UNAVAILABLE"


class TransportFailure(FiscalError):
    code = "TRANSPORT_FAILURE"


class AuthorityRejection(FiscalError):
    code = "AUTHORITY_REJECTION"

    def __init__(self, message: str, *, authority_code: Optional[str] = None, **kwargs):
        self.authority_code = authority_code
        super().__init__(message, **kwargs)


class ConcurrencyConflict(FiscalError):
    """Two documents received the same (tenant, series, number)."""

    code = "CONCURRENCY_CONFLICT"


class DocumentNotFound(FiscalError):
    code = "NOT_FOUND"

    def __init__(self, document_id: str):
        super().__init__(f"Document {document_id} not found.", document_id=document_id)


class InvalidTransition(FiscalError):
    code = "INVALID_TRANSITION"

    def __init__(self, current_state: str, target_state: str, *, document_id: Optional[str] = None):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Transition {current_state} -> {target_state} is not allowed.",
            document_id=document_id,
        )


class DuplicateDerivation(FiscalError):
    """A waybill already exists for the triggering invoice."""

    code = "DUPLICATE_DERIVATION"

    def __init__(self, related_document_id: str):
        self.related_document_id = related_document_id
        super().__init__(
            f"A derived document already exists for {related_document_id}."
        )


class ConfigurationError(FiscalError):
    """
    Raised when the pipeline is misconfigured at startup.

    The pipeline must not start: no fallback, no warning-only mode.
    """

    code = "CONFIGURATION_ERROR"

    def __init__(self, setting: str, detail: str):
        self.setting = setting
        self.detail = detail
        super().__init__(f"Invalid configuration for {setting}: {detail}")
