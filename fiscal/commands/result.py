"""
Fiscal Commands - Command Result Contract
=========================================
Every command produces exactly one CommandResult. Commands never raise.

Rules:
- Result is immutable (frozen dataclass)
- A failed result carries error_code and error_message
- A successful result carries neither
- data may accompany a failure (e.g. the rejected document)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from fiscal.errors import (
    AuthorityRejection,
    ConcurrencyConflict,
    ConfigurationError,
    DocumentNotFound,
    DuplicateDerivation,
    FiscalError,
    InvalidTransition,
    SigningUnavailable,
    TransportFailure,
    ValidationError,
)


# ══════════════════════════════════════════════════════════════
# ERROR CODES
# ══════════════════════════════════════════════════════════════

class ErrorCode:
    """
    Machine-readable failure codes.

    Every FiscalError subclass contributes its own code, so a command
    result and the exception behind it can never disagree.
    """

    VALIDATION_ERROR = ValidationError.code
    SIGNING_UNAVAILABLE = SigningUnavailable.code
    TRANSPORT_FAILURE = TransportFailure.code
    AUTHORITY_REJECTION = AuthorityRejection.code
    CONCURRENCY_CONFLICT = ConcurrencyConflict.code
    NOT_FOUND = DocumentNotFound.code
    INVALID_TRANSITION = InvalidTransition.code
    DUPLICATE_DERIVATION = DuplicateDerivation.code
    CONFIGURATION_ERROR = ConfigurationError.code
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ══════════════════════════════════════════════════════════════
# COMMAND RESULT
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class CommandResult:
    success: bool
    data: Optional[Any] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.success, bool):
            raise ValueError("success must be bool.")

        if self.success and (self.error_code is not None or self.error_message is not None):
            raise ValueError("A successful result must NOT carry an error.")

        if not self.success and (not self.error_code or not self.error_message):
            raise ValueError(
                "A failed result must include error_code and error_message. "
                "No silent failures allowed."
            )

    @classmethod
    def ok(cls, data: Any = None) -> "CommandResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_code: str, error_message: str, data: Any = None) -> "CommandResult":
        return cls(
            success=False,
            data=data,
            error_code=error_code,
            error_message=error_message,
        )

    @classmethod
    def from_error(cls, exc: FiscalError, data: Any = None) -> "CommandResult":
        return cls.fail(exc.code, exc.message or exc.code, data)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "data": self.data,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }
