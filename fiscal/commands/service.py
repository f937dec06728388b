"""
Fiscal Commands - Issuance Service
==================================
Caller-facing facade over the state machine.

Every public method returns a CommandResult and never raises:
- FiscalError        -> its code and message
- anything else      -> INTERNAL_ERROR, logged with traceback

A submission that ends REJECTED or back in SIGNED (transport failure) is
reported as a failure carrying the document, so callers see the outcome
without inspecting state themselves.

The signed XML and the authority acknowledgment are never part of a
document summary; get_signed_payload and get_acknowledgment return them.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Union

from fiscal.commands.result import CommandResult, ErrorCode
from fiscal.documents.models import DocumentDraft, DocumentState, FiscalDocument
from fiscal.errors import AuthorityRejection, FiscalError, TransportFailure
from fiscal.lifecycle.machine import DocumentStateMachine, StatusReport

logger = logging.getLogger("fiscal.commands")

DraftInput = Union[DocumentDraft, dict]


def _draft(payload: DraftInput) -> DocumentDraft:
    if isinstance(payload, DocumentDraft):
        return payload
    return DocumentDraft.from_dict(payload)


def _status_data(report: StatusReport) -> dict:
    result = report.result
    return {
        "document": report.document.summary(),
        "authority": {
            "outcome": result.outcome.value,
            "code": result.authority_code,
            "message": result.authority_message,
            "reference_id": result.reference_id,
        },
    }


class IssuanceService:
    def __init__(self, machine: DocumentStateMachine):
        self._machine = machine

    def _run(self, command: str, operation: Callable[[], CommandResult]) -> CommandResult:
        try:
            return operation()
        except FiscalError as exc:
            logger.info(f"{command} failed: {exc.code} {exc.message}")
            return CommandResult.from_error(exc)
        except Exception as exc:
            logger.exception(f"{command} crashed")
            return CommandResult.fail(ErrorCode.INTERNAL_ERROR, f"Internal error: {exc}")

    def _submission_result(self, document: FiscalDocument) -> CommandResult:
        data = document.summary()
        if document.state is DocumentState.REJECTED:
            attempts = self._machine.list_attempts(document.id)
            rejection = AuthorityRejection(
                document.last_error or "Rejected by the authority.",
                authority_code=attempts[-1].authority_code if attempts else None,
                document_id=document.id,
            )
            data["authority_code"] = rejection.authority_code
            return CommandResult.from_error(rejection, data)
        if document.state is DocumentState.SIGNED and document.last_error:
            failure = TransportFailure(document.last_error, document_id=document.id)
            return CommandResult.from_error(failure, data)
        return CommandResult.ok(data)

    # ══════════════════════════════════════════════════════════
    # COMMANDS
    # ══════════════════════════════════════════════════════════

    def create_document(self, payload: DraftInput) -> CommandResult:
        return self._run(
            "create_document",
            lambda: CommandResult.ok(self._machine.create(_draft(payload)).summary()),
        )

    def sign(self, document_id: str) -> CommandResult:
        return self._run(
            "sign",
            lambda: CommandResult.ok(self._machine.sign(document_id).summary()),
        )

    def submit(self, document_id: str) -> CommandResult:
        return self._run(
            "submit",
            lambda: self._submission_result(self._machine.submit(document_id)),
        )

    def resubmit(self, document_id: str) -> CommandResult:
        return self._run(
            "resubmit",
            lambda: self._submission_result(self._machine.resubmit(document_id)),
        )

    def query_status(self, document_id: str) -> CommandResult:
        return self._run(
            "query_status",
            lambda: CommandResult.ok(_status_data(self._machine.query_status(document_id))),
        )

    def void(self, document_id: str, reason: str) -> CommandResult:
        return self._run(
            "void",
            lambda: CommandResult.ok(self._machine.void(document_id, reason).summary()),
        )

    def issue(self, payload: DraftInput) -> CommandResult:
        """Create, sign and submit in one call."""

        def operation() -> CommandResult:
            document = self._machine.create(_draft(payload))
            self._machine.sign(document.id)
            return self._submission_result(self._machine.submit(document.id))

        return self._run("issue", operation)

    def get_document(self, document_id: str) -> CommandResult:
        def operation() -> CommandResult:
            data: dict[str, Any] = self._machine.get(document_id).summary()
            data["attempts"] = [
                {
                    "attempt_number": attempt.attempt_number,
                    "outcome": attempt.outcome.value,
                    "started_at": attempt.started_at,
                    "finished_at": attempt.finished_at,
                    "authority_code": attempt.authority_code,
                    "authority_message": attempt.authority_message,
                }
                for attempt in self._machine.list_attempts(document_id)
            ]
            return CommandResult.ok(data)

        return self._run("get_document", operation)

    # ══════════════════════════════════════════════════════════
    # ARTIFACTS
    # ══════════════════════════════════════════════════════════

    def get_signed_payload(self, document_id: str) -> CommandResult:
        """The signed XML exactly as it was (or will be) filed."""

        def operation() -> CommandResult:
            document = self._machine.get(document_id)
            if document.signed_payload is None:
                return CommandResult.fail(
                    ErrorCode.NOT_FOUND, f"Document {document_id} is not signed."
                )
            return CommandResult.ok(
                {
                    "document_id": document.id,
                    "file_name": f"{document.archive_name}.xml",
                    "content_hash": document.content_hash,
                    "signed_payload": document.signed_payload,
                }
            )

        return self._run("get_signed_payload", operation)

    def get_acknowledgment(self, document_id: str) -> CommandResult:
        """The authority's zipped acknowledgment (CDR) for a filed document."""

        def operation() -> CommandResult:
            document = self._machine.get(document_id)
            if document.acknowledgment is None:
                return CommandResult.fail(
                    ErrorCode.NOT_FOUND,
                    f"No acknowledgment stored for document {document_id}.",
                )
            return CommandResult.ok(
                {
                    "document_id": document.id,
                    "file_name": f"R-{document.archive_name}.zip",
                    "state": document.state.value,
                    "authority_reference_id": document.authority_reference_id,
                    "acknowledgment": document.acknowledgment,
                }
            )

        return self._run("get_acknowledgment", operation)
