"""
Fiscal Lifecycle - Document State Machine
=========================================
The only component allowed to change a fiscal document.

Doctrine:
- Every mutation happens under the document's lock and is written with a
  state-guarded update (matcher includes the state it was read in).
- SUBMITTED is persisted BEFORE the gateway is called. A crash between
  the two leaves a SUBMITTED document that query_status reconciles.
- A signed payload that reached the gateway is never regenerated.
  Resubmission reuses it. Only a payload that failed local verification
  before any attempt may be signed again.
- Transport failures return the document to SIGNED and schedule a retry.
  Authority rejections are final until an operator resubmits.
- ACCEPTED and REJECTED transitions publish DocumentIssued exactly once.
- The authority acknowledgment (CDR archive) is stored with the document.
- Retry tickets live in memory. recover_in_flight re-arms interrupted
  retry chains after a restart.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from fiscal.documents.canonical import build_canonical_payload
from fiscal.documents.models import (
    AttemptOutcome,
    DocumentDraft,
    DocumentState,
    DocumentType,
    FiscalDocument,
    SubmissionAttempt,
)
from fiscal.documents.numbering import NumberingProvider
from fiscal.documents.validation import validate_draft
from fiscal.errors import (
    ConcurrencyConflict,
    DocumentNotFound,
    DuplicateDerivation,
    FiscalError,
    InvalidTransition,
    ValidationError,
)
from fiscal.events.bus import EventBus
from fiscal.events.errors import EventBusError
from fiscal.events.topics import (
    DOCUMENT_ISSUED,
    DOCUMENT_STALLED,
    DocumentIssued,
    DocumentSubmissionStalled,
)
from fiscal.gateway.client import GatewayClient
from fiscal.gateway.packaging import SubmissionMeta
from fiscal.gateway.responses import GatewayResult
from fiscal.lifecycle.locks import KeyedLocks
from fiscal.lifecycle.transitions import check_transition
from fiscal.retry.scheduler import RetryTicket, SubmissionRetryScheduler
from fiscal.signing.hashing import verify_content_hash
from fiscal.signing.keys import KeyMaterialProvider
from fiscal.signing.signer import DocumentSigner
from fiscal.storage.protocol import (
    RECORD_ATTEMPT,
    RECORD_DOCUMENT,
    UQ_DOCUMENT_RELATED,
    DuplicateRecordError,
    RecordStore,
)
from fiscal.time import Clock, SystemClock

logger = logging.getLogger("fiscal.lifecycle")


@dataclass(frozen=True)
class StatusReport:
    document: FiscalDocument
    result: GatewayResult


class DocumentStateMachine:
    """
    Authoritative lifecycle controller.

    Usage:
        machine = DocumentStateMachine(store, numbering, signer, keys, gateway, scheduler, bus)
        document = machine.create(draft)
        machine.sign(document.id)
        machine.submit(document.id)
    """

    def __init__(
        self,
        store: RecordStore,
        numbering: NumberingProvider,
        signer: DocumentSigner,
        key_provider: KeyMaterialProvider,
        gateway: GatewayClient,
        scheduler: SubmissionRetryScheduler,
        bus: EventBus,
        clock: Optional[Clock] = None,
        *,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._store = store
        self._numbering = numbering
        self._signer = signer
        self._key_provider = key_provider
        self._gateway = gateway
        self._scheduler = scheduler
        self._bus = bus
        self._clock = clock or SystemClock()
        self._new_id = id_factory
        self._locks = KeyedLocks()
        scheduler.bind(self.run_retry)

    # ══════════════════════════════════════════════════════════
    # READS
    # ══════════════════════════════════════════════════════════

    def get(self, document_id: str) -> FiscalDocument:
        record = self._store.get(RECORD_DOCUMENT, document_id)
        if record is None:
            raise DocumentNotFound(document_id)
        return FiscalDocument.from_record(record)

    def find_by_related(self, related_document_id: str) -> Optional[FiscalDocument]:
        records = self._store.find(
            RECORD_DOCUMENT, {"related_document_id": related_document_id}
        )
        return FiscalDocument.from_record(records[0]) if records else None

    def list_attempts(self, document_id: str) -> list[SubmissionAttempt]:
        self.get(document_id)
        records = self._store.find(RECORD_ATTEMPT, {"document_id": document_id})
        attempts = [SubmissionAttempt.from_record(record) for record in records]
        return sorted(attempts, key=lambda attempt: attempt.attempt_number)

    # ══════════════════════════════════════════════════════════
    # PERSISTENCE HELPERS
    # ══════════════════════════════════════════════════════════

    def _write(self, document: FiscalDocument, changes: dict) -> FiscalDocument:
        """State-guarded write of `changes` over the document as last read."""
        updated = document.with_changes(updated_at=self._clock.now_utc(), **changes)
        record = updated.to_record()
        fields = {key: record[key] for key in (*changes, "updated_at")}
        matched = self._store.update(
            RECORD_DOCUMENT,
            fields,
            {"id": document.id, "state": document.state.value},
        )
        if matched != 1:
            raise ConcurrencyConflict(
                f"Document {document.id} changed while {document.state.value} "
                f"was being updated.",
                document_id=document.id,
            )
        return updated

    def _transition(
        self,
        document: FiscalDocument,
        target: DocumentState,
        **changes,
    ) -> FiscalDocument:
        check_transition(document.state, target, document.id)
        updated = self._write(document, {"state": target, **changes})
        logger.info(
            f"Document {document.id} {document.state.value} -> {target.value}"
        )
        return updated

    def _record_attempt(
        self,
        document: FiscalDocument,
        started_at,
        result: GatewayResult,
    ) -> None:
        if result.accepted:
            outcome = AttemptOutcome.SUCCESS
        elif result.timed_out:
            outcome = AttemptOutcome.TIMEOUT
        else:
            outcome = AttemptOutcome.FAILURE
        attempt = SubmissionAttempt(
            id=self._new_id(),
            document_id=document.id,
            attempt_number=document.attempt_count,
            started_at=started_at,
            finished_at=self._clock.now_utc(),
            outcome=outcome,
            authority_code=result.authority_code,
            authority_message=result.authority_message,
        )
        try:
            self._store.insert(RECORD_ATTEMPT, attempt.to_record())
        except DuplicateRecordError as exc:
            logger.critical(
                f"Attempt {attempt.attempt_number} of {document.id} recorded twice"
            )
            raise ConcurrencyConflict(str(exc), document_id=document.id) from exc

    # ══════════════════════════════════════════════════════════
    # EVENTS
    # ══════════════════════════════════════════════════════════

    def _publish(self, topic, payload) -> None:
        try:
            self._bus.publish(topic, payload)
        except EventBusError as exc:
            # The transition is already persisted; the event is lost with the bus.
            logger.error(f"Could not publish {topic.name}: {exc}")

    def _publish_issued(self, document: FiscalDocument) -> None:
        self._publish(
            DOCUMENT_ISSUED,
            DocumentIssued(
                document_id=document.id,
                tenant_id=document.tenant_id,
                document_type=document.document_type,
                outcome=document.state,
                totals=document.totals,
                recipient_tax_id=document.recipient_tax_id,
                related_document_id=document.related_document_id,
                occurred_at=document.updated_at,
            ),
        )

    def _publish_stalled(self, document: FiscalDocument) -> None:
        self._publish(
            DOCUMENT_STALLED,
            DocumentSubmissionStalled(
                document_id=document.id,
                tenant_id=document.tenant_id,
                attempts=document.chain_attempts,
                last_error=document.last_error,
                occurred_at=self._clock.now_utc(),
            ),
        )

    # ══════════════════════════════════════════════════════════
    # CREATE
    # ══════════════════════════════════════════════════════════

    def create(self, draft: DocumentDraft) -> FiscalDocument:
        """
        Validate, number and store a new DRAFT document.

        Raises:
            ValidationError:      missing/invalid fields or related invoice
            DuplicateDerivation:  a document already points at related_document_id
            ConcurrencyConflict:  the store refused the assigned number
        """
        validate_draft(draft)
        if draft.related_document_id is not None:
            self._check_related(draft)

        number = self._numbering.next_number(draft.tenant_id, draft.series)
        now = self._clock.now_utc()
        document = FiscalDocument(
            id=self._new_id(),
            tenant_id=draft.tenant_id,
            document_type=draft.document_type,
            series=draft.series,
            number=number,
            issuer_tax_id=draft.issuer_tax_id,
            recipient_tax_id=draft.recipient_tax_id,
            recipient_name=draft.recipient_name,
            currency=draft.currency,
            line_items=draft.line_items,
            totals=draft.totals,
            state=DocumentState.DRAFT,
            created_at=now,
            updated_at=now,
            related_document_id=draft.related_document_id,
            shipment=draft.shipment,
        )
        try:
            self._store.insert(RECORD_DOCUMENT, document.to_record())
        except DuplicateRecordError as exc:
            if exc.constraint == UQ_DOCUMENT_RELATED:
                raise DuplicateDerivation(draft.related_document_id) from exc
            logger.critical(
                f"Number {draft.series}-{number} of tenant {draft.tenant_id} "
                f"was assigned twice ({exc.constraint})"
            )
            raise ConcurrencyConflict(
                f"Number {draft.series}-{number} is already in use.",
                document_id=document.id,
            ) from exc
        logger.info(
            f"Document {document.id} created as {document.document_type.value} "
            f"{document.full_number}"
        )
        return document

    def _check_related(self, draft: DocumentDraft) -> None:
        record = self._store.get(RECORD_DOCUMENT, draft.related_document_id)
        if record is None:
            raise ValidationError(
                f"Related document {draft.related_document_id} does not exist.",
                field="related_document_id",
            )
        related = FiscalDocument.from_record(record)
        if related.tenant_id != draft.tenant_id:
            raise ValidationError(
                "Related document belongs to another tenant.",
                field="related_document_id",
            )
        if related.document_type is not DocumentType.INVOICE:
            raise ValidationError(
                "A waybill can only be derived from an invoice.",
                field="related_document_id",
            )
        if related.state is not DocumentState.ACCEPTED:
            raise ValidationError(
                f"Related invoice is {related.state.value}, not ACCEPTED.",
                field="related_document_id",
            )

    # ══════════════════════════════════════════════════════════
    # SIGN
    # ══════════════════════════════════════════════════════════

    def sign(self, document_id: str) -> FiscalDocument:
        """
        DRAFT -> SIGNED. A document already signed is returned unchanged,
        unless its payload fails verification and was never sent: then it is
        signed again (SIGNED stays SIGNED, a technical REJECTED goes back
        to SIGNED).

        Raises:
            SigningUnavailable: no usable key material; the document is unchanged
        """
        with self._locks.hold(document_id):
            document = self.get(document_id)
            if document.state is DocumentState.VOIDED:
                raise InvalidTransition(
                    document.state.value, DocumentState.SIGNED.value, document_id=document_id
                )
            if document.state is DocumentState.DRAFT:
                signed = self._sign_payload(document)
                return self._transition(
                    document,
                    DocumentState.SIGNED,
                    signed_payload=signed.signed_payload,
                    content_hash=signed.content_hash,
                    last_error=None,
                )
            if not self._needs_new_signature(document):
                return document

            logger.warning(f"Re-signing {document.id}: stored payload failed verification")
            signed = self._sign_payload(document)
            changes = {
                "signed_payload": signed.signed_payload,
                "content_hash": signed.content_hash,
                "last_error": None,
                "chain_attempts": 0,
            }
            if document.state is DocumentState.REJECTED:
                return self._transition(document, DocumentState.SIGNED, **changes)
            return self._write(document, changes)

    def _sign_payload(self, document: FiscalDocument):
        related_number = None
        if document.related_document_id:
            related_number = self.get(document.related_document_id).full_number
        payload = build_canonical_payload(document, related_number=related_number)
        return self._signer.sign(payload, self._key_provider.load())

    def _needs_new_signature(self, document: FiscalDocument) -> bool:
        """A never-sent SIGNED/REJECTED document whose payload is unusable."""
        if document.attempt_count != 0:
            return False
        if document.state not in (DocumentState.SIGNED, DocumentState.REJECTED):
            return False
        return not self._payload_is_sound(document)

    # ══════════════════════════════════════════════════════════
    # SUBMIT
    # ══════════════════════════════════════════════════════════

    def submit(self, document_id: str) -> FiscalDocument:
        with self._locks.hold(document_id):
            return self._submit_locked(self.get(document_id))

    def _submit_locked(self, document: FiscalDocument) -> FiscalDocument:
        state = document.state
        if document.is_terminal:
            logger.debug(f"Submit of {document.id} ignored: already {state.value}")
            return document
        if state is DocumentState.SUBMITTED:
            # Left over from an interrupted submission: ask, never resend blindly.
            return self._reconcile_locked(document).document
        if state is not DocumentState.SIGNED:
            raise InvalidTransition(
                state.value, DocumentState.SUBMITTED.value, document_id=document.id
            )

        if not self._payload_is_sound(document):
            message = "Technical rejection: signed payload failed verification."
            if document.attempt_count == 0:
                message += " Sign the document again to regenerate it."
            rejected = self._transition(document, DocumentState.REJECTED, last_error=message)
            self._publish_issued(rejected)
            return rejected

        if self._last_attempt_timed_out(document):
            probe = self._query_gateway(document)
            if probe.accepted:
                logger.info(f"Document {document.id} was filed by a timed-out attempt")
                in_flight = self._transition(document, DocumentState.SUBMITTED)
                return self._apply_result(in_flight, probe)

        started_at = self._clock.now_utc()
        in_flight = self._transition(
            document,
            DocumentState.SUBMITTED,
            attempt_count=document.attempt_count + 1,
            chain_attempts=document.chain_attempts + 1,
        )
        result = self._gateway.submit(
            in_flight.signed_payload, SubmissionMeta.from_document(in_flight)
        )
        self._record_attempt(in_flight, started_at, result)
        return self._apply_result(in_flight, result)

    def _payload_is_sound(self, document: FiscalDocument) -> bool:
        payload = document.signed_payload
        if not payload or not document.content_hash:
            return False
        if not verify_content_hash(payload, document.content_hash):
            logger.error(f"Content hash mismatch on {document.id}")
            return False
        return self._signer.validate(payload)

    def _last_attempt_timed_out(self, document: FiscalDocument) -> bool:
        if document.attempt_count == 0:
            return False
        records = self._store.find(
            RECORD_ATTEMPT,
            {"document_id": document.id, "attempt_number": document.attempt_count},
        )
        return bool(records) and records[0]["outcome"] == AttemptOutcome.TIMEOUT.value

    def _query_gateway(self, document: FiscalDocument) -> GatewayResult:
        return self._gateway.query_status(
            document.issuer_tax_id,
            document.document_type,
            document.series,
            document.number,
        )

    def _apply_result(
        self,
        document: FiscalDocument,
        result: GatewayResult,
        *,
        unconfirmed: bool = False,
    ) -> FiscalDocument:
        """Move a SUBMITTED document according to the gateway's answer."""
        if result.accepted:
            accepted = self._transition(
                document,
                DocumentState.ACCEPTED,
                authority_reference_id=result.reference_id,
                acknowledgment=result.acknowledgment,
                last_error=None,
            )
            self._publish_issued(accepted)
            return accepted

        if result.rejected:
            rejected = self._transition(
                document,
                DocumentState.REJECTED,
                acknowledgment=result.acknowledgment,
                last_error=result.describe(),
            )
            self._publish_issued(rejected)
            return rejected

        message = result.describe()
        if unconfirmed:
            message = f"Submission unconfirmed: {message}"
        signed = self._transition(document, DocumentState.SIGNED, last_error=message)
        decision = self._scheduler.schedule_retry(signed.id, signed.chain_attempts)
        if decision.exhausted:
            logger.warning(
                f"Document {signed.id} stalled after {signed.chain_attempts} attempts: {message}"
            )
            self._publish_stalled(signed)
        return signed

    def run_retry(self, ticket: RetryTicket) -> None:
        """Scheduler callback. Re-checks the ticket under the document lock."""
        with self._locks.hold(ticket.document_id):
            if ticket.token.cancelled:
                logger.debug(f"Retry for {ticket.document_id} was cancelled")
                return
            document = self.get(ticket.document_id)
            if document.state is not DocumentState.SIGNED:
                logger.info(
                    f"Retry for {document.id} skipped: document is {document.state.value}"
                )
                return
            self._submit_locked(document)

    # ══════════════════════════════════════════════════════════
    # OPERATOR ACTIONS
    # ══════════════════════════════════════════════════════════

    def resubmit(self, document_id: str) -> FiscalDocument:
        """Start a fresh retry chain with the stored signed payload."""
        with self._locks.hold(document_id):
            self._scheduler.cancel(document_id)
            document = self.get(document_id)
            if document.is_terminal:
                return document
            if document.state is DocumentState.SUBMITTED:
                return self._reconcile_locked(document).document
            if document.state is DocumentState.REJECTED:
                document = self._transition(document, DocumentState.SIGNED, chain_attempts=0)
            elif document.state is DocumentState.SIGNED:
                document = self._write(document, {"chain_attempts": 0})
            else:
                raise InvalidTransition(
                    document.state.value, DocumentState.SUBMITTED.value, document_id=document_id
                )
            return self._submit_locked(document)

    def query_status(self, document_id: str) -> StatusReport:
        with self._locks.hold(document_id):
            return self._reconcile_locked(self.get(document_id))

    def _reconcile_locked(self, document: FiscalDocument) -> StatusReport:
        if not document.state.is_signed_or_later:
            raise InvalidTransition(
                document.state.value, "STATUS_QUERY", document_id=document.id
            )
        result = self._query_gateway(document)
        if document.state is DocumentState.SUBMITTED:
            logger.warning(f"Reconciling in-flight document {document.id}")
            return StatusReport(
                self._apply_result(document, result, unconfirmed=True), result
            )
        if document.state is DocumentState.ACCEPTED and result.accepted:
            changes = {}
            if result.reference_id and result.reference_id != document.authority_reference_id:
                changes["authority_reference_id"] = result.reference_id
            if result.acknowledgment and document.acknowledgment is None:
                changes["acknowledgment"] = result.acknowledgment
            if changes:
                document = self._write(document, changes)
        return StatusReport(document, result)

    def void(self, document_id: str, reason: str) -> FiscalDocument:
        if not reason or not reason.strip():
            raise ValidationError("A void reason is required.", field="reason")
        with self._locks.hold(document_id):
            self._scheduler.cancel(document_id)
            document = self.get(document_id)
            if document.state is DocumentState.VOIDED:
                return document
            return self._transition(
                document, DocumentState.VOIDED, last_error=f"Voided: {reason.strip()}"
            )

    def recover_in_flight(self, tenant_id: Optional[str] = None) -> list[StatusReport]:
        """
        Restart recovery.

        1. Every SUBMITTED document is reconciled with the authority.
        2. Every SIGNED document left mid-chain by a transport failure gets
           its retry ticket back (tickets do not survive the process). A
           chain already at the cap is reported stalled again.

        Returns the status reports of step 1.
        """
        reports = []
        reconciled = set()
        for record in self._find_in_state(DocumentState.SUBMITTED, tenant_id):
            reconciled.add(record["id"])
            try:
                reports.append(self.query_status(record["id"]))
            except FiscalError as exc:
                logger.error(f"Recovery of {record['id']} failed: {exc}")
        logger.info(f"Recovered {len(reports)} in-flight documents")

        resumed = 0
        for record in self._find_in_state(DocumentState.SIGNED, tenant_id):
            if record["id"] not in reconciled and self._resume_chain(record["id"]):
                resumed += 1
        logger.info(f"Re-armed {resumed} interrupted retry chains")
        return reports

    def _find_in_state(self, state: DocumentState, tenant_id: Optional[str]) -> list[dict]:
        matcher = {"state": state.value}
        if tenant_id is not None:
            matcher["tenant_id"] = tenant_id
        return self._store.find(RECORD_DOCUMENT, matcher)

    def _resume_chain(self, document_id: str) -> bool:
        with self._locks.hold(document_id):
            document = self.get(document_id)
            if (
                document.state is not DocumentState.SIGNED
                or not document.last_error
                or document.chain_attempts == 0
                or self._scheduler.pending(document_id) is not None
            ):
                return False
            decision = self._scheduler.schedule_retry(document.id, document.chain_attempts)
            if decision.exhausted:
                logger.warning(
                    f"Document {document.id} is still stalled after "
                    f"{document.chain_attempts} attempts: {document.last_error}"
                )
                self._publish_stalled(document)
                return False
            logger.info(f"Retry chain of {document.id} resumed at attempt {document.chain_attempts}")
            return True
