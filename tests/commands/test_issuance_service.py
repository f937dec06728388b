"""
Tests for fiscal.commands - CommandResult contract and IssuanceService.
"""

from __future__ import annotations

import pytest

from conftest import invoice_draft
from fiscal.commands.result import CommandResult, ErrorCode
from fiscal.commands.service import IssuanceService
from fiscal.signing.hashing import compute_content_hash
from fiscal.errors import AuthorityRejection, DocumentNotFound, TransportFailure, ValidationError
from fiscal.gateway.responses import parse_cdr


@pytest.fixture
def service(harness):
    return IssuanceService(harness.machine)


def _payload(grand_total: str = "100.00", **overrides) -> dict:
    draft = invoice_draft(grand_total)
    payload = {
        "tenant_id": draft.tenant_id,
        "document_type": "INVOICE",
        "series": draft.series,
        "issuer_tax_id": draft.issuer_tax_id,
        "recipient_tax_id": draft.recipient_tax_id,
        "recipient_name": draft.recipient_name,
        "currency": draft.currency,
        "line_items": [item.to_record() for item in draft.line_items],
        "totals": draft.totals.to_record(),
    }
    payload.update(overrides)
    return payload


class TestCommandResult:
    def test_ok(self):
        result = CommandResult.ok({"id": "doc-1"})
        assert result.success
        assert result.to_dict() == {
            "success": True,
            "data": {"id": "doc-1"},
            "error_code": None,
            "error_message": None,
        }

    def test_failure_requires_code_and_message(self):
        with pytest.raises(ValueError):
            CommandResult(success=False)

    def test_success_cannot_carry_error(self):
        with pytest.raises(ValueError):
            CommandResult(success=True, error_code="X", error_message="y")

    def test_from_error_uses_error_code(self):
        result = CommandResult.from_error(ValidationError("bad", field="series"))
        assert (result.error_code, result.error_message) == (ErrorCode.VALIDATION_ERROR, "bad")

    @pytest.mark.parametrize(
        "code, error_type",
        [
            (ErrorCode.NOT_FOUND, DocumentNotFound),
            (ErrorCode.TRANSPORT_FAILURE, TransportFailure),
            (ErrorCode.AUTHORITY_REJECTION, AuthorityRejection),
        ],
    )
    def test_codes_follow_the_exceptions(self, code, error_type):
        assert code == error_type.code


class TestIssuanceService:
    def test_issue_from_raw_mapping(self, service):
        result = service.issue(_payload())
        assert result.success
        assert result.data["state"] == "ACCEPTED"
        assert result.data["full_number"] == "F001-1"
        assert "signed_payload" not in result.data
        assert "acknowledgment" not in result.data
        assert result.data["has_acknowledgment"] is True

    def test_validation_error_becomes_result(self, service):
        result = service.create_document(_payload(currency="soles"))
        assert not result.success
        assert result.error_code == ErrorCode.VALIDATION_ERROR

    def test_unknown_document(self, service):
        result = service.sign("missing")
        assert result.error_code == ErrorCode.NOT_FOUND

    def test_rejection_reports_document(self, service, harness):
        harness.sandbox.reject_next("2800", "Invalid recipient")
        result = service.issue(_payload())
        assert not result.success
        assert result.error_code == ErrorCode.AUTHORITY_REJECTION
        assert result.error_message == "2800: Invalid recipient"
        assert result.data["state"] == "REJECTED"
        assert result.data["authority_code"] == "2800"
        assert result.data["has_acknowledgment"] is False

    def test_transport_failure_reports_document(self, service, harness):
        harness.sandbox.fail_next(1)
        result = service.issue(_payload())
        assert result.error_code == ErrorCode.TRANSPORT_FAILURE
        assert result.data["state"] == "SIGNED"

    def test_step_by_step_commands(self, service):
        created = service.create_document(_payload())
        document_id = created.data["id"]
        assert service.sign(document_id).data["state"] == "SIGNED"
        assert service.submit(document_id).data["state"] == "ACCEPTED"
        assert service.resubmit(document_id).success

        status = service.query_status(document_id)
        assert status.success
        assert status.data["authority"]["outcome"] == "ACCEPTED"
        assert status.data["authority"]["reference_id"] == "SANDBOX-00000001"

        details = service.get_document(document_id)
        assert [a["outcome"] for a in details.data["attempts"]] == ["SUCCESS"]

    def test_invalid_transition(self, service):
        document_id = service.create_document(_payload()).data["id"]
        result = service.submit(document_id)
        assert result.error_code == ErrorCode.INVALID_TRANSITION

    def test_void(self, service):
        document_id = service.create_document(_payload()).data["id"]
        assert service.void(document_id, "").error_code == ErrorCode.VALIDATION_ERROR
        assert service.void(document_id, "Duplicate order").data["state"] == "VOIDED"

    def test_artifacts_of_accepted_document(self, service, harness):
        document_id = service.issue(_payload()).data["id"]
        archive_name = harness.machine.get(document_id).archive_name

        signed = service.get_signed_payload(document_id)
        assert signed.success
        assert signed.data["file_name"] == f"{archive_name}.xml"
        assert compute_content_hash(signed.data["signed_payload"]) == signed.data["content_hash"]

        ack = service.get_acknowledgment(document_id)
        assert ack.success
        assert ack.data["file_name"] == f"R-{archive_name}.zip"
        assert ack.data["state"] == "ACCEPTED"
        cdr = parse_cdr(ack.data["acknowledgment"])
        assert cdr.accepted
        assert cdr.reference_id == ack.data["authority_reference_id"] == "SANDBOX-00000001"

    def test_artifacts_missing_until_produced(self, service):
        document_id = service.create_document(_payload()).data["id"]
        assert service.get_signed_payload(document_id).error_code == ErrorCode.NOT_FOUND
        assert service.get_acknowledgment(document_id).error_code == ErrorCode.NOT_FOUND

        service.sign(document_id)
        assert service.get_signed_payload(document_id).success
        result = service.get_acknowledgment(document_id)
        assert result.error_code == ErrorCode.NOT_FOUND
        assert document_id in result.error_message

    def test_artifacts_of_unknown_document(self, service):
        assert service.get_acknowledgment("missing").error_code == ErrorCode.NOT_FOUND

    def test_unexpected_error_is_contained(self):
        class BrokenMachine:
            def get(self, document_id):
                raise RuntimeError("database gone")

        result = IssuanceService(BrokenMachine()).get_document("doc-1")
        assert result.error_code == ErrorCode.INTERNAL_ERROR
        assert "database gone" in result.error_message
