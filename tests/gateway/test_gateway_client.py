"""
Tests for fiscal.gateway - client classification, packaging, sandbox.

Every scenario runs against httpx.MockTransport; nothing leaves the process.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

import httpx
import pytest

from fiscal.documents.models import DocumentType
from fiscal.gateway.client import (
    DEFAULT_INVOICE_PATH,
    DEFAULT_STATUS_PATH,
    DEFAULT_WAYBILL_PATH,
    GatewayClient,
)
from fiscal.gateway.envelope import SERVICE_NS, SOAP_NS, WSSE_NS, GatewayCredentials
from fiscal.gateway.packaging import (
    SubmissionMeta,
    build_archive,
    decode_archive,
    encode_archive,
    package_payload,
    read_archive,
)
from fiscal.gateway.responses import GatewayOutcome, parse_cdr
from fiscal.gateway.sandbox import SandboxAuthority, build_cdr, fault_envelope

CREDENTIALS = GatewayCredentials("20123456789MODDATOS", "moddatos")
PAYLOAD = b"<?xml version='1.0' encoding='utf-8'?>\n<Invoice>signed</Invoice>"
INVOICE_META = SubmissionMeta("20123456789", DocumentType.INVOICE, "F001", 12)
WAYBILL_META = SubmissionMeta("20123456789", DocumentType.WAYBILL, "T001", 3)


def _send_bill_reply(cdr_archive: bytes) -> bytes:
    return (
        f'<soapenv:Envelope xmlns:soapenv="{SOAP_NS}" xmlns:br="{SERVICE_NS}">'
        f"<soapenv:Body><br:sendBillResponse>"
        f"<applicationResponse>{encode_archive(cdr_archive)}</applicationResponse>"
        f"</br:sendBillResponse></soapenv:Body></soapenv:Envelope>"
    ).encode("utf-8")


def _client(handler) -> GatewayClient:
    return GatewayClient(
        "https://gateway.test", CREDENTIALS, transport=httpx.MockTransport(handler)
    )


def _replying(status: int, content: bytes):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=content)

    return handler


# ══════════════════════════════════════════════════════════════
# PACKAGING
# ══════════════════════════════════════════════════════════════

class TestPackaging:
    def test_archive_name_follows_authority_layout(self):
        assert INVOICE_META.archive_name == "20123456789-01-F001-12.zip"
        assert WAYBILL_META.entry_name == "20123456789-09-T001-3.xml"

    def test_archive_is_deterministic(self):
        assert build_archive("a.xml", PAYLOAD) == build_archive("a.xml", PAYLOAD)

    def test_package_round_trip(self):
        name, content = package_payload(PAYLOAD, INVOICE_META)
        assert name == INVOICE_META.archive_name
        assert read_archive(decode_archive(content)) == {INVOICE_META.entry_name: PAYLOAD}

    def test_corrupt_archive_raises_value_error(self):
        with pytest.raises(ValueError):
            read_archive(b"definitely not a zip")
        with pytest.raises(ValueError):
            decode_archive("%%%")


# ══════════════════════════════════════════════════════════════
# SUBMIT CLASSIFICATION
# ══════════════════════════════════════════════════════════════

class TestSubmit:
    def test_cdr_code_zero_is_accepted(self):
        cdr = build_cdr("stem", "0", "accepted", "CDR-1")
        with _client(_replying(200, _send_bill_reply(cdr))) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.accepted
        assert result.reference_id == "CDR-1"
        assert result.authority_code == "0"
        assert result.acknowledgment == cdr

    def test_cdr_observation_code_is_accepted(self):
        cdr = build_cdr("stem", "4252", "observed", "CDR-2")
        with _client(_replying(200, _send_bill_reply(cdr))) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.outcome is GatewayOutcome.ACCEPTED

    def test_cdr_rejection_code_is_rejected(self):
        cdr = build_cdr("stem", "2335", "bad total", "CDR-3")
        with _client(_replying(200, _send_bill_reply(cdr))) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.rejected
        assert result.describe() == "2335: bad total"

    def test_business_fault_is_rejected(self):
        with _client(_replying(500, fault_envelope("2800", "Invalid recipient"))) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.outcome is GatewayOutcome.REJECTED
        assert result.authority_code == "2800"
        assert result.authority_message == "Invalid recipient"

    def test_technical_fault_is_retryable(self):
        with _client(_replying(500, fault_envelope("0130", "Service down"))) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.retryable
        assert result.authority_code == "0130"
        assert not result.timed_out

    def test_http_error_without_fault(self):
        with _client(_replying(503, b"Service Unavailable")) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.retryable
        assert result.authority_code == "HTTP503"

    def test_unreadable_success_reply(self):
        with _client(_replying(200, b"<html>maintenance</html>")) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.retryable
        assert "Unreadable" in result.authority_message

    def test_timeout_is_flagged(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with _client(handler) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.retryable
        assert result.timed_out

    def test_connect_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with _client(handler) as client:
            result = client.submit(PAYLOAD, INVOICE_META)
        assert result.retryable
        assert not result.timed_out

    def test_empty_payload_never_reaches_the_wire(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        with _client(handler) as client:
            assert client.submit(b"", INVOICE_META).retryable
        assert calls == []

    def test_request_shape(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["action"] = request.headers["SOAPAction"]
            seen["body"] = ET.fromstring(request.content)
            return httpx.Response(200, content=_send_bill_reply(build_cdr("s", "0", "ok", "X")))

        with _client(handler) as client:
            client.submit(PAYLOAD, INVOICE_META)
        body = seen["body"]
        assert seen["path"] == DEFAULT_INVOICE_PATH
        assert seen["action"] == "urn:sendBill"
        assert body.find(f".//{{{WSSE_NS}}}Username").text == CREDENTIALS.username
        operation = body.find(f".//{{{SERVICE_NS}}}sendBill")
        assert operation.find("fileName").text == INVOICE_META.archive_name

    def test_waybills_use_their_own_service_path(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, content=_send_bill_reply(build_cdr("s", "0", "ok", "X")))

        with _client(handler) as client:
            client.submit(PAYLOAD, WAYBILL_META)
        assert paths == [DEFAULT_WAYBILL_PATH]


# ══════════════════════════════════════════════════════════════
# SANDBOX + STATUS
# ══════════════════════════════════════════════════════════════

class TestSandbox:
    @pytest.fixture
    def sandbox(self):
        return SandboxAuthority()

    @pytest.fixture
    def client(self, sandbox):
        with GatewayClient("https://sandbox.test", CREDENTIALS, transport=sandbox.transport()) as client:
            yield client

    def test_accepts_and_assigns_reference(self, sandbox, client):
        result = client.submit(PAYLOAD, INVOICE_META)
        assert result.accepted
        assert result.reference_id == "SANDBOX-00000001"
        assert sandbox.submissions_of(INVOICE_META.file_stem) == 1

    def test_scripted_replies_in_order(self, sandbox, client):
        sandbox.fail_next(1)
        sandbox.timeout_next(1)
        sandbox.http_error_next(1, status=502)
        sandbox.reject_next("2017", "Duplicate number")
        outcomes = [client.submit(PAYLOAD, INVOICE_META) for _ in range(5)]
        assert [r.outcome for r in outcomes] == [
            GatewayOutcome.FAULT,
            GatewayOutcome.FAULT,
            GatewayOutcome.FAULT,
            GatewayOutcome.REJECTED,
            GatewayOutcome.ACCEPTED,
        ]
        assert outcomes[1].timed_out
        assert outcomes[2].authority_code == "HTTP502"

    def test_status_of_unknown_document(self, client):
        result = client.query_status("20123456789", DocumentType.INVOICE, "F001", 99)
        assert result.retryable
        assert result.authority_code == "0011"

    def test_status_after_acceptance(self, client):
        submitted = client.submit(PAYLOAD, INVOICE_META)
        status = client.query_status("20123456789", DocumentType.INVOICE, "F001", 12)
        assert status.accepted
        assert status.reference_id == submitted.reference_id
        assert status.acknowledgment == submitted.acknowledgment
        assert parse_cdr(status.acknowledgment).reference_id == submitted.reference_id

    def test_status_after_rejection(self, sandbox, client):
        sandbox.reject_next("2800", "Invalid recipient")
        client.submit(PAYLOAD, INVOICE_META)
        status = client.query_status("20123456789", DocumentType.INVOICE, "F001", 12)
        assert status.rejected
        assert status.authority_code == "0002"
        assert status.acknowledgment is None

    def test_forget_simulates_lost_submission(self, sandbox, client):
        client.submit(PAYLOAD, INVOICE_META)
        sandbox.forget(INVOICE_META.file_stem)
        status = client.query_status("20123456789", DocumentType.INVOICE, "F001", 12)
        assert status.outcome is GatewayOutcome.FAULT

    def test_status_uses_status_path(self, sandbox):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return sandbox.handle(request)

        with _client(handler) as client:
            client.query_status("20123456789", DocumentType.WAYBILL, "T001", 1)
        assert paths == [DEFAULT_STATUS_PATH]


def test_parse_cdr_prefers_root_id():
    result = parse_cdr(build_cdr("20123456789-01-F001-1", "0", "ok", "CDR-77"))
    assert result.reference_id == "CDR-77"
    assert result.authority_message == "ok"
