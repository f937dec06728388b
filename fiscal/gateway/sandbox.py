"""
Fiscal Gateway - Sandbox Authority
==================================
In-process stand-in for the authority gateway, served through
httpx.MockTransport. It acknowledges every well-formed submission with a
zipped CDR (ResponseCode 0) and answers getStatus for what it has seen.

Tests and the smoke script can script the next replies:

    sandbox = SandboxAuthority()
    sandbox.fail_next(2)                    # two retryable faults
    sandbox.reject_next("2800", "Invalid recipient")
    client = GatewayClient("https://sandbox.invalid", creds, transport=sandbox.transport())
"""

from __future__ import annotations

import itertools
import logging
import threading
import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass
from typing import Optional

import httpx

from fiscal.documents.canonical import CAC_NS, CBC_NS
from fiscal.gateway.envelope import SERVICE_NS, SOAP_NS
from fiscal.gateway.packaging import (
    build_archive,
    decode_archive,
    encode_archive,
    read_archive,
)

logger = logging.getLogger("fiscal.gateway")

APPLICATION_RESPONSE_NS = "urn:oasis:names:specification:ubl:schema:xsd:ApplicationResponse-2"


@dataclass(frozen=True)
class _ScriptedReply:
    kind: str  # "fault" | "reject" | "timeout" | "http_error"
    code: str = ""
    message: str = ""


def build_cdr(file_stem: str, response_code: str, description: str, cdr_id: str) -> bytes:
    """Zipped ApplicationResponse as the authority returns it."""
    root = ET.Element(f"{{{APPLICATION_RESPONSE_NS}}}ApplicationResponse")
    ET.SubElement(root, f"{{{CBC_NS}}}ID").text = cdr_id
    document_response = ET.SubElement(root, f"{{{CAC_NS}}}DocumentResponse")
    response = ET.SubElement(document_response, f"{{{CAC_NS}}}Response")
    ET.SubElement(response, f"{{{CBC_NS}}}ReferenceID").text = file_stem
    ET.SubElement(response, f"{{{CBC_NS}}}ResponseCode").text = response_code
    ET.SubElement(response, f"{{{CBC_NS}}}Description").text = description
    payload = ET.tostring(root, encoding="utf-8", xml_declaration=True)
    return build_archive(f"R-{file_stem}.xml", payload)


def _envelope(body_child: ET.Element) -> bytes:
    envelope = ET.Element(f"{{{SOAP_NS}}}Envelope")
    body = ET.SubElement(envelope, f"{{{SOAP_NS}}}Body")
    body.append(body_child)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def fault_envelope(code: str, message: str) -> bytes:
    fault = ET.Element(f"{{{SOAP_NS}}}Fault")
    ET.SubElement(fault, "faultcode").text = f"soap-env:Client.{code}"
    ET.SubElement(fault, "faultstring").text = message
    return _envelope(fault)


def _child_text(element: ET.Element, name: str) -> str:
    child = element.find(name)
    return (child.text or "").strip() if child is not None else ""


class SandboxAuthority:
    """Thread-safe scripted gateway simulator."""

    def __init__(self, *, cdr_prefix: str = "SANDBOX"):
        self._lock = threading.Lock()
        self._script: deque[_ScriptedReply] = deque()
        self._verdicts: dict[str, tuple[str, str, bytes]] = {}
        self._sequence = itertools.count(1)
        self._cdr_prefix = cdr_prefix
        self.received: list[str] = []

    # ── scripting ────────────────────────────────────────────

    def fail_next(self, times: int = 1, *, code: str = "0130", message: str = "Service unavailable") -> None:
        with self._lock:
            self._script.extend(_ScriptedReply("fault", code, message) for _ in range(times))

    def timeout_next(self, times: int = 1) -> None:
        with self._lock:
            self._script.extend(_ScriptedReply("timeout") for _ in range(times))

    def http_error_next(self, times: int = 1, *, status: int = 503) -> None:
        with self._lock:
            self._script.extend(_ScriptedReply("http_error", str(status)) for _ in range(times))

    def reject_next(self, code: str = "2800", message: str = "Document rejected") -> None:
        with self._lock:
            self._script.append(_ScriptedReply("reject", code, message))

    def forget(self, file_stem: str) -> None:
        """Drop a verdict, as if the submission never arrived."""
        with self._lock:
            self._verdicts.pop(file_stem, None)

    def submissions_of(self, file_stem: str) -> int:
        with self._lock:
            return sum(1 for name in self.received if name == f"{file_stem}.zip")

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ── request handling ─────────────────────────────────────

    def handle(self, request: httpx.Request) -> httpx.Response:
        try:
            envelope = ET.fromstring(request.content)
        except ET.ParseError:
            return httpx.Response(400, content=fault_envelope("0306", "Malformed request"))
        body = envelope.find(f"{{{SOAP_NS}}}Body")
        operation = body[0] if body is not None and len(body) else None
        if operation is None:
            return httpx.Response(400, content=fault_envelope("0306", "Empty SOAP body"))
        if operation.tag == f"{{{SERVICE_NS}}}sendBill":
            return self._send_bill(request, operation)
        if operation.tag == f"{{{SERVICE_NS}}}getStatus":
            return self._get_status(operation)
        return httpx.Response(500, content=fault_envelope("0200", f"Unknown operation {operation.tag}"))

    def _next_scripted(self) -> Optional[_ScriptedReply]:
        with self._lock:
            return self._script.popleft() if self._script else None

    def _send_bill(self, request: httpx.Request, operation: ET.Element) -> httpx.Response:
        file_name = _child_text(operation, "fileName")
        with self._lock:
            self.received.append(file_name)

        scripted = self._next_scripted()
        if scripted is not None and scripted.kind == "timeout":
            raise httpx.ReadTimeout("Sandbox timeout", request=request)
        if scripted is not None and scripted.kind == "http_error":
            return httpx.Response(int(scripted.code), content=b"Service Unavailable")
        if scripted is not None and scripted.kind == "fault":
            return httpx.Response(500, content=fault_envelope(scripted.code, scripted.message))

        file_stem = file_name[:-4] if file_name.endswith(".zip") else file_name
        try:
            entries = read_archive(decode_archive(_child_text(operation, "contentFile")))
            ET.fromstring(entries[f"{file_stem}.xml"])
        except (ValueError, KeyError, ET.ParseError):
            return httpx.Response(500, content=fault_envelope("0155", "Archive content is invalid"))

        if scripted is not None and scripted.kind == "reject":
            with self._lock:
                self._verdicts[file_stem] = ("0002", scripted.message, b"")
            return httpx.Response(500, content=fault_envelope(scripted.code, scripted.message))

        cdr_id = f"{self._cdr_prefix}-{next(self._sequence):08d}"
        cdr = build_cdr(file_stem, "0", f"Document {file_stem} accepted", cdr_id)
        with self._lock:
            self._verdicts[file_stem] = ("0001", "Document accepted", cdr)
        logger.debug(f"Sandbox accepted {file_stem} as {cdr_id}")

        response = ET.Element(f"{{{SERVICE_NS}}}sendBillResponse")
        ET.SubElement(response, "applicationResponse").text = encode_archive(cdr)
        return httpx.Response(200, content=_envelope(response))

    def _get_status(self, operation: ET.Element) -> httpx.Response:
        file_stem = "-".join(
            _child_text(operation, name)
            for name in ("rucComprobante", "tipoComprobante", "serieComprobante", "numeroComprobante")
        )
        with self._lock:
            verdict = self._verdicts.get(file_stem)
        response = ET.Element(f"{{{SERVICE_NS}}}getStatusResponse")
        status = ET.SubElement(response, "status")
        if verdict is None:
            ET.SubElement(status, "statusCode").text = "0011"
            ET.SubElement(status, "statusMessage").text = "Document not found"
        else:
            status_code, message, cdr = verdict
            ET.SubElement(status, "statusCode").text = status_code
            ET.SubElement(status, "statusMessage").text = message
            if cdr:
                ET.SubElement(status, "content").text = encode_archive(cdr)
        return httpx.Response(200, content=_envelope(response))
