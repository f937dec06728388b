"""
Fiscal Gateway - Response Parsing
=================================
Turns gateway replies into a closed GatewayResult variant.

Classification (authority codes):
    SOAP fault code 2000-3999        -> REJECTED
    any other SOAP fault code        -> FAULT (retryable)
    CDR ResponseCode 0               -> ACCEPTED
    CDR ResponseCode >= 4000         -> ACCEPTED with observations
    CDR ResponseCode 2000-3999       -> REJECTED
    CDR ResponseCode 100-1999        -> FAULT
    getStatus statusCode 0001        -> ACCEPTED
    getStatus statusCode 0002 / 0003 -> REJECTED
    any other statusCode             -> FAULT (not found / not ready)

Parsing walks the XML tree. A reply that cannot be walked raises
ResponseParseError, which the client turns into a FAULT.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from fiscal.documents.canonical import CAC_NS, CBC_NS
from fiscal.gateway.envelope import SOAP_NS
from fiscal.gateway.packaging import decode_archive, read_archive


class GatewayOutcome(Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    FAULT = "FAULT"


@dataclass(frozen=True)
class GatewayResult:
    outcome: GatewayOutcome
    authority_code: Optional[str] = None
    authority_message: Optional[str] = None
    reference_id: Optional[str] = None
    timed_out: bool = False
    acknowledgment: Optional[bytes] = field(default=None, repr=False)

    @property
    def accepted(self) -> bool:
        return self.outcome is GatewayOutcome.ACCEPTED

    @property
    def rejected(self) -> bool:
        return self.outcome is GatewayOutcome.REJECTED

    @property
    def retryable(self) -> bool:
        return self.outcome is GatewayOutcome.FAULT

    @classmethod
    def fault(
        cls,
        message: str,
        *,
        code: Optional[str] = None,
        timed_out: bool = False,
    ) -> "GatewayResult":
        return cls(
            outcome=GatewayOutcome.FAULT,
            authority_code=code,
            authority_message=message,
            timed_out=timed_out,
        )

    def describe(self) -> str:
        if self.authority_code:
            return f"{self.authority_code}: {self.authority_message or ''}".strip()
        return self.authority_message or self.outcome.value


class ResponseParseError(Exception):
    """The gateway reply is not a document this parser understands."""


REJECTION_RANGE = range(2000, 4000)
OBSERVATION_THRESHOLD = 4000

ACCEPTED_STATUS_CODES = frozenset({"0001"})
REJECTED_STATUS_CODES = frozenset({"0002", "0003"})

_FAULT_CODE = re.compile(r"(\d+)$")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_local(element: ET.Element, name: str) -> Optional[ET.Element]:
    for candidate in element.iter():
        if _local_name(candidate.tag) == name:
            return candidate
    return None


def _text(element: Optional[ET.Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    return element.text.strip() or None


def classify_fault_code(code: Optional[int]) -> GatewayOutcome:
    if code is not None and code in REJECTION_RANGE:
        return GatewayOutcome.REJECTED
    return GatewayOutcome.FAULT


def classify_response_code(code: int) -> GatewayOutcome:
    if code == 0 or code >= OBSERVATION_THRESHOLD:
        return GatewayOutcome.ACCEPTED
    if code in REJECTION_RANGE:
        return GatewayOutcome.REJECTED
    return GatewayOutcome.FAULT


def parse_fault(fault: ET.Element) -> GatewayResult:
    raw_code = _text(fault.find("faultcode")) or _text(_find_local(fault, "faultcode")) or ""
    message = _text(fault.find("faultstring")) or _text(_find_local(fault, "faultstring"))
    match = _FAULT_CODE.search(raw_code)
    numeric = int(match.group(1)) if match else None
    code = match.group(1) if match else (raw_code or None)
    return GatewayResult(
        outcome=classify_fault_code(numeric),
        authority_code=code,
        authority_message=message or "Gateway fault",
    )


def parse_cdr(archive: bytes) -> GatewayResult:
    """
    Read ResponseCode / Description / ID from a zipped acknowledgment.

    The archive itself travels on the result as `acknowledgment`; it is the
    legal proof of filing and is stored with the document.
    """
    try:
        entries = read_archive(archive)
    except ValueError as exc:
        raise ResponseParseError(str(exc)) from exc
    xml_entries = [name for name in sorted(entries) if name.lower().endswith(".xml")]
    if not xml_entries:
        raise ResponseParseError("Acknowledgment archive holds no XML entry.")
    try:
        root = ET.fromstring(entries[xml_entries[0]])
    except ET.ParseError as exc:
        raise ResponseParseError(f"Acknowledgment is not well-formed: {exc}") from exc

    response = root.find(f".//{{{CAC_NS}}}DocumentResponse/{{{CAC_NS}}}Response")
    if response is None:
        raise ResponseParseError("Acknowledgment has no DocumentResponse.")
    raw_code = _text(response.find(f"{{{CBC_NS}}}ResponseCode"))
    if raw_code is None or not raw_code.isdigit():
        raise ResponseParseError(f"Acknowledgment ResponseCode is not numeric: {raw_code!r}")
    code = int(raw_code)
    reference_id = _text(root.find(f"{{{CBC_NS}}}ID")) or _text(
        response.find(f"{{{CBC_NS}}}ReferenceID")
    )
    return GatewayResult(
        outcome=classify_response_code(code),
        authority_code=raw_code,
        authority_message=_text(response.find(f"{{{CBC_NS}}}Description")),
        reference_id=reference_id,
        acknowledgment=archive,
    )


def _soap_body(body: bytes) -> ET.Element:
    try:
        envelope = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ResponseParseError(f"Reply is not XML: {exc}") from exc
    if envelope.tag != f"{{{SOAP_NS}}}Envelope":
        raise ResponseParseError(f"Reply root is {envelope.tag}, not a SOAP envelope.")
    soap_body = envelope.find(f"{{{SOAP_NS}}}Body")
    if soap_body is None:
        raise ResponseParseError("SOAP envelope has no Body.")
    return soap_body


def find_fault(body: bytes) -> Optional[GatewayResult]:
    """Return the parsed fault, or None when the reply carries no SOAP fault."""
    fault = _soap_body(body).find(f"{{{SOAP_NS}}}Fault")
    return parse_fault(fault) if fault is not None else None


def parse_send_bill_response(body: bytes) -> GatewayResult:
    soap_body = _soap_body(body)
    fault = soap_body.find(f"{{{SOAP_NS}}}Fault")
    if fault is not None:
        return parse_fault(fault)
    response = _find_local(soap_body, "sendBillResponse")
    if response is None:
        raise ResponseParseError("Reply has no sendBillResponse.")
    content = _text(_find_local(response, "applicationResponse"))
    if content is None:
        raise ResponseParseError("sendBillResponse has no applicationResponse.")
    try:
        archive = decode_archive(content)
    except ValueError as exc:
        raise ResponseParseError(str(exc)) from exc
    return parse_cdr(archive)


def parse_get_status_response(body: bytes) -> GatewayResult:
    soap_body = _soap_body(body)
    fault = soap_body.find(f"{{{SOAP_NS}}}Fault")
    if fault is not None:
        return parse_fault(fault)
    response = _find_local(soap_body, "getStatusResponse")
    if response is None:
        raise ResponseParseError("Reply has no getStatusResponse.")
    status = _find_local(response, "status")
    if status is None:
        raise ResponseParseError("getStatusResponse has no status.")
    status_code = _text(_find_local(status, "statusCode"))
    status_message = _text(_find_local(status, "statusMessage"))

    if status_code in ACCEPTED_STATUS_CODES:
        outcome = GatewayOutcome.ACCEPTED
    elif status_code in REJECTED_STATUS_CODES:
        outcome = GatewayOutcome.REJECTED
    else:
        outcome = GatewayOutcome.FAULT

    reference_id = None
    acknowledgment = None
    content = _text(_find_local(status, "content"))
    if content is not None:
        try:
            cdr = parse_cdr(decode_archive(content))
            reference_id, acknowledgment = cdr.reference_id, cdr.acknowledgment
        except (ResponseParseError, ValueError) as exc:
            raise ResponseParseError(f"Status acknowledgment unreadable: {exc}") from exc

    if status_message is None and outcome is GatewayOutcome.FAULT:
        status_message = "Document not found"
    return GatewayResult(
        outcome=outcome,
        authority_code=status_code,
        authority_message=status_message,
        reference_id=reference_id,
        acknowledgment=acknowledgment,
    )
