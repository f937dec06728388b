"""
Fiscal Gateway - SOAP Envelopes
===============================
SOAP 1.1 request bodies for the two operations the pipeline uses:

    sendBill(fileName, contentFile)
    getStatus(rucComprobante, tipoComprobante, serieComprobante, numeroComprobante)

Every request carries a WS-Security UsernameToken header.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SERVICE_NS = "http://service.sunat.gob.pe"
WSSE_NS = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-wssecurity-secext-1.0.xsd"
)
PASSWORD_TEXT_TYPE = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-username-token-profile-1.0#PasswordText"
)

ET.register_namespace("soapenv", SOAP_NS)
ET.register_namespace("ser", SERVICE_NS)
ET.register_namespace("wsse", WSSE_NS)


@dataclass(frozen=True)
class GatewayCredentials:
    username: str
    password: str = field(repr=False)


def _envelope(credentials: GatewayCredentials) -> tuple[ET.Element, ET.Element]:
    envelope = ET.Element(f"{{{SOAP_NS}}}Envelope")
    header = ET.SubElement(envelope, f"{{{SOAP_NS}}}Header")
    security = ET.SubElement(header, f"{{{WSSE_NS}}}Security")
    token = ET.SubElement(security, f"{{{WSSE_NS}}}UsernameToken")
    ET.SubElement(token, f"{{{WSSE_NS}}}Username").text = credentials.username
    password = ET.SubElement(token, f"{{{WSSE_NS}}}Password", {"Type": PASSWORD_TEXT_TYPE})
    password.text = credentials.password
    body = ET.SubElement(envelope, f"{{{SOAP_NS}}}Body")
    return envelope, body


def _child(parent: ET.Element, name: str, text: str) -> None:
    # Operation parameters are unqualified, as the service WSDL declares them.
    ET.SubElement(parent, name).text = text


def build_send_bill(credentials: GatewayCredentials, file_name: str, content_b64: str) -> bytes:
    envelope, body = _envelope(credentials)
    operation = ET.SubElement(body, f"{{{SERVICE_NS}}}sendBill")
    _child(operation, "fileName", file_name)
    _child(operation, "contentFile", content_b64)
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def build_get_status(
    credentials: GatewayCredentials,
    issuer_tax_id: str,
    type_code: str,
    series: str,
    number: int,
) -> bytes:
    envelope, body = _envelope(credentials)
    operation = ET.SubElement(body, f"{{{SERVICE_NS}}}getStatus")
    _child(operation, "rucComprobante", issuer_tax_id)
    _child(operation, "tipoComprobante", type_code)
    _child(operation, "serieComprobante", series)
    _child(operation, "numeroComprobante", str(number))
    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)
