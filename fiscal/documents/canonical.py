"""
Fiscal Documents - Canonical UBL Payload
========================================
Builds the UBL 2.1 XML the signer signs and the gateway transmits.

Same document fields -> same bytes. The issue date comes from created_at,
never from the wall clock, and the signature slot
(ext:UBLExtensions/ext:UBLExtension/ext:ExtensionContent) is always present
and empty.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Optional

from fiscal.documents.models import (
    DocumentType,
    FiscalDocument,
    TransportMode,
    money_text,
)


CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
EXT_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"

ET.register_namespace("cac", CAC_NS)
ET.register_namespace("cbc", CBC_NS)
ET.register_namespace("ext", EXT_NS)

_ROOTS = {
    DocumentType.INVOICE: (
        "Invoice",
        "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2",
    ),
    DocumentType.CREDIT_NOTE: (
        "CreditNote",
        "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2",
    ),
    DocumentType.DEBIT_NOTE: (
        "DebitNote",
        "urn:oasis:names:specification:ubl:schema:xsd:DebitNote-2",
    ),
    DocumentType.WAYBILL: (
        "DespatchAdvice",
        "urn:oasis:names:specification:ubl:schema:xsd:DespatchAdvice-2",
    ),
}

_LINE_TAGS = {
    DocumentType.INVOICE: ("InvoiceLine", "InvoicedQuantity", "LegalMonetaryTotal"),
    DocumentType.CREDIT_NOTE: ("CreditNoteLine", "CreditedQuantity", "LegalMonetaryTotal"),
    DocumentType.DEBIT_NOTE: ("DebitNoteLine", "DebitedQuantity", "RequestedMonetaryTotal"),
}

_TRANSPORT_MODE_CODES = {
    TransportMode.PUBLIC: "01",
    TransportMode.PRIVATE: "02",
}

TAX_ID_SCHEME = "6"


def _cbc(parent: ET.Element, name: str, text: Optional[str] = None, **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, f"{{{CBC_NS}}}{name}", attrib)
    if text is not None:
        element.text = text
    return element


def _cac(parent: ET.Element, name: str) -> ET.Element:
    return ET.SubElement(parent, f"{{{CAC_NS}}}{name}")


def root_namespace(document_type: DocumentType) -> str:
    return _ROOTS[document_type][1]


def _party(parent: ET.Element, role: str, tax_id: str, name: Optional[str]) -> None:
    party = _cac(_cac(parent, role), "Party")
    identification = _cac(party, "PartyIdentification")
    _cbc(identification, "ID", tax_id, schemeID=TAX_ID_SCHEME)
    if name:
        legal = _cac(party, "PartyLegalEntity")
        _cbc(legal, "RegistrationName", name)


def _header(root: ET.Element, document: FiscalDocument) -> None:
    extensions = ET.SubElement(root, f"{{{EXT_NS}}}UBLExtensions")
    extension = ET.SubElement(extensions, f"{{{EXT_NS}}}UBLExtension")
    ET.SubElement(extension, f"{{{EXT_NS}}}ExtensionContent")
    _cbc(root, "UBLVersionID", "2.1")
    _cbc(root, "CustomizationID", "2.0")
    _cbc(root, "ID", document.full_number)
    _cbc(root, "IssueDate", document.created_at.date().isoformat())


def _build_sales_document(root: ET.Element, document: FiscalDocument) -> None:
    line_tag, quantity_tag, total_tag = _LINE_TAGS[document.document_type]
    currency = document.currency
    if document.document_type is DocumentType.INVOICE:
        _cbc(root, "InvoiceTypeCode", document.document_type.authority_code)
    _cbc(root, "DocumentCurrencyCode", currency)

    _party(root, "AccountingSupplierParty", document.issuer_tax_id, None)
    _party(root, "AccountingCustomerParty", document.recipient_tax_id, document.recipient_name)

    tax_total = _cac(root, "TaxTotal")
    _cbc(tax_total, "TaxAmount", money_text(document.totals.tax), currencyID=currency)
    subtotal = _cac(tax_total, "TaxSubtotal")
    _cbc(subtotal, "TaxableAmount", money_text(document.totals.taxable_base), currencyID=currency)
    _cbc(subtotal, "TaxAmount", money_text(document.totals.tax), currencyID=currency)

    monetary = _cac(root, total_tag)
    _cbc(monetary, "LineExtensionAmount", money_text(document.totals.taxable_base), currencyID=currency)
    _cbc(monetary, "PayableAmount", money_text(document.totals.grand_total), currencyID=currency)

    for index, item in enumerate(document.line_items, start=1):
        line = _cac(root, line_tag)
        _cbc(line, "ID", str(index))
        _cbc(line, quantity_tag, str(item.quantity), unitCode=item.unit_code)
        _cbc(line, "LineExtensionAmount", money_text(item.line_total), currencyID=currency)
        product = _cac(line, "Item")
        _cbc(product, "Description", item.description)
        if item.code:
            _cbc(_cac(product, "SellersItemIdentification"), "ID", item.code)
        _cbc(_cac(line, "Price"), "PriceAmount", money_text(item.unit_price), currencyID=currency)


def _build_waybill(
    root: ET.Element,
    document: FiscalDocument,
    related_number: Optional[str],
) -> None:
    _cbc(root, "DespatchAdviceTypeCode", document.document_type.authority_code)
    if related_number:
        reference = _cac(root, "AdditionalDocumentReference")
        _cbc(reference, "ID", related_number)
        _cbc(reference, "DocumentTypeCode", DocumentType.INVOICE.authority_code)

    _party(root, "DespatchSupplierParty", document.issuer_tax_id, None)
    _party(root, "DeliveryCustomerParty", document.recipient_tax_id, document.recipient_name)

    shipment = document.shipment
    element = _cac(root, "Shipment")
    _cbc(element, "ID", "1")
    if shipment is not None:
        _cbc(element, "HandlingCode", shipment.transfer_reason)
        _cbc(element, "GrossWeightMeasure", money_text(shipment.weight_kg), unitCode="KGM")
        stage = _cac(element, "ShipmentStage")
        _cbc(stage, "TransportModeCode", _TRANSPORT_MODE_CODES[shipment.transport_mode])
        _cbc(_cac(stage, "TransitPeriod"), "StartDate", shipment.transfer_date.isoformat())
        if shipment.destination:
            address = _cac(_cac(element, "Delivery"), "DeliveryAddress")
            _cbc(_cac(address, "AddressLine"), "Line", shipment.destination)

    for index, item in enumerate(document.line_items, start=1):
        line = _cac(root, "DespatchLine")
        _cbc(line, "ID", str(index))
        _cbc(line, "DeliveredQuantity", str(item.quantity), unitCode=item.unit_code)
        product = _cac(line, "Item")
        _cbc(product, "Description", item.description)
        if item.code:
            _cbc(_cac(product, "SellersItemIdentification"), "ID", item.code)


def build_canonical_payload(
    document: FiscalDocument,
    *,
    related_number: Optional[str] = None,
) -> bytes:
    """
    Render the unsigned UBL document.

    Args:
        document:       The document being signed.
        related_number: `series-number` of the invoice a waybill refers to.
    """
    tag, namespace = _ROOTS[document.document_type]
    root = ET.Element(f"{{{namespace}}}{tag}")
    _header(root, document)
    if document.document_type is DocumentType.WAYBILL:
        _build_waybill(root, document, related_number)
    else:
        _build_sales_document(root, document)
    return serialize_document(root)


def serialize_document(root: ET.Element) -> bytes:
    """
    Serialize a UBL tree with its root namespace as the default namespace.

    ElementTree cannot emit a default namespace next to unqualified
    attributes (schemeID, currencyID), so the root is written unqualified
    with an explicit xmlns attribute and restored afterwards.
    """
    original_tag = root.tag
    if not original_tag.startswith("{"):
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)
    namespace, local_name = original_tag[1:].split("}", 1)
    root.tag = local_name
    root.set("xmlns", namespace)
    try:
        return ET.tostring(root, encoding="utf-8", xml_declaration=True)
    finally:
        root.tag = original_tag
        del root.attrib["xmlns"]
