"""
Fiscal Signing - Enveloped XML Signature
========================================
Signs the canonical UBL payload and verifies signed payloads.

Signature layout (XML-DSig, placed in the first ext:ExtensionContent):
  SignedInfo
    CanonicalizationMethod  C14N 2.0
    SignatureMethod         RSA PKCS#1 v1.5 + SHA-256
    Reference URI=""        enveloped-signature transform, SHA-256 digest
  SignatureValue
  KeyInfo/X509Data/X509Certificate

Doctrine:
- Same canonical payload + same key -> same signed bytes. PKCS#1 v1.5 has
  no random padding and C14N pins the digested form.
- validate() never raises: any malformed or tampered payload is False.
- The signer holds no key material. The caller passes it per call.
"""

from __future__ import annotations

import base64
import binascii
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from fiscal.documents.canonical import EXT_NS, serialize_document
from fiscal.errors import SigningUnavailable, ValidationError
from fiscal.signing.hashing import compute_content_hash, digest_b64
from fiscal.signing.keys import KeyMaterial, ensure_usable

logger = logging.getLogger("fiscal.signing")


DS_NS = "http://www.w3.org/2000/09/xmldsig#"
C14N_ALGORITHM = "http://www.w3.org/2010/xml-c14n2"
SIGNATURE_ALGORITHM = "http://www.w3.org/2001/04/xmldsig-more#rsa-sha256"
DIGEST_ALGORITHM = "http://www.w3.org/2001/04/xmlenc#sha256"
ENVELOPED_TRANSFORM = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
SIGNATURE_ID = "FiscalSignature"

ET.register_namespace("ds", DS_NS)

_SIGNATURE_TAG = f"{{{DS_NS}}}Signature"
_EXTENSION_CONTENT_TAG = f"{{{EXT_NS}}}ExtensionContent"


@dataclass(frozen=True)
class SignedResult:
    signed_payload: bytes
    content_hash: str


def _ds(parent: Optional[ET.Element], name: str, **attrib: str) -> ET.Element:
    tag = f"{{{DS_NS}}}{name}"
    if parent is None:
        return ET.Element(tag, attrib)
    return ET.SubElement(parent, tag, attrib)


def _canonical_bytes(element: ET.Element) -> bytes:
    return ET.canonicalize(ET.tostring(element, encoding="unicode")).encode("utf-8")


def _parse(payload: bytes) -> ET.Element:
    return ET.fromstring(payload)


def _build_signed_info(digest_value: str) -> ET.Element:
    signed_info = _ds(None, "SignedInfo")
    _ds(signed_info, "CanonicalizationMethod", Algorithm=C14N_ALGORITHM)
    _ds(signed_info, "SignatureMethod", Algorithm=SIGNATURE_ALGORITHM)
    reference = _ds(signed_info, "Reference", URI="")
    transforms = _ds(reference, "Transforms")
    _ds(transforms, "Transform", Algorithm=ENVELOPED_TRANSFORM)
    _ds(reference, "DigestMethod", Algorithm=DIGEST_ALGORITHM)
    _ds(reference, "DigestValue").text = digest_value
    return signed_info


def _strip_signatures(root: ET.Element) -> int:
    removed = 0
    for parent in list(root.iter()):
        for child in list(parent):
            if child.tag == _SIGNATURE_TAG:
                parent.remove(child)
                removed += 1
    return removed


class DocumentSigner:
    """Stateless enveloped signer. Safe to share between threads."""

    def sign(self, canonical_payload: bytes, key_material: Optional[KeyMaterial]) -> SignedResult:
        """
        Sign a canonical payload.

        Raises:
            SigningUnavailable: key material missing or unusable.
            ValidationError:    payload is not a UBL document with a
                                signature slot.
        """
        material = ensure_usable(key_material)
        try:
            root = _parse(canonical_payload)
        except ET.ParseError as exc:
            raise ValidationError(f"Canonical payload is not well-formed XML: {exc}")
        if root.find(f".//{_SIGNATURE_TAG}") is not None:
            raise ValidationError("Canonical payload is already signed.")
        slot = root.find(f".//{_EXTENSION_CONTENT_TAG}")
        if slot is None:
            raise ValidationError("Canonical payload has no signature slot.")

        digest_value = digest_b64(_canonical_bytes(root))
        signed_info = _build_signed_info(digest_value)
        try:
            signature_bytes = material.private_key.sign(
                _canonical_bytes(signed_info),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except ValueError as exc:
            raise SigningUnavailable(f"Signing key rejected the payload: {exc}")

        signature = _ds(slot, "Signature", Id=SIGNATURE_ID)
        signature.append(signed_info)
        _ds(signature, "SignatureValue").text = base64.b64encode(signature_bytes).decode("ascii")
        x509_data = _ds(_ds(signature, "KeyInfo"), "X509Data")
        _ds(x509_data, "X509Certificate").text = base64.b64encode(
            material.certificate_der
        ).decode("ascii")

        signed_payload = serialize_document(root)
        return SignedResult(
            signed_payload=signed_payload,
            content_hash=compute_content_hash(signed_payload),
        )

    def validate(self, signed_payload: Optional[bytes]) -> bool:
        """Re-verify the embedded digest and signature. Never raises."""
        if not signed_payload or not isinstance(signed_payload, (bytes, bytearray)):
            return False
        try:
            root = _parse(bytes(signed_payload))
        except ET.ParseError:
            logger.warning("Signed payload is not well-formed XML")
            return False

        signatures = root.findall(f".//{_SIGNATURE_TAG}")
        if len(signatures) != 1:
            return False
        signature = signatures[0]
        signed_info = signature.find(f"{{{DS_NS}}}SignedInfo")
        digest_element = signature.find(f".//{{{DS_NS}}}DigestValue")
        value_element = signature.find(f"{{{DS_NS}}}SignatureValue")
        cert_element = signature.find(f".//{{{DS_NS}}}X509Certificate")
        if None in (signed_info, digest_element, value_element, cert_element):
            return False

        try:
            certificate = x509.load_der_x509_certificate(
                base64.b64decode(cert_element.text or "", validate=True)
            )
            signature_bytes = base64.b64decode(value_element.text or "", validate=True)
        except (ValueError, binascii.Error):
            return False
        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            return False

        # SignedInfo must be canonicalized while it is still in the tree.
        signed_info_bytes = _canonical_bytes(signed_info)
        _strip_signatures(root)
        if digest_b64(_canonical_bytes(root)) != (digest_element.text or ""):
            logger.warning("Signed payload digest mismatch")
            return False

        try:
            public_key.verify(
                signature_bytes,
                signed_info_bytes,
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except InvalidSignature:
            logger.warning("Signed payload signature does not verify")
            return False
        return True
