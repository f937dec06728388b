"""
Fiscal Gateway - Archive Packaging
==================================
The authority receives each signed payload inside a ZIP archive.

Archive layout:
    {issuerTaxId}-{documentTypeCode}-{series}-{number}.zip
      └── {issuerTaxId}-{documentTypeCode}-{series}-{number}.xml

Entries carry a fixed timestamp and permissions, so the same payload
always produces the same archive bytes.
"""

from __future__ import annotations

import base64
import binascii
import io
import zipfile
from dataclasses import dataclass

from fiscal.documents.models import DocumentType, FiscalDocument


ZIP_TIMESTAMP = (1980, 1, 1, 0, 0, 0)
ENTRY_PERMISSIONS = 0o644 << 16


@dataclass(frozen=True)
class SubmissionMeta:
    """What the gateway needs to know about a payload besides its bytes."""

    issuer_tax_id: str
    document_type: DocumentType
    series: str
    number: int

    @classmethod
    def from_document(cls, document: FiscalDocument) -> "SubmissionMeta":
        return cls(
            issuer_tax_id=document.issuer_tax_id,
            document_type=document.document_type,
            series=document.series,
            number=document.number,
        )

    @property
    def file_stem(self) -> str:
        return (
            f"{self.issuer_tax_id}-{self.document_type.authority_code}-"
            f"{self.series}-{self.number}"
        )

    @property
    def archive_name(self) -> str:
        return f"{self.file_stem}.zip"

    @property
    def entry_name(self) -> str:
        return f"{self.file_stem}.xml"


def build_archive(entry_name: str, payload: bytes) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        info = zipfile.ZipInfo(entry_name, date_time=ZIP_TIMESTAMP)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = ENTRY_PERMISSIONS
        archive.writestr(info, payload)
    return buffer.getvalue()


def read_archive(data: bytes) -> dict[str, bytes]:
    """Return {entry name: bytes}. Raises ValueError on a corrupt archive."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            return {name: archive.read(name) for name in archive.namelist()}
    except zipfile.BadZipFile as exc:
        raise ValueError(f"Not a ZIP archive: {exc}") from exc


def encode_archive(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_archive(text: str) -> bytes:
    try:
        return base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Archive content is not valid base64: {exc}") from exc


def package_payload(signed_payload: bytes, meta: SubmissionMeta) -> tuple[str, str]:
    """Return (archive file name, base64 archive) for a sendBill call."""
    archive = build_archive(meta.entry_name, signed_payload)
    return meta.archive_name, encode_archive(archive)
