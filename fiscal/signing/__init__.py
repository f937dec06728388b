"""
Fiscal Signing - Public API
===========================
"""

from fiscal.signing.hashing import compute_content_hash, verify_content_hash
from fiscal.signing.keys import (
    DemoKeyProvider,
    KeyMaterial,
    KeyMaterialProvider,
    Pkcs12KeyProvider,
    StaticKeyProvider,
    export_pkcs12,
    generate_self_signed,
)
from fiscal.signing.signer import DocumentSigner, SignedResult

__all__ = [
    "DemoKeyProvider",
    "DocumentSigner",
    "KeyMaterial",
    "KeyMaterialProvider",
    "Pkcs12KeyProvider",
    "SignedResult",
    "StaticKeyProvider",
    "compute_content_hash",
    "export_pkcs12",
    "generate_self_signed",
    "verify_content_hash",
]
