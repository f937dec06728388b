"""
Fiscal Storage - Public API
===========================
The Django adapter is imported from fiscal.storage.django_store directly,
so the in-memory store stays usable without configured Django settings.
"""

from fiscal.storage.memory import InMemoryRecordStore
from fiscal.storage.protocol import (
    RECORD_ATTEMPT,
    RECORD_DOCUMENT,
    UQ_ATTEMPT_NUMBER,
    UQ_DOCUMENT_NUMBER,
    UQ_DOCUMENT_RELATED,
    DuplicateRecordError,
    RecordStore,
    StorageError,
    UnknownRecordType,
)

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "DuplicateRecordError",
    "StorageError",
    "UnknownRecordType",
    "RECORD_ATTEMPT",
    "RECORD_DOCUMENT",
    "UQ_ATTEMPT_NUMBER",
    "UQ_DOCUMENT_NUMBER",
    "UQ_DOCUMENT_RELATED",
]
