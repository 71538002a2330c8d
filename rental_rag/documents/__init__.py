"""
Document normalizers for the indexed source tables.
One loader per source kind, plus a registry keyed by kind name.
"""

from rental_rag.documents.base import Join, RecordSelection, SourceKind, SourceRecord
from rental_rag.documents.loaders import (
    SOURCE_KINDS,
    customer_to_document,
    fine_to_document,
    get_source_kind,
    indexed_source_kinds,
    payment_to_document,
    plate_to_document,
    rental_to_document,
    vehicle_to_document,
)

__all__ = [
    "Join",
    "RecordSelection",
    "SourceKind",
    "SourceRecord",
    "SOURCE_KINDS",
    "get_source_kind",
    "indexed_source_kinds",
    "customer_to_document",
    "vehicle_to_document",
    "rental_to_document",
    "payment_to_document",
    "fine_to_document",
    "plate_to_document",
]
