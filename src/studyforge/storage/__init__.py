"""
Storage subsystem for studyforge document rows.
"""

from .documents import (
    DocumentStore,
    LocalDocumentStore,
    MemoryDocumentStore,
    create_document_store,
)

__all__ = [
    "DocumentStore",
    "MemoryDocumentStore",
    "LocalDocumentStore",
    "create_document_store",
]
