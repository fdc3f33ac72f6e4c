"""
Document persistence with pluggable backends.

Every backend serialises read-modify-write per document: ``update`` holds a
per-document ``asyncio.Lock`` across the read, the mutator and the write, so a
mutator that inspects the current row and raises to abort is a
compare-and-set.
"""

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from ..core.errors import DocumentNotFoundError
from ..core.models import Document
from ..observability.logging import get_logger

log = get_logger("studyforge.storage")

Mutator = Callable[[Document], Document]


class DocumentStore(ABC):
    """Abstract interface for document rows."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        return lock

    @abstractmethod
    def _read(self, document_id: str) -> Document | None:
        """Load a row, or None when absent."""

    @abstractmethod
    def _write(self, document: Document) -> None:
        """Persist a row, replacing any previous version."""

    @abstractmethod
    def _remove(self, document_id: str) -> bool:
        """Drop a row. Returns False when it did not exist."""

    @abstractmethod
    def list_ids(self) -> list[str]:
        """All stored document ids."""

    async def get(self, document_id: str) -> Document | None:
        return self._read(document_id)

    async def require(self, document_id: str) -> Document:
        document = await self.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def save(self, document: Document) -> Document:
        async with self._lock(document.id):
            self._write(document)
        log.debug("Saved document", document_id=document.id)
        return document

    async def update(self, document_id: str, mutator: Mutator) -> Document:
        """Atomically apply ``mutator`` to the current row and persist its result."""
        async with self._lock(document_id):
            current = self._read(document_id)
            if current is None:
                raise DocumentNotFoundError(document_id)
            updated = mutator(current)
            if updated is not current:
                self._write(updated)
            return updated

    async def delete(self, document_id: str) -> bool:
        async with self._lock(document_id):
            removed = self._remove(document_id)
        self._locks.pop(document_id, None)
        if removed:
            log.debug("Deleted document", document_id=document_id)
        return removed


class MemoryDocumentStore(DocumentStore):
    """Process-local store; rows are deep-copied in and out."""

    def __init__(self):
        super().__init__()
        self._rows: dict[str, Document] = {}

    def _read(self, document_id: str) -> Document | None:
        row = self._rows.get(document_id)
        return row.model_copy(deep=True) if row is not None else None

    def _write(self, document: Document) -> None:
        self._rows[document.id] = document.model_copy(deep=True)

    def _remove(self, document_id: str) -> bool:
        return self._rows.pop(document_id, None) is not None

    def list_ids(self) -> list[str]:
        return sorted(self._rows)


class LocalDocumentStore(DocumentStore):
    """One JSON file per document under ``root``; survives process restarts."""

    def __init__(self, root: Path):
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        log.info("Local document store initialized", root=str(self.root))

    def _path(self, document_id: str) -> Path:
        if not document_id or "/" in document_id or document_id.startswith("."):
            raise ValueError(f"Invalid document id: {document_id!r}")
        return self.root / f"{document_id}.json"

    def _read(self, document_id: str) -> Document | None:
        path = self._path(document_id)
        if not path.exists():
            return None
        return Document.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, document: Document) -> None:
        path = self._path(document.id)
        # Write to a sibling temp file then rename so readers never see a torn row
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(document.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _remove(self, document_id: str) -> bool:
        path = self._path(document_id)
        if path.exists():
            path.unlink()
            return True
        return False

    def list_ids(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.json") if not p.name.startswith("."))


def create_document_store(backend: str = "memory", root: Path | None = None) -> DocumentStore:
    """Build the configured store backend."""
    if backend == "local":
        return LocalDocumentStore(root or Path("./data/documents"))
    return MemoryDocumentStore()
