"""Document storage and numbering.

A :class:`DocumentRepository` holds the documents of one kind in insertion
order. Numbers are derived from the stored documents on demand rather than
from a persisted counter.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Dict, Iterable, Iterator, List, Optional

from . import log
from .constants import DocumentKind
from .errors import BusinessRuleViolation, DuplicateDocumentError, MissingReferenceError
from .models import Document


_LEADING_DIGITS = re.compile(r"\s*(\d+)")


class DocumentRepository:
    """Ordered collection of documents of a single kind keyed by id."""

    def __init__(self, kind: DocumentKind, documents: Iterable[Document] = ()) -> None:
        self.kind = kind
        self._documents: Dict[str, Document] = {}
        for document in documents:
            self.insert(document)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    def __iter__(self) -> Iterator[Document]:
        return iter(list(self._documents.values()))

    def __len__(self) -> int:
        return len(self._documents)

    def _require_kind(self, document: Document) -> None:
        if document.kind is not self.kind:
            log.error(
                "Document '%s' is a %s, repository holds %s documents",
                document.document_id,
                document.kind.value,
                self.kind.value,
            )
            raise BusinessRuleViolation(
                f"Cannot store a {document.kind.value} document among {self.kind.value} documents"
            )

    def get(self, document_id: str) -> Optional[Document]:
        return self._documents.get(document_id)

    def documents(self) -> List[Document]:
        return list(self._documents.values())

    def insert(self, document: Document) -> Document:
        """Append a document whose id is not stored yet.

        Raises:
            DuplicateDocumentError: If the id is already in use.
            BusinessRuleViolation: If the document has the wrong kind.
        """

        self._require_kind(document)
        if document.document_id in self._documents:
            raise DuplicateDocumentError(f"Document id already exists: {document.document_id}")
        self._documents[document.document_id] = document
        return document

    def replace(self, document_id: str, document: Document) -> Document:
        """Replace a stored document in place, keeping its position.

        Raises:
            MissingReferenceError: If ``document_id`` is not stored.
            BusinessRuleViolation: If the document has the wrong kind or a
                different id.
        """

        self._require_kind(document)
        if document_id not in self._documents:
            raise MissingReferenceError(f"Unknown document id: {document_id}")
        if document.document_id != document_id:
            raise BusinessRuleViolation(
                f"Replacement id '{document.document_id}' does not match '{document_id}'"
            )
        self._documents[document_id] = document
        return document

    def remove(self, document_id: str) -> Document:
        """Remove and return a stored document.

        Raises:
            MissingReferenceError: If ``document_id`` is not stored.
        """

        try:
            return self._documents.pop(document_id)
        except KeyError as exc:
            raise MissingReferenceError(f"Unknown document id: {document_id}") from exc

    def search(self, term: str = "") -> List[Document]:
        """Documents whose number or party name contains ``term``, ignoring case."""

        needle = (term or "").strip().lower()
        if not needle:
            return self.documents()
        return [
            document
            for document in self._documents.values()
            if needle in document.document_number.lower() or needle in document.party_name.lower()
        ]


def _parse_suffix(suffix: str) -> int:
    match = _LEADING_DIGITS.match(suffix)
    return int(match.group(1)) if match else 0


def next_document_number(existing: Iterable[Document], prefix: str) -> str:
    """Derive the next sequential number for ``prefix``.

    Scans the numbers of ``existing`` that start with ``prefix + "-"``,
    takes the highest numeric suffix (unparsable suffixes count as zero) and
    adds one. The result is zero-padded to three digits, e.g. ``PO-004``.

    Because the value is recomputed from what is stored, deleting the
    highest-numbered document frees its number for reuse.
    """

    marker = f"{prefix}-"
    highest = 0
    for document in existing:
        number = document.document_number or ""
        if number.startswith(marker):
            highest = max(highest, _parse_suffix(number[len(marker):]))
    return f"{prefix}-{highest + 1:03d}"


def generate_document_id(*, prefix: str = "D", when: Optional[datetime] = None) -> str:
    """Generate a sortable document identifier from a UTC timestamp.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """

    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


__all__ = [
    "DocumentRepository",
    "next_document_number",
    "generate_document_id",
]
