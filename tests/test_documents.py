"""Unit tests for document storage, numbering and id generation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from merch_erp.constants import DocumentKind
from merch_erp.documents import DocumentRepository, generate_document_id, next_document_number
from merch_erp.errors import BusinessRuleViolation, DuplicateDocumentError, MissingReferenceError

from conftest import make_document, make_line


@pytest.fixture
def repository():
    return DocumentRepository(
        DocumentKind.SALE,
        [
            make_document("D1", "SALE-001", party_name="Acme Contracting"),
            make_document("D2", "SALE-002", party_name="Nile Builders"),
            make_document("D3", "SALE-003", party_name="acme holdings"),
        ],
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


def test_repository_preserves_insertion_order(repository):
    assert [document.document_id for document in repository] == ["D1", "D2", "D3"]
    assert len(repository) == 3
    assert "D2" in repository


def test_insert_rejects_duplicate_id(repository):
    with pytest.raises(DuplicateDocumentError):
        repository.insert(make_document("D1", "SALE-009"))

    assert len(repository) == 3


def test_insert_rejects_other_kind(repository):
    purchase = make_document("D9", "PO-001", DocumentKind.PURCHASE)

    with pytest.raises(BusinessRuleViolation):
        repository.insert(purchase)


def test_replace_keeps_position(repository):
    edited = make_document("D2", "SALE-002", items=[make_line("P1", 1)], party_name="Nile Builders Ltd")

    repository.replace("D2", edited)

    assert [document.document_id for document in repository] == ["D1", "D2", "D3"]
    assert repository.get("D2").party_name == "Nile Builders Ltd"


def test_replace_requires_existing_id(repository):
    with pytest.raises(MissingReferenceError):
        repository.replace("D9", make_document("D9", "SALE-009"))


def test_replace_requires_matching_id(repository):
    with pytest.raises(BusinessRuleViolation):
        repository.replace("D1", make_document("D2", "SALE-002"))


def test_remove_returns_document(repository):
    removed = repository.remove("D1")

    assert removed.document_number == "SALE-001"
    assert "D1" not in repository


def test_remove_unknown_id_raises(repository):
    with pytest.raises(MissingReferenceError):
        repository.remove("missing")


@pytest.mark.parametrize(
    "term, expected",
    [
        ("", ["D1", "D2", "D3"]),
        ("ACME", ["D1", "D3"]),
        ("sale-002", ["D2"]),
        ("  nile ", ["D2"]),
        ("nobody", []),
    ],
)
def test_search_matches_number_or_party_ignoring_case(repository, term, expected):
    assert [document.document_id for document in repository.search(term)] == expected


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


def test_next_number_follows_highest_existing():
    existing = [
        make_document("A", "PO-001", DocumentKind.PURCHASE),
        make_document("B", "PO-003", DocumentKind.PURCHASE),
    ]

    assert next_document_number(existing, "PO") == "PO-004"


def test_next_number_starts_at_one():
    assert next_document_number([], "SALE") == "SALE-001"


def test_next_number_is_independent_of_order():
    documents = [make_document(str(index), f"SALE-{index:03d}") for index in (7, 2, 5)]

    assert next_document_number(documents, "SALE") == next_document_number(reversed(documents), "SALE") == "SALE-008"


def test_next_number_ignores_other_prefixes_and_unparsable_suffixes():
    documents = [
        make_document("A", "PO-050"),
        make_document("B", "SALE-draft"),
        make_document("C", "SALE-004b"),
        make_document("D", "SALEX-900"),
    ]

    assert next_document_number(documents, "SALE") == "SALE-005"


def test_next_number_widens_past_three_digits():
    assert next_document_number([make_document("A", "SALE-999")], "SALE") == "SALE-1000"


def test_next_number_reuses_number_of_deleted_latest(repository):
    repository.remove("D3")

    assert next_document_number(repository, "SALE") == "SALE-003"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def test_generate_document_id_uses_timestamp():
    moment = datetime(2024, 3, 1, 12, 30, 45, 123456, tzinfo=UTC)

    assert generate_document_id(when=moment) == "D20240301123045123456"
    assert generate_document_id(prefix="X", when=moment).startswith("X2024")


def test_generate_document_id_defaults_to_now():
    identifier = generate_document_id()

    assert identifier.startswith("D")
    assert len(identifier) == 21
