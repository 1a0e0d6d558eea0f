from datetime import date, datetime

import pytest

from docscan.extraction.metadata import Amount, DateRole, DocumentDate, DocumentType, ExtractedMetadata
from docscan.output_handler.database_handler import DocumentStore
from docscan.output_handler.document import DocumentRecord
from docscan.utils.exceptions import ErrorKind, PersistenceError


def make_record(content_hash="h1", document_type=DocumentType.RECEIPT, total=45.99, currency="USD",
                processed_at=None, confidence=0.8):
    metadata = ExtractedMetadata(
        vendor="ACME Market",
        amounts=[Amount(total, currency, True)],
        dates=[DocumentDate(date(2024, 3, 15), DateRole.TRANSACTION)],
        confidence=0.7,
    )
    record = DocumentRecord.create(
        image_uri=f"file:///photos/{content_hash}.jpg",
        content_hash=content_hash,
        ocr_text="ACME Market\nTOTAL 45.99",
        document_type=document_type,
        metadata=metadata,
        confidence=confidence,
        keywords=["acme", "market"],
    )
    if processed_at:
        record.processed_at = processed_at
    return record


def test_create_seeds_editable_fields():
    record = make_record()
    assert record.vendor == "ACME Market"
    assert record.total_amount == 45.99
    assert record.currency == "USD"
    assert record.document_date == "2024-03-15"


def test_save_and_get(document_store):
    record = make_record()
    stored = document_store.save_document(record)

    assert stored.id == record.id
    loaded = document_store.get_document(record.id)
    assert loaded.image_uri == record.image_uri
    assert loaded.document_type == DocumentType.RECEIPT
    assert loaded.metadata.total_amount == 45.99
    assert loaded.metadata.dates[0].role == DateRole.TRANSACTION
    assert loaded.keywords == ["acme", "market"]
    assert loaded.processed_at == record.processed_at


def test_save_is_idempotent_by_hash(document_store):
    """A second record with the same content hash returns the first one."""
    first = document_store.save_document(make_record())
    second = make_record(total=99.0)

    stored = document_store.save_document(second)

    assert stored.id == first.id
    assert stored.total_amount == 45.99
    assert document_store.count_documents() == 1


def test_find_and_check_by_hash(document_store):
    record = document_store.save_document(make_record("abc"))

    assert document_store.find_by_hash("abc").id == record.id
    assert document_store.find_by_hash("missing") is None
    assert document_store.check_duplicate_by_hash("abc")
    assert not document_store.check_duplicate_by_hash("missing")


def test_update_fields(document_store):
    record = document_store.save_document(make_record())

    updated = document_store.update_fields(record.id, total_amount="12.5", currency="ils")

    assert updated.total_amount == 12.5
    assert updated.currency == "ILS"
    assert updated.vendor == "ACME Market"
    # Original extraction is kept
    assert updated.metadata.total_amount == 45.99


def test_update_fields_can_clear(document_store):
    record = document_store.save_document(make_record())

    updated = document_store.update_fields(record.id, vendor=None)

    assert updated.vendor is None
    assert updated.currency == "USD"


def test_update_missing_document(document_store):
    assert document_store.update_fields("nope", vendor="X") is None


def test_delete_document(document_store):
    record = document_store.save_document(make_record())

    assert document_store.delete_document(record.id)
    assert not document_store.delete_document(record.id)
    assert document_store.get_document(record.id) is None
    # The hash is free again
    assert document_store.save_document(make_record()).content_hash == "h1"


def test_list_documents_newest_first(document_store):
    document_store.save_document(make_record("a", processed_at=datetime(2024, 1, 1)))
    document_store.save_document(make_record("b", processed_at=datetime(2024, 1, 3)))
    document_store.save_document(make_record("c", DocumentType.INVOICE, processed_at=datetime(2024, 1, 2)))

    assert [r.content_hash for r in document_store.list_documents()] == ["b", "c", "a"]
    assert [r.content_hash for r in document_store.list_documents(DocumentType.RECEIPT)] == ["b", "a"]
    assert len(document_store.list_documents(limit=1)) == 1


def test_statistics(document_store):
    document_store.save_document(make_record("a", total=10.0, confidence=0.7))
    document_store.save_document(make_record("b", total=5.255, confidence=0.9))
    document_store.save_document(make_record("c", DocumentType.INVOICE, total=100.0, currency="EUR", confidence=0.8))

    stats = document_store.get_statistics()

    assert stats['total'] == 3
    assert stats['by_type'] == {'receipt': 2, 'invoice': 1}
    assert stats['totals_by_currency']['EUR'] == 100.0
    assert stats['totals_by_currency']['USD'] == pytest.approx(15.26, abs=0.01)
    assert stats['average_confidence'] == pytest.approx(0.8)


def test_empty_statistics(document_store):
    stats = document_store.get_statistics()
    assert stats['total'] == 0
    assert stats['average_confidence'] is None


def test_unopenable_database_raises_persistence_error(tmp_path):
    directory = tmp_path / "documents.db"
    directory.mkdir()

    with pytest.raises(PersistenceError) as excinfo:
        DocumentStore(directory)
    assert excinfo.value.kind == ErrorKind.PERSISTENCE_FAILURE
