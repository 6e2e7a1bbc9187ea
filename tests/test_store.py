"""
Convenience-copy store tests.

Run with: pytest tests/test_store.py -v
"""

import json
from decimal import Decimal

import pytest

from tradedoc.errors import DocumentNotFound, DuplicateDocument, MalformedDocument, StoreError
from tradedoc.store import RAW_FILE, RECORD_FILE, WRAPPED_FILE, FileDocumentStore, new_record
from tradedoc.wrapping import commit


def _save(store, document_id, raw, document_type="INVOICE", organisation_id="ORG-1", **kwargs):
    c = commit(raw)
    record = new_record(document_id, document_type, c.root, organisation_id, **kwargs)
    store.save(record, raw, c.to_wrapped())
    return record, c


class TestFileDocumentStore:
    def test_save_and_load(self, doc_store, invoice):
        record, c = _save(doc_store, "INV-1", invoice, signer="did:example:signer", is_signable=True)
        loaded, raw, wrapped = doc_store.load("INV-1")
        assert loaded == record
        assert raw == invoice
        assert wrapped["data"] == c.salted_document
        assert wrapped["signature"]["merkleRoot"] == c.root
        assert doc_store.exists("INV-1")

    def test_layout(self, doc_store):
        _save(doc_store, "../../etc/passwd", {"a": 1})
        doc_dirs = list(doc_store.root.iterdir())
        assert len(doc_dirs) == 1
        assert len(doc_dirs[0].name) == 64
        assert sorted(p.name for p in doc_dirs[0].iterdir()) == sorted([RAW_FILE, RECORD_FILE, WRAPPED_FILE])

    def test_record_is_camel_case(self, doc_store):
        _save(doc_store, "INV-1", {"a": 1}, references={"quote": "Q-1"})
        doc_dir = next(doc_store.root.iterdir())
        data = json.loads((doc_dir / RECORD_FILE).read_text(encoding="utf-8"))
        assert data["documentId"] == "INV-1"
        assert data["isSignable"] is False
        assert data["references"] == {"quote": "Q-1"}

    def test_duplicate(self, doc_store):
        _save(doc_store, "INV-1", {"a": 1})
        with pytest.raises(DuplicateDocument):
            _save(doc_store, "INV-1", {"a": 2})
        assert doc_store.load("INV-1")[1] == {"a": 1}

    def test_not_found(self, doc_store):
        with pytest.raises(DocumentNotFound):
            doc_store.load_record("missing")
        with pytest.raises(KeyError):
            doc_store.load("missing")
        assert not doc_store.exists("missing")

    def test_invalid_envelope_not_saved(self, doc_store):
        c = commit({"a": 1})
        wrapped = c.to_wrapped()
        wrapped["signature"]["merkleRoot"] = "nope"
        with pytest.raises(MalformedDocument):
            doc_store.save(new_record("INV-1", "INVOICE", c.root, "ORG-1"), {"a": 1}, wrapped)
        assert not doc_store.exists("INV-1")

    def test_invalid_record_not_saved(self, doc_store):
        c = commit({"a": 1})
        with pytest.raises(StoreError):
            doc_store.save(new_record("INV-1", "INVOICE", "short", "ORG-1"), {"a": 1}, c.to_wrapped())

    def test_update_mutable_fields(self, doc_store):
        record, _ = _save(doc_store, "INV-1", {"a": 1}, signer="did:a", is_signable=True)
        updated = doc_store.update_record("INV-1", is_signable=False, references={"po": "PO-9"})
        assert not updated.is_signable
        assert updated.references == {"po": "PO-9"}
        assert updated.created_at == record.created_at
        assert doc_store.load_record("INV-1") == updated

    def test_update_immutable_field_rejected(self, doc_store):
        _save(doc_store, "INV-1", {"a": 1})
        with pytest.raises(StoreError):
            doc_store.update_record("INV-1", document_hash="00" * 32)

    def test_list_records(self, doc_store):
        _save(doc_store, "INV-1", {"a": 1})
        _save(doc_store, "DO-1", {"a": 2}, document_type="DELIVERY-ORDER")
        _save(doc_store, "INV-2", {"a": 3}, organisation_id="ORG-2")

        assert {r.document_id for r in doc_store.list_records()} == {"INV-1", "DO-1", "INV-2"}
        assert {r.document_id for r in doc_store.list_records(organisation_id="ORG-1")} == {"INV-1", "DO-1"}
        assert [r.document_id for r in doc_store.list_records(document_type="DELIVERY-ORDER")] == ["DO-1"]

    def test_list_empty_store(self, tmp_path):
        assert FileDocumentStore(tmp_path / "nothing-here").list_records() == []

    def test_root_from_config(self, tmp_path):
        from tradedoc.config import get_config_manager
        get_config_manager().set("store.root", str(tmp_path / "configured"))
        assert FileDocumentStore().root == tmp_path / "configured"

    def test_decimal_raw_copy(self, doc_store):
        raw = {"amount": Decimal("12.50"), "rate": 0.25, "currency": "USD"}
        _, c = _save(doc_store, "INV-1", raw)
        _, stored_raw, wrapped = doc_store.load("INV-1")
        assert stored_raw == {"amount": "12.5", "rate": 0.25, "currency": "USD"}
        assert wrapped["data"] == c.salted_document

    def test_failed_write_leaves_no_entry(self, doc_store, monkeypatch):
        def broken_write(path, obj):
            raise OSError("disk full")

        with monkeypatch.context() as m:
            m.setattr("tradedoc.store.write_json", broken_write)
            with pytest.raises(OSError):
                _save(doc_store, "INV-1", {"a": 1})
        assert not doc_store.exists("INV-1")
        assert list(doc_store.root.iterdir()) == []

        _save(doc_store, "INV-1", {"a": 1})
        assert doc_store.load("INV-1")[1] == {"a": 1}

    def test_discard(self, doc_store):
        _save(doc_store, "INV-1", {"a": 1})
        doc_store.discard("INV-1")
        assert not doc_store.exists("INV-1")
        doc_store.discard("INV-1")
        _save(doc_store, "INV-1", {"a": 2})
        assert doc_store.load("INV-1")[1] == {"a": 2}
