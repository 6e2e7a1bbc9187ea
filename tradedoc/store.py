"""Filesystem store for document convenience copies.

Layout::

    <root>/<sha256(document_id)>/record.json    metadata (StoredRecord)
    <root>/<sha256(document_id)>/raw.json       raw document
    <root>/<sha256(document_id)>/wrapped.json   wrapped envelope (salted copy + root)

The wrapped envelope is the only artifact that allows the committed root
to be recomputed later; losing it makes the document unverifiable. Raw and
wrapped copies are written once and never rewritten; a failed write
leaves no partial entry behind. Decimal values in a raw copy are written
as their plain number text. Only the record's mutable fields (signer,
isSignable, references) may be updated.

Directory names are digests of the document id so arbitrary ids never
escape the store root.
"""

from __future__ import annotations

import pathlib
import shutil
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from tradedoc.core import canonical_json_bytes, load_json, now_iso8601, sha256_bytes, write_json
from tradedoc.errors import DocumentNotFound, DuplicateDocument, StoreError
from tradedoc.observability import Layer, get_logger
from tradedoc.schema import DOCUMENT_RECORD_SCHEMA, validate_against_schema
from tradedoc.wrapping import load_wrapped_document

log = get_logger("store", Layer.STORE)

RECORD_FILE = "record.json"
RAW_FILE = "raw.json"
WRAPPED_FILE = "wrapped.json"

_MUTABLE_FIELDS = ("signer", "is_signable", "references")


@dataclass(frozen=True)
class StoredRecord:
    """Metadata kept alongside a stored document."""
    document_id: str
    document_type: str
    document_hash: str
    organisation_id: str
    created_at: str
    updated_at: str
    signer: Optional[str] = None
    is_signable: bool = False
    references: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documentId": self.document_id,
            "documentType": self.document_type,
            "documentHash": self.document_hash,
            "organisationId": self.organisation_id,
            "signer": self.signer,
            "isSignable": self.is_signable,
            "references": dict(self.references),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredRecord":
        return cls(
            document_id=data["documentId"],
            document_type=data["documentType"],
            document_hash=data["documentHash"],
            organisation_id=data["organisationId"],
            created_at=data["createdAt"],
            updated_at=data["updatedAt"],
            signer=data.get("signer"),
            is_signable=bool(data.get("isSignable", False)),
            references=dict(data.get("references") or {}),
        )


def new_record(
    document_id: str,
    document_type: str,
    document_hash: str,
    organisation_id: str,
    signer: Optional[str] = None,
    is_signable: bool = False,
    references: Optional[Dict[str, str]] = None,
) -> StoredRecord:
    """Build a record stamped with the current time."""
    now = now_iso8601()
    return StoredRecord(
        document_id=document_id,
        document_type=document_type,
        document_hash=document_hash,
        organisation_id=organisation_id,
        created_at=now,
        updated_at=now,
        signer=signer,
        is_signable=is_signable,
        references=dict(references or {}),
    )


def _validated_record(data: Any, where: str) -> StoredRecord:
    errors = validate_against_schema(data, DOCUMENT_RECORD_SCHEMA)
    if errors:
        raise StoreError(f"invalid document record ({where}): {errors[0]}")
    return StoredRecord.from_dict(data)


class FileDocumentStore:
    def __init__(self, root: Optional[Union[str, pathlib.Path]] = None):
        if root is None:
            from tradedoc.config import get_config
            root = get_config().store.root.get()
        self.root = pathlib.Path(root)
        self._lock = threading.Lock()

    def _document_dir(self, document_id: str) -> pathlib.Path:
        if not document_id:
            raise ValueError("document_id must be non-empty")
        return self.root / sha256_bytes(document_id.encode("utf-8"))

    def exists(self, document_id: str) -> bool:
        return (self._document_dir(document_id) / RECORD_FILE).is_file()

    def save(self, record: StoredRecord, raw: Any, wrapped: Dict[str, Any]) -> pathlib.Path:
        """Write a (record, raw, wrapped) triple. Raises DuplicateDocument if present."""
        load_wrapped_document(wrapped)
        record_data = record.to_dict()
        _validated_record(record_data, record.document_id)

        doc_dir = self._document_dir(record.document_id)
        with self._lock:
            self.root.mkdir(parents=True, exist_ok=True)
            try:
                doc_dir.mkdir()
            except FileExistsError:
                raise DuplicateDocument(record.document_id) from None

            try:
                write_json(doc_dir / RAW_FILE, raw)
                (doc_dir / WRAPPED_FILE).write_bytes(canonical_json_bytes(wrapped))
                # record.json last: its presence marks the entry complete
                (doc_dir / RECORD_FILE).write_bytes(canonical_json_bytes(record_data))
            except Exception:
                shutil.rmtree(doc_dir, ignore_errors=True)
                raise

        log.info("document stored", operation="save", document_id=record.document_id, root=record.document_hash)
        return doc_dir

    def discard(self, document_id: str) -> None:
        """Remove an entry whose issuance was rejected. Missing entries are ignored."""
        doc_dir = self._document_dir(document_id)
        with self._lock:
            if doc_dir.is_dir():
                shutil.rmtree(doc_dir)
        log.info("document copies discarded", operation="discard", document_id=document_id)

    def load_record(self, document_id: str) -> StoredRecord:
        path = self._document_dir(document_id) / RECORD_FILE
        if not path.is_file():
            raise DocumentNotFound(document_id)
        return _validated_record(load_json(path), document_id)

    def load(self, document_id: str) -> Tuple[StoredRecord, Any, Dict[str, Any]]:
        """Return ``(record, raw, wrapped)``; the envelope is schema-checked."""
        record = self.load_record(document_id)
        doc_dir = self._document_dir(document_id)
        raw = load_json(doc_dir / RAW_FILE)
        wrapped = load_wrapped_document(load_json(doc_dir / WRAPPED_FILE))
        return record, raw, wrapped

    def load_wrapped(self, document_id: str) -> Dict[str, Any]:
        return self.load(document_id)[2]

    def update_record(self, document_id: str, **changes: Any) -> StoredRecord:
        """Update mutable record fields and bump ``updatedAt``."""
        unknown = set(changes) - set(_MUTABLE_FIELDS)
        if unknown:
            raise StoreError(f"record fields are immutable: {sorted(unknown)}")

        with self._lock:
            record = self.load_record(document_id)
            updated = replace(record, updated_at=now_iso8601(), **changes)
            data = updated.to_dict()
            _validated_record(data, document_id)
            (self._document_dir(document_id) / RECORD_FILE).write_bytes(canonical_json_bytes(data))
        return updated

    def _iter_records(self) -> Iterator[StoredRecord]:
        if not self.root.is_dir():
            return
        for path in sorted(self.root.glob(f"*/{RECORD_FILE}")):
            yield _validated_record(load_json(path), str(path.parent.name))

    def list_records(
        self,
        organisation_id: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> List[StoredRecord]:
        """Records only (no raw or wrapped contents), oldest first."""
        records = [
            r for r in self._iter_records()
            if (organisation_id is None or r.organisation_id == organisation_id)
            and (document_type is None or r.document_type == document_type)
        ]
        return sorted(records, key=lambda r: (r.created_at, r.document_id))
