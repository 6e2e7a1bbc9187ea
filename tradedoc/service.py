"""
Document service.

Ties the commitment engine, the ledger and the convenience-copy store
together for one organisation acting through one identity:

    issue_document:  commit(raw) ─▶ store (raw, wrapped) ─▶ ledger issue ─▶ wait
    sign_document:   ledger sign ─▶ wait
    revoke_document: ledger revoke ─▶ wait
    verify_document: store wrapped copy ─▶ fresh ledger read ─▶ verify

Every ledger call is signed by the service identity and treated as pending
until its receipt is final. A failed receipt is raised as the matching
lifecycle error and never retried.

Copies are stored before the issue call is submitted, so a root never
reaches the ledger without the salted copy that reproduces it. A rejected
issue removes the copies again; a confirmation timeout keeps them, since
the transaction may still land.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from tradedoc.errors import (
    ConfirmationTimeout,
    InvalidTransaction,
    LifecycleError,
    UnsupportedDocumentType,
    error_from_code,
)
from tradedoc.identity import Identity, sign_transaction
from tradedoc.ledger import Action, LedgerAdapter, TransactionReceipt, TxStatus
from tradedoc.lifecycle import Capability, DocumentMeta, RevocationReason
from tradedoc.observability import Layer, generate_correlation_id, get_logger, set_correlation_id
from tradedoc.store import FileDocumentStore, StoredRecord, new_record
from tradedoc.verify import VerificationResult, verify_on_ledger
from tradedoc.wrapping import commit

log = get_logger("service", Layer.SERVICE)


# =============================================================================
# LEDGER CLIENT
# =============================================================================

class LedgerClient:
    """Signs ledger calls as one identity and waits for their receipts."""

    def __init__(
        self,
        ledger: LedgerAdapter,
        identity: Identity,
        timeout_seconds: Optional[float] = None,
        poll_interval_seconds: Optional[float] = None,
    ):
        from tradedoc.config import get_config
        cfg = get_config().ledger
        self.ledger = ledger
        self.identity = identity
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else cfg.confirmation_timeout_seconds.get()
        )
        self.poll_interval_seconds = (
            poll_interval_seconds if poll_interval_seconds is not None else cfg.poll_interval_seconds.get()
        )

    @property
    def did(self) -> str:
        return self.identity.did

    def wait_for_confirmation(self, tx_id: str) -> TransactionReceipt:
        """Poll until the receipt is final. Raises ConfirmationTimeout."""
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            receipt = self.ledger.receipt(tx_id)
            if receipt.is_final:
                return receipt
            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(tx_id, self.timeout_seconds)
            time.sleep(self.poll_interval_seconds)

    def call(self, action: Action, target: str = "", **params: Any) -> TransactionReceipt:
        """Submit a signed call and wait for it.

        ``target`` names the document (or type / organisation) the call acts
        on; it is used to rebuild lifecycle errors from failed receipts.
        """
        tx = sign_transaction(self.identity, action.value, params)
        tx_id = self.ledger.submit(tx)
        receipt = self.wait_for_confirmation(tx_id)

        if receipt.status is TxStatus.FAILED:
            log.warning(
                "ledger call rejected",
                operation=action.value,
                tx_id=tx_id,
                error_code=receipt.error_code,
            )
            if receipt.error_code == "InvalidTransaction":
                raise InvalidTransaction(receipt.error_message)
            raise error_from_code(receipt.error_code, target, receipt.error_message)
        return receipt

    # Administrative calls

    def create_store(self, organisation_id: str, store_admin: str) -> TransactionReceipt:
        return self.call(
            Action.CREATE_STORE, organisation_id,
            organisation_id=organisation_id, store_admin=store_admin,
        )

    def grant_role(self, organisation_id: str, account: str, role: Capability) -> TransactionReceipt:
        return self.call(
            Action.GRANT_ROLE, organisation_id,
            organisation_id=organisation_id, account=account, role=role.value,
        )

    def revoke_role(self, organisation_id: str, account: str, role: Capability) -> TransactionReceipt:
        return self.call(
            Action.REVOKE_ROLE, organisation_id,
            organisation_id=organisation_id, account=account, role=role.value,
        )

    def set_signer_for_document(self, document_id: str, signer: str, allowed: bool = True) -> TransactionReceipt:
        return self.call(
            Action.SET_SIGNER_FOR_DOCUMENT, document_id,
            document_id=document_id, signer=signer, allowed=allowed,
        )

    def set_required_signer_count(self, document_type: str, count: int) -> TransactionReceipt:
        return self.call(
            Action.SET_REQUIRED_SIGNER_COUNT, document_type,
            document_type=document_type, count=count,
        )


# =============================================================================
# DOCUMENT SERVICE
# =============================================================================

class DocumentService:
    """
    Issue, sign, revoke and verify documents for one organisation.

    The service identity must hold the roles each call needs in the
    organisation store; the ledger decides, the service only reports.
    """

    def __init__(
        self,
        client: LedgerClient,
        store: FileDocumentStore,
        organisation_id: str,
        allowed_types: Optional[List[str]] = None,
    ):
        if allowed_types is None:
            from tradedoc.config import get_config
            allowed_types = get_config().documents.allowed_types.get()
        self.client = client
        self.ledger = client.ledger
        self.store = store
        self.organisation_id = organisation_id
        self.allowed_types = list(allowed_types)

    def _check_type(self, document_type: str) -> None:
        if document_type not in self.allowed_types:
            raise UnsupportedDocumentType(document_type, self.allowed_types)

    def issue_document(
        self,
        document_id: str,
        document_type: str,
        raw: Any,
        signer: Optional[str] = None,
        references: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Commit ``raw``, store both copies and issue its root.

        Returns the wrapped envelope. Store failures (including values that
        cannot be written) surface before anything is submitted. ``signer``
        names the designated signer recorded with the copy; allow-listing
        them on the registry is a separate call.
        """
        self._check_type(document_type)
        set_correlation_id(generate_correlation_id())

        commitment = commit(raw)
        wrapped = commitment.to_wrapped()
        record = new_record(
            document_id=document_id,
            document_type=document_type,
            document_hash=commitment.root,
            organisation_id=self.organisation_id,
            signer=signer,
            is_signable=signer is not None,
            references=references,
        )
        self.store.save(record, raw, wrapped)

        try:
            self.client.call(
                Action.ISSUE, document_id,
                organisation_id=self.organisation_id,
                document_id=document_id,
                root=commitment.root,
                document_type=document_type,
            )
        except (LifecycleError, InvalidTransaction):
            self.store.discard(document_id)
            raise
        except ConfirmationTimeout:
            log.warning(
                "issue unconfirmed, keeping stored copies",
                operation="issue_document",
                document_id=document_id,
                root=commitment.root,
            )
            raise
        log.info("document stored and issued", operation="issue_document", document_id=document_id)
        return wrapped

    def sign_document(self, document_id: str) -> int:
        """Attest the document as the service identity. Returns the attestation time."""
        set_correlation_id(generate_correlation_id())
        receipt = self.client.call(
            Action.SIGN, document_id,
            organisation_id=self.organisation_id,
            document_id=document_id,
        )

        if self.store.exists(document_id):
            record = self.store.load_record(document_id)
            if record.signer == self.client.did and record.is_signable:
                self.store.update_record(document_id, is_signable=False)
        return receipt.result["signed_at"]

    def revoke_document(self, document_id: str, reason: Any) -> DocumentMeta:
        set_correlation_id(generate_correlation_id())
        parsed = RevocationReason.parse(reason)
        self.client.call(
            Action.REVOKE, document_id,
            organisation_id=self.organisation_id,
            document_id=document_id,
            reason=parsed.value,
        )
        if self.store.exists(document_id):
            self.store.update_record(document_id, is_signable=False)
        return self.ledger.get_meta(self.organisation_id, document_id)

    def verify_document(self, document_id: str) -> VerificationResult:
        """Verify the stored copy against the ledger's current record."""
        record = self.store.load_record(document_id)
        wrapped = self.store.load_wrapped(document_id)
        return verify_on_ledger(self.ledger, record.organisation_id, document_id, wrapped)

    def verify_copy(self, document_id: str, wrapped: Dict[str, Any]) -> VerificationResult:
        """Verify a copy received from elsewhere against this organisation's ledger record."""
        return verify_on_ledger(self.ledger, self.organisation_id, document_id, wrapped)

    def status(self, document_id: str) -> Dict[str, Any]:
        meta = self.ledger.get_meta(self.organisation_id, document_id)
        signers = self.ledger.signers(self.organisation_id, document_id)
        required = self.ledger.required_signer_count(meta.document_type) if meta else 0
        return {
            "document_id": document_id,
            "meta": meta.to_dict() if meta else None,
            "state": meta.state.value if meta else "none",
            "signers": signers,
            "signed": len(signers),
            "required_signers": required,
            "is_signed": bool(signers),
        }

    def get_document(self, document_id: str) -> Dict[str, Any]:
        record, raw, wrapped = self.store.load(document_id)
        return {"record": record.to_dict(), "raw": raw, "wrapped": wrapped}

    def list_documents(self, document_type: Optional[str] = None) -> List[StoredRecord]:
        return self.store.list_records(organisation_id=self.organisation_id, document_type=document_type)
