"""
tradedoc Ledger Boundary

The authoritative record of document lifecycles lives behind a ledger
collaborator. The core only ever talks to it through LedgerAdapter:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     DocumentService / Verifier                       │
    │  submit(SignedTransaction) ─▶ tx_id      receipt(tx_id) ─▶ status    │
    │  get_meta / is_issued / signed_at / signers (fresh reads)            │
    └──────────────────────────────┬──────────────────────────────────────┘
                                   │
                                   ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                     LedgerAdapter (Protocol)                         │
    └──────────────────────────────┬──────────────────────────────────────┘
                                   │
          ┌────────────────────────┴────────────────────────┐
          ▼                                                 ▼
    ┌───────────────┐                               ┌───────────────┐
    │ InMemoryLedger│                               │ chain adapter │
    │  (reference)  │                               │   (external)  │
    └───────────────┘                               └───────────────┘

A submitted transaction is PENDING until the ledger processes it. The
in-memory ledger processes its queue strictly in submission order, one
transaction at a time, so per-document transitions are serializable.

Authority layout (mirrors the deployed contracts):
- a factory admin creates one organisation store per organisation id
- each store admin grants / revokes Issuer, Signer and Revoker roles
- the registry admin manages per-document signer allow-lists and
  per-type required signer counts
"""

from __future__ import annotations

import secrets
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, List, Optional, Protocol, Set

from tradedoc.core import now_unix
from tradedoc.errors import InvalidTransaction, LifecycleError
from tradedoc.identity import SignedTransaction
from tradedoc.lifecycle import (
    Caller,
    Capability,
    DocumentLifecycle,
    DocumentMeta,
    LifecycleEvent,
    RevocationReason,
    SignatureStatus,
)
from tradedoc.observability import AuditEventType, AuditLogger, Layer, get_logger
from tradedoc.registry import DocumentRegistry

log = get_logger("ledger", Layer.LEDGER)


# =============================================================================
# TRANSACTIONS AND RECEIPTS
# =============================================================================

class TxStatus(Enum):
    """Status of a submitted transaction."""
    PENDING = "pending"      # Queued, not yet applied
    CONFIRMED = "confirmed"  # Applied
    FAILED = "failed"        # Rejected; error_code says why


class Action(Enum):
    """Ledger calls a transaction may carry."""
    CREATE_STORE = "create_store"
    GRANT_ROLE = "grant_role"
    REVOKE_ROLE = "revoke_role"
    SET_SIGNER_FOR_DOCUMENT = "set_signer_for_document"
    SET_REQUIRED_SIGNER_COUNT = "set_required_signer_count"
    ISSUE = "issue"
    SIGN = "sign"
    REVOKE = "revoke"


@dataclass
class TransactionReceipt:
    """Outcome of a transaction as reported by the ledger."""
    tx_id: str
    status: TxStatus
    action: str
    sender: str
    block_number: Optional[int] = None
    error_code: str = ""
    error_message: str = ""
    result: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_final(self) -> bool:
        return self.status is not TxStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_id": self.tx_id,
            "status": self.status.value,
            "action": self.action,
            "sender": self.sender,
            "block_number": self.block_number,
            "error_code": self.error_code or None,
            "error_message": self.error_message or None,
            "result": dict(self.result),
        }


# =============================================================================
# LEDGER ADAPTER INTERFACE
# =============================================================================

class LedgerAdapter(Protocol):
    """
    Protocol for ledger collaborators.

    Reads are always served from the ledger's current state; callers must
    not cache them across verifications.
    """

    def submit(self, tx: SignedTransaction) -> str:
        """Queue a signed transaction. Returns its transaction id."""
        ...

    def receipt(self, tx_id: str) -> TransactionReceipt:
        """Current receipt for a transaction (PENDING until processed)."""
        ...

    def get_meta(self, organisation_id: str, document_id: str) -> Optional[DocumentMeta]:
        ...

    def is_issued(self, organisation_id: str, document_id: str) -> bool:
        ...

    def signed_at(self, organisation_id: str, document_id: str, signer: str) -> int:
        ...

    def signers(self, organisation_id: str, document_id: str) -> List[str]:
        ...

    def allowed_signer_for_document(self, document_id: str, signer: str) -> bool:
        ...

    def required_signer_count(self, document_type: str) -> int:
        ...


# =============================================================================
# REPLAY PROTECTION
# =============================================================================

class NonceRegistry:
    """
    Registry of used transaction nonces.

    Nonces are stored with their first-seen time so old entries can be
    dropped once they fall outside the retention window.
    """

    def __init__(self, max_age_hours: int = 168):
        self._nonces: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._max_age = timedelta(hours=max_age_hours)

    def check_and_register(self, sender: str, nonce: str) -> bool:
        """Register ``nonce`` for ``sender``. False if it was already used."""
        key = f"{sender}:{nonce}"
        with self._lock:
            self._cleanup()
            if key in self._nonces:
                return False
            self._nonces[key] = datetime.now(timezone.utc)
            return True

    def _cleanup(self) -> None:
        cutoff = datetime.now(timezone.utc) - self._max_age
        expired = [n for n, t in self._nonces.items() if t < cutoff]
        for nonce in expired:
            del self._nonces[nonce]

    def size(self) -> int:
        with self._lock:
            return len(self._nonces)


# =============================================================================
# ORGANISATION STORES
# =============================================================================

class OrganisationStore:
    """One organisation's role table and document lifecycle."""

    def __init__(
        self,
        organisation_id: str,
        admin: str,
        registry: DocumentRegistry,
        clock: Callable[[], int] = now_unix,
    ):
        self.organisation_id = organisation_id
        self.admin = admin
        self.lifecycle = DocumentLifecycle(registry, clock=clock)
        self._roles: Dict[str, Set[Capability]] = {}
        self._lock = threading.Lock()

    def grant_role(self, account: str, role: Capability) -> None:
        with self._lock:
            self._roles.setdefault(account, set()).add(role)

    def revoke_role(self, account: str, role: Capability) -> None:
        with self._lock:
            self._roles.get(account, set()).discard(role)

    def has_role(self, account: str, role: Capability) -> bool:
        with self._lock:
            return role in self._roles.get(account, ())

    def capabilities(self, account: str) -> FrozenSet[Capability]:
        with self._lock:
            return frozenset(self._roles.get(account, ()))

    def caller(self, account: str) -> Caller:
        """Caller for ``account`` carrying the roles it holds right now."""
        return Caller(identity=account, capabilities=self.capabilities(account))


# =============================================================================
# IN-MEMORY REFERENCE LEDGER
# =============================================================================

class InMemoryLedger:
    """
    Reference ledger for tests, local runs and the CLI.

    Every transaction is authenticated (Ed25519 signature by its did:key
    sender) and replay-protected (single-use nonce) before it is applied.
    With ``auto_confirm`` the queue is drained on every submit; otherwise
    transactions stay PENDING until ``process_pending()``.
    """

    def __init__(
        self,
        factory_admin: str,
        registry_admin: Optional[str] = None,
        auto_confirm: bool = True,
        clock: Callable[[], int] = now_unix,
        audit: Optional[AuditLogger] = None,
    ):
        self.factory_admin = factory_admin
        self.registry = DocumentRegistry(registry_admin or factory_admin)
        self.auto_confirm = auto_confirm
        self.audit = audit or AuditLogger(get_logger("audit", Layer.LEDGER))
        self._clock = clock
        self._stores: Dict[str, OrganisationStore] = {}
        self._transactions: Dict[str, SignedTransaction] = {}
        self._receipts: Dict[str, TransactionReceipt] = {}
        self._queue: Deque[str] = deque()
        self._events: List[Dict[str, Any]] = []
        self._nonces = NonceRegistry()
        self._lock = threading.Lock()
        self._process_lock = threading.Lock()
        self._block_number = 0

        self._handlers: Dict[Action, Callable[[SignedTransaction], Dict[str, Any]]] = {
            Action.CREATE_STORE: self._create_store,
            Action.GRANT_ROLE: self._grant_role,
            Action.REVOKE_ROLE: self._revoke_role,
            Action.SET_SIGNER_FOR_DOCUMENT: self._set_signer_for_document,
            Action.SET_REQUIRED_SIGNER_COUNT: self._set_required_signer_count,
            Action.ISSUE: self._issue,
            Action.SIGN: self._sign,
            Action.REVOKE: self._revoke,
        }

    # -------------------------------------------------------------------------
    # Submission and processing
    # -------------------------------------------------------------------------

    def submit(self, tx: SignedTransaction) -> str:
        tx_id = "0x" + secrets.token_hex(32)
        with self._lock:
            self._transactions[tx_id] = tx
            self._receipts[tx_id] = TransactionReceipt(
                tx_id=tx_id,
                status=TxStatus.PENDING,
                action=tx.action,
                sender=tx.sender,
            )
            self._queue.append(tx_id)
        log.debug("transaction submitted", operation="submit", tx_id=tx_id, action=tx.action)

        if self.auto_confirm:
            self.process_pending()
        return tx_id

    def receipt(self, tx_id: str) -> TransactionReceipt:
        with self._lock:
            receipt = self._receipts.get(tx_id)
        if receipt is None:
            raise InvalidTransaction(f"unknown transaction: {tx_id}")
        return receipt

    def pending_count(self) -> int:
        with self._lock:
            return len(self._queue)

    def process_pending(self) -> int:
        """Apply queued transactions in submission order. Returns the count."""
        processed = 0
        with self._process_lock:
            while True:
                with self._lock:
                    if not self._queue:
                        break
                    tx_id = self._queue.popleft()
                    tx = self._transactions[tx_id]
                self._process(tx_id, tx)
                processed += 1
        return processed

    def _process(self, tx_id: str, tx: SignedTransaction) -> None:
        self._block_number += 1
        receipt = TransactionReceipt(
            tx_id=tx_id,
            status=TxStatus.CONFIRMED,
            action=tx.action,
            sender=tx.sender,
            block_number=self._block_number,
        )
        try:
            self._authenticate(tx)
            try:
                action = Action(tx.action)
            except ValueError:
                raise InvalidTransaction(f"unknown action: {tx.action!r}") from None
            receipt.result = self._handlers[action](tx)
        except LifecycleError as ex:
            receipt.status = TxStatus.FAILED
            receipt.error_code = ex.code
            receipt.error_message = ex.message
            self.audit.log(
                AuditEventType.TRANSITION_REJECTED,
                actor_did=tx.sender,
                resource_id=ex.document_id,
                action=tx.action,
                outcome="failure",
                details={"error_code": ex.code, "tx_id": tx_id},
            )
        except (InvalidTransaction, KeyError, TypeError, ValueError) as ex:
            receipt.status = TxStatus.FAILED
            receipt.error_code = "InvalidTransaction"
            receipt.error_message = str(ex)

        with self._lock:
            self._receipts[tx_id] = receipt

        if receipt.status is TxStatus.FAILED:
            log.warning(
                "transaction failed",
                operation=tx.action,
                tx_id=tx_id,
                error_code=receipt.error_code,
            )
        else:
            log.info("transaction confirmed", operation=tx.action, tx_id=tx_id, block_number=receipt.block_number)

    def _authenticate(self, tx: SignedTransaction) -> None:
        if not tx.verify():
            self.audit.log(
                AuditEventType.SIGNATURE_INVALID,
                actor_did=tx.sender,
                resource_id=tx.action,
                action=tx.action,
                outcome="failure",
            )
            raise InvalidTransaction("transaction signature does not verify against sender")
        if not tx.nonce or not self._nonces.check_and_register(tx.sender, tx.nonce):
            raise InvalidTransaction(f"nonce already used: {tx.nonce!r}")

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _store_for(self, tx: SignedTransaction) -> OrganisationStore:
        organisation_id = tx.params["organisation_id"]
        store = self._stores.get(organisation_id)
        if store is None:
            raise InvalidTransaction(f"unknown organisation: {organisation_id!r}")
        return store

    def _create_store(self, tx: SignedTransaction) -> Dict[str, Any]:
        if tx.sender != self.factory_admin:
            raise InvalidTransaction("only the factory admin can create organisation stores")
        organisation_id = tx.params["organisation_id"]
        store_admin = tx.params["store_admin"]
        if not organisation_id or not store_admin:
            raise InvalidTransaction("organisation_id and store_admin must be non-empty")
        if organisation_id in self._stores:
            raise InvalidTransaction(f"organisation store already exists: {organisation_id!r}")

        store = OrganisationStore(organisation_id, store_admin, self.registry, clock=self._clock)
        store.lifecycle.subscribe(lambda event: self._record_event(organisation_id, event))
        self._stores[organisation_id] = store
        self.audit.log(
            AuditEventType.STORE_CREATED,
            actor_did=tx.sender,
            resource_id=organisation_id,
            action="create_store",
            outcome="success",
            details={"store_admin": store_admin},
        )
        return {"organisation_id": organisation_id, "store_admin": store_admin}

    def _change_role(self, tx: SignedTransaction, grant: bool) -> Dict[str, Any]:
        store = self._store_for(tx)
        if tx.sender != store.admin:
            raise InvalidTransaction("only the store admin can change roles")
        account = tx.params["account"]
        role = Capability(tx.params["role"])
        if grant:
            store.grant_role(account, role)
        else:
            store.revoke_role(account, role)
        self.audit.log(
            AuditEventType.ROLE_GRANTED if grant else AuditEventType.ROLE_REVOKED,
            actor_did=tx.sender,
            resource_id=store.organisation_id,
            action=tx.action,
            outcome="success",
            details={"account": account, "role": role.value},
        )
        return {"account": account, "role": role.value}

    def _grant_role(self, tx: SignedTransaction) -> Dict[str, Any]:
        return self._change_role(tx, grant=True)

    def _revoke_role(self, tx: SignedTransaction) -> Dict[str, Any]:
        return self._change_role(tx, grant=False)

    def _set_signer_for_document(self, tx: SignedTransaction) -> Dict[str, Any]:
        document_id = tx.params["document_id"]
        signer = tx.params["signer"]
        allowed = bool(tx.params.get("allowed", True))
        self.registry.set_signer_for_document(tx.sender, document_id, signer, allowed)
        self.audit.log(
            AuditEventType.SIGNER_ALLOWED if allowed else AuditEventType.SIGNER_DISALLOWED,
            actor_did=tx.sender,
            resource_id=document_id,
            action=tx.action,
            outcome="success",
            details={"signer": signer},
        )
        return {"document_id": document_id, "signer": signer, "allowed": allowed}

    def _set_required_signer_count(self, tx: SignedTransaction) -> Dict[str, Any]:
        document_type = tx.params["document_type"]
        count = tx.params["count"]
        self.registry.set_required_signer_count(tx.sender, document_type, count)
        return {"document_type": document_type, "count": count}

    def _issue(self, tx: SignedTransaction) -> Dict[str, Any]:
        store = self._store_for(tx)
        meta = store.lifecycle.issue(
            tx.params["document_id"],
            tx.params["root"],
            tx.params["document_type"],
            store.caller(tx.sender),
        )
        return meta.to_dict()

    def _sign(self, tx: SignedTransaction) -> Dict[str, Any]:
        store = self._store_for(tx)
        document_id = tx.params["document_id"]
        signed_at = store.lifecycle.sign(document_id, store.caller(tx.sender))
        return {"document_id": document_id, "signer": tx.sender, "signed_at": signed_at}

    def _revoke(self, tx: SignedTransaction) -> Dict[str, Any]:
        store = self._store_for(tx)
        meta = store.lifecycle.revoke(
            tx.params["document_id"],
            tx.params["reason"],
            store.caller(tx.sender),
        )
        return meta.to_dict()

    def _record_event(self, organisation_id: str, event: LifecycleEvent) -> None:
        entry = dict(event.to_dict(), organisation_id=organisation_id, block_number=self._block_number)
        with self._lock:
            self._events.append(entry)
        event_type = {
            "DocumentIssued": AuditEventType.DOCUMENT_ISSUED,
            "DocumentSigned": AuditEventType.DOCUMENT_SIGNED,
            "DocumentRevoked": AuditEventType.DOCUMENT_REVOKED,
        }[event.name]
        self.audit.log(
            event_type,
            actor_did=event.actor,
            resource_id=event.document_id,
            action=event.name,
            outcome="success",
            details=dict(event.details, organisation_id=organisation_id),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def store(self, organisation_id: str) -> Optional[OrganisationStore]:
        return self._stores.get(organisation_id)

    def organisations(self) -> List[str]:
        return sorted(self._stores)

    def _lifecycle(self, organisation_id: str) -> Optional[DocumentLifecycle]:
        store = self._stores.get(organisation_id)
        return store.lifecycle if store else None

    def get_meta(self, organisation_id: str, document_id: str) -> Optional[DocumentMeta]:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.meta(document_id) if lifecycle else None

    def is_issued(self, organisation_id: str, document_id: str) -> bool:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.is_issued(document_id) if lifecycle else False

    def signed_at(self, organisation_id: str, document_id: str, signer: str) -> int:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.signed_at(document_id, signer) if lifecycle else 0

    def is_signed(self, organisation_id: str, document_id: str, signer: Optional[str] = None) -> bool:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.is_signed(document_id, signer) if lifecycle else False

    def signers(self, organisation_id: str, document_id: str) -> List[str]:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.signers(document_id) if lifecycle else []

    def revocation_reason(self, organisation_id: str, document_id: str) -> Optional[RevocationReason]:
        lifecycle = self._lifecycle(organisation_id)
        return lifecycle.revocation_reason(document_id) if lifecycle else None

    def signature_status(self, organisation_id: str, document_id: str) -> SignatureStatus:
        lifecycle = self._lifecycle(organisation_id)
        if lifecycle is None:
            return SignatureStatus(document_id=document_id, signed=0, required=0)
        return lifecycle.signature_status(document_id)

    def allowed_signer_for_document(self, document_id: str, signer: str) -> bool:
        return self.registry.allowed_signer_for_document(document_id, signer)

    def required_signer_count(self, document_type: str) -> int:
        return self.registry.required_signer_count(document_type)

    def has_role(self, organisation_id: str, account: str, role: Capability) -> bool:
        store = self._stores.get(organisation_id)
        return store.has_role(account, role) if store else False

    def events(self, document_id: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        if document_id:
            events = [e for e in events if e["document_id"] == document_id]
        return events
