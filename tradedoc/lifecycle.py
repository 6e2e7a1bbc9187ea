"""
Document lifecycle state machine.

Tracks the authoritative record of every document an organisation issues
and gates each transition on the caller's capabilities.

State Machine:

    NONE ──issue──▶ ISSUED ──revoke──▶ REVOKED
                      │
                      └── sign (per signer, repeatable across signers,
                          never changes the state)

- ``documentHash`` is written once by ``issue`` and never touched again.
- A signer's attestation timestamp is written once; a second ``sign`` by the
  same signer is rejected with AlreadySigned.
- REVOKED is terminal. Attestations made before revocation stay readable.
- "Signed" is an observation (at least one attestation), not a state.

Every transition takes a Caller carrying an explicit capability set. A
transition whose capability is absent from that set is rejected before any
state is read.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol

from tradedoc.core import normalize_hex32, now_unix
from tradedoc.errors import (
    AlreadyExists,
    AlreadySigned,
    MissingCapability,
    NotAllowed,
    NotRevocable,
    NotSignable,
)
from tradedoc.observability import Layer, get_logger

log = get_logger("lifecycle", Layer.LIFECYCLE)


# =============================================================================
# STATES AND CAPABILITIES
# =============================================================================

class DocumentState(Enum):
    """Lifecycle state of a document id."""
    NONE = "none"
    ISSUED = "issued"
    REVOKED = "revoked"

    @classmethod
    def parse(cls, value: Any) -> "DocumentState":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"unknown document state: {value!r}") from None


class Capability(Enum):
    """Role markers required by lifecycle transitions."""
    ISSUER = "issuer"
    SIGNER = "signer"
    REVOKER = "revoker"


class RevocationReason(Enum):
    """Closed set of revocation reasons, with their ledger codes."""
    USER_REQUEST = 0
    FRAUD = 1
    REISSUED = 2
    OTHER = 3

    @classmethod
    def parse(cls, value: Any) -> "RevocationReason":
        """Accept a member, its numeric code or its name (any case)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            name = value.strip().upper().replace("-", "_")
            if name.isdigit():
                return cls(int(name))
            if name in cls.__members__:
                return cls[name]
        raise ValueError(f"unknown revocation reason: {value!r}")


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class Caller:
    """An authenticated identity and the capabilities it holds right now."""
    identity: str
    capabilities: FrozenSet[Capability] = frozenset()

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class DocumentMeta:
    """Authoritative record of one issued document."""
    document_id: str
    document_hash: str
    document_type: str
    issuer: str
    issued_at: int
    state: DocumentState = DocumentState.ISSUED
    revoked_at: int = 0
    revocation_reason: Optional[RevocationReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "document_hash": self.document_hash,
            "document_type": self.document_type,
            "issuer": self.issuer,
            "issued_at": self.issued_at,
            "revoked_at": self.revoked_at,
            "state": self.state.value,
            "revocation_reason": self.revocation_reason.name.lower() if self.revocation_reason else None,
        }


@dataclass
class SignatureStatus:
    """How many required attestations a document has collected."""
    document_id: str
    signed: int
    required: int
    signers: List[str] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return self.signed >= self.required

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "signed": self.signed,
            "required": self.required,
            "satisfied": self.satisfied,
            "signers": list(self.signers),
        }


@dataclass(frozen=True)
class LifecycleEvent:
    """Emitted after a transition has been applied."""
    name: str  # DocumentIssued, DocumentSigned, DocumentRevoked
    document_id: str
    actor: str
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "document_id": self.document_id,
            "actor": self.actor,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }


class SignerAllowList(Protocol):
    """Authority deciding which signers may attest a given document."""

    def allowed_signer_for_document(self, document_id: str, signer: str) -> bool:
        ...

    def required_signer_count(self, document_type: str) -> int:
        ...


# =============================================================================
# STATE MACHINE
# =============================================================================

class DocumentLifecycle:
    """
    Per-organisation lifecycle store.

    Transitions are serialized under a lock, so two concurrent ``issue`` calls
    for one id produce exactly one success and one AlreadyExists.
    """

    def __init__(
        self,
        allow_list: SignerAllowList,
        clock: Callable[[], int] = now_unix,
    ):
        self._allow_list = allow_list
        self._clock = clock
        self._lock = threading.RLock()
        self._documents: Dict[str, DocumentMeta] = {}
        self._signatures: Dict[str, Dict[str, int]] = {}
        self._listeners: List[Callable[[LifecycleEvent], None]] = []

    def subscribe(self, listener: Callable[[LifecycleEvent], None]) -> None:
        """Register a callback invoked after every applied transition."""
        self._listeners.append(listener)

    def _emit(self, event: LifecycleEvent) -> None:
        for listener in self._listeners:
            listener(event)

    @staticmethod
    def _require(caller: Caller, capability: Capability, document_id: str) -> None:
        if not caller.has(capability):
            raise MissingCapability(
                document_id,
                f"{caller.identity} does not hold the {capability.value} capability",
            )

    def _state_of(self, document_id: str) -> DocumentState:
        meta = self._documents.get(document_id)
        return meta.state if meta else DocumentState.NONE

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def issue(
        self,
        document_id: str,
        root: str,
        document_type: str,
        caller: Caller,
    ) -> DocumentMeta:
        """NONE -> ISSUED. Records the root, type, issuer and issue time."""
        if not document_id:
            raise ValueError("document_id must be non-empty")
        if not document_type:
            raise ValueError("document_type must be non-empty")
        document_hash = normalize_hex32(root)

        event: LifecycleEvent
        with self._lock:
            self._require(caller, Capability.ISSUER, document_id)
            if self._state_of(document_id) is not DocumentState.NONE:
                raise AlreadyExists(document_id, "document id already used")

            now = self._clock()
            meta = DocumentMeta(
                document_id=document_id,
                document_hash=document_hash,
                document_type=document_type,
                issuer=caller.identity,
                issued_at=now,
            )
            self._documents[document_id] = meta
            self._signatures[document_id] = {}
            event = LifecycleEvent(
                "DocumentIssued",
                document_id,
                caller.identity,
                now,
                {"document_hash": document_hash, "document_type": document_type},
            )

        log.info("document issued", operation="issue", document_id=document_id, root=document_hash)
        self._emit(event)
        return meta

    def sign(self, document_id: str, caller: Caller) -> int:
        """Record the caller's attestation. Returns the attestation time.

        Guards, in order: Signer capability, state ISSUED (NotSignable),
        per-document allow-list (NotAllowed), no prior attestation by this
        signer (AlreadySigned).
        """
        with self._lock:
            self._require(caller, Capability.SIGNER, document_id)
            if self._state_of(document_id) is not DocumentState.ISSUED:
                raise NotSignable(document_id, f"state is {self._state_of(document_id).value}")
            if not self._allow_list.allowed_signer_for_document(document_id, caller.identity):
                raise NotAllowed(document_id, f"{caller.identity} is not an allowed signer for this document")

            attestations = self._signatures[document_id]
            if attestations.get(caller.identity, 0):
                raise AlreadySigned(document_id, f"{caller.identity} already signed")

            now = self._clock()
            attestations[caller.identity] = now
            event = LifecycleEvent("DocumentSigned", document_id, caller.identity, now, {})

        log.info("document signed", operation="sign", document_id=document_id, signer=caller.identity)
        self._emit(event)
        return now

    def revoke(self, document_id: str, reason: Any, caller: Caller) -> DocumentMeta:
        """ISSUED -> REVOKED. Records the revocation time and reason.

        Guards, in order: Revoker capability, state ISSUED (NotRevocable),
        then a known revocation reason (ValueError).
        """
        with self._lock:
            self._require(caller, Capability.REVOKER, document_id)
            state = self._state_of(document_id)
            if state is not DocumentState.ISSUED:
                raise NotRevocable(document_id, f"state is {state.value}")
            parsed = RevocationReason.parse(reason)

            now = self._clock()
            meta = replace(
                self._documents[document_id],
                state=DocumentState.REVOKED,
                revoked_at=now,
                revocation_reason=parsed,
            )
            self._documents[document_id] = meta
            event = LifecycleEvent(
                "DocumentRevoked",
                document_id,
                caller.identity,
                now,
                {"reason": parsed.value},
            )

        log.info("document revoked", operation="revoke", document_id=document_id, reason=parsed.name.lower())
        self._emit(event)
        return meta

    # -------------------------------------------------------------------------
    # Queries (pure reads, never raise)
    # -------------------------------------------------------------------------

    def meta(self, document_id: str) -> Optional[DocumentMeta]:
        with self._lock:
            return self._documents.get(document_id)

    def state(self, document_id: str) -> DocumentState:
        with self._lock:
            return self._state_of(document_id)

    def is_issued(self, document_id: str) -> bool:
        """True only while the document is ISSUED (False if unknown or revoked)."""
        return self.state(document_id) is DocumentState.ISSUED

    def signed_at(self, document_id: str, signer: str) -> int:
        """Attestation time of ``signer``; 0 means not signed."""
        with self._lock:
            return self._signatures.get(document_id, {}).get(signer, 0)

    def is_signed(self, document_id: str, signer: Optional[str] = None) -> bool:
        """With ``signer``: did that signer attest? Without: did anyone?"""
        if signer is not None:
            return self.signed_at(document_id, signer) > 0
        return bool(self.signers(document_id))

    def signers(self, document_id: str) -> List[str]:
        """Signers in attestation order."""
        with self._lock:
            attestations = self._signatures.get(document_id, {})
            return [s for s, ts in attestations.items() if ts]

    def revocation_reason(self, document_id: str) -> Optional[RevocationReason]:
        meta = self.meta(document_id)
        return meta.revocation_reason if meta else None

    def signature_status(self, document_id: str) -> SignatureStatus:
        """Signed count against the count required for the document's type."""
        meta = self.meta(document_id)
        signers = self.signers(document_id)
        required = self._allow_list.required_signer_count(meta.document_type) if meta else 0
        return SignatureStatus(document_id=document_id, signed=len(signers), required=required, signers=signers)

    def document_ids(self, issuer: Optional[str] = None) -> List[str]:
        with self._lock:
            return [
                doc_id for doc_id, meta in self._documents.items()
                if issuer is None or meta.issuer == issuer
            ]


def capabilities_of(roles: Iterable[Any]) -> FrozenSet[Capability]:
    """Build a capability set from role names or Capability members."""
    out = set()
    for role in roles:
        out.add(role if isinstance(role, Capability) else Capability(str(role).strip().lower()))
    return frozenset(out)
