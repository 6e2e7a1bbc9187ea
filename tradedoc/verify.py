"""Consistency verification.

Answers "is this document copy authentic, and what is its status?" by
recomputing the root from a salted copy and comparing it against the
authoritative ``(root, state)`` pair.

    verified  iff  computed root == authoritative root
              and  state in {ISSUED, REVOKED}

``verified=True, state=REVOKED`` means the copy is the content that was
issued but the document is no longer trusted. Callers wanting "currently
valid" should check ``trusted``.

Ledger-backed verification re-reads the ledger on every call; no ledger
state is cached here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tradedoc.core import is_hex32, normalize_hex32
from tradedoc.errors import RootMismatch
from tradedoc.lifecycle import DocumentState
from tradedoc.merkle import root_from_document
from tradedoc.observability import Layer, get_logger
from tradedoc.wrapping import wrapped_algorithm

log = get_logger("verify", Layer.VERIFY)

REASON_ROOT_MISMATCH = "RootMismatch"
REASON_NOT_ISSUED = "NotIssued"


@dataclass
class VerificationResult:
    verified: bool
    state: DocumentState
    computed_root: str
    authoritative_root: Optional[str] = None
    reason: Optional[str] = None
    document_id: Optional[str] = None
    signers: List[str] = field(default_factory=list)
    revocation_reason: Optional[str] = None

    @property
    def trusted(self) -> bool:
        """Authentic and still issued."""
        return self.verified and self.state is DocumentState.ISSUED

    def raise_if_unverified(self) -> "VerificationResult":
        """Raise RootMismatch unless verified; returns self for chaining.

        A copy of a never-issued document is reported as a mismatch against
        no recorded root.
        """
        if not self.verified:
            raise RootMismatch(self.computed_root, self.authoritative_root)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "trusted": self.trusted,
            "state": self.state.value,
            "computed_root": self.computed_root,
            "authoritative_root": self.authoritative_root,
            "reason": self.reason,
            "document_id": self.document_id,
            "signers": list(self.signers),
            "revocation_reason": self.revocation_reason,
        }


def verify(
    salted_document: Any,
    authoritative_root: Optional[str],
    authoritative_state: Any,
    algorithm: Optional[str] = None,
) -> VerificationResult:
    """Compare a salted copy against the authoritative root and state.

    Raises MalformedDocument if the copy is not a salted document.
    """
    state = DocumentState.parse(authoritative_state)
    computed, _ = root_from_document(salted_document, algorithm)

    expected = normalize_hex32(authoritative_root) if is_hex32(authoritative_root) else None

    if state is DocumentState.NONE:
        result = VerificationResult(False, state, computed, expected, REASON_NOT_ISSUED)
    elif expected is None or computed != expected:
        result = VerificationResult(False, state, computed, expected, REASON_ROOT_MISMATCH)
    else:
        result = VerificationResult(True, state, computed, expected)

    log.info(
        "document verified" if result.verified else "document verification failed",
        operation="verify",
        root=computed,
        state=state.value,
        reason=result.reason,
    )
    return result


def verify_wrapped(
    wrapped: Dict[str, Any],
    authoritative_root: Optional[str],
    authoritative_state: Any,
) -> VerificationResult:
    """Verify a wrapped envelope using the algorithm recorded in it."""
    return verify(wrapped["data"], authoritative_root, authoritative_state, wrapped_algorithm(wrapped))


def verify_on_ledger(
    ledger: Any,
    organisation_id: str,
    document_id: str,
    wrapped: Dict[str, Any],
) -> VerificationResult:
    """Fetch the current record from ``ledger`` and verify ``wrapped`` against it."""
    meta = ledger.get_meta(organisation_id, document_id)
    if meta is None:
        result = verify_wrapped(wrapped, None, DocumentState.NONE)
    else:
        result = verify_wrapped(wrapped, meta.document_hash, meta.state)
        result.signers = ledger.signers(organisation_id, document_id)
        if meta.revocation_reason is not None:
            result.revocation_reason = meta.revocation_reason.name.lower()
    result.document_id = document_id
    return result
