"""Document commitments and the wrapped-document envelope.

``commit(raw)`` is the issuer-side pipeline::

    raw document ──canonicalize──▶ salt every primitive ──▶ hash leaves ──▶ root

The wrapped envelope is the portable form of a commitment::

    {
      "data":      <SaltedDocument>,
      "signature": {
        "type":       "SHA256MerkleProof",
        "targetHash": <root>,
        "proof":      [],
        "merkleRoot": <root>
      }
    }

``proof`` is always empty: there is no selective disclosure, the verifier
recomputes the root from the whole ``data`` tree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from tradedoc.core import normalize_hex32
from tradedoc.errors import MalformedDocument
from tradedoc.merkle import resolve_algorithm, root_from_document
from tradedoc.observability import Layer, get_logger
from tradedoc.salting import salt_document
from tradedoc.schema import WRAPPED_DOCUMENT_SCHEMA, validate_against_schema

log = get_logger("wrapping", Layer.WRAPPING)

PROOF_TYPES = {
    "sha256": "SHA256MerkleProof",
    "sha3_256": "SHA3MerkleProof",
}
_ALGORITHM_BY_PROOF_TYPE = {v: k for k, v in PROOF_TYPES.items()}


@dataclass
class Commitment:
    """A salted document and the root it commits to."""
    salted_document: Any
    root: str
    leaves: List[str] = field(default_factory=list)
    algorithm: str = "sha256"

    def to_wrapped(self) -> Dict[str, Any]:
        """Render the commitment as a wrapped-document envelope."""
        return {
            "data": self.salted_document,
            "signature": {
                "type": PROOF_TYPES[self.algorithm],
                "targetHash": self.root,
                "proof": [],
                "merkleRoot": self.root,
            },
        }


def commit(
    document: Any,
    *,
    salt_bytes: Optional[int] = None,
    algorithm: Optional[str] = None,
    salt_source: Optional[Callable[[], str]] = None,
) -> Commitment:
    """Salt a raw document and compute its root.

    Fresh salts are drawn on every call, so committing the same document
    twice yields two different roots.
    """
    algo = resolve_algorithm(algorithm)
    salted = salt_document(document, salt_bytes=salt_bytes, salt_source=salt_source)
    root, leaves = root_from_document(salted, algo)
    log.debug("document committed", operation="commit", root=root, leaf_count=len(leaves))
    return Commitment(salted_document=salted, root=root, leaves=leaves, algorithm=algo)


def wrap_document(
    document: Any,
    *,
    salt_bytes: Optional[int] = None,
    algorithm: Optional[str] = None,
) -> Dict[str, Any]:
    """Commit a raw document and return its wrapped envelope."""
    return commit(document, salt_bytes=salt_bytes, algorithm=algorithm).to_wrapped()


def wrapped_algorithm(wrapped: Dict[str, Any]) -> str:
    """Hash algorithm recorded in an envelope's signature block."""
    proof_type = ((wrapped or {}).get("signature") or {}).get("type")
    try:
        return _ALGORITHM_BY_PROOF_TYPE[proof_type]
    except KeyError:
        raise MalformedDocument("$.signature.type", f"unsupported proof type: {proof_type!r}") from None


def validate_wrapped_document(wrapped: Any) -> List[str]:
    """Schema-check an envelope. Returns error messages (empty if valid)."""
    return validate_against_schema(wrapped, WRAPPED_DOCUMENT_SCHEMA)


def load_wrapped_document(wrapped: Any) -> Dict[str, Any]:
    """Validate an envelope received from storage or another party.

    Raises MalformedDocument on the first schema error.
    """
    errors = validate_wrapped_document(wrapped)
    if errors:
        raise MalformedDocument("$", f"invalid wrapped document: {errors[0]}")
    return wrapped


@dataclass
class WrappedCheck:
    """Result of checking an envelope against its own recorded root."""
    ok: bool
    computed_root: Optional[str] = None
    target_root: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "computed_root": self.computed_root,
            "target_root": self.target_root,
            "reason": self.reason,
        }


def check_wrapped_document(wrapped: Any) -> WrappedCheck:
    """Recompute the root of ``wrapped["data"]`` and compare it with the
    envelope's own ``merkleRoot``.

    This is an offline self-consistency check only; whether the root was
    ever issued is answered by tradedoc.verify against the ledger.
    """
    if not isinstance(wrapped, dict) or "data" not in wrapped:
        return WrappedCheck(ok=False, reason="Missing data or signature.merkleRoot")
    signature = wrapped.get("signature")
    if not isinstance(signature, dict) or not signature.get("merkleRoot"):
        return WrappedCheck(ok=False, reason="Missing data or signature.merkleRoot")

    try:
        target = normalize_hex32(signature["merkleRoot"])
        computed, _ = root_from_document(wrapped["data"], wrapped_algorithm(wrapped))
    except (MalformedDocument, ValueError) as ex:
        return WrappedCheck(ok=False, reason=str(ex))

    if computed != target:
        return WrappedCheck(
            ok=False,
            computed_root=computed,
            target_root=target,
            reason="Computed root does not match signature.merkleRoot",
        )
    return WrappedCheck(ok=True, computed_root=computed, target_root=target)
