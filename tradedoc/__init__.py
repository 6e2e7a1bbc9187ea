"""
tradedoc: salted Merkle commitments and lifecycle tracking for trade documents

Independent organisations issue, sign and revoke structured trade documents
(sales quotes, invoices, payment and delivery orders). Only a single root per
document is recorded on the ledger; anyone holding the salted copy can later
recompute that root and check it against the ledger's current record.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │  COMMITMENT                                                              │
    │    canonical.py   key ordering and document traversal                   │
    │    salting.py     salt:type:value leaves, unsalting                      │
    │    merkle.py      sorted-leaf binary tree and root                      │
    │    wrapping.py    commit(), wrapped envelope, self-check                │
    │                                                                          │
    │  AUTHORITY                                                               │
    │    lifecycle.py   NONE → ISSUED → REVOKED, capability-gated             │
    │    registry.py    per-document signer allow-lists                       │
    │    identity.py    did:key identities, signed transactions               │
    │    ledger.py      ledger boundary and in-memory reference ledger       │
    │                                                                          │
    │  APPLICATION                                                             │
    │    verify.py      root + state consistency verification                 │
    │    store.py       raw / wrapped convenience copies on disk              │
    │    service.py     issue, sign, revoke, verify for one organisation      │
    │    cli.py         offline commit / check / verify tools                 │
    └─────────────────────────────────────────────────────────────────────────┘

Usage
─────

    from tradedoc import commit
    from tradedoc.verify import verify

    commitment = commit({"invoiceNumber": "INV-7", "amount": 1200})
    result = verify(commitment.salted_document, commitment.root, "issued")
    assert result.verified
"""

__version__ = "0.3.0"


def __getattr__(name):
    """Lazy import tradedoc modules on first access."""

    # Commitment exports
    if name in ("canonicalize", "walk_primitives"):
        from tradedoc import canonical
        return getattr(canonical, name)

    if name in ("salt_document", "unsalt_document", "parse_salted_value", "TypeTag"):
        from tradedoc import salting
        return getattr(salting, name)

    if name in ("MerkleTree", "build_tree", "root_from_document", "root_from_leaf_hashes",
                "compute_roots"):
        from tradedoc import merkle
        return getattr(merkle, name)

    if name in ("Commitment", "commit", "wrap_document", "check_wrapped_document"):
        from tradedoc import wrapping
        return getattr(wrapping, name)

    # Authority exports
    if name in ("DocumentLifecycle", "DocumentState", "DocumentMeta", "Capability",
                "RevocationReason", "Caller"):
        from tradedoc import lifecycle
        return getattr(lifecycle, name)

    if name == "DocumentRegistry":
        from tradedoc import registry
        return registry.DocumentRegistry

    if name in ("Identity", "SignedTransaction", "sign_transaction"):
        from tradedoc import identity
        return getattr(identity, name)

    if name in ("LedgerAdapter", "InMemoryLedger", "TransactionReceipt", "TxStatus"):
        from tradedoc import ledger
        return getattr(ledger, name)

    # Application exports
    if name in ("VerificationResult", "verify_wrapped", "verify_on_ledger"):
        from tradedoc import verify as verify_module
        return getattr(verify_module, name)

    if name in ("FileDocumentStore", "StoredRecord"):
        from tradedoc import store
        return getattr(store, name)

    if name in ("DocumentService", "LedgerClient"):
        from tradedoc import service
        return getattr(service, name)

    if name in ("get_config", "get_config_manager"):
        from tradedoc import config
        return getattr(config, name)

    raise AttributeError(f"module 'tradedoc' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Commitment
    "canonicalize",
    "walk_primitives",
    "salt_document",
    "unsalt_document",
    "parse_salted_value",
    "TypeTag",
    "MerkleTree",
    "build_tree",
    "root_from_document",
    "root_from_leaf_hashes",
    "compute_roots",
    "Commitment",
    "commit",
    "wrap_document",
    "check_wrapped_document",
    # Authority
    "DocumentLifecycle",
    "DocumentState",
    "DocumentMeta",
    "Capability",
    "RevocationReason",
    "Caller",
    "DocumentRegistry",
    "Identity",
    "SignedTransaction",
    "sign_transaction",
    "LedgerAdapter",
    "InMemoryLedger",
    "TransactionReceipt",
    "TxStatus",
    # Application
    "VerificationResult",
    "verify_wrapped",
    "verify_on_ledger",
    "FileDocumentStore",
    "StoredRecord",
    "DocumentService",
    "LedgerClient",
    "get_config",
    "get_config_manager",
]
