"""
Error types for the tradedoc stack.

Lifecycle guard violations carry a stable ``code`` so they can cross the
ledger boundary inside a transaction receipt and be re-raised verbatim on
the caller's side (see ``error_from_code``).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Type


class TradeDocError(Exception):
    """Base exception for the tradedoc stack."""
    pass


# =============================================================================
# DOCUMENT ERRORS
# =============================================================================

class MalformedDocument(TradeDocError, ValueError):
    """Document contains a node that cannot be committed."""

    def __init__(self, path: str, message: str):
        self.path = path or "$"
        self.message = message
        super().__init__(f"{self.path}: {message}")


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================

class LifecycleError(TradeDocError):
    """A lifecycle transition was rejected by its guard."""
    code = "LifecycleError"

    def __init__(self, document_id: str, message: str = ""):
        self.document_id = document_id
        self.message = message or self.code
        super().__init__(f"{self.code}: {document_id}: {self.message}")


class AlreadyExists(LifecycleError):
    code = "AlreadyExists"


class AlreadySigned(LifecycleError):
    code = "AlreadySigned"


class NotSignable(LifecycleError):
    code = "NotSignable"


class NotRevocable(LifecycleError):
    code = "NotRevocable"


class NotAllowed(LifecycleError):
    code = "NotAllowed"


class MissingCapability(NotAllowed):
    """Caller does not hold the capability the transition requires."""
    code = "MissingCapability"


_LIFECYCLE_ERRORS: Dict[str, Type[LifecycleError]] = {
    cls.code: cls
    for cls in (AlreadyExists, AlreadySigned, NotSignable, NotRevocable, NotAllowed, MissingCapability)
}


def error_from_code(code: str, document_id: str, message: str = "") -> LifecycleError:
    """Rebuild a lifecycle error from its code (e.g. from a ledger receipt)."""
    cls = _LIFECYCLE_ERRORS.get(code, LifecycleError)
    return cls(document_id, message)


# =============================================================================
# VERIFICATION ERRORS
# =============================================================================

class RootMismatch(TradeDocError):
    """Recomputed root does not match the authoritative root."""

    def __init__(self, computed_root: str, expected_root: Optional[str]):
        self.computed_root = computed_root
        self.expected_root = expected_root
        super().__init__(f"RootMismatch: computed {computed_root} != recorded {expected_root}")


# =============================================================================
# LEDGER BOUNDARY ERRORS
# =============================================================================

class LedgerError(TradeDocError):
    """Failure talking to, or rejected by, the ledger collaborator."""
    pass


class InvalidTransaction(LedgerError):
    """Transaction rejected before reaching the lifecycle (auth, nonce, target)."""
    pass


class ConfirmationTimeout(LedgerError):
    """Transaction was not confirmed within the configured timeout."""

    def __init__(self, tx_id: str, timeout_seconds: float):
        self.tx_id = tx_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"transaction {tx_id} not confirmed after {timeout_seconds}s")


# =============================================================================
# STORE ERRORS
# =============================================================================

class StoreError(TradeDocError):
    """Convenience-copy store failure."""
    pass


class DocumentNotFound(StoreError, KeyError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"document not found: {document_id}")

    def __str__(self) -> str:
        return f"document not found: {self.document_id}"


class DuplicateDocument(StoreError):
    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"document already stored: {document_id}")


class UnsupportedDocumentType(TradeDocError, ValueError):
    """Document type is not in the configured set of accepted types."""

    def __init__(self, document_type: str, allowed: List[str]):
        self.document_type = document_type
        self.allowed = list(allowed)
        super().__init__(f"unsupported document type {document_type!r} (allowed: {', '.join(self.allowed)})")
