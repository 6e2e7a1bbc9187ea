"""Global document registry.

One admin identity manages:
- per-document signer allow-lists (revocable)
- per-document-type required signer counts (default 1)

The registry never touches lifecycle state; DocumentLifecycle consults it
as its SignerAllowList.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Set

from tradedoc.errors import NotAllowed
from tradedoc.observability import Layer, get_logger

log = get_logger("registry", Layer.LIFECYCLE)

DEFAULT_REQUIRED_SIGNERS = 1


class DocumentRegistry:
    def __init__(self, admin: str):
        if not admin:
            raise ValueError("registry admin must be non-empty")
        self.admin = admin
        self._lock = threading.Lock()
        self._allowed: Dict[str, Set[str]] = {}
        self._required: Dict[str, int] = {}

    def _require_admin(self, caller: str, target: str) -> None:
        if caller != self.admin:
            raise NotAllowed(target, f"{caller} is not the registry admin")

    def set_signer_for_document(self, caller: str, document_id: str, signer: str, allowed: bool = True) -> None:
        """Add or remove ``signer`` from the allow-list of ``document_id``."""
        self._require_admin(caller, document_id)
        if not document_id or not signer:
            raise ValueError("document_id and signer must be non-empty")
        with self._lock:
            signers = self._allowed.setdefault(document_id, set())
            if allowed:
                signers.add(signer)
            else:
                signers.discard(signer)
        log.info(
            "signer allow-list updated",
            operation="set_signer_for_document",
            document_id=document_id,
            signer=signer,
            allowed=allowed,
        )

    def allowed_signer_for_document(self, document_id: str, signer: str) -> bool:
        with self._lock:
            return signer in self._allowed.get(document_id, ())

    def allowed_signers(self, document_id: str) -> List[str]:
        with self._lock:
            return sorted(self._allowed.get(document_id, ()))

    def set_required_signer_count(self, caller: str, document_type: str, count: int) -> None:
        self._require_admin(caller, document_type)
        if isinstance(count, bool) or not isinstance(count, int) or count < 1:
            raise ValueError(f"required signer count must be a positive integer, got {count!r}")
        with self._lock:
            self._required[document_type] = count
        log.info(
            "required signer count updated",
            operation="set_required_signer_count",
            document_type=document_type,
            count=count,
        )

    def required_signer_count(self, document_type: str) -> int:
        with self._lock:
            return self._required.get(document_type, DEFAULT_REQUIRED_SIGNERS)
