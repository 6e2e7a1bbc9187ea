"""Salted Merkle commitment engine.

Builds a single root over the bag of salted primitives in a document.

Hashing:
- SHA-256 by default (SHA3-256 selectable)
- leaf = H(utf8("salt:type:value"))
- node = H(left_32_bytes || right_32_bytes)

Tree construction:
- leaves are sorted ascending by raw bytes before pairing, so the root does
  not depend on traversal order or document shape
- each level pairs adjacent nodes; an odd last node is paired with itself
- an empty leaf set commits to H("")
- a single leaf is its own root

There are no inclusion proofs: verification recomputes the whole root from
a full salted document copy.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from tradedoc.canonical import walk_primitives
from tradedoc.core import digest_bytes, digest_hex, empty_root, normalize_hex32
from tradedoc.errors import MalformedDocument
from tradedoc.observability import Layer, get_logger, timed_operation

log = get_logger("merkle", Layer.MERKLE)


def resolve_algorithm(algorithm: Optional[str]) -> str:
    """Explicit algorithm, else the configured default."""
    if algorithm:
        return algorithm
    from tradedoc.config import get_config
    return get_config().merkle.hash_algorithm.get()


def leaf_hash(salted: str, algorithm: Optional[str] = None) -> str:
    """Hash one salted leaf string."""
    return digest_hex(salted.encode("utf-8"), resolve_algorithm(algorithm))


def node_hash(left_hex: str, right_hex: str, algorithm: Optional[str] = None) -> str:
    """Compute a parent hash from two child hashes (each 32 bytes hex)."""
    left = bytes.fromhex(normalize_hex32(left_hex))
    right = bytes.fromhex(normalize_hex32(right_hex))
    return digest_bytes(left + right, resolve_algorithm(algorithm)).hex()


def collect_salted_leaves(salted_document: Any) -> List[str]:
    """Collect every salted primitive string (DFS, keys and indices ignored)."""
    leaves: List[str] = []
    for path, value in walk_primitives(salted_document):
        if not isinstance(value, str):
            raise MalformedDocument(path, f"salted document leaf must be a string, got {type(value).__name__}")
        leaves.append(value)
    return leaves


def sort_leaves(hashes: Iterable[str]) -> List[str]:
    """Normalize and sort leaf hashes ascending by raw bytes."""
    # Equal-length lowercase hex sorts exactly like the underlying bytes.
    return sorted(normalize_hex32(h) for h in hashes)


@dataclass
class MerkleTree:
    """A fully materialized tree: sorted leaves, every level, and the root."""
    root: str
    leaves: List[str] = field(default_factory=list)
    layers: List[List[str]] = field(default_factory=list)
    algorithm: str = "sha256"

    @property
    def leaf_count(self) -> int:
        return len(self.leaves)

    @property
    def depth(self) -> int:
        return max(len(self.layers) - 1, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "algorithm": self.algorithm,
            "leaf_count": self.leaf_count,
            "depth": self.depth,
            "leaves": list(self.leaves),
        }


def build_tree(leaf_hashes: Iterable[str], algorithm: Optional[str] = None) -> MerkleTree:
    """Build the tree over a collection of leaf hashes.

    Duplicate hashes are kept; callers reproducing a root must pass the same
    multiset of leaves.
    """
    algo = resolve_algorithm(algorithm)
    leaves = sort_leaves(leaf_hashes)

    if not leaves:
        root = empty_root(algo)
        return MerkleTree(root=root, leaves=[], layers=[[root]], algorithm=algo)

    layers: List[List[str]] = [leaves]
    level = leaves
    while len(level) > 1:
        nxt: List[str] = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            nxt.append(node_hash(left, right, algo))
        layers.append(nxt)
        level = nxt

    return MerkleTree(root=level[0], leaves=leaves, layers=layers, algorithm=algo)


def root_from_leaf_hashes(leaf_hashes: Iterable[str], algorithm: Optional[str] = None) -> str:
    """Compute the root from leaf hashes (any order)."""
    return build_tree(leaf_hashes, algorithm).root


def leaf_hashes_from_document(salted_document: Any, algorithm: Optional[str] = None) -> List[str]:
    """Hash every salted leaf of a document and return them sorted."""
    algo = resolve_algorithm(algorithm)
    return sort_leaves(leaf_hash(s, algo) for s in collect_salted_leaves(salted_document))


def tree_from_document(salted_document: Any, algorithm: Optional[str] = None) -> MerkleTree:
    """Build the full tree for a salted document."""
    algo = resolve_algorithm(algorithm)
    return build_tree(leaf_hashes_from_document(salted_document, algo), algo)


def root_from_document(salted_document: Any, algorithm: Optional[str] = None) -> Tuple[str, List[str]]:
    """Compute ``(root, sorted_leaf_hashes)`` for a salted document."""
    tree = tree_from_document(salted_document, algorithm)
    return tree.root, tree.leaves


@timed_operation(log, "compute_roots")
def compute_roots(
    salted_documents: Sequence[Any],
    algorithm: Optional[str] = None,
    max_workers: Optional[int] = None,
) -> List[str]:
    """Compute roots for independent documents concurrently.

    Output order matches input order.
    """
    algo = resolve_algorithm(algorithm)
    if max_workers is None:
        from tradedoc.config import get_config
        max_workers = get_config().merkle.max_workers.get()
    if not salted_documents:
        return []

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(lambda d: root_from_document(d, algo)[0], salted_documents))
