"""tradedoc.identity

Ed25519 ``did:key`` identities and signed ledger transactions.

Profile / invariants:
- identities are ``did:key`` identifiers (Ed25519 only)
- a transaction's signing input is the canonical JSON bytes of the
  transaction with ``signature`` removed
- signatures are raw Ed25519 bytes encoded as base64url (no padding)
- every transaction carries a fresh random nonce; the ledger rejects reuse
"""

from __future__ import annotations

import base64
import json
import pathlib
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from tradedoc.core import canonical_json_bytes, now_iso8601


# Base58 (bitcoin alphabet), used by did:key multibase
B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii") if isinstance(s, str) else s
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = len(s_bytes) - len(s_bytes.lstrip(B58_ALPHABET[:1]))
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = len(b) - len(b.lstrip(b"\x00"))
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------

_ED25519_MULTICODEC = bytes([0xED, 0x01])


def did_key_from_ed25519_public_key(pub: bytes) -> str:
    return "did:key:z" + b58encode(_ED25519_MULTICODEC + pub)


def ed25519_public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a ``did:key`` (Ed25519) and return a cryptography public key."""
    if not isinstance(did, str) or not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... supported")
    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(_ED25519_MULTICODEC):
        raise ValueError("did:key multicodec prefix not recognized for Ed25519")
    raw = decoded[len(_ED25519_MULTICODEC):]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def _raw_public_bytes(priv: Ed25519PrivateKey) -> bytes:
    return priv.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


@dataclass
class Identity:
    """An Ed25519 keypair and its did:key."""
    private_key: Ed25519PrivateKey = field(repr=False)
    did: str = ""

    def __post_init__(self):
        if not self.did:
            self.did = did_key_from_ed25519_public_key(_raw_public_bytes(self.private_key))

    @classmethod
    def generate(cls) -> "Identity":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_jwk(cls, jwk: Dict[str, Any]) -> "Identity":
        """Load from a private OKP JWK (``{"kty":"OKP","crv":"Ed25519","x":..,"d":..}``)."""
        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Only OKP/Ed25519 JWK is supported")
        if not jwk.get("d"):
            raise ValueError("JWK must include 'd' (private key)")
        return cls(Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"])))

    def to_jwk(self) -> Dict[str, Any]:
        priv_bytes = self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return {
            "kty": "OKP",
            "crv": "Ed25519",
            "x": b64url_encode(_raw_public_bytes(self.private_key)),
            "d": b64url_encode(priv_bytes),
        }

    def sign(self, data: bytes) -> str:
        return b64url_encode(self.private_key.sign(data))


def load_identity(path: Union[str, pathlib.Path]) -> Identity:
    """Load an identity from a JWK file."""
    obj = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("key file must be a JSON object")
    return Identity.from_jwk(obj)


def verify_signature(did: str, data: bytes, signature: str) -> bool:
    """Check a base64url Ed25519 signature against a did:key."""
    try:
        pub = ed25519_public_key_from_did_key(did)
        pub.verify(b64url_decode(signature), data)
        return True
    except (InvalidSignature, ValueError):
        return False


# ---------------------------------------------------------------------------
# Signed transactions
# ---------------------------------------------------------------------------

@dataclass
class SignedTransaction:
    """A ledger call authenticated by its sender's Ed25519 key.

    ``params`` must be canonical-JSON encodable (no floats).
    """
    sender: str
    action: str
    params: Dict[str, Any]
    nonce: str
    created: str
    signature: str = ""

    def signing_input(self) -> bytes:
        return canonical_json_bytes({
            "sender": self.sender,
            "action": self.action,
            "params": self.params,
            "nonce": self.nonce,
            "created": self.created,
        })

    def verify(self) -> bool:
        return bool(self.signature) and verify_signature(self.sender, self.signing_input(), self.signature)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "action": self.action,
            "params": dict(self.params),
            "nonce": self.nonce,
            "created": self.created,
            "signature": self.signature,
        }


def sign_transaction(
    identity: Identity,
    action: str,
    params: Optional[Dict[str, Any]] = None,
    nonce: Optional[str] = None,
) -> SignedTransaction:
    """Build and sign a transaction from ``identity``."""
    tx = SignedTransaction(
        sender=identity.did,
        action=action,
        params=dict(params or {}),
        nonce=nonce or secrets.token_hex(16),
        created=now_iso8601(),
    )
    tx.signature = identity.sign(tx.signing_input())
    return tx
