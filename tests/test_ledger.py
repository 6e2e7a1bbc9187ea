"""
Ledger boundary tests: authentication, replay protection, ordering and
role administration on the in-memory reference ledger.

Run with: pytest tests/test_ledger.py -v
"""

import json

import pytest

from tests.conftest import ORG_ID
from tradedoc.errors import (
    AlreadyExists,
    ConfirmationTimeout,
    InvalidTransaction,
    MissingCapability,
    NotAllowed,
    NotSignable,
)
from tradedoc.identity import (
    Identity,
    SignedTransaction,
    b58decode,
    b58encode,
    did_key_from_ed25519_public_key,
    ed25519_public_key_from_did_key,
    load_identity,
    sign_transaction,
    verify_signature,
)
from tradedoc.ledger import Action, InMemoryLedger, NonceRegistry, TxStatus
from tradedoc.lifecycle import Capability, DocumentState
from tradedoc.observability import AuditEventType
from tradedoc.service import LedgerClient

ROOT = "ab" * 32


def _issue_tx(identity, document_id="INV-1", **overrides):
    params = {
        "organisation_id": ORG_ID,
        "document_id": document_id,
        "root": ROOT,
        "document_type": "INVOICE",
    }
    params.update(overrides)
    return sign_transaction(identity, "issue", params)


# =============================================================================
# IDENTITIES
# =============================================================================

class TestIdentity:
    """did:key identities and transaction signatures."""

    def test_did_key_round_trip(self):
        identity = Identity.generate()
        assert identity.did.startswith("did:key:z6Mk")
        pub = ed25519_public_key_from_did_key(identity.did)
        assert did_key_from_ed25519_public_key(pub.public_bytes_raw()) == identity.did

    def test_base58_leading_zeros(self):
        data = b"\x00\x00\x01\x02"
        assert b58decode(b58encode(data)) == data

    def test_jwk_round_trip(self, tmp_path):
        identity = Identity.generate()
        path = tmp_path / "key.jwk"
        path.write_text(json.dumps(identity.to_jwk()), encoding="utf-8")
        assert load_identity(path).did == identity.did

    def test_jwk_rejects_other_curves(self):
        with pytest.raises(ValueError):
            Identity.from_jwk({"kty": "EC", "crv": "P-256", "d": "AA"})

    def test_signature_checks(self, identities):
        sig = identities.issuer.sign(b"payload")
        assert verify_signature(identities.issuer.did, b"payload", sig)
        assert not verify_signature(identities.issuer.did, b"other", sig)
        assert not verify_signature(identities.signer.did, b"payload", sig)
        assert not verify_signature("did:web:example.com", b"payload", sig)

    def test_transaction_verifies(self, identities):
        tx = sign_transaction(identities.issuer, "issue", {"document_id": "X"})
        assert tx.verify()
        assert len(tx.nonce) == 32

    def test_tampered_transaction(self, identities):
        tx = sign_transaction(identities.issuer, "issue", {"document_id": "X"})
        tx.params["document_id"] = "Y"
        assert not tx.verify()

    def test_unsigned_transaction(self, identities):
        tx = SignedTransaction(identities.issuer.did, "issue", {}, "n", "2024-01-01T00:00:00Z")
        assert not tx.verify()


# =============================================================================
# SUBMISSION
# =============================================================================

class TestSubmission:
    """Authentication, nonces and receipts."""

    def test_confirmed_receipt(self, ledger, identities):
        tx_id = ledger.submit(_issue_tx(identities.issuer))
        receipt = ledger.receipt(tx_id)
        assert tx_id.startswith("0x") and len(tx_id) == 66
        assert receipt.status is TxStatus.CONFIRMED
        assert receipt.is_final
        assert receipt.result["document_hash"] == ROOT
        assert receipt.to_dict()["error_code"] is None

    def test_bad_signature_rejected(self, ledger, identities):
        tx = _issue_tx(identities.issuer)
        tx.params["root"] = "cd" * 32
        receipt = ledger.receipt(ledger.submit(tx))
        assert receipt.status is TxStatus.FAILED
        assert receipt.error_code == "InvalidTransaction"
        assert not ledger.is_issued(ORG_ID, "INV-1")
        assert ledger.audit.get_events(event_type=AuditEventType.SIGNATURE_INVALID)

    def test_forged_sender_rejected(self, ledger, identities):
        tx = _issue_tx(identities.outsider)
        tx.sender = identities.issuer.did
        receipt = ledger.receipt(ledger.submit(tx))
        assert receipt.status is TxStatus.FAILED
        assert not ledger.is_issued(ORG_ID, "INV-1")

    def test_replayed_transaction_rejected(self, ledger, identities):
        tx = _issue_tx(identities.issuer)
        assert ledger.receipt(ledger.submit(tx)).status is TxStatus.CONFIRMED
        replay = ledger.receipt(ledger.submit(tx))
        assert replay.status is TxStatus.FAILED
        assert replay.error_code == "InvalidTransaction"
        assert "nonce" in replay.error_message

    def test_unknown_action(self, ledger, identities):
        receipt = ledger.receipt(ledger.submit(sign_transaction(identities.issuer, "selfdestruct")))
        assert receipt.status is TxStatus.FAILED
        assert receipt.error_code == "InvalidTransaction"

    def test_missing_params(self, ledger, identities):
        tx = sign_transaction(identities.issuer, "issue", {"organisation_id": ORG_ID})
        assert ledger.receipt(ledger.submit(tx)).error_code == "InvalidTransaction"

    def test_unknown_organisation(self, ledger, identities):
        receipt = ledger.receipt(ledger.submit(_issue_tx(identities.issuer, organisation_id="ORG-NOPE")))
        assert receipt.status is TxStatus.FAILED
        assert "unknown organisation" in receipt.error_message

    def test_unknown_tx_id(self, ledger):
        with pytest.raises(InvalidTransaction):
            ledger.receipt("0xdeadbeef")

    def test_lifecycle_error_code_in_receipt(self, ledger, identities):
        ledger.submit(_issue_tx(identities.issuer))
        receipt = ledger.receipt(ledger.submit(_issue_tx(identities.issuer)))
        assert receipt.status is TxStatus.FAILED
        assert receipt.error_code == "AlreadyExists"
        rejected = ledger.audit.get_events(event_type=AuditEventType.TRANSITION_REJECTED)
        assert rejected[-1].details["error_code"] == "AlreadyExists"


class TestNonceRegistry:
    def test_single_use_per_sender(self):
        nonces = NonceRegistry()
        assert nonces.check_and_register("did:a", "n1")
        assert not nonces.check_and_register("did:a", "n1")
        assert nonces.check_and_register("did:b", "n1")
        assert nonces.size() == 2


# =============================================================================
# ORDERING
# =============================================================================

class TestPendingQueue:
    """Transactions stay pending until processed, then apply in order."""

    @pytest.fixture
    def manual(self, identities, clock):
        led = InMemoryLedger(identities.factory.did, auto_confirm=False, clock=clock)
        led.submit(sign_transaction(identities.factory, "create_store", {
            "organisation_id": ORG_ID, "store_admin": identities.store_admin.did,
        }))
        led.process_pending()
        for identity, role in ((identities.issuer, "issuer"), (identities.revoker, "revoker")):
            led.submit(sign_transaction(identities.store_admin, "grant_role", {
                "organisation_id": ORG_ID, "account": identity.did, "role": role,
            }))
        led.process_pending()
        return led

    def test_pending_until_processed(self, manual, identities):
        tx_id = manual.submit(_issue_tx(identities.issuer))
        assert manual.receipt(tx_id).status is TxStatus.PENDING
        assert not manual.receipt(tx_id).is_final
        assert not manual.is_issued(ORG_ID, "INV-1")
        assert manual.pending_count() == 1

        assert manual.process_pending() == 1
        assert manual.receipt(tx_id).status is TxStatus.CONFIRMED
        assert manual.is_issued(ORG_ID, "INV-1")

    def test_submission_order(self, manual, identities):
        revoke = manual.submit(sign_transaction(identities.revoker, "revoke", {
            "organisation_id": ORG_ID, "document_id": "INV-1", "reason": 1,
        }))
        issue = manual.submit(_issue_tx(identities.issuer))
        manual.process_pending()
        assert manual.receipt(revoke).error_code == "NotRevocable"
        assert manual.receipt(issue).status is TxStatus.CONFIRMED
        assert manual.receipt(issue).block_number > manual.receipt(revoke).block_number

    def test_client_times_out(self, manual, identities):
        client = LedgerClient(manual, identities.issuer, timeout_seconds=0.05, poll_interval_seconds=0.01)
        with pytest.raises(ConfirmationTimeout) as exc:
            client.call(Action.ISSUE, "INV-1", organisation_id=ORG_ID, document_id="INV-1",
                        root=ROOT, document_type="INVOICE")
        assert exc.value.tx_id.startswith("0x")
        # Still pending, not lost.
        assert manual.pending_count() == 1


# =============================================================================
# ADMINISTRATION
# =============================================================================

class TestAdministration:
    """Factory, store admin and registry admin authority."""

    def test_store_created(self, ledger, identities):
        assert ledger.organisations() == [ORG_ID]
        assert ledger.store(ORG_ID).admin == identities.store_admin.did
        assert ledger.has_role(ORG_ID, identities.issuer.did, Capability.ISSUER)
        assert not ledger.has_role(ORG_ID, identities.issuer.did, Capability.SIGNER)

    def test_only_factory_creates_stores(self, clients):
        with pytest.raises(InvalidTransaction):
            clients.outsider.create_store("ORG-EVIL", clients.outsider.did)

    def test_duplicate_store(self, clients, identities):
        with pytest.raises(InvalidTransaction):
            clients.factory.create_store(ORG_ID, identities.outsider.did)

    def test_only_store_admin_grants_roles(self, clients, identities):
        with pytest.raises(InvalidTransaction):
            clients.issuer.grant_role(ORG_ID, identities.outsider.did, Capability.ISSUER)

    def test_role_revocation_takes_effect(self, clients, identities, ledger):
        clients.store_admin.revoke_role(ORG_ID, identities.issuer.did, Capability.ISSUER)
        with pytest.raises(MissingCapability):
            clients.issuer.call(Action.ISSUE, "INV-1", organisation_id=ORG_ID, document_id="INV-1",
                                root=ROOT, document_type="INVOICE")
        assert not ledger.is_issued(ORG_ID, "INV-1")

    def test_registry_admin_only(self, clients):
        with pytest.raises(NotAllowed):
            clients.store_admin.set_signer_for_document("INV-1", clients.signer.did)
        with pytest.raises(NotAllowed):
            clients.outsider.set_required_signer_count("INVOICE", 2)

    def test_required_signer_count(self, clients, ledger):
        clients.factory.set_required_signer_count("INVOICE", 2)
        assert ledger.required_signer_count("INVOICE") == 2

    def test_invalid_role_name(self, ledger, identities):
        tx = sign_transaction(identities.store_admin, "grant_role", {
            "organisation_id": ORG_ID, "account": identities.outsider.did, "role": "emperor",
        })
        assert ledger.receipt(ledger.submit(tx)).error_code == "InvalidTransaction"


# =============================================================================
# LIFECYCLE THROUGH THE LEDGER
# =============================================================================

class TestLifecycleThroughLedger:
    def _issue(self, clients, document_id="INV-1"):
        return clients.issuer.call(Action.ISSUE, document_id, organisation_id=ORG_ID,
                                   document_id=document_id, root=ROOT, document_type="INVOICE")

    def test_full_flow_and_events(self, clients, ledger):
        self._issue(clients)
        clients.factory.set_signer_for_document("INV-1", clients.signer.did)
        receipt = clients.signer.call(Action.SIGN, "INV-1", organisation_id=ORG_ID, document_id="INV-1")
        assert receipt.result["signer"] == clients.signer.did
        clients.revoker.call(Action.REVOKE, "INV-1", organisation_id=ORG_ID, document_id="INV-1", reason=2)

        meta = ledger.get_meta(ORG_ID, "INV-1")
        assert meta.state is DocumentState.REVOKED
        assert ledger.signed_at(ORG_ID, "INV-1", clients.signer.did) == receipt.result["signed_at"]
        assert ledger.is_signed(ORG_ID, "INV-1")
        assert [e["event"] for e in ledger.events("INV-1")] == [
            "DocumentIssued", "DocumentSigned", "DocumentRevoked",
        ]
        assert all(e["organisation_id"] == ORG_ID for e in ledger.events())

    def test_errors_reraised_with_code(self, clients):
        self._issue(clients)
        with pytest.raises(AlreadyExists) as exc:
            self._issue(clients)
        assert exc.value.document_id == "INV-1"

    def test_sign_unknown_document(self, clients):
        clients.factory.set_signer_for_document("INV-404", clients.signer.did)
        with pytest.raises(NotSignable):
            clients.signer.call(Action.SIGN, "INV-404", organisation_id=ORG_ID, document_id="INV-404")

    def test_reads_for_unknown_organisation(self, ledger):
        assert ledger.get_meta("ORG-NOPE", "X") is None
        assert not ledger.is_issued("ORG-NOPE", "X")
        assert ledger.signed_at("ORG-NOPE", "X", "did:a") == 0
        assert ledger.signers("ORG-NOPE", "X") == []
        assert ledger.signature_status("ORG-NOPE", "X").required == 0

    def test_audit_chain_intact(self, clients, ledger):
        self._issue(clients)
        ok, broken_at = ledger.audit.verify_chain()
        assert ok and broken_at is None
        assert ledger.audit.get_events(event_type=AuditEventType.DOCUMENT_ISSUED)
