import itertools
import os
import pathlib
import sys
from types import SimpleNamespace

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import tradedoc`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from tradedoc.config import get_config_manager  # noqa: E402
from tradedoc.identity import Identity  # noqa: E402
from tradedoc.ledger import InMemoryLedger  # noqa: E402
from tradedoc.lifecycle import Caller, Capability, DocumentLifecycle  # noqa: E402
from tradedoc.registry import DocumentRegistry  # noqa: E402
from tradedoc.service import DocumentService, LedgerClient  # noqa: E402
from tradedoc.store import FileDocumentStore  # noqa: E402

ORG_ID = "ORG-ACME"
REGISTRY_ADMIN = "did:example:registry-admin"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless TRADEDOC_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('TRADEDOC_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set TRADEDOC_RUN_SLOW=1 to enable'))


# =============================================================================
# CONFIGURATION ISOLATION
# =============================================================================

@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Every test starts from default configuration with no TRADEDOC_* env overrides."""
    for name in list(os.environ):
        if name.startswith("TRADEDOC_") and not name.startswith("TRADEDOC_RUN_"):
            monkeypatch.delenv(name, raising=False)
    get_config_manager().reset()
    yield
    get_config_manager().reset()


# =============================================================================
# LIFECYCLE FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Deterministic, strictly increasing unix-seconds clock."""
    counter = itertools.count(1_700_000_000)
    return lambda: next(counter)


@pytest.fixture
def registry():
    return DocumentRegistry(REGISTRY_ADMIN)


@pytest.fixture
def lifecycle(registry, clock):
    return DocumentLifecycle(registry, clock=clock)


@pytest.fixture
def callers():
    return SimpleNamespace(
        issuer=Caller("did:example:issuer", frozenset({Capability.ISSUER})),
        signer=Caller("did:example:signer", frozenset({Capability.SIGNER})),
        signer2=Caller("did:example:signer2", frozenset({Capability.SIGNER})),
        revoker=Caller("did:example:revoker", frozenset({Capability.REVOKER})),
        nobody=Caller("did:example:nobody"),
    )


# =============================================================================
# LEDGER FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def identities():
    """Ed25519 identities are slow-ish to generate; share them per session."""
    return SimpleNamespace(
        factory=Identity.generate(),
        store_admin=Identity.generate(),
        issuer=Identity.generate(),
        signer=Identity.generate(),
        revoker=Identity.generate(),
        outsider=Identity.generate(),
    )


def _client(ledger, identity):
    return LedgerClient(ledger, identity, timeout_seconds=1.0, poll_interval_seconds=0.01)


@pytest.fixture
def ledger(identities, clock):
    """Ledger with one organisation store and issuer / signer / revoker roles granted."""
    led = InMemoryLedger(identities.factory.did, clock=clock)
    _client(led, identities.factory).create_store(ORG_ID, identities.store_admin.did)

    admin = _client(led, identities.store_admin)
    admin.grant_role(ORG_ID, identities.issuer.did, Capability.ISSUER)
    admin.grant_role(ORG_ID, identities.signer.did, Capability.SIGNER)
    admin.grant_role(ORG_ID, identities.revoker.did, Capability.REVOKER)
    return led


@pytest.fixture
def clients(ledger, identities):
    return SimpleNamespace(
        factory=_client(ledger, identities.factory),
        store_admin=_client(ledger, identities.store_admin),
        issuer=_client(ledger, identities.issuer),
        signer=_client(ledger, identities.signer),
        revoker=_client(ledger, identities.revoker),
        outsider=_client(ledger, identities.outsider),
    )


# =============================================================================
# STORE / SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def doc_store(tmp_path):
    return FileDocumentStore(tmp_path / "documents")


@pytest.fixture
def services(clients, doc_store):
    """One DocumentService per role, all sharing the ledger and the store."""
    return SimpleNamespace(
        issuer=DocumentService(clients.issuer, doc_store, ORG_ID),
        signer=DocumentService(clients.signer, doc_store, ORG_ID),
        revoker=DocumentService(clients.revoker, doc_store, ORG_ID),
        outsider=DocumentService(clients.outsider, doc_store, ORG_ID),
    )


@pytest.fixture
def invoice():
    return {
        "invoiceNumber": "INV-2024-0042",
        "seller": {"name": "Acme Trading", "country": "AE"},
        "buyer": {"name": "Globex", "country": "KZ"},
        "lines": [
            {"sku": "WIDGET-1", "quantity": 10, "unitPrice": 12.5},
            {"sku": "WIDGET-2", "quantity": 3, "unitPrice": 99},
        ],
        "paid": False,
        "notes": None,
    }
