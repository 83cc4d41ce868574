import pytest
from fastapi.testclient import TestClient

from willvault.escrow import KeyEscrow
from willvault.ledger import InMemoryAccessLedger
from willvault.service.db import SqliteDurableStore
from willvault.service.main import create_app, store_certificate_verifier


@pytest.fixture
def escrow():
    return KeyEscrow.generate()


@pytest.fixture
def store(tmp_path):
    s = SqliteDurableStore(tmp_path / "willvault.db")
    yield s
    s.close()


@pytest.fixture
def ledger(store, escrow):
    return InMemoryAccessLedger(certificate_verifier=store_certificate_verifier(store), escrow=escrow)


@pytest.fixture
def app(store, ledger):
    return create_app(store=store, ledger=ledger)


@pytest.fixture
def client(app):
    # Fresh app per test for isolation
    with TestClient(app) as c:
        yield c
