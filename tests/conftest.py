import pytest
from fastapi.testclient import TestClient

from xraycryst.compute import SimulatedFheBackend
from xraycryst.config import Settings
from xraycryst.ledger import InMemoryLedger
from xraycryst.service.main import create_app
from xraycryst.service.rate_limit import RateLimiter
from xraycryst.store import RecordStore
from xraycryst.wallet import LocalWalletSigner
from xraycryst.workflow import WorkflowEngine


@pytest.fixture
def ledger():
    return InMemoryLedger(signer=LocalWalletSigner.generate())


@pytest.fixture
def backend():
    return SimulatedFheBackend(fail_on=lambda payload: payload.startswith(b"FAIL"))


@pytest.fixture
def engine(ledger, backend):
    return WorkflowEngine(RecordStore(ledger), backend)


@pytest.fixture
def make_client(engine):
    def _make(submit_rpm=1000, advance_rpm=1000):
        app = create_app(
            engine=engine,
            settings=Settings(),
            submit_limiter=RateLimiter(submit_rpm),
            advance_limiter=RateLimiter(advance_rpm),
        )
        return TestClient(app)
    return _make


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def owner():
    return LocalWalletSigner.generate()


@pytest.fixture
def stranger():
    return LocalWalletSigner.generate()
