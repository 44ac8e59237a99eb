"""
Pytest configuration and shared fixtures
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from fastapi.testclient import TestClient

from molted.config import NETWORKS, NetworkInfo
from molted.database import InMemoryDatabase
from molted.marketplace.approval import ApprovalStateMachine
from molted.marketplace.dependencies import get_db, get_payment_gate, limiter
from molted.marketplace.server import app
from molted.payments import FacilitatorVerifier, OnChainVerifier, PaymentGate, VerificationResult
from tests.factories import AgentFactory, CompletionFactory, JobFactory, make_api_key


@pytest.fixture
def network() -> NetworkInfo:
    """Base Sepolia, the default test network"""
    return NETWORKS["base-sepolia"]


@pytest.fixture
def poster_account():
    """Create a test poster (payer) account"""
    return Account.from_key("0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890")


@pytest.fixture
def worker_account():
    """Create a test hired agent (payee) account"""
    return Account.from_key("0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef")


@pytest.fixture
def tx_hash() -> str:
    return "0x" + "ab" * 32


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def marketplace(db, poster_account, worker_account):
    """
    Seed a poster, a hired agent, an in-progress job worth 10.50 USDC and an
    unreviewed completion
    """
    poster_key = make_api_key()
    worker_key = make_api_key()
    poster = db.add_agent(AgentFactory(api_key=poster_key, wallet_address=poster_account.address))
    worker = db.add_agent(AgentFactory(api_key=worker_key, wallet_address=worker_account.address))
    job = db.add_job(JobFactory(poster_id=poster.id, hired_id=worker.id))
    completion = db.add_completion(CompletionFactory(job_id=job.id, agent_id=worker.id))

    return SimpleNamespace(
        poster=poster,
        worker=worker,
        job=job,
        completion=completion,
        poster_key=poster_key,
        worker_key=worker_key,
    )


@pytest.fixture
def onchain_verifier():
    """On-chain verifier double; unverified unless a test says otherwise"""
    verifier = MagicMock(spec=OnChainVerifier)
    verifier.verify = AsyncMock(return_value=VerificationResult.failure("Transaction not found"))
    return verifier


@pytest.fixture
def facilitator_verifier():
    verifier = MagicMock(spec=FacilitatorVerifier)
    verifier.verify = AsyncMock(return_value=VerificationResult.failure("Facilitator did not verify the receipt"))
    verifier.aclose = AsyncMock()
    return verifier


@pytest.fixture
def gate(network, onchain_verifier, facilitator_verifier) -> PaymentGate:
    return PaymentGate(network, onchain_verifier, facilitator_verifier)


@pytest.fixture
def machine(db, gate, network) -> ApprovalStateMachine:
    return ApprovalStateMachine(db, gate, network)


@pytest.fixture
def client(db, gate) -> TestClient:
    """Create FastAPI test client backed by the in-memory store"""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_gate] = lambda: gate
    limiter.enabled = False
    yield TestClient(app)
    app.dependency_overrides.clear()
    limiter.enabled = True
