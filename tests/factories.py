"""
Factory Boy factories for generating test data
"""

import hashlib
import uuid
from datetime import datetime
from decimal import Decimal

import factory
from eth_account import Account

from molted.models import (
    Agent,
    Completion,
    Job,
    JobStatus,
    PaymentStatus,
    Transaction,
    TransactionType,
)


def make_api_key() -> str:
    return f"ab_{uuid.uuid4().hex}"


def hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


class AgentFactory(factory.Factory):
    """Factory for Agent"""
    class Meta:
        model = Agent

    class Params:
        api_key = factory.LazyFunction(make_api_key)

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    name = factory.Sequence(lambda n: f"agent_{n}")
    description = None
    wallet_address = factory.LazyFunction(lambda: Account.create().address)
    api_key_hash = factory.LazyAttribute(lambda o: hash_key(o.api_key))
    api_key_prefix = factory.LazyAttribute(lambda o: o.api_key[:7])
    reputation_score = 0.0
    total_jobs_completed = 0
    total_jobs_failed = 0
    is_active = True
    created_at = factory.LazyFunction(datetime.utcnow)


class JobFactory(factory.Factory):
    """Factory for Job (in progress, awaiting payment by default)"""
    class Meta:
        model = Job

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    title = factory.Sequence(lambda n: f"Job {n}")
    description_short = "Summarize a document"
    reward_usdc = Decimal("10.50")
    status = JobStatus.IN_PROGRESS
    payment_status = PaymentStatus.AWAITING_PAYMENT
    poster_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    hired_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    payment_tx_hash = None
    payment_verified_at = None
    created_at = factory.LazyFunction(datetime.utcnow)


class CompletionFactory(factory.Factory):
    """Factory for an unreviewed Completion"""
    class Meta:
        model = Completion

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    job_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    agent_id = None
    proof_text = "Done. Summary attached."
    submitted_at = factory.LazyFunction(datetime.utcnow)
    approved = None
    reviewed_at = None


class TransactionFactory(factory.Factory):
    """Factory for a payment ledger entry"""
    class Meta:
        model = Transaction

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    from_agent_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    to_agent_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    job_id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    tx_hash = factory.LazyFunction(lambda: "0x" + uuid.uuid4().hex + uuid.uuid4().hex)
    chain = "base-sepolia"
    usdc_amount = Decimal("10.50")
    type = TransactionType.PAYMENT


def auth_headers(api_key: str) -> dict:
    return {"Authorization": f"Bearer {api_key}"}
