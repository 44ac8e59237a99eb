"""
In-memory database backend
Same surface as DatabaseClient; used for local development and tests
"""

import asyncio
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from molted.models import (
    Agent,
    Completion,
    Job,
    JobStatus,
    PaymentStatus,
    Transaction,
)


class InMemoryDatabase:
    """
    Dict-backed store.

    Conditional updates run under a single lock so they keep the same
    at-most-once semantics as the Supabase filters.
    """

    def __init__(self):
        self.agents: Dict[str, Agent] = {}
        self.jobs: Dict[str, Job] = {}
        self.completions: Dict[str, Completion] = {}
        self.transactions: List[Transaction] = []
        self._lock = asyncio.Lock()

    # ===== SEEDING =====

    def add_agent(self, agent: Agent) -> Agent:
        self.agents[agent.id] = agent
        return agent

    def add_job(self, job: Job) -> Job:
        self.jobs[job.id] = job
        return job

    def add_completion(self, completion: Completion) -> Completion:
        self.completions[completion.id] = completion
        return completion

    # ===== AGENT OPERATIONS =====

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        agent = self.agents.get(agent_id)
        return agent.model_copy() if agent else None

    async def get_agent_by_api_key_hash(self, api_key_hash: str) -> Optional[Agent]:
        for agent in self.agents.values():
            if agent.api_key_hash == api_key_hash and agent.is_active:
                return agent.model_copy()
        return None

    async def touch_agent(self, agent_id: str) -> None:
        agent = self.agents.get(agent_id)
        if agent is not None:
            self.agents[agent_id] = agent.model_copy(update={"last_active_at": datetime.utcnow()})

    async def update_agent_stats(
        self,
        agent_id: str,
        total_jobs_completed: int,
        total_jobs_failed: int,
        reputation_score: float
    ) -> None:
        agent = self.agents.get(agent_id)
        if agent is None:
            return
        self.agents[agent_id] = agent.model_copy(update={
            "total_jobs_completed": total_jobs_completed,
            "total_jobs_failed": total_jobs_failed,
            "reputation_score": reputation_score,
        })

    # ===== JOB OPERATIONS =====

    async def get_job(self, job_id: str) -> Optional[Job]:
        job = self.jobs.get(job_id)
        return job.model_copy() if job else None

    async def mark_job_paid(self, job_id: str, tx_hash: str, verified_at: datetime) -> bool:
        async with self._lock:
            job = self.jobs.get(job_id)
            if (
                job is None
                or job.status != JobStatus.IN_PROGRESS
                or job.payment_status == PaymentStatus.PAID
                or self._paid_job_for(tx_hash) is not None
            ):
                return False
            self.jobs[job_id] = job.model_copy(update={
                "status": JobStatus.COMPLETED,
                "payment_status": PaymentStatus.PAID,
                "payment_tx_hash": tx_hash,
                "payment_verified_at": verified_at,
            })
            return True

    async def get_job_by_payment_tx_hash(self, tx_hash: str) -> Optional[Job]:
        job = self._paid_job_for(tx_hash)
        return job.model_copy() if job else None

    def _paid_job_for(self, tx_hash: str) -> Optional[Job]:
        for job in self.jobs.values():
            if job.payment_tx_hash and job.payment_tx_hash.lower() == tx_hash.lower():
                return job
        return None

    async def mark_job_rejected(self, job_id: str) -> bool:
        async with self._lock:
            job = self.jobs.get(job_id)
            if job is None or job.status != JobStatus.IN_PROGRESS:
                return False
            self.jobs[job_id] = job.model_copy(update={
                "status": JobStatus.REJECTED,
                "payment_status": PaymentStatus.FAILED,
            })
            return True

    # ===== COMPLETION OPERATIONS =====

    async def get_completion_for_job(self, job_id: str) -> Optional[Completion]:
        for completion in self.completions.values():
            if completion.job_id == job_id:
                return completion.model_copy()
        return None

    async def create_completion(self, job_id: str, agent_id: str, proof_text: str) -> Optional[Completion]:
        async with self._lock:
            if any(c.job_id == job_id for c in self.completions.values()):
                return None
            completion = Completion(
                id=str(uuid.uuid4()),
                job_id=job_id,
                agent_id=agent_id,
                proof_text=proof_text,
                submitted_at=datetime.utcnow(),
            )
            self.completions[completion.id] = completion
            return completion.model_copy()

    async def review_completion(self, completion_id: str, approved: bool, reviewed_at: datetime) -> bool:
        async with self._lock:
            completion = self.completions.get(completion_id)
            if completion is None or completion.approved is not None:
                return False
            self.completions[completion_id] = completion.model_copy(update={
                "approved": approved,
                "reviewed_at": reviewed_at,
            })
            return True

    # ===== LEDGER OPERATIONS =====

    async def record_transaction(self, transaction: Transaction) -> Transaction:
        entry = transaction.model_copy(update={
            "id": transaction.id or str(uuid.uuid4()),
            "created_at": transaction.created_at or datetime.utcnow(),
        })
        self.transactions.append(entry)
        return entry

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        for entry in self.transactions:
            if entry.tx_hash.lower() == tx_hash.lower():
                return entry
        return None
