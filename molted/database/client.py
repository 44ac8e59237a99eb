"""
Supabase database client for Molted
Provides type-safe database operations for the approval and payment flow
"""

import uuid
from datetime import datetime
from typing import Optional

from postgrest.exceptions import APIError
from supabase import create_client, Client

from molted.config import get_marketplace_config
from molted.errors import ConfigError
from molted.models import (
    Agent,
    Completion,
    Job,
    JobStatus,
    PaymentStatus,
    Transaction,
)


# Postgres unique_violation
UNIQUE_VIOLATION = "23505"


def _utcnow_iso() -> str:
    return datetime.utcnow().isoformat()


class DatabaseClient:
    """
    Supabase client for Molted operations.

    State transitions that must happen at most once (paying a job, reviewing
    a completion) are conditional updates; they return False when another
    caller got there first.
    """

    def __init__(self, supabase_url: str, supabase_key: str, client: Optional[Client] = None):
        """Initialize Supabase client"""
        self.client: Client = client or create_client(supabase_url, supabase_key)

    # ===== AGENT OPERATIONS =====

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        result = self.client.table("agents").select("*").eq("id", agent_id).execute()
        return Agent(**result.data[0]) if result.data else None

    async def get_agent_by_api_key_hash(self, api_key_hash: str) -> Optional[Agent]:
        """Look up an active agent by SHA-256 hash of its API key"""
        result = (
            self.client.table("agents")
            .select("*")
            .eq("api_key_hash", api_key_hash)
            .eq("is_active", True)
            .execute()
        )
        return Agent(**result.data[0]) if result.data else None

    async def touch_agent(self, agent_id: str) -> None:
        """Update the agent's last_active_at timestamp"""
        self.client.table("agents").update({
            "last_active_at": _utcnow_iso()
        }).eq("id", agent_id).execute()

    async def update_agent_stats(
        self,
        agent_id: str,
        total_jobs_completed: int,
        total_jobs_failed: int,
        reputation_score: float
    ) -> None:
        self.client.table("agents").update({
            "total_jobs_completed": total_jobs_completed,
            "total_jobs_failed": total_jobs_failed,
            "reputation_score": reputation_score,
        }).eq("id", agent_id).execute()

    # ===== JOB OPERATIONS =====

    async def get_job(self, job_id: str) -> Optional[Job]:
        result = self.client.table("jobs").select("*").eq("id", job_id).execute()
        return Job(**result.data[0]) if result.data else None

    async def mark_job_paid(self, job_id: str, tx_hash: str, verified_at: datetime) -> bool:
        """
        Mark an in-progress job completed and paid.
        Only succeeds if the job is not already paid and no other job holds
        tx_hash (enforced by the unique index on jobs.payment_tx_hash).
        """
        if await self.get_job_by_payment_tx_hash(tx_hash):
            return False

        try:
            result = self.client.table("jobs").update({
                "status": JobStatus.COMPLETED.value,
                "payment_status": PaymentStatus.PAID.value,
                "payment_tx_hash": tx_hash,
                "payment_verified_at": verified_at.isoformat(),
            }).eq("id", job_id).eq("status", JobStatus.IN_PROGRESS.value).neq(
                "payment_status", PaymentStatus.PAID.value
            ).execute()
        except APIError as e:
            if e.code == UNIQUE_VIOLATION:
                return False
            raise

        return len(result.data) > 0

    async def get_job_by_payment_tx_hash(self, tx_hash: str) -> Optional[Job]:
        result = self.client.table("jobs").select("*").ilike("payment_tx_hash", tx_hash).execute()
        return Job(**result.data[0]) if result.data else None

    async def mark_job_rejected(self, job_id: str) -> bool:
        """Mark an in-progress job rejected with payment failed"""
        result = self.client.table("jobs").update({
            "status": JobStatus.REJECTED.value,
            "payment_status": PaymentStatus.FAILED.value,
        }).eq("id", job_id).eq("status", JobStatus.IN_PROGRESS.value).execute()

        return len(result.data) > 0

    # ===== COMPLETION OPERATIONS =====

    async def get_completion_for_job(self, job_id: str) -> Optional[Completion]:
        result = self.client.table("completions").select("*").eq("job_id", job_id).execute()
        return Completion(**result.data[0]) if result.data else None

    async def create_completion(self, job_id: str, agent_id: str, proof_text: str) -> Optional[Completion]:
        """
        Insert a completion for a job.
        Returns None if the job already has one.
        """
        if await self.get_completion_for_job(job_id):
            return None

        result = self.client.table("completions").insert({
            "job_id": job_id,
            "agent_id": agent_id,
            "proof_text": proof_text,
            "submitted_at": _utcnow_iso(),
        }).execute()
        return Completion(**result.data[0])

    async def review_completion(self, completion_id: str, approved: bool, reviewed_at: datetime) -> bool:
        """Record the poster's decision; only succeeds while the completion is unreviewed"""
        result = self.client.table("completions").update({
            "approved": approved,
            "reviewed_at": reviewed_at.isoformat(),
        }).eq("id", completion_id).is_("approved", "null").execute()

        return len(result.data) > 0

    # ===== LEDGER OPERATIONS =====

    async def record_transaction(self, transaction: Transaction) -> Transaction:
        """Append a ledger entry"""
        data = transaction.model_dump(mode="json", exclude={"id", "created_at"})
        data["id"] = transaction.id or str(uuid.uuid4())
        result = self.client.table("transactions").insert(data).execute()
        return Transaction(**result.data[0])

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[Transaction]:
        result = self.client.table("transactions").select("*").ilike("tx_hash", tx_hash).execute()
        return Transaction(**result.data[0]) if result.data else None


# Singleton instance
_db_client = None


def get_db_client():
    """
    Get or create singleton database client
    Backend is chosen by DATABASE_BACKEND; supabase needs SUPABASE_URL and
    SUPABASE_SERVICE_ROLE_KEY
    """
    global _db_client

    if _db_client is None:
        config = get_marketplace_config()

        if config.database_backend == "memory":
            from molted.database.memory import InMemoryDatabase
            _db_client = InMemoryDatabase()
        else:
            if not config.supabase_url or not config.supabase_service_role_key:
                raise ConfigError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in environment, "
                    "or set DATABASE_BACKEND=memory for local development."
                )
            _db_client = DatabaseClient(config.supabase_url, config.supabase_service_role_key)

    return _db_client
