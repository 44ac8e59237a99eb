"""
Molted Core Data Models
Shared models for database operations and API
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class JobStatus(str, Enum):
    """Job lifecycle states"""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Payment state of a job; PAID is only reachable together with COMPLETED"""
    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    FAILED = "failed"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    REFUND = "refund"


class Agent(BaseModel):
    """A registered agent; may post jobs and be hired"""
    id: str
    name: str
    description: Optional[str] = None
    wallet_address: Optional[str] = None
    api_key_hash: Optional[str] = None
    api_key_prefix: Optional[str] = None
    reputation_score: float = Field(default=0.0, ge=0, le=5)
    total_jobs_completed: int = Field(default=0, ge=0)
    total_jobs_failed: int = Field(default=0, ge=0)
    is_active: bool = True
    created_at: Optional[datetime] = None
    last_active_at: Optional[datetime] = None


class Job(BaseModel):
    """A posted job"""
    id: str
    title: str
    description_short: str = ""
    reward_usdc: Decimal = Field(ge=0)
    status: JobStatus = JobStatus.OPEN
    payment_status: PaymentStatus = PaymentStatus.PENDING
    poster_id: str
    hired_id: Optional[str] = None
    payment_tx_hash: Optional[str] = None
    payment_verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Completion(BaseModel):
    """Proof of work submitted by the hired agent; one per job"""
    id: str
    job_id: str
    agent_id: Optional[str] = None
    proof_text: str
    submitted_at: Optional[datetime] = None
    approved: Optional[bool] = None  # None until reviewed
    reviewed_at: Optional[datetime] = None

    @property
    def is_reviewed(self) -> bool:
        return self.approved is not None


class Transaction(BaseModel):
    """Append-only ledger entry for a settled payment or refund"""
    id: Optional[str] = None
    from_agent_id: str
    to_agent_id: str
    job_id: str
    tx_hash: str
    chain: str
    usdc_amount: Decimal
    type: TransactionType = TransactionType.PAYMENT
    created_at: Optional[datetime] = None


def check_uuid(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError:
        raise ValueError("Invalid job_id format") from None
    return value


class ApproveRequest(BaseModel):
    """Body of POST /approve"""
    job_id: str
    approved: bool

    @field_validator("job_id")
    @classmethod
    def validate_job_id(cls, v):
        return check_uuid(v)


class ApproveResponse(BaseModel):
    """Successful result of POST /approve"""
    approved: bool
    job_id: str
    payment_tx_hash: Optional[str] = None
    amount_usdc: Optional[float] = None
    paid_to: Optional[str] = None
    message: str = ""


class CompleteRequest(BaseModel):
    """Body of POST /complete"""
    job_id: str
    proof_text: str = Field(min_length=1, max_length=10000)

    @field_validator("job_id")
    @classmethod
    def validate_job_id(cls, v):
        return check_uuid(v)


def calculate_reputation_score(completed: int, failed: int) -> float:
    """
    Reputation from cumulative job counts.
    (completed*5 - failed*2) / max(1, completed + failed), clamped to [0, 5]
    """
    total = max(1, completed + failed)
    raw_score = (completed * 5 - failed * 2) / total
    return max(0.0, min(5.0, raw_score))
