"""
Job approval state machine
Ties x402 payment verification to job, completion, reputation and ledger updates
"""

from datetime import datetime
from enum import Enum
from typing import NoReturn, Optional

import structlog

from molted.config import NetworkInfo
from molted.models import (
    Agent,
    ApproveResponse,
    Job,
    JobStatus,
    PaymentStatus,
    Transaction,
    TransactionType,
    calculate_reputation_score,
)
from molted.payments import (
    PaymentGate,
    PaymentRequiredResponse,
    PaymentRequirement,
    VerificationResult,
    format_usdc,
    parse_proof,
)

logger = structlog.get_logger()


class ApprovalErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


class ApprovalError(Exception):
    """A precondition or store update failed; not retryable as-is"""

    def __init__(self, kind: ApprovalErrorKind, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.tx_hash = tx_hash


class PaymentRequiredError(Exception):
    """No verified payment; the caller must pay the requirement and resubmit"""

    def __init__(
        self,
        requirement: PaymentRequirement,
        body: PaymentRequiredResponse,
        reason: Optional[str] = None,
    ):
        super().__init__(body.message)
        self.requirement = requirement
        self.body = body
        self.reason = reason


class ApprovalStateMachine:
    """
    Reviews a job completion on behalf of the job poster.

    The job row is the serialization point: approval and rejection both start
    their writes with a conditional update on status=in_progress, so only one
    decision (and at most one payment) is ever recorded per job. Later
    bookkeeping steps are not rolled back when one of them fails.
    """

    def __init__(self, db, gate: PaymentGate, network: NetworkInfo):
        self.db = db
        self.gate = gate
        self.network = network

    async def review(
        self,
        caller: Agent,
        job_id: str,
        approved: bool,
        payment_header: Optional[str] = None,
    ) -> ApproveResponse:
        """
        Approve (with payment) or reject a job's completion.

        Raises:
            ApprovalError: a precondition failed or a store update failed
            PaymentRequiredError: approving without a verified payment
            PaymentInfrastructureError: payment verifier unreachable
        """
        job = await self.db.get_job(job_id)
        if job is None:
            raise ApprovalError(ApprovalErrorKind.NOT_FOUND, "Job not found")

        if approved and self._is_settled(job) and job.poster_id == caller.id:
            logger.info("approval_already_settled", job_id=job_id, tx_hash=job.payment_tx_hash)
            return await self._settled_response(job)

        if job.status != JobStatus.IN_PROGRESS:
            raise ApprovalError(
                ApprovalErrorKind.VALIDATION,
                f"Cannot approve/reject a job with status '{job.status.value}'. Job must be 'in_progress'."
            )

        if job.poster_id != caller.id:
            raise ApprovalError(
                ApprovalErrorKind.AUTHORIZATION,
                "Only the job poster can approve or reject this job"
            )

        completion = await self.db.get_completion_for_job(job_id)
        if completion is None:
            raise ApprovalError(
                ApprovalErrorKind.NOT_FOUND,
                "No completion found for this job. The hired agent must submit a completion first."
            )

        if completion.is_reviewed:
            raise ApprovalError(ApprovalErrorKind.VALIDATION, "This completion has already been reviewed")

        hired = await self.db.get_agent(job.hired_id) if job.hired_id else None
        if hired is None:
            logger.error("hired_agent_missing", job_id=job_id, hired_id=job.hired_id)
            raise ApprovalError(ApprovalErrorKind.INTERNAL, "Failed to fetch hired agent")

        if approved:
            return await self._approve(caller, job, completion.id, hired, payment_header)
        return await self._reject(job, completion.id, hired)

    # ===== APPROVE =====

    async def _approve(
        self,
        caller: Agent,
        job: Job,
        completion_id: str,
        hired: Agent,
        payment_header: Optional[str],
    ) -> ApproveResponse:
        if not hired.wallet_address:
            raise ApprovalError(
                ApprovalErrorKind.VALIDATION,
                "Hired agent does not have a wallet address set. Cannot process payment."
            )

        if not caller.wallet_address:
            raise ApprovalError(
                ApprovalErrorKind.AUTHORIZATION,
                "You must have a wallet address set to approve and pay for jobs."
            )

        if job.payment_status == PaymentStatus.PAID:
            raise ApprovalError(
                ApprovalErrorKind.CONFLICT,
                "Payment has already been processed for this job"
            )

        result = await self.gate.authorize(
            parse_proof(payment_header),
            expected_from=caller.wallet_address,
            expected_to=hired.wallet_address,
            expected_amount=job.reward_usdc,
        )
        if result.verified:
            result = await self._check_tx_unused(job, result)

        if not result.verified:
            self._require_payment(job, hired, result.error)

        tx_hash = result.tx_hash
        if not await self.db.mark_job_paid(job.id, tx_hash, datetime.utcnow()):
            current = await self.db.get_job(job.id)
            if current is not None and self._is_settled(current):
                logger.info("approval_lost_race", job_id=job.id, tx_hash=current.payment_tx_hash)
                return await self._settled_response(current)
            reused = await self._check_tx_unused(job, result)
            if not reused.verified:
                self._require_payment(job, hired, reused.error)
            raise ApprovalError(
                ApprovalErrorKind.CONFLICT,
                f"Job is no longer in progress. Payment {tx_hash} was not applied."
            )

        logger.info(
            "job_paid",
            job_id=job.id,
            tx_hash=tx_hash,
            amount=str(job.reward_usdc),
            paid_to=hired.wallet_address
        )

        try:
            now = datetime.utcnow()
            await self.db.review_completion(completion_id, True, now)

            agent = await self.db.get_agent(hired.id) or hired
            completed = agent.total_jobs_completed + 1
            await self.db.update_agent_stats(
                agent.id,
                total_jobs_completed=completed,
                total_jobs_failed=agent.total_jobs_failed,
                reputation_score=calculate_reputation_score(completed, agent.total_jobs_failed),
            )

            await self.db.record_transaction(Transaction(
                from_agent_id=job.poster_id,
                to_agent_id=hired.id,
                job_id=job.id,
                tx_hash=tx_hash,
                chain=self.network.name,
                usdc_amount=job.reward_usdc,
                type=TransactionType.PAYMENT,
            ))
        except Exception as e:
            logger.error("approval_bookkeeping_failed", job_id=job.id, tx_hash=tx_hash, error=str(e))
            raise ApprovalError(
                ApprovalErrorKind.INTERNAL,
                f"Payment verified and job marked paid (TX Hash: {tx_hash}), but bookkeeping failed",
                tx_hash=tx_hash,
            ) from e

        return ApproveResponse(
            approved=True,
            job_id=job.id,
            payment_tx_hash=tx_hash,
            amount_usdc=float(job.reward_usdc),
            paid_to=hired.wallet_address,
            message=f"Job approved and payment of {format_usdc(job.reward_usdc)} USDC verified on {self.network.name}.",
        )

    async def _check_tx_unused(self, job: Job, result: VerificationResult) -> VerificationResult:
        """
        A transfer can settle one job only.
        The job row is written before the ledger entry, so both are checked.
        """
        prior_job_id = None
        paid_job = await self.db.get_job_by_payment_tx_hash(result.tx_hash)
        if paid_job is not None and paid_job.id != job.id:
            prior_job_id = paid_job.id
        else:
            prior = await self.db.get_transaction_by_hash(result.tx_hash)
            if prior is not None and prior.job_id != job.id:
                prior_job_id = prior.job_id

        if prior_job_id is not None:
            logger.warning("payment_tx_reused", job_id=job.id, tx_hash=result.tx_hash, prior_job_id=prior_job_id)
            return VerificationResult.failure(
                f"Transaction {result.tx_hash} has already been used for another job",
                tx_hash=result.tx_hash,
            )
        return result

    def _require_payment(self, job: Job, hired: Agent, reason: Optional[str]) -> NoReturn:
        logger.info("payment_required", job_id=job.id, reason=reason)
        requirement, body = self.gate.payment_required(
            pay_to=hired.wallet_address,
            amount=job.reward_usdc,
            job_id=job.id,
            description=f"Payment for job: {job.title}",
        )
        raise PaymentRequiredError(requirement, body, reason=reason)

    @staticmethod
    def _is_settled(job: Job) -> bool:
        return job.payment_status == PaymentStatus.PAID and bool(job.payment_tx_hash)

    async def _settled_response(self, job: Job) -> ApproveResponse:
        hired = await self.db.get_agent(job.hired_id) if job.hired_id else None
        return ApproveResponse(
            approved=True,
            job_id=job.id,
            payment_tx_hash=job.payment_tx_hash,
            amount_usdc=float(job.reward_usdc),
            paid_to=hired.wallet_address if hired else None,
            message="Job already approved and paid.",
        )

    # ===== REJECT =====

    async def _reject(self, job: Job, completion_id: str, hired: Agent) -> ApproveResponse:
        if not await self.db.mark_job_rejected(job.id):
            raise ApprovalError(ApprovalErrorKind.VALIDATION, "This completion has already been reviewed")

        logger.info("job_rejected", job_id=job.id, hired_id=hired.id)

        try:
            await self.db.review_completion(completion_id, False, datetime.utcnow())

            agent = await self.db.get_agent(hired.id) or hired
            failed = agent.total_jobs_failed + 1
            await self.db.update_agent_stats(
                agent.id,
                total_jobs_completed=agent.total_jobs_completed,
                total_jobs_failed=failed,
                reputation_score=calculate_reputation_score(agent.total_jobs_completed, failed),
            )
        except Exception as e:
            logger.error("rejection_bookkeeping_failed", job_id=job.id, error=str(e))
            raise ApprovalError(
                ApprovalErrorKind.INTERNAL,
                "Job rejected, but updating the completion or agent stats failed"
            ) from e

        return ApproveResponse(
            approved=False,
            job_id=job.id,
            message="Job completion rejected. No payment processed.",
        )
