"""
x402 Payment Gate
Classifies the proof carried in the x-payment header and dispatches it to
the on-chain or facilitator verifier.
"""

import re
from typing import Optional, Tuple

import structlog

from molted.config import NetworkInfo
from molted.payments.amounts import AmountLike, to_base_units
from molted.payments.facilitator import FacilitatorVerifier
from molted.payments.models import (
    PaymentProof,
    PaymentRequiredResponse,
    PaymentRequirement,
    ReceiptProof,
    TxHashProof,
    VerificationResult,
)
from molted.payments.requirements import build_payment_required_response, build_payment_requirement
from molted.payments.verifier import OnChainVerifier

logger = structlog.get_logger()

TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")


def parse_proof(header_value: Optional[str]) -> Optional[PaymentProof]:
    """
    Classify a payment header value.

    A 0x-prefixed 64 hex digit string is a transaction hash; any other
    non-empty value is a facilitator receipt.
    """
    if not header_value or not header_value.strip():
        return None

    value = header_value.strip()
    if TX_HASH_PATTERN.match(value):
        return TxHashProof(value=value)
    return ReceiptProof(value=value)


class PaymentGate:
    """Server-side x402 authorization for a single payment"""

    def __init__(
        self,
        network: NetworkInfo,
        onchain_verifier: OnChainVerifier,
        facilitator_verifier: FacilitatorVerifier,
    ):
        self.network = network
        self.onchain_verifier = onchain_verifier
        self.facilitator_verifier = facilitator_verifier

    async def authorize(
        self,
        proof: Optional[PaymentProof],
        expected_from: str,
        expected_to: str,
        expected_amount: AmountLike,
    ) -> VerificationResult:
        """
        Verify a payment proof against the expected transfer.

        Args:
            proof: Parsed proof, or None when the header was absent
            expected_from: Payer address (not checked for receipts; the
                facilitator's signature establishes the sender)
            expected_to: Payee address
            expected_amount: Required amount in USDC

        Raises:
            PaymentInfrastructureError: verifier backend unreachable
        """
        if proof is None:
            return VerificationResult.failure("No payment header provided")

        required_units = to_base_units(expected_amount)

        if isinstance(proof, TxHashProof):
            logger.debug("payment_proof_tx_hash", tx_hash=proof.value)
            result = await self.onchain_verifier.verify(
                proof.value, expected_from, expected_to, required_units
            )
            return result.model_copy(update={"tx_hash": proof.value})

        if isinstance(proof, ReceiptProof):
            logger.debug("payment_proof_receipt")
            return await self.facilitator_verifier.verify(proof.value, expected_to, required_units)

        raise TypeError(f"Unsupported payment proof: {proof!r}")

    def payment_required(
        self,
        pay_to: str,
        amount: AmountLike,
        job_id: str,
        description: str,
    ) -> Tuple[PaymentRequirement, PaymentRequiredResponse]:
        """Build a fresh requirement and the 402 body that carries it"""
        requirement = build_payment_requirement(pay_to, amount, job_id, description, self.network)
        return requirement, build_payment_required_response(requirement, amount)
