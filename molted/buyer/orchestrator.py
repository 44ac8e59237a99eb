"""
x402 client payment flow
1. Request approval without proof and receive 402 Payment Required
2. Validate the requirement and check balances
3. Send USDC through the wallet provider
4. Resubmit the approval with the transaction hash
"""

import re
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError

from molted.buyer.api_client import ApiClient
from molted.errors import MoltedError, PaymentError, PaymentVerificationError
from molted.payments import PaymentRequirement, format_base_units, to_base_units
from molted.payments.errors import (
    MIN_ETH_FOR_GAS,
    classify_payment_error,
    create_chain_mismatch_error,
    create_insufficient_eth_error,
    create_insufficient_usdc_error,
    get_explorer_url,
)
from molted.wallet import SendUSDCParams, WalletProvider

logger = structlog.get_logger()

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
AMOUNT_PATTERN = re.compile(r"^[0-9]+$")

WalletFactory = Callable[[], Awaitable[WalletProvider]]


class ApprovalOutcome(BaseModel):
    """Result of a completed approve or reject flow"""
    job_id: str
    approved: bool
    already_settled: bool = False
    payment_tx_hash: Optional[str] = None
    amount_units: Optional[int] = None
    paid_to: Optional[str] = None
    chain_id: Optional[int] = None
    explorer_url: Optional[str] = None
    message: str = ""


def is_payment_required(response: Any) -> bool:
    """True when a response body is an x402 Payment Required challenge"""
    return isinstance(response, dict) and isinstance(response.get("payment"), dict)


def validate_payment_requirement(response: Dict[str, Any]) -> PaymentRequirement:
    """
    Validate the requirement carried by a 402 body before paying it.

    Raises:
        PaymentError: payee, amount or chain id is missing or malformed
    """
    payment = response.get("payment") if isinstance(response, dict) else None
    if not isinstance(payment, dict):
        raise PaymentError("Invalid payment requirement: missing payment details")

    pay_to = payment.get("payTo")
    if not isinstance(pay_to, str) or not ADDRESS_PATTERN.match(pay_to):
        raise PaymentError("Invalid payment requirement: invalid payTo address")

    amount = payment.get("amount")
    if not isinstance(amount, str) or not AMOUNT_PATTERN.match(amount) or int(amount) == 0:
        raise PaymentError("Invalid payment requirement: invalid amount")

    if not payment.get("chainId"):
        raise PaymentError("Invalid payment requirement: missing chainId")

    try:
        return PaymentRequirement.model_validate(payment)
    except PydanticValidationError as e:
        raise PaymentError(f"Invalid payment requirement: {e.error_count()} invalid field(s)") from e


async def execute_payment(wallet: WalletProvider, requirement: PaymentRequirement) -> str:
    """
    Pay a requirement with the given wallet.

    Balances are checked before anything is sent; no transfer is attempted
    unless the wallet is on the right chain and can cover amount and gas.

    Returns:
        Transaction hash of the mined transfer
    """
    amount = requirement.amount_units
    chain_id = requirement.chainId

    if wallet.chain_id != chain_id:
        raise create_chain_mismatch_error(wallet.chain_id, chain_id)

    try:
        balance = await wallet.get_usdc_balance()
    except Exception as e:
        raise classify_payment_error(e, chain_id) from e

    if balance < amount:
        raise create_insufficient_usdc_error(amount, balance, chain_id)

    if wallet.requires_gas:
        try:
            eth_balance = await wallet.get_eth_balance()
        except Exception as e:
            raise classify_payment_error(e, chain_id) from e

        if eth_balance < MIN_ETH_FOR_GAS:
            raise create_insufficient_eth_error(eth_balance, chain_id)

    logger.info(
        "sending_payment",
        to_address=requirement.payTo,
        amount=amount,
        chain_id=chain_id,
        job_id=requirement.metadata.jobId
    )

    try:
        return await wallet.send_usdc(SendUSDCParams(to=requirement.payTo, amount=amount, chain_id=chain_id))
    except Exception as e:
        raise classify_payment_error(e, chain_id) from e


class PaymentOrchestrator:
    """
    Drives the approve-with-payment exchange against the marketplace API.

    The wallet is only created once a 402 actually arrives, so approving a
    job that is already settled never touches wallet credentials.
    """

    def __init__(self, api: ApiClient, wallet_factory: WalletFactory):
        self.api = api
        self.wallet_factory = wallet_factory

    async def approve(self, job_id: str) -> ApprovalOutcome:
        """
        Approve a job completion, paying for it if the server asks.

        Raises:
            PaymentError: requirement invalid, balance insufficient, transfer failed
            PaymentVerificationError: transfer sent but the server did not accept it
            MoltedError: API or configuration failure before any transfer
        """
        response = await self.api.approve(job_id, True)

        if not is_payment_required(response):
            logger.info("approval_already_settled", job_id=job_id, tx_hash=response.get("payment_tx_hash"))
            return self._outcome(job_id, response, already_settled=True)

        requirement = validate_payment_requirement(response)
        if requirement.metadata.jobId != job_id:
            raise PaymentError(
                f"Invalid payment requirement: issued for job {requirement.metadata.jobId}, not {job_id}"
            )

        logger.info(
            "payment_required",
            job_id=job_id,
            pay_to=requirement.payTo,
            amount=format_base_units(requirement.amount_units),
            chain_id=requirement.chainId
        )

        wallet = await self.wallet_factory()
        tx_hash = await execute_payment(wallet, requirement)

        logger.info("payment_sent", job_id=job_id, tx_hash=tx_hash)

        try:
            final = await self.api.approve(job_id, True, payment_proof=tx_hash)
        except MoltedError as e:
            raise PaymentVerificationError(tx_hash, reason=e.message) from e
        except Exception as e:
            logger.error("payment_resubmit_failed", job_id=job_id, tx_hash=tx_hash, error=str(e))
            raise PaymentVerificationError(tx_hash, reason=str(e)) from e

        if is_payment_required(final):
            raise PaymentVerificationError(tx_hash, reason=final.get("reason"))

        outcome = self._outcome(job_id, final)
        return outcome.model_copy(update={
            "payment_tx_hash": outcome.payment_tx_hash or tx_hash,
            "amount_units": requirement.amount_units,
            "paid_to": requirement.payTo,
            "chain_id": requirement.chainId,
            "explorer_url": get_explorer_url(requirement.chainId, outcome.payment_tx_hash or tx_hash),
        })

    async def reject(self, job_id: str) -> ApprovalOutcome:
        """Reject a job completion; never pays"""
        response = await self.api.approve(job_id, False)
        if is_payment_required(response):
            raise PaymentError("Unexpected payment required for rejection")
        return self._outcome(job_id, response)

    @staticmethod
    def _outcome(job_id: str, response: Dict[str, Any], already_settled: bool = False) -> ApprovalOutcome:
        amount = response.get("amount_usdc")
        return ApprovalOutcome(
            job_id=response.get("job_id") or job_id,
            approved=bool(response.get("approved")),
            already_settled=already_settled,
            payment_tx_hash=response.get("payment_tx_hash"),
            amount_units=None if amount is None else to_base_units(amount),
            paid_to=response.get("paid_to"),
            message=response.get("message", ""),
        )
