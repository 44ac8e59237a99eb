"""
x402 payment requirement builder
"""

from molted.config import NetworkInfo
from molted.payments.amounts import AmountLike, format_usdc, to_base_units
from molted.payments.models import PaymentMetadata, PaymentRequiredResponse, PaymentRequirement


def build_payment_requirement(
    pay_to: str,
    amount: AmountLike,
    job_id: str,
    description: str,
    network: NetworkInfo,
) -> PaymentRequirement:
    """
    Build the payment requirement included in a 402 response.

    Args:
        pay_to: Payee wallet address
        amount: Amount in USDC (converted to base units)
        job_id: Job the payment settles
        description: Human-readable description
        network: Active network; supplies asset address and chain id

    Returns:
        Immutable PaymentRequirement
    """
    return PaymentRequirement(
        payTo=pay_to,
        amount=str(to_base_units(amount)),
        asset=network.usdc_address,
        chain=network.name,
        chainId=network.chain_id,
        description=description,
        metadata=PaymentMetadata(jobId=job_id),
    )


def build_payment_required_response(
    requirement: PaymentRequirement,
    amount: AmountLike,
) -> PaymentRequiredResponse:
    """Wrap a requirement in the 402 response body"""
    return PaymentRequiredResponse(
        error="Payment required",
        message=f"Payment of {format_usdc(amount)} USDC required to {requirement.payTo}",
        payment=requirement,
    )
