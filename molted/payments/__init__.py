"""
Molted Payment Module
x402 protocol implementation for USDC payments on Base
"""

from molted.payments.amounts import (
    USDC_DECIMALS,
    format_base_units,
    format_usdc,
    from_base_units,
    parse_base_units,
    to_base_units,
)
from molted.payments.facilitator import FacilitatorVerifier
from molted.payments.gate import PaymentGate, parse_proof
from molted.payments.models import (
    PAYMENT_HEADER,
    PAYMENT_REQUIRED_HEADER,
    RECEIPT_HEADER,
    PaymentProof,
    PaymentRequiredResponse,
    PaymentRequirement,
    ProofType,
    ReceiptProof,
    TxHashProof,
    VerificationResult,
)
from molted.payments.requirements import build_payment_required_response, build_payment_requirement
from molted.payments.verifier import OnChainVerifier

__all__ = [
    "USDC_DECIMALS",
    "format_base_units",
    "format_usdc",
    "from_base_units",
    "parse_base_units",
    "to_base_units",
    "FacilitatorVerifier",
    "PaymentGate",
    "parse_proof",
    "PAYMENT_HEADER",
    "PAYMENT_REQUIRED_HEADER",
    "RECEIPT_HEADER",
    "PaymentProof",
    "PaymentRequiredResponse",
    "PaymentRequirement",
    "ProofType",
    "ReceiptProof",
    "TxHashProof",
    "VerificationResult",
    "build_payment_required_response",
    "build_payment_requirement",
    "OnChainVerifier",
]
