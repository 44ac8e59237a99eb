"""
Buyer-side x402 client: API client, payment orchestrator and CLI
"""

from molted.buyer.api_client import ApiClient
from molted.buyer.orchestrator import (
    ApprovalOutcome,
    PaymentOrchestrator,
    execute_payment,
    is_payment_required,
    validate_payment_requirement,
)

__all__ = [
    "ApiClient",
    "ApprovalOutcome",
    "PaymentOrchestrator",
    "execute_payment",
    "is_payment_required",
    "validate_payment_requirement",
]
