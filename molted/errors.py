"""
Error types for Molted
Client-side errors carry an exit code; payment errors carry remediation context
"""

from enum import Enum, IntEnum
from typing import Dict, List, Optional

from pydantic import BaseModel


class ExitCode(IntEnum):
    """Process exit codes used by the CLI"""
    SUCCESS = 0
    GENERIC_ERROR = 1
    AUTH_CONFIG_ERROR = 2
    NETWORK_ERROR = 3
    PAYMENT_ERROR = 4


class MoltedError(Exception):
    """Base error for everything the CLI reports to the user"""

    def __init__(self, message: str, exit_code: ExitCode = ExitCode.GENERIC_ERROR):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class AuthError(MoltedError):
    def __init__(self, message: str):
        super().__init__(message, ExitCode.AUTH_CONFIG_ERROR)


class ConfigError(MoltedError):
    def __init__(self, message: str):
        super().__init__(message, ExitCode.AUTH_CONFIG_ERROR)


class NetworkError(MoltedError):
    def __init__(self, message: str):
        super().__init__(message, ExitCode.NETWORK_ERROR)


class ValidationError(MoltedError):
    def __init__(self, message: str, details: Optional[Dict[str, List[str]]] = None):
        super().__init__(message, ExitCode.GENERIC_ERROR)
        self.details = details or {}


class PaymentErrorCode(str, Enum):
    """Closed set of payment failure classes"""
    INSUFFICIENT_ETH = "INSUFFICIENT_ETH"
    INSUFFICIENT_USDC = "INSUFFICIENT_USDC"
    CHAIN_MISMATCH = "CHAIN_MISMATCH"
    TX_REVERTED = "TX_REVERTED"
    RPC_ERROR = "RPC_ERROR"
    ALREADY_PAID = "ALREADY_PAID"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


class PaymentErrorContext(BaseModel):
    """Structured context shown alongside a payment error"""
    required: Optional[str] = None
    available: Optional[str] = None
    network: Optional[str] = None
    chain_id: Optional[int] = None
    expected_chain_id: Optional[int] = None
    tx_hash: Optional[str] = None
    next_step: Optional[str] = None


class PaymentError(MoltedError):
    """A payment could not be completed"""

    def __init__(
        self,
        message: str,
        code: PaymentErrorCode = PaymentErrorCode.PAYMENT_FAILED,
        context: Optional[PaymentErrorContext] = None,
    ):
        super().__init__(message, ExitCode.PAYMENT_ERROR)
        self.code = code
        self.context = context or PaymentErrorContext()

    @property
    def tx_hash(self) -> Optional[str]:
        return self.context.tx_hash


class PaymentVerificationError(PaymentError):
    """
    A transfer was sent but the server did not accept it as payment.
    Always carries the transaction hash so the operator can re-verify.
    """

    def __init__(self, tx_hash: str, reason: Optional[str] = None, context: Optional[PaymentErrorContext] = None):
        message = f"Payment was sent but verification failed. TX Hash: {tx_hash}"
        if reason:
            message = f"{message} ({reason})"
        context = context or PaymentErrorContext()
        context.tx_hash = tx_hash
        if context.next_step is None:
            context.next_step = "Confirm the transaction on the explorer, then re-run the approval"
        super().__init__(message, PaymentErrorCode.VERIFICATION_FAILED, context)


class PaymentInfrastructureError(MoltedError):
    """
    RPC node or facilitator could not be reached while verifying a payment.
    Safe to retry.
    """

    def __init__(self, message: str):
        super().__init__(message, ExitCode.NETWORK_ERROR)
