"""
x402 payment models for Molted
Requirement, proof, and verification result types
"""

import json
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool

from molted.payments.amounts import parse_base_units

# x402 header names
PAYMENT_REQUIRED_HEADER = "x-payment-required"
PAYMENT_HEADER = "x-payment"
RECEIPT_HEADER = "x-receipt"


class PaymentMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    jobId: str


class PaymentRequirement(BaseModel):
    """What the payer must transfer; echoed unmodified by the client"""
    model_config = ConfigDict(frozen=True)

    payTo: str = Field(description="Payee wallet address")
    amount: str = Field(description="Amount in base units (USDC has 6 decimals)")
    asset: str = Field(description="USDC contract address")
    chain: str = Field(description="Network name")
    chainId: int
    description: str
    metadata: PaymentMetadata

    @property
    def amount_units(self) -> int:
        return parse_base_units(self.amount)

    def to_header(self) -> str:
        """JSON encoding for the x-payment-required header"""
        return self.model_dump_json()

    @classmethod
    def from_header(cls, value: str) -> "PaymentRequirement":
        return cls.model_validate(json.loads(value))


class PaymentRequiredResponse(BaseModel):
    """x402 Payment Required response body (HTTP 402)"""
    error: str = "Payment required"
    message: str
    payment: PaymentRequirement
    reason: Optional[str] = Field(default=None, description="Why a supplied proof was not accepted")


class ProofType(str, Enum):
    TX_HASH = "tx_hash"
    RECEIPT = "receipt"


class TxHashProof(BaseModel):
    """Hash of an on-chain USDC transfer"""
    model_config = ConfigDict(frozen=True)

    type: Literal[ProofType.TX_HASH] = ProofType.TX_HASH
    value: str


class ReceiptProof(BaseModel):
    """Opaque receipt signed by a facilitator"""
    model_config = ConfigDict(frozen=True)

    type: Literal[ProofType.RECEIPT] = ProofType.RECEIPT
    value: str


PaymentProof = Annotated[Union[TxHashProof, ReceiptProof], Field(discriminator="type")]


class VerificationResult(BaseModel):
    """Outcome of checking a payment proof"""
    verified: bool
    tx_hash: Optional[str] = None
    actual_from: Optional[str] = None
    actual_to: Optional[str] = None
    actual_amount: Optional[int] = Field(default=None, description="Observed amount in base units")
    block_number: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, **kwargs) -> "VerificationResult":
        return cls(verified=False, error=error, **kwargs)


# ===== FACILITATOR WIRE FORMAT =====

class FacilitatorExpected(BaseModel):
    payTo: str
    amount: str
    asset: str
    chainId: int


class FacilitatorVerifyRequest(BaseModel):
    """POST {facilitator}/verify body"""
    receipt: str
    expected: FacilitatorExpected


class FacilitatorVerifyResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    verified: Optional[StrictBool] = None
    txHash: Optional[str] = None
    error: Optional[str] = None
