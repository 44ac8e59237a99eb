"""
Facilitator receipt verification
Asks a third-party x402 facilitator to attest to a payment receipt
"""

import asyncio
from typing import Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from molted.config import NetworkInfo
from molted.errors import PaymentInfrastructureError
from molted.payments.models import (
    FacilitatorExpected,
    FacilitatorVerifyRequest,
    FacilitatorVerifyResponse,
    VerificationResult,
)

logger = structlog.get_logger()


class FacilitatorVerifier:
    """
    Verifies opaque payment receipts through POST {facilitator_url}/verify.

    Only an explicit `verified: true` counts. Non-success statuses are
    unverified; transport failures raise PaymentInfrastructureError.
    """

    def __init__(
        self,
        network: NetworkInfo,
        facilitator_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        retries: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.network = network
        self.facilitator_url = facilitator_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.retries = max(1, retries)
        self.backoff_seconds = backoff_seconds

    async def _post(self, body: FacilitatorVerifyRequest) -> httpx.Response:
        """POST with retries on transport errors and 5xx responses"""
        last_error: Optional[BaseException] = None
        response: Optional[httpx.Response] = None

        for attempt in range(1, self.retries + 1):
            try:
                response = await self.client.post(
                    f"{self.facilitator_url}/verify",
                    json=body.model_dump(mode="json"),
                )
                if response.status_code < 500:
                    return response
                last_error = None
            except httpx.TransportError as e:
                last_error = e
                response = None

            logger.warning(
                "facilitator_verify_retry",
                attempt=attempt,
                status_code=response.status_code if response is not None else None,
                error=str(last_error) if last_error else None
            )
            if attempt < self.retries:
                await asyncio.sleep(self.backoff_seconds * attempt)

        if response is not None:
            return response
        raise PaymentInfrastructureError(f"Facilitator unreachable: {last_error}")

    async def verify(
        self,
        receipt: str,
        expected_to: str,
        expected_amount: int,
    ) -> VerificationResult:
        """
        Verify a facilitator receipt.

        Args:
            receipt: Opaque signed receipt from the x-payment header
            expected_to: Payee address
            expected_amount: Required amount in base units

        Raises:
            PaymentInfrastructureError: facilitator unreachable after retries
        """
        body = FacilitatorVerifyRequest(
            receipt=receipt,
            expected=FacilitatorExpected(
                payTo=expected_to,
                amount=str(expected_amount),
                asset=self.network.usdc_address,
                chainId=self.network.chain_id,
            ),
        )

        response = await self._post(body)

        if not response.is_success:
            logger.warning("facilitator_rejected", status_code=response.status_code)
            return VerificationResult.failure(f"Facilitator error: {response.text}")

        try:
            result = FacilitatorVerifyResponse.model_validate(response.json())
        except (ValueError, PydanticValidationError):
            return VerificationResult.failure("Facilitator returned an invalid response")

        if result.verified is not True:
            return VerificationResult.failure(
                result.error or "Facilitator did not verify the receipt",
                tx_hash=result.txHash,
            )

        if not result.txHash:
            return VerificationResult.failure("Facilitator verified the receipt but returned no transaction hash")

        logger.info(
            "payment_verified_facilitator",
            tx_hash=result.txHash,
            to_address=expected_to,
            amount=expected_amount
        )

        return VerificationResult(
            verified=True,
            tx_hash=result.txHash,
            actual_to=expected_to,
            actual_amount=expected_amount,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
