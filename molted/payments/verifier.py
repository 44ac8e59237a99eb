"""
On-chain USDC payment verification
Inspects a transaction receipt for a qualifying ERC20 Transfer event
"""

import asyncio
from typing import Any, Optional

import structlog
from web3 import Web3
from web3.exceptions import TransactionNotFound

from molted.config import NetworkInfo
from molted.errors import PaymentInfrastructureError
from molted.payments.amounts import from_base_units
from molted.payments.models import VerificationResult

logger = structlog.get_logger()

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

# requests and socket errors both derive from OSError
TRANSIENT_ERRORS = (OSError, TimeoutError)


def _to_hex(value: Any) -> str:
    """Normalize bytes / HexBytes / str to a lowercase 0x-prefixed hex string"""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else f"0x{text}"


def _topic_to_address(topic: Any) -> str:
    # Indexed address topics are left-padded to 32 bytes
    return "0x" + _to_hex(topic)[-40:]


class OnChainVerifier:
    """
    Verifies a USDC payment by transaction hash.

    Success requires the Transfer event's sender and recipient to match and
    the observed amount to be >= the required amount (overpayment accepted).
    """

    def __init__(
        self,
        network: NetworkInfo,
        rpc_url: Optional[str] = None,
        w3: Optional[Web3] = None,
        retries: int = 3,
        backoff_seconds: float = 0.5,
        timeout: float = 30.0,
    ):
        self.network = network
        self.w3 = w3 or Web3(Web3.HTTPProvider(
            rpc_url or network.rpc_url,
            request_kwargs={"timeout": timeout},
        ))
        self.usdc_address = network.usdc_address.lower()
        self.retries = max(1, retries)
        self.backoff_seconds = backoff_seconds

    async def _get_receipt(self, tx_hash: str) -> Optional[Any]:
        """Fetch a receipt, retrying transient RPC faults only"""
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.retries + 1):
            try:
                return await asyncio.to_thread(self.w3.eth.get_transaction_receipt, tx_hash)
            except TransactionNotFound:
                return None
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(
                    "receipt_fetch_retry",
                    tx_hash=tx_hash,
                    attempt=attempt,
                    error=str(e)
                )
                if attempt < self.retries:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        raise PaymentInfrastructureError(
            f"RPC error while fetching receipt for {tx_hash} on {self.network.display_name}: {last_error}"
        )

    async def verify(
        self,
        tx_hash: str,
        expected_from: str,
        expected_to: str,
        expected_amount: int,
    ) -> VerificationResult:
        """
        Verify a USDC transfer on-chain.

        Args:
            tx_hash: 0x-prefixed transaction hash
            expected_from: Payer address
            expected_to: Payee address
            expected_amount: Required amount in base units

        Returns:
            VerificationResult; checks run sender, recipient, amount and stop at
            the first mismatch

        Raises:
            PaymentInfrastructureError: RPC unreachable after retries
        """
        receipt = await self._get_receipt(tx_hash)

        if not receipt:
            return VerificationResult.failure("Transaction not found", tx_hash=tx_hash)

        if receipt["status"] != 1:
            return VerificationResult.failure("Transaction failed", tx_hash=tx_hash)

        transfer_log = None
        for log in receipt.get("logs", []):
            topics = log.get("topics", [])
            if (
                str(log.get("address", "")).lower() == self.usdc_address
                and len(topics) >= 3
                and _to_hex(topics[0]) == TRANSFER_EVENT_TOPIC
            ):
                transfer_log = log
                break

        if transfer_log is None:
            return VerificationResult.failure("No USDC transfer found in transaction", tx_hash=tx_hash)

        actual_from = _topic_to_address(transfer_log["topics"][1])
        actual_to = _topic_to_address(transfer_log["topics"][2])
        data = _to_hex(transfer_log.get("data") or "0x")
        actual_amount = int(data, 16) if data != "0x" else 0

        observed = dict(
            tx_hash=tx_hash,
            actual_from=actual_from,
            actual_to=actual_to,
            actual_amount=actual_amount,
            block_number=receipt.get("blockNumber"),
        )

        if actual_from != expected_from.lower():
            return VerificationResult.failure(
                f"Sender mismatch: expected {expected_from}, got {actual_from}", **observed
            )

        if actual_to != expected_to.lower():
            return VerificationResult.failure(
                f"Recipient mismatch: expected {expected_to}, got {actual_to}", **observed
            )

        if actual_amount < expected_amount:
            return VerificationResult.failure(
                f"Amount insufficient: expected {from_base_units(expected_amount)} USDC, "
                f"got {from_base_units(actual_amount)} USDC",
                **observed
            )

        logger.info(
            "payment_verified_onchain",
            tx_hash=tx_hash,
            from_address=actual_from,
            to_address=actual_to,
            amount=actual_amount,
            block_number=observed["block_number"]
        )

        return VerificationResult(verified=True, **observed)
