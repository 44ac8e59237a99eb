"""
CDP wallet provider
Custodial wallet on the Coinbase Developer Platform; signing happens remotely
"""

import asyncio
from decimal import Decimal
from typing import Optional

import structlog
from cdp import Cdp, Wallet

from molted.config import NetworkInfo
from molted.errors import PaymentError, PaymentErrorCode, PaymentErrorContext
from molted.payments.amounts import USDC_DECIMALS, from_base_units
from molted.payments.errors import classify_payment_error, create_chain_mismatch_error
from molted.wallet.base import SendUSDCParams

logger = structlog.get_logger()

ETH_DECIMALS = 18


def _to_units(balance, decimals: int) -> int:
    # The SDK reports whole-unit Decimals; truncate to the smallest unit
    return int(Decimal(str(balance)).scaleb(decimals))


class CDPWalletProvider:
    """
    Loads a CDP wallet by id, or provisions a new one when no id is given.

    `initialize()` must be awaited before use; the address is only known
    once the wallet has been fetched or created.
    """

    type = "cdp"
    requires_gas = False  # transfers are sponsored (gasless)

    def __init__(
        self,
        api_key_name: str,
        api_key_private_key: str,
        network: NetworkInfo,
        wallet_id: Optional[str] = None,
        confirmation_timeout: int = 120,
    ):
        self.api_key_name = api_key_name
        self.api_key_private_key = api_key_private_key
        self.network = network
        self.wallet_id = wallet_id
        self.confirmation_timeout = confirmation_timeout
        self.wallet: Optional[Wallet] = None
        self._address: Optional[str] = None

    @property
    def address(self) -> str:
        if self._address is None:
            raise PaymentError("CDP wallet not initialized. Call initialize() first.")
        return self._address

    @property
    def chain_id(self) -> int:
        return self.network.chain_id

    def _load_wallet(self) -> Wallet:
        Cdp.configure(self.api_key_name, self.api_key_private_key)
        if self.wallet_id:
            return Wallet.fetch(self.wallet_id)
        return Wallet.create(network_id=self.network.cdp_network_id)

    async def initialize(self) -> None:
        """
        Configure the SDK and fetch or create the wallet.

        Raises:
            PaymentError: credentials rejected, wallet missing, or no address
        """
        try:
            wallet = await asyncio.to_thread(self._load_wallet)
        except Exception as e:
            raise PaymentError(f"Failed to initialize CDP wallet: {e}") from e

        default_address = wallet.default_address
        if default_address is None:
            raise PaymentError("Failed to get wallet address")

        self.wallet = wallet
        self.wallet_id = wallet.id
        self._address = default_address.address_id

        logger.info(
            "cdp_wallet_initialized",
            wallet_id=self.wallet_id,
            address=self._address,
            network=self.network.cdp_network_id
        )

    def _require_wallet(self) -> Wallet:
        if self.wallet is None:
            raise PaymentError("CDP wallet not initialized")
        return self.wallet

    def _create_transfer(self, wallet: Wallet, to: str, amount: int):
        # Gasless: the CDP paymaster covers gas for USDC on Base
        return wallet.transfer(from_base_units(amount), "usdc", to, gasless=True)

    def _wait_for_transfer(self, transfer):
        return transfer.wait(timeout_seconds=self.confirmation_timeout)

    async def send_usdc(self, params: SendUSDCParams) -> str:
        """
        Create a USDC transfer and wait for it to complete.
        Any failure after the transfer is created carries its tx hash, when known.

        Raises:
            PaymentError: chain mismatch, failed transfer, or missing tx hash
        """
        wallet = self._require_wallet()
        if params.chain_id != self.chain_id:
            raise create_chain_mismatch_error(self.chain_id, params.chain_id)

        try:
            transfer = await asyncio.to_thread(self._create_transfer, wallet, params.to, params.amount)
        except Exception as e:
            logger.error("cdp_transfer_failed", to_address=params.to, amount=params.amount, error=str(e))
            raise classify_payment_error(e, self.chain_id) from e

        submitted_hash = transfer.transaction_hash
        logger.info("cdp_transfer_created", tx_hash=submitted_hash, to_address=params.to, amount=params.amount)

        try:
            transfer = await asyncio.to_thread(self._wait_for_transfer, transfer)
        except Exception as e:
            logger.error("cdp_transfer_wait_failed", tx_hash=submitted_hash, error=str(e))
            error = classify_payment_error(e, self.chain_id)
            if submitted_hash:
                error.context.tx_hash = submitted_hash
                error.context.next_step = f"Check the transaction: {self.network.explorer_tx_url(submitted_hash)}"
            raise error from e

        tx_hash = transfer.transaction_hash or submitted_hash
        if not tx_hash:
            raise PaymentError("Transfer completed but no transaction hash returned")

        if str(transfer.status).lower() == "failed":
            raise PaymentError(
                f"USDC transfer transaction failed. TX Hash: {tx_hash}",
                code=PaymentErrorCode.TX_REVERTED,
                context=PaymentErrorContext(
                    network=self.network.display_name,
                    chain_id=self.chain_id,
                    tx_hash=tx_hash,
                    next_step=f"View transaction: {self.network.explorer_tx_url(tx_hash)}",
                ),
            )

        logger.info("cdp_transfer_confirmed", tx_hash=tx_hash, to_address=params.to, amount=params.amount)
        return tx_hash

    async def get_usdc_balance(self) -> int:
        wallet = self._require_wallet()
        try:
            balance = await asyncio.to_thread(wallet.balance, "usdc")
        except Exception as e:
            raise PaymentError(f"Failed to get USDC balance: {e}", code=PaymentErrorCode.RPC_ERROR) from e
        return _to_units(balance, USDC_DECIMALS)

    async def get_eth_balance(self) -> int:
        wallet = self._require_wallet()
        try:
            balance = await asyncio.to_thread(wallet.balance, "eth")
        except Exception as e:
            raise PaymentError(f"Failed to get ETH balance: {e}", code=PaymentErrorCode.RPC_ERROR) from e
        return _to_units(balance, ETH_DECIMALS)
