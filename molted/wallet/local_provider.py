"""
Local wallet provider
Signs USDC transfers with a private key held in process memory
"""

import asyncio
from typing import Optional

import structlog
from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted

from molted.config import NetworkInfo
from molted.errors import PaymentError, PaymentErrorCode, PaymentErrorContext
from molted.payments.errors import classify_payment_error, create_chain_mismatch_error
from molted.wallet.base import ERC20_ABI, SendUSDCParams

logger = structlog.get_logger()


class LocalWalletProvider:
    """
    Raw private key wallet talking directly to a chain RPC endpoint.
    Pays its own gas, so callers should check the ETH balance first.
    """

    type = "local"
    requires_gas = True

    def __init__(
        self,
        private_key: str,
        network: NetworkInfo,
        rpc_url: Optional[str] = None,
        w3: Optional[Web3] = None,
        timeout: float = 30.0,
        confirmation_timeout: int = 120,
    ):
        self.account = Account.from_key(private_key)
        self.network = network
        self.w3 = w3 or Web3(Web3.HTTPProvider(
            rpc_url or network.rpc_url,
            request_kwargs={"timeout": timeout},
        ))
        self.usdc = self.w3.eth.contract(
            address=Web3.to_checksum_address(network.usdc_address),
            abi=ERC20_ABI,
        )
        self.confirmation_timeout = confirmation_timeout

    @property
    def address(self) -> str:
        return self.account.address

    @property
    def chain_id(self) -> int:
        return self.network.chain_id

    async def initialize(self) -> None:
        """The address is derived from the key at construction; nothing to load"""
        logger.debug("local_wallet_ready", address=self.address, network=self.network.name)

    def _send_transfer(self, to: str, amount: int) -> str:
        tx = self.usdc.functions.transfer(
            Web3.to_checksum_address(to),
            amount,
        ).build_transaction({
            "from": self.address,
            "chainId": self.chain_id,
            "nonce": self.w3.eth.get_transaction_count(self.address),
        })

        signed_tx = self.w3.eth.account.sign_transaction(tx, self.account.key)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        return Web3.to_hex(tx_hash)

    def _wait_for_receipt(self, tx_hash: str):
        return self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.confirmation_timeout)

    async def send_usdc(self, params: SendUSDCParams) -> str:
        """
        Send USDC and wait for it to be mined.

        Returns:
            Transaction hash of a successful transfer

        Raises:
            PaymentError: chain mismatch, revert, RPC fault or any other failure.
                Once a hash exists it is always attached to the error.
        """
        if params.chain_id != self.chain_id:
            raise create_chain_mismatch_error(self.chain_id, params.chain_id)

        try:
            tx_hash = await asyncio.to_thread(self._send_transfer, params.to, params.amount)
        except Exception as e:
            logger.error("usdc_transfer_submit_failed", to_address=params.to, amount=params.amount, error=str(e))
            raise classify_payment_error(e, self.chain_id) from e

        logger.info("usdc_transfer_sent", tx_hash=tx_hash, to_address=params.to, amount=params.amount)

        try:
            receipt = await asyncio.to_thread(self._wait_for_receipt, tx_hash)
        except TimeExhausted as e:
            raise PaymentError(
                f"Transfer not mined within {self.confirmation_timeout}s. TX Hash: {tx_hash}",
                code=PaymentErrorCode.RPC_ERROR,
                context=PaymentErrorContext(
                    network=self.network.display_name,
                    chain_id=self.chain_id,
                    tx_hash=tx_hash,
                    next_step=f"Check the transaction: {self.network.explorer_tx_url(tx_hash)}",
                ),
            ) from e
        except Exception as e:
            error = classify_payment_error(e, self.chain_id)
            error.context.tx_hash = tx_hash
            raise error from e

        if receipt["status"] != 1:
            logger.error("usdc_transfer_reverted", tx_hash=tx_hash)
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

        logger.info("usdc_transfer_confirmed", tx_hash=tx_hash, block_number=receipt.get("blockNumber"))
        return tx_hash

    async def get_usdc_balance(self) -> int:
        try:
            return await asyncio.to_thread(self.usdc.functions.balanceOf(self.address).call)
        except Exception as e:
            raise PaymentError(
                f"Failed to get USDC balance: {e}",
                code=PaymentErrorCode.RPC_ERROR,
                context=PaymentErrorContext(network=self.network.display_name, chain_id=self.chain_id),
            ) from e

    async def get_eth_balance(self) -> int:
        try:
            return await asyncio.to_thread(self.w3.eth.get_balance, self.address)
        except Exception as e:
            raise PaymentError(
                f"Failed to get ETH balance: {e}",
                code=PaymentErrorCode.RPC_ERROR,
                context=PaymentErrorContext(network=self.network.display_name, chain_id=self.chain_id),
            ) from e
