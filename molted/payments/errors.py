"""
x402 payment error classification
Maps raw transfer / chain errors to PaymentErrorCode with remediation context
"""

from decimal import Decimal
from typing import Optional

import httpx

from molted.config import get_network_by_chain_id
from molted.errors import PaymentError, PaymentErrorCode, PaymentErrorContext
from molted.payments.amounts import format_base_units

# Minimum ETH required for gas (0.0001 ETH)
MIN_ETH_FOR_GAS = 100_000_000_000_000

_ALREADY_PAID_PATTERNS = ("already been paid", "already been processed", "already paid")
_INSUFFICIENT_ETH_PATTERNS = ("insufficient funds", "gas required exceeds", "insufficient balance for gas")
_INSUFFICIENT_USDC_PATTERNS = ("transfer amount exceeds balance",)
_CHAIN_MISMATCH_PATTERNS = ("chain mismatch", "chainid mismatch", "invalid chain id", "wrong chain", "unsupported chain")
_REVERTED_PATTERNS = ("reverted", "execution reverted", "transaction failed")
_RPC_PATTERNS = ("network", "timeout", "timed out", "connection", "econnrefused", "failed to fetch")


def get_network_name(chain_id: int) -> str:
    info = get_network_by_chain_id(chain_id)
    return info.display_name if info else f"Chain {chain_id}"


def get_explorer_url(chain_id: int, tx_hash: Optional[str] = None) -> Optional[str]:
    info = get_network_by_chain_id(chain_id)
    if info is None:
        return None
    return info.explorer_tx_url(tx_hash) if tx_hash else info.explorer


def format_eth_balance(wei_balance: int) -> str:
    return f"{Decimal(wei_balance) / Decimal(10 ** 18):.6f}"


def _matches(message: str, patterns: tuple) -> bool:
    return any(pattern in message for pattern in patterns)


def classify_payment_error(error: BaseException, chain_id: int) -> PaymentError:
    """
    Classify a blockchain or wallet error by its message.

    Already-classified PaymentErrors pass through unchanged. Anything that
    matches no known pattern lands in the generic PAYMENT_FAILED bucket.
    """
    if isinstance(error, PaymentError):
        return error

    message = str(error).lower()
    network = get_network_name(chain_id)

    if _matches(message, _ALREADY_PAID_PATTERNS):
        return create_already_paid_error(chain_id=chain_id)

    if _matches(message, _INSUFFICIENT_ETH_PATTERNS):
        return create_insufficient_eth_error(None, chain_id)

    if _matches(message, _INSUFFICIENT_USDC_PATTERNS):
        return create_insufficient_usdc_error(None, None, chain_id)

    if _matches(message, _CHAIN_MISMATCH_PATTERNS):
        return PaymentError(
            f"Chain mismatch: {error}",
            code=PaymentErrorCode.CHAIN_MISMATCH,
            context=PaymentErrorContext(
                network=network,
                chain_id=chain_id,
                next_step="Run 'molted init' to reconfigure your wallet network",
            ),
        )

    if _matches(message, _REVERTED_PATTERNS):
        return PaymentError(
            f"Transaction reverted: {error}",
            code=PaymentErrorCode.TX_REVERTED,
            context=PaymentErrorContext(
                network=network,
                chain_id=chain_id,
                next_step="Check the transaction details and try again",
            ),
        )

    if isinstance(error, (TimeoutError, ConnectionError, httpx.TransportError)) or _matches(message, _RPC_PATTERNS):
        return PaymentError(
            f"Network error: {error}",
            code=PaymentErrorCode.RPC_ERROR,
            context=PaymentErrorContext(
                network=network,
                chain_id=chain_id,
                next_step="Check your network connection and try again",
            ),
        )

    return PaymentError(
        f"Payment failed: {error}",
        code=PaymentErrorCode.PAYMENT_FAILED,
        context=PaymentErrorContext(network=network, chain_id=chain_id),
    )


def create_chain_mismatch_error(wallet_chain_id: int, required_chain_id: int) -> PaymentError:
    wallet_network = get_network_name(wallet_chain_id)
    required_network = get_network_name(required_chain_id)

    return PaymentError(
        f"Chain mismatch: wallet is on {wallet_network}, but payment requires {required_network}",
        code=PaymentErrorCode.CHAIN_MISMATCH,
        context=PaymentErrorContext(
            chain_id=wallet_chain_id,
            expected_chain_id=required_chain_id,
            network=required_network,
            next_step=f"Run 'molted init' to reconfigure for {required_network}",
        ),
    )


def create_insufficient_eth_error(available_wei: Optional[int], chain_id: int) -> PaymentError:
    info = get_network_by_chain_id(chain_id)
    faucet = info.eth_faucet if info else None
    available = format_eth_balance(available_wei) if available_wei is not None else None

    message = "Insufficient ETH for gas fees"
    if available is not None:
        message = f"{message}. Available: {available} ETH"

    return PaymentError(
        message,
        code=PaymentErrorCode.INSUFFICIENT_ETH,
        context=PaymentErrorContext(
            available=f"{available} ETH" if available is not None else None,
            required=f"~{format_eth_balance(MIN_ETH_FOR_GAS)} ETH (for gas)",
            network=get_network_name(chain_id),
            chain_id=chain_id,
            next_step=f"Get testnet ETH from: {faucet}" if faucet else "Add ETH to your wallet for gas fees",
        ),
    )


def create_insufficient_usdc_error(
    required_units: Optional[int],
    available_units: Optional[int],
    chain_id: int,
) -> PaymentError:
    info = get_network_by_chain_id(chain_id)
    faucet = info.usdc_faucet if info else None
    required = format_base_units(required_units) if required_units is not None else None
    available = format_base_units(available_units) if available_units is not None else None

    if required is not None and available is not None:
        message = f"Insufficient USDC balance. Need {required} USDC, have {available} USDC"
    else:
        message = "Insufficient USDC balance for this payment"

    return PaymentError(
        message,
        code=PaymentErrorCode.INSUFFICIENT_USDC,
        context=PaymentErrorContext(
            required=f"{required} USDC" if required is not None else None,
            available=f"{available} USDC" if available is not None else None,
            network=get_network_name(chain_id),
            chain_id=chain_id,
            next_step=f"Get testnet USDC from: {faucet}" if faucet else "Add USDC to your wallet",
        ),
    )


def create_already_paid_error(tx_hash: Optional[str] = None, chain_id: Optional[int] = None) -> PaymentError:
    explorer_url = get_explorer_url(chain_id, tx_hash) if tx_hash and chain_id else None
    if explorer_url:
        next_step = f"View transaction: {explorer_url}"
    elif tx_hash:
        next_step = f"Transaction hash: {tx_hash}"
    else:
        next_step = None

    return PaymentError(
        "This job has already been paid",
        code=PaymentErrorCode.ALREADY_PAID,
        context=PaymentErrorContext(tx_hash=tx_hash, chain_id=chain_id, next_step=next_step),
    )
