"""
Tests for payment error classification
"""

import httpx
import pytest

from molted.errors import ExitCode, PaymentError, PaymentErrorCode, PaymentVerificationError
from molted.payments.errors import (
    classify_payment_error,
    create_already_paid_error,
    create_chain_mismatch_error,
    create_insufficient_eth_error,
    get_explorer_url,
    get_network_name,
)


class TestClassifyPaymentError:
    """Test mapping raw errors to payment error codes"""

    @pytest.mark.parametrize("message,code", [
        ("This job has already been paid", PaymentErrorCode.ALREADY_PAID),
        ("insufficient funds for gas * price + value", PaymentErrorCode.INSUFFICIENT_ETH),
        ("gas required exceeds allowance (0)", PaymentErrorCode.INSUFFICIENT_ETH),
        ("ERC20: transfer amount exceeds balance", PaymentErrorCode.INSUFFICIENT_USDC),
        ("invalid chain id for signer", PaymentErrorCode.CHAIN_MISMATCH),
        ("execution reverted", PaymentErrorCode.TX_REVERTED),
        ("request timed out", PaymentErrorCode.RPC_ERROR),
        ("ECONNREFUSED 127.0.0.1:8545", PaymentErrorCode.RPC_ERROR),
        ("something odd happened", PaymentErrorCode.PAYMENT_FAILED),
    ])
    def test_message_patterns(self, message, code):
        error = classify_payment_error(RuntimeError(message), 84532)
        assert error.code == code
        assert error.exit_code == ExitCode.PAYMENT_ERROR

    def test_transport_error_type(self):
        error = classify_payment_error(httpx.ConnectError("boom"), 84532)
        assert error.code == PaymentErrorCode.RPC_ERROR

    def test_payment_error_passes_through(self):
        original = PaymentError("already classified", code=PaymentErrorCode.TX_REVERTED)
        assert classify_payment_error(original, 84532) is original

    def test_faucet_hint_on_testnet(self):
        error = classify_payment_error(RuntimeError("insufficient funds"), 84532)
        assert error.context.next_step == "Get testnet ETH from: https://www.alchemy.com/faucets/base-sepolia"

    def test_no_faucet_on_mainnet(self):
        error = create_insufficient_eth_error(0, 8453)
        assert error.context.next_step == "Add ETH to your wallet for gas fees"
        assert error.context.available == "0.000000 ETH"


class TestErrorHelpers:
    """Test remediation context helpers"""

    def test_chain_mismatch(self):
        error = create_chain_mismatch_error(8453, 84532)
        assert error.message == "Chain mismatch: wallet is on Base, but payment requires Base Sepolia"
        assert error.context.chain_id == 8453
        assert error.context.expected_chain_id == 84532

    def test_already_paid_with_explorer(self, tx_hash):
        error = create_already_paid_error(tx_hash, 84532)
        assert error.context.next_step == f"View transaction: https://sepolia.basescan.org/tx/{tx_hash}"

    def test_unknown_chain(self):
        assert get_network_name(1) == "Chain 1"
        assert get_explorer_url(1, "0xabc") is None

    def test_verification_error_keeps_hash(self, tx_hash):
        error = PaymentVerificationError(tx_hash, reason="Recipient mismatch")
        assert error.tx_hash == tx_hash
        assert error.code == PaymentErrorCode.VERIFICATION_FAILED
        assert error.context.next_step is not None
