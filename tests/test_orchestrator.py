"""
Tests for the client-side x402 payment flow
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from molted.buyer import ApiClient, PaymentOrchestrator
from molted.buyer.orchestrator import execute_payment, is_payment_required, validate_payment_requirement
from molted.errors import NetworkError, PaymentError, PaymentErrorCode, PaymentVerificationError
from molted.payments.errors import MIN_ETH_FOR_GAS

JOB_ID = "3f1c8a2e-6b1d-4d8e-9a53-0c6f2b7e1a90"


def payment_required_body(pay_to: str, amount: str = "10000000", chain_id: int = 84532, job_id: str = JOB_ID) -> dict:
    return {
        "error": "Payment required",
        "message": f"Payment of 10.00 USDC required to {pay_to}",
        "payment": {
            "payTo": pay_to,
            "amount": amount,
            "asset": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
            "chain": "base-sepolia",
            "chainId": chain_id,
            "description": "Payment for job: Summarize",
            "metadata": {"jobId": job_id},
        },
    }


def approved_body(tx_hash: str, pay_to: str) -> dict:
    return {
        "approved": True,
        "job_id": JOB_ID,
        "payment_tx_hash": tx_hash,
        "amount_usdc": 10.0,
        "paid_to": pay_to,
        "message": "Job approved and payment of 10.00 USDC verified on base-sepolia.",
    }


def make_wallet(usdc_balance: int = 50_000_000, eth_balance: int = 10 ** 16, requires_gas: bool = True,
                chain_id: int = 84532, tx_hash: str = None):
    wallet = MagicMock()
    wallet.chain_id = chain_id
    wallet.requires_gas = requires_gas
    wallet.get_usdc_balance = AsyncMock(return_value=usdc_balance)
    wallet.get_eth_balance = AsyncMock(return_value=eth_balance)
    wallet.send_usdc = AsyncMock(return_value=tx_hash)
    return wallet


@pytest.fixture
def api():
    return MagicMock(spec=ApiClient)


class TestPaymentRequirementValidation:
    """Test checks on the 402 body before paying"""

    def test_is_payment_required(self, worker_account):
        assert is_payment_required(payment_required_body(worker_account.address)) is True
        assert is_payment_required({"approved": True}) is False
        assert is_payment_required(None) is False

    def test_valid(self, worker_account):
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))
        assert requirement.amount_units == 10_000_000
        assert requirement.metadata.jobId == JOB_ID

    @pytest.mark.parametrize("field,value,message", [
        ("payTo", "0x1234", "invalid payTo address"),
        ("amount", "10.5", "invalid amount"),
        ("amount", "0", "invalid amount"),
        ("chainId", None, "missing chainId"),
    ])
    def test_invalid(self, worker_account, field, value, message):
        body = payment_required_body(worker_account.address)
        body["payment"][field] = value

        with pytest.raises(PaymentError) as exc_info:
            validate_payment_requirement(body)

        assert message in exc_info.value.message

    def test_missing_payment(self):
        with pytest.raises(PaymentError):
            validate_payment_requirement({"error": "Payment required"})


class TestExecutePayment:
    """Test balance checks and transfer ordering"""

    @pytest.mark.asyncio
    async def test_insufficient_usdc_sends_nothing(self, worker_account):
        """Test a balance of 5 against 10 required never attempts a transfer"""
        wallet = make_wallet(usdc_balance=5_000_000)
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        with pytest.raises(PaymentError) as exc_info:
            await execute_payment(wallet, requirement)

        assert exc_info.value.code == PaymentErrorCode.INSUFFICIENT_USDC
        assert exc_info.value.context.required == "10.00 USDC"
        assert exc_info.value.context.available == "5.00 USDC"
        wallet.send_usdc.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_eth_for_gas(self, worker_account):
        wallet = make_wallet(eth_balance=MIN_ETH_FOR_GAS - 1)
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        with pytest.raises(PaymentError) as exc_info:
            await execute_payment(wallet, requirement)

        assert exc_info.value.code == PaymentErrorCode.INSUFFICIENT_ETH
        wallet.send_usdc.assert_not_called()

    @pytest.mark.asyncio
    async def test_gasless_wallet_skips_eth_check(self, worker_account, tx_hash):
        wallet = make_wallet(eth_balance=0, requires_gas=False, tx_hash=tx_hash)
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        assert await execute_payment(wallet, requirement) == tx_hash
        wallet.get_eth_balance.assert_not_called()

    @pytest.mark.asyncio
    async def test_chain_mismatch_checked_first(self, worker_account):
        wallet = make_wallet(chain_id=8453)
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        with pytest.raises(PaymentError) as exc_info:
            await execute_payment(wallet, requirement)

        assert exc_info.value.code == PaymentErrorCode.CHAIN_MISMATCH
        wallet.get_usdc_balance.assert_not_called()

    @pytest.mark.asyncio
    async def test_transfer_parameters(self, worker_account, tx_hash):
        wallet = make_wallet(tx_hash=tx_hash)
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        await execute_payment(wallet, requirement)

        params = wallet.send_usdc.call_args[0][0]
        assert params.to == worker_account.address
        assert params.amount == 10_000_000
        assert params.chain_id == 84532

    @pytest.mark.asyncio
    async def test_transfer_error_classified(self, worker_account):
        wallet = make_wallet()
        wallet.send_usdc.side_effect = RuntimeError("execution reverted: transfer amount exceeds balance")
        requirement = validate_payment_requirement(payment_required_body(worker_account.address))

        with pytest.raises(PaymentError) as exc_info:
            await execute_payment(wallet, requirement)

        assert exc_info.value.code == PaymentErrorCode.INSUFFICIENT_USDC


class TestPaymentOrchestrator:
    """Test the full approve-with-payment exchange"""

    @pytest.mark.asyncio
    async def test_pays_and_resubmits(self, api, worker_account, tx_hash):
        api.approve = AsyncMock(side_effect=[
            payment_required_body(worker_account.address),
            approved_body(tx_hash, worker_account.address),
        ])
        wallet = make_wallet(tx_hash=tx_hash)
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=wallet))

        outcome = await orchestrator.approve(JOB_ID)

        assert outcome.approved is True
        assert outcome.already_settled is False
        assert outcome.payment_tx_hash == tx_hash
        assert outcome.amount_units == 10_000_000
        assert outcome.paid_to == worker_account.address
        assert outcome.explorer_url == f"https://sepolia.basescan.org/tx/{tx_hash}"
        assert api.approve.await_args_list[0].args == (JOB_ID, True)
        assert api.approve.await_args_list[1].kwargs == {"payment_proof": tx_hash}
        wallet.send_usdc.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_settled_skips_wallet(self, api, worker_account, tx_hash):
        api.approve = AsyncMock(return_value=approved_body(tx_hash, worker_account.address))
        wallet_factory = AsyncMock()
        orchestrator = PaymentOrchestrator(api, wallet_factory)

        outcome = await orchestrator.approve(JOB_ID)

        assert outcome.already_settled is True
        assert outcome.payment_tx_hash == tx_hash
        wallet_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_insufficient_balance_single_request(self, api, worker_account):
        api.approve = AsyncMock(return_value=payment_required_body(worker_account.address))
        wallet = make_wallet(usdc_balance=5_000_000)
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=wallet))

        with pytest.raises(PaymentError) as exc_info:
            await orchestrator.approve(JOB_ID)

        assert exc_info.value.code == PaymentErrorCode.INSUFFICIENT_USDC
        assert api.approve.await_count == 1
        wallet.send_usdc.assert_not_called()

    @pytest.mark.asyncio
    async def test_requirement_for_other_job(self, api, worker_account):
        api.approve = AsyncMock(return_value=payment_required_body(
            worker_account.address, job_id="00000000-0000-0000-0000-000000000000"
        ))
        wallet_factory = AsyncMock()
        orchestrator = PaymentOrchestrator(api, wallet_factory)

        with pytest.raises(PaymentError):
            await orchestrator.approve(JOB_ID)

        wallet_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_resubmission_still_requires_payment(self, api, worker_account, tx_hash):
        rejected = payment_required_body(worker_account.address)
        rejected["reason"] = "Transaction not found"
        api.approve = AsyncMock(side_effect=[payment_required_body(worker_account.address), rejected])
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=make_wallet(tx_hash=tx_hash)))

        with pytest.raises(PaymentVerificationError) as exc_info:
            await orchestrator.approve(JOB_ID)

        assert exc_info.value.code == PaymentErrorCode.VERIFICATION_FAILED
        assert exc_info.value.tx_hash == tx_hash
        assert tx_hash in exc_info.value.message
        assert "Transaction not found" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_resubmission_error_keeps_hash(self, api, worker_account, tx_hash):
        api.approve = AsyncMock(side_effect=[
            payment_required_body(worker_account.address),
            NetworkError("Failed to connect to API"),
        ])
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=make_wallet(tx_hash=tx_hash)))

        with pytest.raises(PaymentVerificationError) as exc_info:
            await orchestrator.approve(JOB_ID)

        assert exc_info.value.tx_hash == tx_hash

    @pytest.mark.asyncio
    async def test_unexpected_resubmission_error_keeps_hash(self, api, worker_account, tx_hash):
        api.approve = AsyncMock(side_effect=[
            payment_required_body(worker_account.address),
            RuntimeError("event loop closed"),
        ])
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=make_wallet(tx_hash=tx_hash)))

        with pytest.raises(PaymentVerificationError) as exc_info:
            await orchestrator.approve(JOB_ID)

        assert exc_info.value.tx_hash == tx_hash
        assert "event loop closed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_gateway_html_after_payment_keeps_hash(self, worker_account, tx_hash):
        """Test a non-JSON resubmission response still reports the sent transfer"""
        responses = iter([
            httpx.Response(402, json=payment_required_body(worker_account.address)),
            httpx.Response(200, text="<html>upstream error</html>", headers={"content-type": "text/html"}),
        ])
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: next(responses)))
        api = ApiClient("http://api.test", api_key="ab_" + "1" * 32, client=client)
        orchestrator = PaymentOrchestrator(api, AsyncMock(return_value=make_wallet(tx_hash=tx_hash)))

        try:
            with pytest.raises(PaymentVerificationError) as exc_info:
                await orchestrator.approve(JOB_ID)
        finally:
            await client.aclose()

        assert exc_info.value.tx_hash == tx_hash

    @pytest.mark.asyncio
    async def test_reject(self, api):
        api.approve = AsyncMock(return_value={
            "approved": False,
            "job_id": JOB_ID,
            "message": "Job completion rejected. No payment processed.",
        })
        wallet_factory = AsyncMock()
        orchestrator = PaymentOrchestrator(api, wallet_factory)

        outcome = await orchestrator.reject(JOB_ID)

        assert outcome.approved is False
        assert outcome.payment_tx_hash is None
        api.approve.assert_awaited_once_with(JOB_ID, False)
        wallet_factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_reject_never_pays(self, api, worker_account):
        api.approve = AsyncMock(return_value=payment_required_body(worker_account.address))
        orchestrator = PaymentOrchestrator(api, AsyncMock())

        with pytest.raises(PaymentError):
            await orchestrator.reject(JOB_ID)
