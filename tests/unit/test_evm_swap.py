"""
Unit tests for execution/evm_swap.py.

AsyncWeb3 is a MagicMock; router and ERC-20 contract calls are AsyncMocks.
Tests verify slippage-bounded minimum output, deadline, received-amount
accounting from the balance delta, router approval before sells, nonce
sequencing and recovery, EIP-1559 fee buffering, and receipt polling
outcomes.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from conftest import (
    SAMPLE_TOKEN,
    STANDARD_TIMING_CONFIG,
    START_TS,
    make_config_loader,
    patched_module,
)
from execution.errors import SwapBackendError
from shared.types import ExecutionErrorCode

ROUTER = "0x10ED43C718714eb63d5aA57B78B54704E256024E"
WALLET = "0x1234567890AbcdEF1234567890aBcdef12345678"
WBNB = Web3.to_checksum_address("0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c")
TOKEN = Web3.to_checksum_address(SAMPLE_TOKEN)
TX_HASH = HexBytes(b"\x12" * 32)
ONE = 10**18


def _resolved(value):
    """Awaitable usable more than once (web3 exposes gas_price as an awaitable property)."""
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def _mock_w3():
    w3 = MagicMock()
    w3.eth.account.from_key.return_value.address = WALLET
    w3.eth.account.sign_transaction.return_value.raw_transaction = b"raw"
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    w3.eth.get_transaction_receipt = AsyncMock(
        return_value={"status": 1, "blockNumber": 100, "gasUsed": 90000}
    )
    w3.eth.get_balance = AsyncMock(return_value=3 * ONE // 2)

    router = MagicMock()
    router.functions.WETH.return_value.call = AsyncMock(return_value=WBNB.lower())
    router.functions.getAmountsOut.return_value.call = AsyncMock(
        return_value=[ONE // 10, 2000 * ONE]
    )
    for name in ("swapExactETHForTokens", "swapExactTokensForETH"):
        getattr(router.functions, name).return_value.build_transaction = AsyncMock(
            return_value={"nonce": 7, "to": ROUTER}
        )

    erc20 = MagicMock()
    erc20.functions.decimals.return_value.call = AsyncMock(return_value=18)
    erc20.functions.balanceOf.return_value.call = AsyncMock(side_effect=[0, 1990 * ONE])
    erc20.functions.allowance.return_value.call = AsyncMock(return_value=2**256 - 1)
    erc20.functions.approve.return_value.build_transaction = AsyncMock(
        return_value={"nonce": 7, "to": TOKEN}
    )

    w3.eth.contract.side_effect = lambda address, abi: router if address == ROUTER else erc20
    return w3, router, erc20


def _make_backend(clock, w3, timing=None):
    with patched_module("execution.evm_swap", make_config_loader(timing=timing)):
        from execution.evm_swap import EvmRouterSwapBackend

        return EvmRouterSwapBackend("bsc", w3=w3, private_key="0x" + "11" * 32, clock=clock)


# ---------------------------------------------------------------------------
# Construction and reads
# ---------------------------------------------------------------------------


class TestSetup:
    def test_missing_private_key(self, clock, monkeypatch):
        monkeypatch.delenv("EVM_PRIVATE_KEY", raising=False)
        w3, _, _ = _mock_w3()
        with patched_module("execution.evm_swap"):
            from execution.evm_swap import EvmRouterSwapBackend

            with pytest.raises(SwapBackendError, match="EVM_PRIVATE_KEY"):
                EvmRouterSwapBackend("bsc", w3=w3, clock=clock)

    def test_wallet_address(self, clock):
        w3, _, _ = _mock_w3()
        assert _make_backend(clock, w3).address == WALLET

    @pytest.mark.asyncio
    async def test_native_balance(self, clock):
        w3, _, _ = _mock_w3()
        assert await _make_backend(clock, w3).native_balance() == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_quote_buy(self, clock):
        w3, router, _ = _mock_w3()
        backend = _make_backend(clock, w3)

        assert await backend.quote_buy(SAMPLE_TOKEN, Decimal("0.1")) == Decimal("2000")
        router.functions.getAmountsOut.assert_called_with(ONE // 10, [WBNB, TOKEN])


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------


class TestBuy:
    @pytest.mark.asyncio
    async def test_buy_bounds_output_and_counts_received(self, clock):
        w3, router, _ = _mock_w3()
        w3.eth.gas_price = _resolved(5_000_000_000)
        backend = _make_backend(clock, w3)

        result = await backend.execute_buy(SAMPLE_TOKEN, Decimal("0.1"))

        # 5% slippage tolerance under the 2000-token quote, deadline now + 300s
        router.functions.swapExactETHForTokens.assert_called_once_with(
            1900 * ONE, [WBNB, TOKEN], WALLET, int(START_TS) + 300
        )
        params = router.functions.swapExactETHForTokens.return_value.build_transaction.await_args.args[0]
        assert params["value"] == ONE // 10
        assert params["nonce"] == 7
        assert params["chainId"] == 56
        assert result.amount_out == Decimal("1990")
        assert result.amount_in == Decimal("0.1")
        assert result.tx_hash == TX_HASH.to_0x_hex()
        assert result.block_number == 100

    @pytest.mark.asyncio
    async def test_zero_wei_rejected(self, clock):
        w3, _, _ = _mock_w3()
        with pytest.raises(SwapBackendError, match="zero wei"):
            await _make_backend(clock, w3).execute_buy(SAMPLE_TOKEN, Decimal("1e-19"))

    @pytest.mark.asyncio
    async def test_revert_on_build_resets_nonce(self, clock):
        w3, router, _ = _mock_w3()
        w3.eth.gas_price = _resolved(5_000_000_000)
        router.functions.swapExactETHForTokens.return_value.build_transaction.side_effect = (
            ContractLogicError("execution reverted")
        )
        backend = _make_backend(clock, w3)

        with pytest.raises(SwapBackendError) as exc_info:
            await backend.execute_buy(SAMPLE_TOKEN, Decimal("0.1"))

        assert exc_info.value.code == ExecutionErrorCode.TX_REVERTED
        assert backend._nonce is None

    @pytest.mark.asyncio
    async def test_broadcast_failure_resets_nonce(self, clock):
        w3, _, _ = _mock_w3()
        w3.eth.gas_price = _resolved(5_000_000_000)
        w3.eth.send_raw_transaction.side_effect = ValueError("nonce too low")
        backend = _make_backend(clock, w3)

        with pytest.raises(SwapBackendError) as exc_info:
            await backend.execute_buy(SAMPLE_TOKEN, Decimal("0.1"))

        assert exc_info.value.code == ExecutionErrorCode.NETWORK_FAILURE
        assert backend._nonce is None


class TestSell:
    @pytest.mark.asyncio
    async def test_sell_approves_and_caps_at_holdings(self, clock):
        w3, router, erc20 = _mock_w3()
        w3.eth.gas_price = _resolved(5_000_000_000)
        erc20.functions.balanceOf.return_value.call = AsyncMock(return_value=50 * ONE)
        erc20.functions.allowance.return_value.call = AsyncMock(return_value=0)
        router.functions.getAmountsOut.return_value.call = AsyncMock(
            return_value=[50 * ONE, ONE // 5]
        )
        backend = _make_backend(clock, w3)

        result = await backend.execute_sell(SAMPLE_TOKEN, Decimal("100"))

        erc20.functions.approve.assert_called_once_with(ROUTER, 2**256 - 1)
        assert w3.eth.send_raw_transaction.await_count == 2
        router.functions.swapExactTokensForETH.assert_called_once_with(
            50 * ONE, 19 * ONE // 100, [TOKEN, WBNB], WALLET, int(START_TS) + 300
        )
        assert result.amount_in == Decimal("50")
        assert result.amount_out == Decimal("0.2")

    @pytest.mark.asyncio
    async def test_sell_without_balance(self, clock):
        w3, _, erc20 = _mock_w3()
        erc20.functions.balanceOf.return_value.call = AsyncMock(return_value=0)
        with pytest.raises(SwapBackendError, match="balance"):
            await _make_backend(clock, w3).execute_sell(SAMPLE_TOKEN, Decimal("1"))


# ---------------------------------------------------------------------------
# Transaction plumbing
# ---------------------------------------------------------------------------


class TestPlumbing:
    @pytest.mark.asyncio
    async def test_gas_price_buffer(self, clock):
        w3, _, _ = _mock_w3()
        w3.eth.gas_price = _resolved(5_000_000_000)
        max_fee, priority_fee = await _make_backend(clock, w3).get_gas_price()
        assert max_fee == 5_500_000_000
        assert priority_fee == 500_000_000

    @pytest.mark.asyncio
    async def test_nonce_sequence_and_recovery(self, clock):
        w3, _, _ = _mock_w3()
        backend = _make_backend(clock, w3)

        assert await backend._get_next_nonce() == 7
        assert await backend._get_next_nonce() == 8
        assert w3.eth.get_transaction_count.await_count == 1

        await backend._recover_nonce()
        assert await backend._get_next_nonce() == 7
        assert w3.eth.get_transaction_count.await_count == 2

    @pytest.mark.asyncio
    async def test_receipt_success(self, clock):
        w3, _, _ = _mock_w3()
        receipt = await _make_backend(clock, w3).wait_for_receipt(TX_HASH.to_0x_hex())
        assert receipt["blockNumber"] == 100

    @pytest.mark.asyncio
    async def test_receipt_reverted(self, clock):
        w3, _, _ = _mock_w3()
        w3.eth.get_transaction_receipt.return_value = {"status": 0}
        with pytest.raises(SwapBackendError) as exc_info:
            await _make_backend(clock, w3).wait_for_receipt(TX_HASH.to_0x_hex())
        assert exc_info.value.code == ExecutionErrorCode.TX_REVERTED

    @pytest.mark.asyncio
    async def test_receipt_timeout(self, clock):
        timing = {
            **STANDARD_TIMING_CONFIG,
            "transaction": {"confirmation_timeout_seconds": 0, "receipt_poll_interval_seconds": 0},
        }
        w3, _, _ = _mock_w3()
        w3.eth.get_transaction_receipt.side_effect = TransactionNotFound("pending")
        with pytest.raises(SwapBackendError) as exc_info:
            await _make_backend(clock, w3, timing).wait_for_receipt(TX_HASH.to_0x_hex())
        assert exc_info.value.code == ExecutionErrorCode.TX_TIMEOUT
