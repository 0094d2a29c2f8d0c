"""
Uniswap-V2-style router swap backend for the EVM chains (BSC, Base).

Buys swap native coin for the token along [WETH, token] with
swapExactETHForTokens; sells approve the router if needed and swap back
with swapExactTokensForETH. Minimum output is the router's
getAmountsOut quote reduced by the configured slippage tolerance, and
every swap carries a deadline of now + swap_deadline_seconds.

Transactions are EIP-1559, nonces are handed out under an asyncio.Lock,
and confirmation polls for the receipt until the configured timeout.

Usage:
    backend = EvmRouterSwapBackend("bsc")
    result = await backend.execute_buy(token_address, Decimal("0.05"))
"""

from __future__ import annotations

import asyncio
import os
import time
from decimal import Decimal
from typing import Any

from eth_typing import ChecksumAddress
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from execution.errors import SwapBackendError
from shared.clock import Clock, SystemClock
from shared.constants import (
    DEFAULT_SLIPPAGE_TOLERANCE_PERCENT,
    DEFAULT_SWAP_DEADLINE_SECONDS,
    WEI_PER_ETHER,
)
from shared.types import ExecutionErrorCode, SwapResult

_MAX_UINT256 = 2**256 - 1
_HUNDRED = Decimal("100")

_ROUTER_ABI: list[dict[str, Any]] = [
    {
        "name": "WETH",
        "type": "function",
        "stateMutability": "pure",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactETHForTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactTokensForETH",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "path", "type": "address[]"},
            {"name": "to", "type": "address"},
            {"name": "deadline", "type": "uint256"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
]

_ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]


class EvmRouterSwapBackend:
    """SwapBackend for one EVM chain, signing with EVM_PRIVATE_KEY."""

    def __init__(
        self,
        chain: str,
        w3: AsyncWeb3 | None = None,
        private_key: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        cfg = get_config()
        chain_cfg = cfg.get_chain_config(chain)
        exec_cfg = cfg.get_execution_config()
        tx_timing = cfg.get_timing_config().get("transaction", {})

        self._chain = chain
        self._chain_id: int = int(chain_cfg["chain_id"])
        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(chain_cfg["rpc_url"]))
        self._clock = clock or SystemClock()

        key = private_key or os.environ.get("EVM_PRIVATE_KEY", "")
        if not key:
            raise SwapBackendError(f"EVM_PRIVATE_KEY not set for {chain}")
        self._private_key = key
        self._address: ChecksumAddress = self._w3.eth.account.from_key(key).address

        self._router_address = Web3.to_checksum_address(chain_cfg["dex"]["router"])
        self._router = self._w3.eth.contract(address=self._router_address, abi=_ROUTER_ABI)

        self._slippage_percent = Decimal(
            str(exec_cfg.get("slippage_tolerance_percent", DEFAULT_SLIPPAGE_TOLERANCE_PERCENT))
        )
        self._deadline_seconds: int = int(
            exec_cfg.get("swap_deadline_seconds", DEFAULT_SWAP_DEADLINE_SECONDS)
        )
        self._confirmation_timeout: float = float(
            tx_timing.get("confirmation_timeout_seconds", 60)
        )
        self._poll_interval: float = float(tx_timing.get("receipt_poll_interval_seconds", 1))

        self._gas_price_buffer = 1.1  # 10% over the current base price
        self._weth: ChecksumAddress | None = None
        self._decimals: dict[str, int] = {}
        self._nonce: int | None = None
        self._nonce_lock = asyncio.Lock()

        self._logger = setup_module_logger("swap", "swap.log", module_folder="Swap_Logs")

    @property
    def address(self) -> ChecksumAddress:
        return self._address

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def native_balance(self) -> Decimal:
        wei = await self._w3.eth.get_balance(self._address)
        return Decimal(wei) / WEI_PER_ETHER

    async def quote_buy(self, token_address: str, native_amount: Decimal) -> Decimal:
        token = Web3.to_checksum_address(token_address)
        amounts = await self._router.functions.getAmountsOut(
            self._to_wei(native_amount), [await self._get_weth(), token]
        ).call()
        return Decimal(amounts[-1]) / Decimal(10 ** await self._token_decimals(token))

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    async def execute_buy(self, token_address: str, native_amount: Decimal) -> SwapResult:
        token = Web3.to_checksum_address(token_address)
        amount_in = self._to_wei(native_amount)
        if amount_in <= 0:
            raise SwapBackendError("Buy amount rounds to zero wei")

        path = [await self._get_weth(), token]
        amounts = await self._router.functions.getAmountsOut(amount_in, path).call()
        min_out = self._min_out(amounts[-1])

        erc20 = self._erc20(token)
        balance_before = await erc20.functions.balanceOf(self._address).call()

        self._logger.info(
            "[%s] BUY %s: %s native -> min %d units (quote %d)",
            self._chain,
            token,
            native_amount,
            min_out,
            amounts[-1],
        )
        tx = await self._build(
            self._router.functions.swapExactETHForTokens(
                min_out, path, self._address, self._deadline()
            ),
            value=amount_in,
        )
        receipt = await self._send_and_wait(tx)

        balance_after = await erc20.functions.balanceOf(self._address).call()
        received = balance_after - balance_before
        decimals = await self._token_decimals(token)
        return SwapResult(
            tx_hash=receipt["transactionHash"],
            confirmed=True,
            amount_in=native_amount,
            amount_out=Decimal(received) / Decimal(10**decimals),
            block_number=receipt.get("blockNumber"),
        )

    async def execute_sell(self, token_address: str, token_amount: Decimal) -> SwapResult:
        token = Web3.to_checksum_address(token_address)
        erc20 = self._erc20(token)
        decimals = await self._token_decimals(token)

        held = await erc20.functions.balanceOf(self._address).call()
        amount_in = min(int(token_amount * Decimal(10**decimals)), held)
        if amount_in <= 0:
            raise SwapBackendError(f"No {token} balance to sell")

        allowance = await erc20.functions.allowance(self._address, self._router_address).call()
        if allowance < amount_in:
            self._logger.info("[%s] Approving router for %s", self._chain, token)
            approve_tx = await self._build(
                erc20.functions.approve(self._router_address, _MAX_UINT256)
            )
            await self._send_and_wait(approve_tx)

        path = [token, await self._get_weth()]
        amounts = await self._router.functions.getAmountsOut(amount_in, path).call()
        min_out = self._min_out(amounts[-1])

        self._logger.info(
            "[%s] SELL %s: %d units -> min %d wei (quote %d)",
            self._chain,
            token,
            amount_in,
            min_out,
            amounts[-1],
        )
        tx = await self._build(
            self._router.functions.swapExactTokensForETH(
                amount_in, min_out, path, self._address, self._deadline()
            )
        )
        receipt = await self._send_and_wait(tx)

        return SwapResult(
            tx_hash=receipt["transactionHash"],
            confirmed=True,
            amount_in=Decimal(amount_in) / Decimal(10**decimals),
            # Router quote; the wallet balance delta would also include gas
            amount_out=Decimal(amounts[-1]) / WEI_PER_ETHER,
            block_number=receipt.get("blockNumber"),
        )

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    async def _build(self, fn: Any, value: int = 0) -> dict[str, Any]:
        nonce = await self._get_next_nonce()
        max_fee, priority_fee = await self.get_gas_price()
        params: dict[str, Any] = {
            "from": self._address,
            "value": value,
            "chainId": self._chain_id,
            "nonce": nonce,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
        }
        try:
            return dict(await fn.build_transaction(params))
        except ContractLogicError as exc:
            await self._recover_nonce()
            raise SwapBackendError(
                f"Swap would revert: {exc}", ExecutionErrorCode.TX_REVERTED
            ) from exc

    async def _send_and_wait(self, tx: dict[str, Any]) -> dict[str, Any]:
        signed = self._w3.eth.account.sign_transaction(tx, self._private_key)
        try:
            tx_hash = HexBytes(await self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except (ValueError, Web3Exception) as exc:
            await self._recover_nonce()
            raise SwapBackendError(
                f"TX broadcast failed: {exc}", ExecutionErrorCode.NETWORK_FAILURE
            ) from exc
        tx_hash_hex = tx_hash.to_0x_hex()
        self._logger.info("[%s] TX submitted: %s nonce=%d", self._chain, tx_hash_hex, tx["nonce"])
        receipt = await self.wait_for_receipt(tx_hash_hex)
        receipt["transactionHash"] = tx_hash_hex
        return receipt

    async def wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        """
        Poll until the receipt appears.

        Raises ``SwapBackendError`` with TX_REVERTED on status 0 and
        TX_TIMEOUT once the confirmation timeout passes.
        """
        start = time.monotonic()
        while True:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(HexBytes(tx_hash))
            except TransactionNotFound:
                receipt = None

            if receipt is not None:
                if receipt.get("status") == 1:
                    self._logger.info(
                        "[%s] TX confirmed: %s block=%s gasUsed=%s",
                        self._chain,
                        tx_hash,
                        receipt.get("blockNumber"),
                        receipt.get("gasUsed"),
                    )
                    return dict(receipt)
                raise SwapBackendError(
                    f"TX reverted on-chain: {tx_hash}", ExecutionErrorCode.TX_REVERTED
                )

            if time.monotonic() - start >= self._confirmation_timeout:
                raise SwapBackendError(
                    f"TX {tx_hash} not confirmed after {self._confirmation_timeout}s",
                    ExecutionErrorCode.TX_TIMEOUT,
                )
            await asyncio.sleep(self._poll_interval)

    async def get_gas_price(self) -> tuple[int, int]:
        """(maxFeePerGas, maxPriorityFeePerGas) in wei, 10% buffer on the base price."""
        base_price = await self._w3.eth.gas_price
        max_fee = int(base_price * self._gas_price_buffer)
        priority_fee = max(int(base_price * 0.1), 1)
        return max(max_fee, priority_fee), priority_fee

    async def _get_next_nonce(self) -> int:
        async with self._nonce_lock:
            if self._nonce is None:
                self._nonce = await self._w3.eth.get_transaction_count(self._address, "pending")
                self._logger.info("[%s] Nonce initialized from chain: %d", self._chain, self._nonce)
            nonce = self._nonce
            self._nonce += 1
            return nonce

    async def _recover_nonce(self) -> None:
        """Drop the local counter; the next transaction re-reads the pending nonce."""
        async with self._nonce_lock:
            self._nonce = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_weth(self) -> ChecksumAddress:
        if self._weth is None:
            self._weth = Web3.to_checksum_address(await self._router.functions.WETH().call())
        return self._weth

    async def _token_decimals(self, token: ChecksumAddress) -> int:
        if token not in self._decimals:
            self._decimals[token] = int(await self._erc20(token).functions.decimals().call())
        return self._decimals[token]

    def _erc20(self, token: ChecksumAddress) -> Any:
        return self._w3.eth.contract(address=token, abi=_ERC20_ABI)

    def _min_out(self, expected: int) -> int:
        return int(Decimal(expected) * (_HUNDRED - self._slippage_percent) / _HUNDRED)

    def _deadline(self) -> int:
        return int(self._clock.now()) + self._deadline_seconds

    @staticmethod
    def _to_wei(amount: Decimal) -> int:
        return int(amount * WEI_PER_ETHER)

    async def close(self) -> None:
        provider = self._w3.provider
        if isinstance(provider, AsyncHTTPProvider):
            await provider.disconnect()
        self._logger.debug("[%s] Swap backend closed", self._chain)
