"""
Jupiter swap backend for Solana.

Quote via the Jupiter swap API (SOL mint <-> token mint), request the
serialized swap transaction for our wallet, re-sign it as a solders
VersionedTransaction, broadcast through solana-py and wait for
``confirmed`` commitment. Slippage tolerance is passed to Jupiter as
basis points, which bounds the minimum output on-chain. Tokens received
on a buy are the wallet's token balance change across the swap.

Usage:
    backend = JupiterSwapBackend()
    result = await backend.execute_buy(mint, Decimal("0.5"))
"""

from __future__ import annotations

import base64
import json
import os
from decimal import Decimal
from typing import Any, cast

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from execution.errors import SwapBackendError
from shared.constants import (
    DEFAULT_SLIPPAGE_TOLERANCE_PERCENT,
    LAMPORTS_PER_SOL,
    SOL_MINT,
)
from shared.types import ExecutionErrorCode, SwapResult

_LAMPORTS = Decimal(LAMPORTS_PER_SOL)


def load_keypair(raw: str) -> Keypair:
    """Base58 secret key or a solana-keygen JSON byte array."""
    value = raw.strip()
    if value.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(value)))
    return Keypair.from_base58_string(value)


class JupiterSwapBackend:
    """SwapBackend for Solana, signing with SOLANA_PRIVATE_KEY."""

    def __init__(
        self,
        client: AsyncClient | None = None,
        session: aiohttp.ClientSession | None = None,
        keypair: Keypair | None = None,
    ) -> None:
        cfg = get_config()
        chain_cfg = cfg.get_chain_config("solana")
        exec_cfg = cfg.get_execution_config()
        timing_cfg = cfg.get_timing_config().get("market_data", {})

        dex_cfg = chain_cfg.get("dex", {})
        self._quote_url: str = dex_cfg["quote_url"]
        self._swap_url: str = dex_cfg["swap_url"]
        self._sol_mint: str = chain_cfg.get("native_token", {}).get("mint", SOL_MINT)

        slippage_percent = Decimal(
            str(exec_cfg.get("slippage_tolerance_percent", DEFAULT_SLIPPAGE_TOLERANCE_PERCENT))
        )
        self._slippage_bps = int(slippage_percent * 100)
        self._timeout: float = float(timing_cfg.get("request_timeout_seconds", 10))

        self._client = client or AsyncClient(chain_cfg["rpc_url"], commitment=Confirmed)

        if keypair is None:
            raw = os.environ.get("SOLANA_PRIVATE_KEY", "")
            if not raw:
                raise SwapBackendError("SOLANA_PRIVATE_KEY not set")
            try:
                keypair = load_keypair(raw)
            except ValueError as exc:
                raise SwapBackendError(f"Invalid SOLANA_PRIVATE_KEY format: {exc}") from exc
        self._wallet = keypair

        self._session = session
        self._owns_session = session is None
        self._decimals: dict[str, int] = {}

        self._logger = setup_module_logger("swap", "swap.log", module_folder="Swap_Logs")
        self._logger.info("Solana wallet: %s", str(self._wallet.pubkey())[:10])

    @property
    def public_key(self) -> Pubkey:
        return self._wallet.pubkey()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def native_balance(self) -> Decimal:
        resp = await self._client.get_balance(self._wallet.pubkey())
        return Decimal(resp.value) / _LAMPORTS

    async def quote_buy(self, token_address: str, native_amount: Decimal) -> Decimal:
        quote = await self._get_quote(self._sol_mint, token_address, self._to_lamports(native_amount))
        decimals = await self._mint_decimals(token_address)
        return Decimal(str(quote["outAmount"])) / Decimal(10**decimals)

    async def token_balance(self, mint: str) -> int:
        """Raw units of ``mint`` held across the wallet's token accounts."""
        resp = await self._client.get_token_accounts_by_owner_json_parsed(
            self._wallet.pubkey(),
            TokenAccountOpts(mint=Pubkey.from_string(mint)),
            commitment=Confirmed,
        )
        total = 0
        for keyed in resp.value:
            parsed = cast(dict[str, Any], keyed.account.data.parsed)
            total += int(parsed["info"]["tokenAmount"]["amount"])
        return total

    # ------------------------------------------------------------------
    # Swaps
    # ------------------------------------------------------------------

    async def execute_buy(self, token_address: str, native_amount: Decimal) -> SwapResult:
        lamports = self._to_lamports(native_amount)
        if lamports <= 0:
            raise SwapBackendError("Buy amount rounds to zero lamports")

        quote = await self._get_quote(self._sol_mint, token_address, lamports)
        balance_before = await self.token_balance(token_address)
        self._logger.info(
            "[solana] BUY %s: %s SOL -> %s units expected", token_address, native_amount, quote["outAmount"]
        )
        signature = await self._swap(quote)

        received = await self.token_balance(token_address) - balance_before
        decimals = await self._mint_decimals(token_address)
        return SwapResult(
            tx_hash=signature,
            confirmed=True,
            amount_in=native_amount,
            amount_out=Decimal(received) / Decimal(10**decimals),
        )

    async def execute_sell(self, token_address: str, token_amount: Decimal) -> SwapResult:
        decimals = await self._mint_decimals(token_address)
        held = await self.token_balance(token_address)
        amount_in = min(int(token_amount * Decimal(10**decimals)), held)
        if amount_in <= 0:
            raise SwapBackendError(f"No {token_address} balance to sell")

        quote = await self._get_quote(token_address, self._sol_mint, amount_in)
        self._logger.info(
            "[solana] SELL %s: %d units -> %s lamports expected",
            token_address,
            amount_in,
            quote["outAmount"],
        )
        signature = await self._swap(quote)

        return SwapResult(
            tx_hash=signature,
            confirmed=True,
            amount_in=Decimal(amount_in) / Decimal(10**decimals),
            amount_out=Decimal(str(quote["outAmount"])) / _LAMPORTS,
        )

    # ------------------------------------------------------------------
    # Jupiter HTTP
    # ------------------------------------------------------------------

    async def _get_quote(self, input_mint: str, output_mint: str, amount: int) -> dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(self._slippage_bps),
        }
        session = await self._ensure_session()
        try:
            async with session.get(self._quote_url, params=params) as resp:
                resp.raise_for_status()
                data = cast(dict[str, Any], await resp.json())
        except aiohttp.ClientError as exc:
            raise SwapBackendError(
                f"Jupiter quote failed: {exc}", ExecutionErrorCode.NETWORK_FAILURE
            ) from exc
        if not data.get("outAmount"):
            raise SwapBackendError(f"Jupiter returned no route for {input_mint} -> {output_mint}")
        return data

    async def _swap(self, quote: dict[str, Any]) -> str:
        payload = {
            "quoteResponse": quote,
            "userPublicKey": str(self._wallet.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        session = await self._ensure_session()
        try:
            async with session.post(self._swap_url, json=payload) as resp:
                resp.raise_for_status()
                data = cast(dict[str, Any], await resp.json())
        except aiohttp.ClientError as exc:
            raise SwapBackendError(
                f"Jupiter swap build failed: {exc}", ExecutionErrorCode.NETWORK_FAILURE
            ) from exc

        swap_tx = data.get("swapTransaction")
        if not swap_tx:
            raise SwapBackendError("Jupiter swap response missing swapTransaction")

        raw_tx = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
        signed = VersionedTransaction(raw_tx.message, [self._wallet])
        sent = await self._client.send_raw_transaction(
            bytes(signed), opts=TxOpts(skip_preflight=False, max_retries=3)
        )
        signature = sent.value
        self._logger.info("[solana] TX submitted: %s", signature)

        confirmation = await self._client.confirm_transaction(signature, commitment=Confirmed)
        status = confirmation.value[0] if confirmation.value else None
        if status is None:
            raise SwapBackendError(
                f"TX {signature} not confirmed", ExecutionErrorCode.TX_TIMEOUT
            )
        if status.err is not None:
            raise SwapBackendError(
                f"TX {signature} failed: {status.err}", ExecutionErrorCode.TX_REVERTED
            )
        self._logger.info("[solana] TX confirmed: %s", signature)
        return str(signature)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _mint_decimals(self, mint: str) -> int:
        if mint not in self._decimals:
            if mint == self._sol_mint:
                self._decimals[mint] = 9
            else:
                resp = await self._client.get_token_supply(Pubkey.from_string(mint))
                self._decimals[mint] = int(resp.value.decimals)
        return self._decimals[mint]

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._owns_session = True
        return self._session

    @staticmethod
    def _to_lamports(amount: Decimal) -> int:
        return int(amount * _LAMPORTS)

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None
        await self._client.close()
