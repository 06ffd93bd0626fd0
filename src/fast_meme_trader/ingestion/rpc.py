"""
Solana JSON-RPC client.

Covers what the trader needs from the ledger: recent blockhashes,
broadcasting with confirmation, balances, and Helius priority fee
estimates.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import time
from decimal import Decimal
from typing import Any, List, Optional

import aiohttp

from fast_meme_trader.execution.errors import (
    StructuralResponseError,
    TradeError,
    TransientRemoteError,
)
from fast_meme_trader.execution.models import lamports_to_sol

from .client import BaseApiClient

logger = logging.getLogger(__name__)

PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_RPC_URL = "https://mainnet.helius-rpc.com/?api-key={api_key}"

CONFIRMED_STATUSES = ("confirmed", "finalized")


class SolanaRpcClient(BaseApiClient):
    """
    Async JSON-RPC client.

    Usage:
        async with SolanaRpcClient(helius_api_key=key) as rpc:
            blockhash = await rpc.get_recent_anti_replay_token()
            signature = await rpc.broadcast(signed_tx)
            balance = await rpc.get_token_balance(owner, mint)
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        helius_api_key: Optional[str] = None,
        max_priority_fee: int = 200_000,
        fallback_priority_fee: int = 150_000,
        priority_fee_timeout: float = 5.0,
        confirm_timeout: float = 45.0,
        confirm_poll_interval: float = 1.0,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 20.0,
        timeout: float = 30.0,
    ):
        super().__init__(session=session, rate_limit=rate_limit, timeout=timeout)
        self._helius_url = (
            HELIUS_RPC_URL.format(api_key=helius_api_key) if helius_api_key else None
        )
        self._rpc_url = rpc_url or self._helius_url or PUBLIC_RPC_URL
        self._max_priority_fee = max_priority_fee
        self._fallback_priority_fee = fallback_priority_fee
        self._priority_fee_timeout = priority_fee_timeout
        self._confirm_timeout = confirm_timeout
        self._confirm_poll_interval = confirm_poll_interval
        self._ids = itertools.count(1)

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    async def _call(
        self,
        method: str,
        params: Optional[List[Any]] = None,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Make one JSON-RPC call and return its result.

        Raises:
            TransientRemoteError: On transport failure or an RPC error object
        """
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        payload = await self._request("POST", url or self._rpc_url, json=body, timeout=timeout)

        if not isinstance(payload, dict):
            raise TransientRemoteError(f"{method}: unexpected response")
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise TransientRemoteError(f"{method} error: {message}")
        if "result" not in payload:
            raise TransientRemoteError(f"{method}: response has no result")
        return payload["result"]

    # =========================================================================
    # Transactions
    # =========================================================================

    async def get_recent_anti_replay_token(self) -> str:
        """Latest blockhash, base58 encoded."""
        result = await self._call("getLatestBlockhash", [{"commitment": "confirmed"}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError):
            raise TransientRemoteError("getLatestBlockhash: no blockhash in response")

    async def broadcast(self, signed_payload: bytes) -> str:
        """
        Send a signed transaction and wait for confirmation.

        Returns:
            Transaction signature

        Raises:
            TransientRemoteError: If the send is rejected, the transaction
                fails on chain, or it isn't confirmed in time
        """
        encoded = base64.b64encode(signed_payload).decode("ascii")
        signature = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": True, "maxRetries": 0}],
        )
        logger.debug(f"Sent transaction {signature}")
        await self._wait_for_confirmation(signature)
        return signature

    async def _wait_for_confirmation(self, signature: str) -> None:
        deadline = time.monotonic() + self._confirm_timeout

        while True:
            result = await self._call("getSignatureStatuses", [[signature]])
            statuses = result.get("value") if isinstance(result, dict) else None
            status = statuses[0] if statuses else None

            if status:
                if status.get("err"):
                    raise TransientRemoteError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return

            if time.monotonic() >= deadline:
                raise TransientRemoteError(
                    f"Transaction {signature} not confirmed after {self._confirm_timeout}s"
                )
            await asyncio.sleep(self._confirm_poll_interval)

    # =========================================================================
    # Balances
    # =========================================================================

    async def get_sol_balance(self, owner: str) -> Decimal:
        result = await self._call("getBalance", [owner])
        try:
            return lamports_to_sol(int(result["value"]))
        except (KeyError, TypeError, ValueError):
            raise StructuralResponseError("getBalance: no value in response")

    async def get_token_balance(self, owner: str, token_id: str) -> int:
        """
        Raw token balance held by owner across its token accounts.

        Returns 0 when the owner has no account for the mint.
        """
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": token_id}, {"encoding": "jsonParsed"}],
        )

        total = 0
        for account in result.get("value", []):
            try:
                amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]["amount"]
            except (KeyError, TypeError):
                raise StructuralResponseError(
                    "getTokenAccountsByOwner: unexpected account layout"
                )
            total += int(amount)
        return total

    # =========================================================================
    # Fees
    # =========================================================================

    async def estimate_priority_fee(self) -> int:
        """
        Priority fee from Helius, capped at the configured maximum.

        Falls back to the fixed fallback fee when no estimate is available.
        """
        if not self._helius_url:
            return self._fallback_priority_fee

        try:
            result = await self._call(
                "getPriorityFeeEstimate",
                [{"options": {"priorityLevel": "High"}}],
                url=self._helius_url,
                timeout=self._priority_fee_timeout,
            )
            fee = int(float(result["priorityFeeEstimate"]))
        except (TradeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to get priority fee, using fallback: {e}")
            return self._fallback_priority_fee

        fee = min(fee, self._max_priority_fee)
        logger.debug(f"Calculated priority fee: {fee}")
        return fee
