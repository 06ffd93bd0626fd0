"""
pump.fun listing probe and PumpPortal transaction builder.

Both are occasional one-off calls, so each uses a short-lived httpx client
instead of holding a session open.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict

import httpx

from fast_meme_trader.execution.errors import (
    StructuralResponseError,
    TransientRemoteError,
    ValidationError,
)
from fast_meme_trader.execution.models import (
    LAMPORTS_PER_SOL,
    SOL_MINT,
    Quote,
    lamports_to_sol,
)

from .models import PumpFunCoin

logger = logging.getLogger(__name__)

PUMPFUN_API = "https://frontend-api.pump.fun"
PUMPPORTAL_API = "https://pumpportal.fun/api/trade-local"

# Rough bonding-curve rate used when no quote API is available
TOKENS_PER_LAMPORT = 1_000_000


class PumpFunClient:
    """
    Venue for tokens still on the pump.fun bonding curve.

    PumpPortal has no quote endpoint: quote() returns a local estimate and
    build_transaction() asks PumpPortal for the unsigned transaction.

    Usage:
        pumpfun = PumpFunClient()
        if await pumpfun.is_listed(mint):
            quote = await pumpfun.quote(SOL_MINT, mint, lamports, 100)
            payload = await pumpfun.build_transaction(quote, owner, priority_fee)
    """

    def __init__(
        self,
        api_url: str = PUMPFUN_API,
        trade_url: str = PUMPPORTAL_API,
        probe_timeout: float = 3.0,
        trade_timeout: float = 20.0,
    ):
        self._api_url = api_url.rstrip("/")
        self._trade_url = trade_url
        self._probe_timeout = probe_timeout
        self._trade_timeout = trade_timeout

    async def is_listed(self, token_id: str) -> bool:
        """True if pump.fun knows the mint. Any failure counts as not listed."""
        url = f"{self._api_url}/coins/{token_id}"
        try:
            async with httpx.AsyncClient(timeout=self._probe_timeout) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"pump.fun check failed for {token_id[:8]}, assuming not listed: {e}")
            return False

        listed = resp.status_code == 200
        if listed:
            try:
                coin = PumpFunCoin.model_validate(resp.json())
                logger.debug(f"pump.fun coin {coin.symbol or coin.mint[:8]} (complete={coin.complete})")
            except ValueError:
                # Listed, metadata just isn't readable
                pass
        logger.debug(f"pump.fun check for {token_id[:8]}: {listed}")
        return listed

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote:
        """Estimate the output of a trade on the bonding curve."""
        if input_mint == SOL_MINT:
            action, mint = "buy", output_mint
            out_amount = amount * TOKENS_PER_LAMPORT
        elif output_mint == SOL_MINT:
            action, mint = "sell", input_mint
            out_amount = amount // TOKENS_PER_LAMPORT
        else:
            raise ValidationError("pump.fun trades must be against SOL")

        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=amount,
            out_amount=out_amount,
            slippage_bps=slippage_bps,
            raw={"action": action, "mint": mint},
        )

    async def build_transaction(
        self,
        quote: Quote,
        signer_public_key: str,
        priority_fee: int,
    ) -> bytes:
        """
        Ask PumpPortal for an unsigned transaction.

        Raises:
            TransientRemoteError: On transport failure or non-200
            StructuralResponseError: On an empty body
        """
        body = self._trade_body(quote, signer_public_key, priority_fee)

        try:
            async with httpx.AsyncClient(timeout=self._trade_timeout) as client:
                resp = await client.post(self._trade_url, json=body)
        except httpx.TimeoutException:
            raise TransientRemoteError("PumpPortal request timed out")
        except httpx.HTTPError as e:
            raise TransientRemoteError(f"PumpPortal request failed: {e}")

        if resp.status_code != 200:
            raise TransientRemoteError(
                f"PumpPortal API error: {resp.status_code} - {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            raise StructuralResponseError("PumpPortal returned an empty transaction")
        return resp.content

    @staticmethod
    def _trade_body(quote: Quote, public_key: str, priority_fee: int) -> Dict[str, Any]:
        action = quote.raw.get("action", "buy")
        is_buy = action == "buy"
        if is_buy:
            amount: Any = float(lamports_to_sol(quote.in_amount))
        else:
            amount = quote.in_amount

        return {
            "publicKey": public_key,
            "action": action,
            "mint": quote.raw.get("mint", quote.output_mint if is_buy else quote.input_mint),
            "denominatedInSol": "true" if is_buy else "false",
            "amount": amount,
            "slippage": quote.slippage_bps / 100,
            "priorityFee": float(Decimal(priority_fee) / Decimal(LAMPORTS_PER_SOL)),
            "pool": "pump",
        }
