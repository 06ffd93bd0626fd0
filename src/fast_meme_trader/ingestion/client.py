"""
REST API client for Jupiter.

Provides async access to Jupiter's quote, swap and price APIs. Retries are
not done here: the OrderPipeline owns the retry schedule, so every failure
is mapped to a typed error and raised on the first attempt.

Error mapping:
    - timeouts, connection errors, non-2xx, non-JSON bodies -> TransientRemoteError
    - payload without the fields we need -> StructuralResponseError
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from fast_meme_trader.execution.errors import (
    StructuralResponseError,
    TransientRemoteError,
)
from fast_meme_trader.execution.models import Quote

from .models import JupiterPrice, JupiterQuote, JupiterSwapResponse

logger = logging.getLogger(__name__)


class BaseApiClient:
    """
    Shared aiohttp session handling and rate limiting.

    Usage:
        async with SomeClient() as client:
            ...
    """

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,  # requests per second
        timeout: float = 30.0,
    ):
        """
        Initialize the client.

        Args:
            session: Optional aiohttp session (created if not provided)
            rate_limit: Maximum requests per second
            timeout: Request timeout in seconds
        """
        self._session = session
        self._owns_session = session is None
        self._rate_limit = rate_limit
        self._timeout = aiohttp.ClientTimeout(total=timeout)

        # Rate limiting
        self._request_times: List[float] = []
        self._rate_lock = asyncio.Lock()

    async def __aenter__(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _rate_limit_wait(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._rate_lock:
            now = time.time()

            # Remove old timestamps outside the 1-second window
            self._request_times = [t for t in self._request_times if now - t < 1.0]

            if len(self._request_times) >= self._rate_limit:
                wait_time = 1.0 - (now - self._request_times[0])
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._request_times.append(time.time())

    async def _request(
        self,
        method: str,
        url: str,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> Any:
        """
        Make one rate-limited HTTP request and parse the JSON body.

        Raises:
            TransientRemoteError: On timeouts, transport errors, non-2xx or non-JSON
            asyncio.CancelledError: When task is cancelled (re-raised)
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)

        await self._rate_limit_wait()

        try:
            async with self._session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise TransientRemoteError(
                        f"API error: {response.status} - {text[:200]}",
                        status_code=response.status,
                    )
                return await response.json(content_type=None)

        except asyncio.TimeoutError:
            raise TransientRemoteError(f"Request timed out: {method} {url}")

        except ValueError as e:
            # aiohttp raises a ValueError subclass for unreadable JSON
            raise TransientRemoteError(f"Invalid JSON from {url}: {e}")

        except aiohttp.ClientError as e:
            raise TransientRemoteError(f"Request failed: {e}")


def parse_quote(
    payload: Any,
    input_mint: str,
    output_mint: str,
    amount: int,
    slippage_bps: int,
) -> Quote:
    """
    Normalize a Jupiter quote payload.

    Known shapes, tried in order:
        {"outAmount": ...}
        {"data": {"outAmount": ...}}
        {"data": [{"outAmount": ...}, ...]}

    Raises:
        StructuralResponseError: If none of them match
    """
    candidates: List[Any] = [payload]
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict):
            candidates.append(data)
        elif isinstance(data, list) and data:
            candidates.append(data[0])

    for candidate in candidates:
        if not isinstance(candidate, dict) or "outAmount" not in candidate:
            continue
        try:
            route = JupiterQuote.model_validate(candidate)
        except PydanticValidationError as e:
            raise StructuralResponseError(f"Invalid quote outAmount: {e}")

        return Quote(
            input_mint=input_mint,
            output_mint=output_mint,
            in_amount=route.in_amount if route.in_amount is not None else amount,
            out_amount=route.out_amount,
            slippage_bps=slippage_bps,
            raw=candidate,
        )

    raise StructuralResponseError("Quote response missing outAmount")


class JupiterClient(BaseApiClient):
    """
    Async client for Jupiter swap and price APIs.

    Usage:
        async with JupiterClient() as jupiter:
            quote = await jupiter.quote(SOL_MINT, mint, 100_000_000, 100)
            payload = await jupiter.build_transaction(quote, owner, priority_fee)
            price = await jupiter.get_price(mint)
    """

    QUOTE_API = "https://quote-api.jup.ag/v6"
    PRICE_API = "https://api.jup.ag/price/v2"

    def __init__(
        self,
        quote_url: Optional[str] = None,
        price_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        rate_limit: float = 10.0,
        timeout: float = 30.0,
        price_timeout: float = 10.0,
    ):
        super().__init__(session=session, rate_limit=rate_limit, timeout=timeout)
        self._quote_url = (quote_url or self.QUOTE_API).rstrip("/")
        self._price_url = price_url or self.PRICE_API
        self._price_timeout = price_timeout

    # =========================================================================
    # Swaps
    # =========================================================================

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote:
        """Get a route quote."""
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        logger.debug(f"Jupiter quote {input_mint[:8]} -> {output_mint[:8]} amount={amount}")
        payload = await self._request("GET", f"{self._quote_url}/quote", params=params)
        return parse_quote(payload, input_mint, output_mint, amount, slippage_bps)

    async def build_transaction(
        self,
        quote: Quote,
        signer_public_key: str,
        priority_fee: int,
    ) -> bytes:
        """Exchange a quote for an unsigned versioned transaction."""
        body: Dict[str, Any] = {
            "userPublicKey": signer_public_key,
            "quoteResponse": quote.raw,
            "prioritizationFeeLamports": priority_fee,
            "asLegacyTransaction": False,
            "dynamicComputeUnitLimit": True,
        }
        payload = await self._request("POST", f"{self._quote_url}/swap", json=body)

        try:
            swap = JupiterSwapResponse.model_validate(payload)
        except PydanticValidationError:
            raise StructuralResponseError("Swap response missing swapTransaction")

        try:
            return base64.b64decode(swap.swap_transaction, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StructuralResponseError(f"swapTransaction is not valid base64: {e}")

    # =========================================================================
    # Prices
    # =========================================================================

    async def get_price(self, token_id: str) -> Decimal:
        """
        Current price of a token.

        Raises:
            TransientRemoteError: On transport failure
            StructuralResponseError: If the token has no price entry
        """
        payload = await self._request(
            "GET",
            self._price_url,
            params={"ids": token_id},
            timeout=self._price_timeout,
        )

        data = payload.get("data") if isinstance(payload, dict) else None
        entry = data.get(token_id) if isinstance(data, dict) else None
        if entry is None:
            raise StructuralResponseError(f"No price data for {token_id}")

        try:
            return JupiterPrice.model_validate(entry).price
        except PydanticValidationError:
            raise StructuralResponseError(f"Invalid price data for {token_id}")
