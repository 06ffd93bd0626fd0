"""
Tests for JupiterClient and quote parsing.
"""
import asyncio
import base64
import pytest
from unittest.mock import AsyncMock, MagicMock
from decimal import Decimal

import aiohttp

from fast_meme_trader.execution.errors import (
    StructuralResponseError,
    TransientRemoteError,
)
from fast_meme_trader.execution.models import SOL_MINT as SOL, Quote
from fast_meme_trader.ingestion.client import JupiterClient, parse_quote

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"


# =============================================================================
# Quote Parsing
# =============================================================================


class TestParseQuote:
    """Known quote shapes are tried in order."""

    def test_top_level_out_amount(self):
        payload = {"inAmount": "1000", "outAmount": "123456", "routePlan": []}
        quote = parse_quote(payload, SOL, BONK, 1000, 100)

        assert quote.out_amount == 123456
        assert quote.in_amount == 1000
        assert quote.raw == payload

    def test_nested_data_object(self):
        quote = parse_quote({"data": {"outAmount": 42}}, SOL, BONK, 1000, 100)
        assert quote.out_amount == 42
        assert quote.in_amount == 1000

    def test_nested_data_list(self):
        payload = {"data": [{"outAmount": "7"}, {"outAmount": "6"}]}
        quote = parse_quote(payload, SOL, BONK, 1000, 100)
        assert quote.out_amount == 7
        assert quote.raw == {"outAmount": "7"}

    def test_keeps_requested_slippage(self):
        quote = parse_quote({"outAmount": "1", "slippageBps": 50}, SOL, BONK, 1, 300)
        assert quote.slippage_bps == 300

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"data": {}},
            {"data": []},
            {"error": "no route"},
            [],
            None,
        ],
    )
    def test_missing_out_amount(self, payload):
        with pytest.raises(StructuralResponseError):
            parse_quote(payload, SOL, BONK, 1000, 100)

    def test_unreadable_out_amount(self):
        with pytest.raises(StructuralResponseError):
            parse_quote({"outAmount": "lots"}, SOL, BONK, 1000, 100)


# =============================================================================
# Jupiter Client
# =============================================================================


class TestJupiterQuote:
    """Tests for JupiterClient.quote()."""

    @pytest.mark.asyncio
    async def test_sends_query(self, jupiter):
        jupiter._request.return_value = {"outAmount": "999"}

        quote = await jupiter.quote(SOL, BONK, 5000, 150)

        assert quote.out_amount == 999
        jupiter._request.assert_awaited_once_with(
            "GET",
            "https://quote.test/v6/quote",
            params={
                "inputMint": SOL,
                "outputMint": BONK,
                "amount": "5000",
                "slippageBps": "150",
            },
        )

    @pytest.mark.asyncio
    async def test_transient_errors_propagate(self, jupiter):
        jupiter._request.side_effect = TransientRemoteError("503", status_code=503)

        with pytest.raises(TransientRemoteError):
            await jupiter.quote(SOL, BONK, 5000, 150)


class TestJupiterSwap:
    """Tests for JupiterClient.build_transaction()."""

    @pytest.mark.asyncio
    async def test_posts_swap_body(self, jupiter):
        jupiter._request.return_value = {
            "swapTransaction": base64.b64encode(b"tx-bytes").decode(),
            "lastValidBlockHeight": 1,
        }
        quote = Quote(SOL, BONK, 1000, 2000, 100, raw={"outAmount": "2000"})

        payload = await jupiter.build_transaction(quote, "OwnerKey", 150_000)

        assert payload == b"tx-bytes"
        method, url = jupiter._request.await_args.args
        body = jupiter._request.await_args.kwargs["json"]
        assert (method, url) == ("POST", "https://quote.test/v6/swap")
        assert body == {
            "userPublicKey": "OwnerKey",
            "quoteResponse": {"outAmount": "2000"},
            "prioritizationFeeLamports": 150_000,
            "asLegacyTransaction": False,
            "dynamicComputeUnitLimit": True,
        }

    @pytest.mark.asyncio
    async def test_missing_transaction(self, jupiter):
        jupiter._request.return_value = {"error": "route expired"}
        quote = Quote(SOL, BONK, 1000, 2000, 100)

        with pytest.raises(StructuralResponseError):
            await jupiter.build_transaction(quote, "OwnerKey", 1)

    @pytest.mark.asyncio
    async def test_invalid_base64(self, jupiter):
        jupiter._request.return_value = {"swapTransaction": "***not base64***"}
        quote = Quote(SOL, BONK, 1000, 2000, 100)

        with pytest.raises(StructuralResponseError):
            await jupiter.build_transaction(quote, "OwnerKey", 1)


class TestJupiterPrice:
    """Tests for JupiterClient.get_price()."""

    @pytest.mark.asyncio
    async def test_string_price(self, jupiter):
        jupiter._request.return_value = {"data": {BONK: {"id": BONK, "price": "0.00002134"}}}

        price = await jupiter.get_price(BONK)

        assert price == Decimal("0.00002134")
        assert jupiter._request.await_args.kwargs["params"] == {"ids": BONK}

    @pytest.mark.asyncio
    async def test_numeric_price(self, jupiter):
        jupiter._request.return_value = {"data": {BONK: {"price": 1.25}}}
        assert await jupiter.get_price(BONK) == Decimal("1.25")

    @pytest.mark.asyncio
    async def test_unknown_token(self, jupiter):
        jupiter._request.return_value = {"data": {}}
        with pytest.raises(StructuralResponseError):
            await jupiter.get_price(BONK)

    @pytest.mark.asyncio
    async def test_null_price(self, jupiter):
        jupiter._request.return_value = {"data": {BONK: {"price": None}}}
        with pytest.raises(StructuralResponseError):
            await jupiter.get_price(BONK)


# =============================================================================
# Request Error Mapping
# =============================================================================


def session_returning(response=None, error=None):
    """aiohttp session mock whose request() context yields response or raises."""
    ctx = MagicMock()
    if error is not None:
        ctx.__aenter__ = AsyncMock(side_effect=error)
    else:
        ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.request = MagicMock(return_value=ctx)
    return session


class TestRequestErrorMapping:
    """_request maps transport failures to TransientRemoteError."""

    @pytest.mark.asyncio
    async def test_non_2xx(self):
        response = MagicMock(status=503)
        response.text = AsyncMock(return_value="unavailable")
        client = JupiterClient(session=session_returning(response))

        with pytest.raises(TransientRemoteError) as exc_info:
            await client._request("GET", "https://quote.test/v6/quote")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = JupiterClient(session=session_returning(error=asyncio.TimeoutError()))

        with pytest.raises(TransientRemoteError):
            await client._request("GET", "https://quote.test/v6/quote")

    @pytest.mark.asyncio
    async def test_client_error(self):
        error = aiohttp.ClientConnectionError("refused")
        client = JupiterClient(session=session_returning(error=error))

        with pytest.raises(TransientRemoteError):
            await client._request("GET", "https://quote.test/v6/quote")

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        response = MagicMock(status=200)
        response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        client = JupiterClient(session=session_returning(response))

        with pytest.raises(TransientRemoteError):
            await client._request("GET", "https://quote.test/v6/quote")

    @pytest.mark.asyncio
    async def test_success(self):
        response = MagicMock(status=200)
        response.json = AsyncMock(return_value={"ok": True})
        client = JupiterClient(session=session_returning(response))

        assert await client._request("GET", "https://quote.test/v6/quote") == {"ok": True}
