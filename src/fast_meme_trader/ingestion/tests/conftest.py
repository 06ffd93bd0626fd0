"""
Ingestion layer test fixtures.

HTTP is never performed: tests replace _request/_call on the aiohttp
clients, and patch httpx.AsyncClient for the pump.fun client.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock

from fast_meme_trader.ingestion import JupiterClient, PumpFunClient, SolanaRpcClient



@pytest.fixture
def jupiter():
    client = JupiterClient(quote_url="https://quote.test/v6", price_url="https://price.test")
    client._request = AsyncMock()
    return client


@pytest.fixture
def rpc():
    client = SolanaRpcClient(rpc_url="https://rpc.test", helius_api_key="test-key")
    client._call = AsyncMock()
    return client


@pytest.fixture
def pumpfun():
    return PumpFunClient()


def make_httpx_response(status_code=200, json_data=None, content=b""):
    """Build an httpx-like response mock."""
    response = MagicMock()
    response.status_code = status_code
    response.content = content
    response.text = content.decode(errors="replace") if content else ""
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def httpx_response():
    return make_httpx_response
