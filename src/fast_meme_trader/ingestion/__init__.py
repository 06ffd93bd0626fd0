"""
Ingestion Layer - Venue, price and ledger clients.

This module provides:
    - JupiterClient: Quotes, swap transactions and prices (aiohttp)
    - SolanaRpcClient: Blockhash, broadcast/confirm, balances, priority fees (aiohttp)
    - PumpFunClient: pump.fun listing probe and PumpPortal builder (httpx)
    - parse_quote: Normalizes the known Jupiter quote shapes

Usage:
    from fast_meme_trader.ingestion import JupiterClient, SolanaRpcClient

    async with JupiterClient() as jupiter, SolanaRpcClient(helius_api_key=key) as rpc:
        price = await jupiter.get_price(mint)
"""

from .client import BaseApiClient, JupiterClient, parse_quote
from .pumpfun import PumpFunClient
from .rpc import SolanaRpcClient

__all__ = [
    "BaseApiClient",
    "JupiterClient",
    "parse_quote",
    "PumpFunClient",
    "SolanaRpcClient",
]
