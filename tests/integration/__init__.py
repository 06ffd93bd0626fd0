"""
Integration tests for the Fast Meme Trader.

These tests verify that components work together correctly: the trading
service, order pipeline, Jupiter and RPC clients and the wallet signer run
for real, with only the HTTP transport replaced.

Run with:
    pytest tests/integration/ -v -m integration

Skip with:
    pytest -m "not integration"
"""
