"""
Fast Meme Trader.

An automated trader for Solana tokens. Buys route through Jupiter or the
pump.fun bonding curve, open positions are watched by a monitoring loop,
and each one is sold when its exit strategy (fixed take-profit/stop-loss or
a trailing pullback from its all-time high) triggers.
"""

__version__ = "0.3.2"
