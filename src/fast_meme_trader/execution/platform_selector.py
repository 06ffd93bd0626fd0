"""
Platform selection for buys.

Established tokens always route through Jupiter. Anything else gets a single
listing probe against pump.fun: listed tokens are bought on pump.fun, all
others (including probe failures) fall back to Jupiter. Sells always go
through Jupiter.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from .models import ESTABLISHED_TOKENS, Platform, TradeSide

logger = logging.getLogger(__name__)


class ListingProbe(Protocol):
    async def is_listed(self, token_id: str) -> bool: ...


class PlatformSelector:
    """
    Chooses the execution venue for a trade.

    Usage:
        selector = PlatformSelector(probe=pumpfun_client)
        platform = await selector.select(token_id, TradeSide.BUY)
    """

    def __init__(
        self,
        probe: Optional[ListingProbe] = None,
        probe_timeout_seconds: float = 3.0,
    ) -> None:
        self._probe = probe
        self._probe_timeout = probe_timeout_seconds

    @staticmethod
    def is_established(token_id: str) -> bool:
        return token_id in ESTABLISHED_TOKENS

    async def select(self, token_id: str, side: TradeSide = TradeSide.BUY) -> Platform:
        """Pick the venue. Never raises: an unanswered probe means Jupiter."""
        if side == TradeSide.SELL or self.is_established(token_id):
            return Platform.JUPITER

        if self._probe is None:
            return Platform.JUPITER

        try:
            listed = await asyncio.wait_for(
                self._probe.is_listed(token_id),
                timeout=self._probe_timeout,
            )
        except asyncio.TimeoutError:
            logger.debug(f"pump.fun probe timed out for {token_id[:8]}")
            return Platform.JUPITER
        except Exception as e:
            logger.debug(f"pump.fun probe failed for {token_id[:8]}: {e}")
            return Platform.JUPITER

        if listed:
            logger.info(f"Token {token_id[:8]} found on pump.fun")
            return Platform.PUMPFUN
        return Platform.JUPITER
