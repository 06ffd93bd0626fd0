"""
Position Store for open positions and their ATH trackers.

Positions and trackers live in two maps keyed by token_id, guarded by a
single reader/writer lock. They are inserted and removed together, so a
tracker never exists without its position (or vice versa).

No network call is ever made while the lock is held: callers fetch prices
first, then call record_price().
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Optional, Tuple

from .errors import ValidationError
from .models import ATHTracker, Position

logger = logging.getLogger(__name__)


class DuplicatePositionError(ValidationError):
    """Raised when a position for the token is already open."""

    def __init__(self, token_id: str):
        self.token_id = token_id
        super().__init__(f"Position already open for {token_id}")


class AsyncRWLock:
    """
    Reader/writer lock for asyncio.

    Any number of readers may hold the lock while no writer does. A waiting
    writer blocks new readers so writes aren't starved by a steady stream
    of status queries.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            except BaseException:
                self._writers_waiting -= 1
                self._cond.notify_all()
                raise
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class PositionStore:
    """
    In-memory store of open positions and ATH trackers.

    Usage:
        store = PositionStore()

        await store.insert(token_id, position, ATHTracker.for_entry(price, strategy))

        tracker = await store.record_price(token_id, current_price)

        for position, tracker in await store.snapshot():
            ...

        await store.remove(token_id)  # after a confirmed sell
    """

    def __init__(self) -> None:
        self._positions: Dict[str, Position] = {}
        self._trackers: Dict[str, ATHTracker] = {}
        self._lock = AsyncRWLock()

    @property
    def lock(self) -> AsyncRWLock:
        """The store's reader/writer lock."""
        return self._lock

    async def insert(
        self,
        token_id: str,
        position: Position,
        tracker: ATHTracker,
    ) -> None:
        """
        Add a position and its tracker.

        Raises:
            DuplicatePositionError: If a position for token_id is already open
        """
        if position.token_id != token_id:
            raise ValueError(
                f"Position token {position.token_id} does not match key {token_id}"
            )

        async with self._lock.write():
            if token_id in self._positions:
                raise DuplicatePositionError(token_id)
            self._positions[token_id] = position
            self._trackers[token_id] = dataclasses.replace(tracker)

        logger.info(
            f"Opened position {token_id[:8]}: {position.amount_held} tokens "
            f"@ {position.entry_price} ({position.strategy.label})"
        )

    async def remove(self, token_id: str) -> Optional[Position]:
        """
        Remove a position and its tracker.

        Returns:
            The removed position, or None if nothing was open (not an error)
        """
        async with self._lock.write():
            position = self._positions.pop(token_id, None)
            self._trackers.pop(token_id, None)

        if position is not None:
            logger.info(f"Closed position {token_id[:8]}")
        return position

    async def record_price(
        self,
        token_id: str,
        price: Decimal,
        now: Optional[datetime] = None,
    ) -> Optional[ATHTracker]:
        """
        Record an observed price: raise the watermark if needed, set last_price.

        Returns:
            Copy of the updated tracker, or None if the token isn't held
        """
        async with self._lock.write():
            tracker = self._trackers.get(token_id)
            if tracker is None:
                return None
            if price > tracker.ath_price:
                tracker.ath_price = price
                logger.debug(f"New ATH for {token_id[:8]}: {price}")
            tracker.last_price = price
            tracker.last_updated = now or datetime.now(timezone.utc)
            return dataclasses.replace(tracker)

    async def get(self, token_id: str) -> Optional[Tuple[Position, ATHTracker]]:
        """Get (position, tracker copy) for a token."""
        async with self._lock.read():
            position = self._positions.get(token_id)
            if position is None:
                return None
            return position, dataclasses.replace(self._trackers[token_id])

    async def get_position(self, token_id: str) -> Optional[Position]:
        async with self._lock.read():
            return self._positions.get(token_id)

    async def get_tracker(self, token_id: str) -> Optional[ATHTracker]:
        async with self._lock.read():
            tracker = self._trackers.get(token_id)
            return dataclasses.replace(tracker) if tracker else None

    async def contains(self, token_id: str) -> bool:
        async with self._lock.read():
            return token_id in self._positions

    async def list_positions(self) -> List[Position]:
        """Snapshot of open positions."""
        async with self._lock.read():
            return list(self._positions.values())

    async def snapshot(self) -> List[Tuple[Position, ATHTracker]]:
        """Snapshot of (position, tracker copy) pairs."""
        async with self._lock.read():
            return [
                (position, dataclasses.replace(self._trackers[token_id]))
                for token_id, position in self._positions.items()
            ]

    async def token_ids(self) -> List[str]:
        async with self._lock.read():
            return list(self._positions.keys())

    async def count(self) -> int:
        async with self._lock.read():
            return len(self._positions)
