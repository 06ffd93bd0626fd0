"""
TradingService - Facade for coordinating trade execution.

Coordinates the PositionStore, PlatformSelector, OrderPipeline and the exit
evaluator to handle the full lifecycle of trades.

This is the primary interface the entry point and the MonitoringLoop use.
They should not call the pipeline or the store directly.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Set, Tuple

from .errors import (
    InsufficientFundsError,
    NoPositionError,
    TradeError,
    ValidationError,
)
from .exit_manager import (
    ExitDecision,
    calculate_profit_percent,
    calculate_pullback_percent,
    evaluate_exit,
)
from .models import (
    BONK_MINT,
    ATHTracker,
    Platform,
    Position,
    TradeRequest,
    TradeResult,
    TradeSide,
)
from .order_pipeline import OrderPipeline, OrderTicket
from .platform_selector import PlatformSelector
from .position_store import PositionStore

logger = logging.getLogger(__name__)


class PriceOracle(Protocol):
    async def get_price(self, token_id: str) -> Decimal: ...


class BalanceLookup(Protocol):
    async def get_token_balance(self, owner: str, token_id: str) -> int: ...

    async def get_sol_balance(self, owner: str) -> Decimal: ...

    async def get_recent_anti_replay_token(self) -> str: ...


@dataclass(frozen=True)
class AthStatus:
    """Status of one position at its last observed price."""

    token_id: str
    strategy_label: str
    entry_price: Decimal
    ath_price: Decimal
    current_price: Decimal
    profit_percent: Decimal
    pullback_percent: Decimal

    def __str__(self) -> str:
        return (
            f"Entry: ${self.entry_price:.8f} | ATH: ${self.ath_price:.8f} | "
            f"Current: ${self.current_price:.8f} | P&L: {self.profit_percent:.2f}% | "
            f"Pullback: {self.pullback_percent:.2f}%"
        )


@dataclass(frozen=True)
class PerformanceStats:
    """Aggregate stats over open positions at their last observed price."""

    active_trades: int = 0
    winning_trades: int = 0
    win_rate_percent: Decimal = Decimal("0")
    average_pnl_percent: Decimal = Decimal("0")

    def __str__(self) -> str:
        return (
            f"Active Trades: {self.active_trades} | "
            f"Win Rate: {self.win_rate_percent:.1f}% | "
            f"Avg P&L: {self.average_pnl_percent:.2f}%"
        )


@dataclass
class HealthReport:
    """Result of health_check()."""

    sol_balance: Optional[Decimal] = None
    open_positions: int = 0
    price_api_ok: bool = False
    rpc_ok: bool = False
    errors: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return self.price_api_ok and self.rpc_ok

    def lines(self) -> List[str]:
        balance = f"{self.sol_balance:.4f} SOL" if self.sol_balance is not None else "unknown"
        return [
            f"SOL Balance: {balance}",
            f"Active Positions: {self.open_positions}",
            f"Jupiter API: {'OK' if self.price_api_ok else 'FAILED'}",
            f"Solana RPC: {'OK' if self.rpc_ok else 'FAILED'}",
        ] + [f"Error: {e}" for e in self.errors]


class TradingService:
    """
    Coordinates buys, sells and exit monitoring.

    Usage:
        service = TradingService(pipeline, store, selector, oracle, rpc, owner)

        result = await service.buy(TradeRequest(token_id, Decimal("0.1")))
        if result.success:
            print(f"Bought {result.tokens_received} tokens")

        # One monitoring pass
        for line in await service.monitor_once():
            print(line)

        # Sell everything
        await service.emergency_liquidate_all()
    """

    def __init__(
        self,
        pipeline: OrderPipeline,
        store: PositionStore,
        selector: PlatformSelector,
        oracle: PriceOracle,
        balances: BalanceLookup,
        owner: str,
    ) -> None:
        """
        Initialize the trading service.

        Args:
            pipeline: Order execution pipeline
            store: Position store (owned by this service)
            selector: Venue selector for buys
            oracle: Price oracle
            balances: Ledger balance lookups
            owner: Wallet public key
        """
        self._pipeline = pipeline
        self._store = store
        self._selector = selector
        self._oracle = oracle
        self._balances = balances
        self._owner = owner
        self._buys_in_flight: Set[str] = set()

    @property
    def store(self) -> PositionStore:
        return self._store

    @property
    def owner(self) -> str:
        return self._owner

    # =========================================================================
    # Queries
    # =========================================================================

    async def list_positions(self) -> List[Tuple[Position, AthStatus]]:
        """Open positions with their status at the last observed price."""
        return [
            (position, self._status(position, tracker))
            for position, tracker in await self._store.snapshot()
        ]

    async def get_ath_status(self, token_id: str) -> Optional[AthStatus]:
        """Watermark status for a held token, or None."""
        entry = await self._store.get(token_id)
        if entry is None:
            return None
        position, tracker = entry
        return self._status(position, tracker)

    async def get_performance_stats(self) -> PerformanceStats:
        snapshot = await self._store.snapshot()
        if not snapshot:
            return PerformanceStats()

        pnls = [
            calculate_profit_percent(position.entry_price, tracker.last_price)
            for position, tracker in snapshot
        ]
        winners = sum(1 for pnl in pnls if pnl > 0)
        count = len(pnls)
        return PerformanceStats(
            active_trades=count,
            winning_trades=winners,
            win_rate_percent=Decimal(winners) / Decimal(count) * 100,
            average_pnl_percent=sum(pnls, Decimal("0")) / Decimal(count),
        )

    async def detect_platform(self, token_id: str) -> Platform:
        return await self._selector.select(token_id, TradeSide.BUY)

    async def health_check(self) -> HealthReport:
        """Check wallet balance, price API and RPC reachability."""
        report = HealthReport(open_positions=await self._store.count())

        try:
            report.sol_balance = await self._balances.get_sol_balance(self._owner)
        except TradeError as e:
            report.errors.append(f"balance: {e}")

        try:
            await self._oracle.get_price(BONK_MINT)
            report.price_api_ok = True
        except TradeError as e:
            report.errors.append(f"price api: {e}")

        try:
            await self._balances.get_recent_anti_replay_token()
            report.rpc_ok = True
        except TradeError as e:
            report.errors.append(f"rpc: {e}")

        return report

    @staticmethod
    def _status(position: Position, tracker: ATHTracker) -> AthStatus:
        current = tracker.last_price
        return AthStatus(
            token_id=position.token_id,
            strategy_label=position.strategy.label,
            entry_price=position.entry_price,
            ath_price=tracker.ath_price,
            current_price=current,
            profit_percent=calculate_profit_percent(position.entry_price, current),
            pullback_percent=calculate_pullback_percent(tracker.ath_price, current),
        )

    # =========================================================================
    # Trading
    # =========================================================================

    async def buy(self, request: TradeRequest) -> TradeResult:
        """
        Buy a token and open a position for it.

        Handles:
        1. Duplicate check (held or already being bought)
        2. Venue selection
        3. Quote, build, sign, broadcast
        4. Position + tracker creation

        Returns:
            TradeResult, successful or not
        """
        started = time.monotonic()
        token_id = request.token_id
        platform = Platform.JUPITER

        if token_id in self._buys_in_flight:
            return self._failure(
                ValidationError(f"Buy already in progress for {token_id}"),
                started,
                platform,
                token_id,
            )

        self._buys_in_flight.add(token_id)
        try:
            if await self._store.contains(token_id):
                raise ValidationError(f"Position already open for {token_id}")
            ticket = self._pipeline.buy_ticket(request, platform)

            platform = await self._selector.select(token_id, TradeSide.BUY)
            ticket.platform = platform
            logger.info(
                f"Buying {token_id[:8]} for {request.amount_sol} SOL via {platform.value} "
                f"({request.strategy.label}: {request.strategy.describe()})"
            )

            outcome = await self._pipeline.execute(ticket)

            entry_price = await self._entry_price(token_id)
            now = datetime.now(timezone.utc)
            position = Position(
                token_id=token_id,
                entry_price=entry_price,
                amount_held=outcome.out_amount,
                entry_time=now,
                strategy=request.strategy,
                entry_signature=outcome.signature,
            )
            await self._store.insert(
                token_id,
                position,
                ATHTracker.for_entry(entry_price, request.strategy, now),
            )

            return TradeResult(
                success=True,
                signature=outcome.signature,
                execution_time_ms=self._elapsed_ms(started),
                platform_used=platform,
                tokens_received=outcome.out_amount,
                sol_spent=request.amount_sol,
                token_id=token_id,
            )

        except TradeError as e:
            return self._failure(e, started, platform, token_id)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.exception(f"Unexpected error buying {token_id[:8]}: {e}")
            return self._failure(e, started, platform, token_id)

        finally:
            self._buys_in_flight.discard(token_id)

    async def sell(self, token_id: str) -> TradeResult:
        """
        Sell the full on-chain balance of a held token through Jupiter.

        The position is removed only after the sell is confirmed. A failed
        sell leaves the position and its tracker untouched.
        """
        started = time.monotonic()
        platform = Platform.JUPITER

        try:
            if not await self._store.contains(token_id):
                raise NoPositionError(f"No open position for {token_id}")

            balance = await self._balances.get_token_balance(self._owner, token_id)
            if balance <= 0:
                raise InsufficientFundsError(f"No {token_id[:8]} tokens to sell")

            ticket: OrderTicket = self._pipeline.sell_ticket(token_id, balance, platform)
            logger.info(f"Selling {balance} of {token_id[:8]}")
            outcome = await self._pipeline.execute(ticket)

            await self._store.remove(token_id)

            return TradeResult(
                success=True,
                signature=outcome.signature,
                execution_time_ms=self._elapsed_ms(started),
                platform_used=platform,
                token_id=token_id,
            )

        except TradeError as e:
            return self._failure(e, started, platform, token_id)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.exception(f"Unexpected error selling {token_id[:8]}: {e}")
            return self._failure(e, started, platform, token_id)

    async def monitor_once(self) -> List[str]:
        """
        One monitoring pass over all open positions.

        Prices are fetched once per distinct token, concurrently and outside
        the store lock. Triggered exits are then sold one at a time.

        Returns:
            One line per exit attempted
        """
        snapshot = await self._store.snapshot()
        if not snapshot:
            return []

        token_ids = list(dict.fromkeys(position.token_id for position, _ in snapshot))
        prices = await self._fetch_prices(token_ids)

        results: List[str] = []
        for position, _ in snapshot:
            token_id = position.token_id
            price = prices.get(token_id)
            if price is None:
                continue

            tracker = await self._store.record_price(token_id, price)
            if tracker is None:
                # Sold since the snapshot was taken
                continue

            decision = evaluate_exit(
                position.strategy, position.entry_price, tracker, price
            )
            if not decision.should_exit:
                continue

            results.append(await self._exit(position, decision))

        return results

    async def emergency_liquidate_all(self) -> List[TradeResult]:
        """Sell every open position, one at a time. Failed sells stay open."""
        token_ids = await self._store.token_ids()
        if not token_ids:
            return []

        logger.warning(f"EMERGENCY: liquidating {len(token_ids)} positions")
        results = []
        for token_id in token_ids:
            result = await self.sell(token_id)
            if result.success:
                logger.warning(f"Liquidated {token_id[:8]}: {result.signature}")
            results.append(result)
        return results

    # =========================================================================
    # Internals
    # =========================================================================

    async def _exit(self, position: Position, decision: ExitDecision) -> str:
        token_id = position.token_id
        logger.info(
            f"Exit triggered for {token_id[:8]} ({decision.reason}): "
            f"P&L {decision.profit_percent:.2f}%, pullback {decision.pullback_percent:.2f}%"
        )
        result = await self.sell(token_id)
        if result.success:
            return (
                f"Sold {token_id[:8]} - Signature: {result.signature} - "
                f"Strategy: {position.strategy.label} - Reason: {decision.reason} - "
                f"Time: {result.execution_time_ms}ms"
            )
        return f"Failed to sell {token_id[:8]}: {result.error}"

    async def _fetch_prices(self, token_ids: List[str]) -> Dict[str, Decimal]:
        results = await asyncio.gather(
            *(self._oracle.get_price(token_id) for token_id in token_ids),
            return_exceptions=True,
        )

        prices: Dict[str, Decimal] = {}
        for token_id, result in zip(token_ids, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Price lookup failed for {token_id[:8]}: {result}")
                continue
            prices[token_id] = result
        return prices

    async def _entry_price(self, token_id: str) -> Decimal:
        try:
            return await self._oracle.get_price(token_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Could not price {token_id[:8]} after buy, recording entry at 0: {e}"
            )
            return Decimal("0")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _failure(
        self,
        error: Exception,
        started: float,
        platform: Platform,
        token_id: str,
    ) -> TradeResult:
        error_type = error.error_type if isinstance(error, TradeError) else "unexpected"
        if isinstance(error, ValidationError):
            logger.warning(f"Trade rejected for {token_id[:8]}: {error}")
        else:
            logger.error(f"Trade failed for {token_id[:8]}: {error}")
        return TradeResult(
            success=False,
            error=str(error),
            error_type=error_type,
            execution_time_ms=self._elapsed_ms(started),
            platform_used=platform,
            token_id=token_id,
        )
