"""
Data models for the execution layer.

Monetary and price fields use Decimal. Token quantities are integers in
atomic units (lamports for SOL, base units for SPL tokens).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

LAMPORTS_PER_SOL = 1_000_000_000

# Well-known mints
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
BONK_MINT = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
JUP_MINT = "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN"

ESTABLISHED_TOKENS = frozenset({SOL_MINT, USDC_MINT, USDT_MINT, BONK_MINT, JUP_MINT})

# Tracker thresholds for strategies that don't exit on the watermark
DEFAULT_TRACKER_PULLBACK = Decimal("10")
DEFAULT_TRACKER_MIN_PROFIT = Decimal("2")


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


class StrategyType(Enum):
    """
    Exit policy for a position.

    Each member carries its own thresholds (in percent):
        (label, take_profit, stop_loss, pullback, min_profit)

    Fixed-threshold strategies use take_profit/stop_loss. Watermark
    strategies use pullback/min_profit.
    """

    CONSERVATIVE = ("conservative", Decimal("15"), Decimal("-5"), None, None)
    AGGRESSIVE = ("aggressive", Decimal("50"), Decimal("-15"), None, None)
    CONSERVATIVE_ATH = ("conservative_ath", None, None, Decimal("8"), Decimal("3"))
    AGGRESSIVE_ATH = ("aggressive_ath", None, None, Decimal("12"), Decimal("5"))

    def __init__(
        self,
        label: str,
        take_profit_percent: Optional[Decimal],
        stop_loss_percent: Optional[Decimal],
        pullback_percent: Optional[Decimal],
        min_profit_percent: Optional[Decimal],
    ) -> None:
        self.label = label
        self.take_profit_percent = take_profit_percent
        self.stop_loss_percent = stop_loss_percent
        self.pullback_percent = pullback_percent
        self.min_profit_percent = min_profit_percent

    @property
    def uses_watermark(self) -> bool:
        """True for the ATH pullback strategies."""
        return self.pullback_percent is not None

    @property
    def tracker_thresholds(self) -> Tuple[Decimal, Decimal]:
        """(pullback, min_profit) to store on this strategy's ATHTracker."""
        if self.uses_watermark:
            return self.pullback_percent, self.min_profit_percent
        return DEFAULT_TRACKER_PULLBACK, DEFAULT_TRACKER_MIN_PROFIT

    def describe(self) -> str:
        """Human readable threshold summary."""
        if self.uses_watermark:
            return (
                f"{self.pullback_percent}% pullback, "
                f"{self.min_profit_percent}% min profit"
            )
        return (
            f"{self.take_profit_percent}% profit, "
            f"{abs(self.stop_loss_percent)}% stop loss"
        )

    @classmethod
    def from_name(cls, name: str) -> "StrategyType":
        """
        Parse a strategy name.

        Accepts "conservative_ath", "conservative-ath", "ConservativeATH" and
        the enum member name.
        """
        key = name.strip().lower().replace("-", "_")
        if key.endswith("ath") and not key.endswith("_ath"):
            key = key[:-3] + "_ath"
        for member in cls:
            if member.label == key:
                return member
        raise ValueError(f"Unknown strategy: {name}")


class TradeSide(str, Enum):
    """Direction of a trade relative to SOL."""

    BUY = "BUY"
    SELL = "SELL"


class Platform(str, Enum):
    """Execution venue."""

    JUPITER = "jupiter"
    PUMPFUN = "pumpfun"


@dataclass(frozen=True)
class Position:
    """An open holding. Immutable once created."""

    token_id: str
    entry_price: Decimal
    amount_held: int
    entry_time: datetime
    strategy: StrategyType
    entry_signature: str


@dataclass
class ATHTracker:
    """High-watermark record kept alongside every Position."""

    entry_price: Decimal
    ath_price: Decimal
    last_price: Decimal
    pullback_percent: Decimal
    min_profit_percent: Decimal
    last_updated: datetime

    @classmethod
    def for_entry(
        cls,
        entry_price: Decimal,
        strategy: StrategyType,
        now: Optional[datetime] = None,
    ) -> "ATHTracker":
        """Create the tracker for a fresh position."""
        pullback, min_profit = strategy.tracker_thresholds
        return cls(
            entry_price=entry_price,
            ath_price=entry_price,
            last_price=entry_price,
            pullback_percent=pullback,
            min_profit_percent=min_profit,
            last_updated=now or datetime.now(timezone.utc),
        )


@dataclass
class TradeRequest:
    """A buy intent from the caller."""

    token_id: str
    amount_sol: Decimal
    slippage_bps: int = 100
    strategy: StrategyType = StrategyType.CONSERVATIVE_ATH

    @property
    def amount_lamports(self) -> int:
        return int(self.amount_sol * LAMPORTS_PER_SOL)


@dataclass(frozen=True)
class Quote:
    """Normalized venue quote."""

    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    slippage_bps: int
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class TradeResult:
    """Outcome of a buy or sell attempt. Returned whether or not it succeeded."""

    success: bool
    signature: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    execution_time_ms: int = 0
    platform_used: Platform = Platform.JUPITER
    tokens_received: Optional[int] = None
    sol_spent: Optional[Decimal] = None
    token_id: Optional[str] = None
