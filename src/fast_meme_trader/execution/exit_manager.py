"""
Exit strategy evaluation.

Decides whether a position should be exited at the current price:

    - Conservative: take profit at +15%, stop loss at -5%
    - Aggressive: take profit at +50%, stop loss at -15%
    - ConservativeATH: exit on an 8% pullback from the watermark, once 3% in profit
    - AggressiveATH: exit on a 12% pullback from the watermark, once 5% in profit

Fixed-threshold bounds are inclusive. The watermark strategies require BOTH
conditions on the same observation: a pullback that hasn't banked the
minimum profit holds, and so does a profit without a real retracement.

The caller records the price on the tracker before evaluating, so a fresh
ATH on this tick is already part of the watermark.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from .models import ATHTracker, StrategyType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ExitDecision:
    """Result of evaluating a position at a price."""

    should_exit: bool
    reason: str = ""  # "take_profit", "stop_loss" or "ath_pullback"
    profit_percent: Decimal = ZERO
    pullback_percent: Decimal = ZERO


def calculate_profit_percent(entry_price: Decimal, current_price: Decimal) -> Decimal:
    """Percent change from entry. Zero entry means no profit."""
    if entry_price == ZERO:
        return ZERO
    return (current_price - entry_price) / entry_price * HUNDRED


def calculate_pullback_percent(ath_price: Decimal, current_price: Decimal) -> Decimal:
    """Percent decline from the watermark. Zero (or negative) ATH means no pullback."""
    if ath_price <= ZERO:
        return ZERO
    return (ath_price - current_price) / ath_price * HUNDRED


def evaluate_exit(
    strategy: StrategyType,
    entry_price: Decimal,
    tracker: ATHTracker,
    current_price: Decimal,
) -> ExitDecision:
    """
    Evaluate whether to exit.

    Args:
        strategy: Position strategy
        entry_price: Position entry price
        tracker: Watermark state (already updated with current_price)
        current_price: Latest observed price

    Returns:
        ExitDecision with the reason and the computed percentages
    """
    profit = calculate_profit_percent(entry_price, current_price)
    ath = max(tracker.ath_price, current_price)
    pullback = calculate_pullback_percent(ath, current_price)

    if strategy.uses_watermark:
        if profit >= strategy.min_profit_percent and pullback >= strategy.pullback_percent:
            return ExitDecision(True, "ath_pullback", profit, pullback)
        return ExitDecision(False, "", profit, pullback)

    if profit >= strategy.take_profit_percent:
        return ExitDecision(True, "take_profit", profit, pullback)
    if profit <= strategy.stop_loss_percent:
        return ExitDecision(True, "stop_loss", profit, pullback)
    return ExitDecision(False, "", profit, pullback)
