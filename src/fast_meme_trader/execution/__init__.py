"""
Execution Layer - Order execution and position tracking.

This module provides:
    - TradingService: Main facade for trading (use this!)
    - OrderPipeline: Quote, build, sign, broadcast with retry
    - PipelineConfig: Configuration for the pipeline
    - PositionStore: Open positions and ATH trackers behind a RW lock
    - PlatformSelector: Jupiter vs pump.fun routing
    - evaluate_exit: Exit strategy decision function
    - Models: Position, ATHTracker, StrategyType, TradeRequest, TradeResult, Quote
    - Exceptions: TradeError and subclasses

Exit Strategy Logic:
    - Conservative / Aggressive: fixed take profit and stop loss
    - ConservativeATH / AggressiveATH: pullback from the high-watermark,
      only once the minimum profit is banked

Usage:
    from fast_meme_trader.execution import TradingService, TradeRequest

    result = await service.buy(TradeRequest(token_id, Decimal("0.1")))
    exits = await service.monitor_once()
"""

# Trading service (main facade - use this!)
from .service import (
    TradingService,
    AthStatus,
    PerformanceStats,
    HealthReport,
)

# Order pipeline
from .order_pipeline import (
    OrderPipeline,
    PipelineConfig,
    OrderTicket,
    ExecutionOutcome,
    TradePhase,
    SystemClock,
    validate_token_address,
)

# Position tracking
from .position_store import (
    PositionStore,
    AsyncRWLock,
    DuplicatePositionError,
)

# Exit strategies
from .exit_manager import ExitDecision, evaluate_exit

# Venue selection
from .platform_selector import PlatformSelector

from .models import (
    ATHTracker,
    Platform,
    Position,
    Quote,
    StrategyType,
    TradeRequest,
    TradeResult,
    TradeSide,
)

from .errors import (
    TradeError,
    ValidationError,
    TransientRemoteError,
    StructuralResponseError,
    SigningError,
    InsufficientFundsError,
    NoPositionError,
    FailedAfterRetries,
)

__all__ = [
    # Trading service (main facade)
    "TradingService",
    "AthStatus",
    "PerformanceStats",
    "HealthReport",
    # Order pipeline
    "OrderPipeline",
    "PipelineConfig",
    "OrderTicket",
    "ExecutionOutcome",
    "TradePhase",
    "SystemClock",
    "validate_token_address",
    # Position tracking
    "PositionStore",
    "AsyncRWLock",
    "DuplicatePositionError",
    # Exit strategies
    "ExitDecision",
    "evaluate_exit",
    # Venue selection
    "PlatformSelector",
    # Models
    "ATHTracker",
    "Platform",
    "Position",
    "Quote",
    "StrategyType",
    "TradeRequest",
    "TradeResult",
    "TradeSide",
    # Errors
    "TradeError",
    "ValidationError",
    "TransientRemoteError",
    "StructuralResponseError",
    "SigningError",
    "InsufficientFundsError",
    "NoPositionError",
    "FailedAfterRetries",
]
