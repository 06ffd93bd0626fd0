"""
Execution layer test fixtures.

Venues, the ledger, the signer and the price oracle are all mocks.
Tests must never hit real APIs or the real chain.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from datetime import datetime, timezone
from decimal import Decimal

from solders.pubkey import Pubkey

from fast_meme_trader.execution import (
    ATHTracker,
    OrderPipeline,
    PipelineConfig,
    Platform,
    PlatformSelector,
    Position,
    PositionStore,
    Quote,
    StrategyType,
    TradingService,
)


class FakeClock:
    """Clock that records sleeps instead of waiting."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Identifiers
# =============================================================================


@pytest.fixture
def token_id():
    """A valid mint address."""
    return str(Pubkey.new_unique())


@pytest.fixture
def other_token_id():
    return str(Pubkey.new_unique())


@pytest.fixture
def owner():
    return str(Pubkey.new_unique())


# =============================================================================
# Collaborator Mocks
# =============================================================================


@pytest.fixture
def fake_clock():
    return FakeClock()


def make_quote(input_mint, output_mint, amount, slippage_bps, out_amount=5_000_000):
    return Quote(
        input_mint=input_mint,
        output_mint=output_mint,
        in_amount=amount,
        out_amount=out_amount,
        slippage_bps=slippage_bps,
        raw={"outAmount": str(out_amount)},
    )


@pytest.fixture
def mock_venue():
    """Venue that quotes 5,000,000 out and builds a fixed payload."""
    venue = MagicMock()

    async def quote(input_mint, output_mint, amount, slippage_bps):
        return make_quote(input_mint, output_mint, amount, slippage_bps)

    venue.quote = AsyncMock(side_effect=quote)
    venue.build_transaction = AsyncMock(return_value=b"unsigned-tx")
    return venue


@pytest.fixture
def mock_pumpfun_venue():
    venue = MagicMock()

    async def quote(input_mint, output_mint, amount, slippage_bps):
        return make_quote(input_mint, output_mint, amount, slippage_bps, amount * 1_000_000)

    venue.quote = AsyncMock(side_effect=quote)
    venue.build_transaction = AsyncMock(return_value=b"pump-unsigned-tx")
    return venue


@pytest.fixture
def mock_ledger():
    """Ledger handing out hash-1, hash-2, ... and confirming every broadcast."""
    ledger = MagicMock()
    counter = {"n": 0}

    async def next_blockhash():
        counter["n"] += 1
        return f"hash-{counter['n']}"

    ledger.get_recent_anti_replay_token = AsyncMock(side_effect=next_blockhash)
    ledger.broadcast = AsyncMock(return_value="sig-confirmed")
    return ledger


@pytest.fixture
def mock_signer(owner):
    signer = MagicMock()
    signer.public_key = owner
    signer.sign = MagicMock(
        side_effect=lambda payload, blockhash: payload + b"|" + blockhash.encode()
    )
    return signer


@pytest.fixture
def mock_fee_estimator():
    estimator = MagicMock()
    estimator.estimate_priority_fee = AsyncMock(return_value=150_000)
    return estimator


@pytest.fixture
def pipeline(mock_venue, mock_pumpfun_venue, mock_ledger, mock_signer, mock_fee_estimator, fake_clock):
    return OrderPipeline(
        venues={Platform.JUPITER: mock_venue, Platform.PUMPFUN: mock_pumpfun_venue},
        ledger=mock_ledger,
        signer=mock_signer,
        fee_estimator=mock_fee_estimator,
        config=PipelineConfig(),
        clock=fake_clock,
    )


@pytest.fixture
def mock_oracle():
    oracle = MagicMock()
    oracle.get_price = AsyncMock(return_value=Decimal("1.00"))
    return oracle


@pytest.fixture
def mock_balances(mock_ledger):
    """Balance lookups share the ledger's blockhash mock."""
    balances = MagicMock()
    balances.get_token_balance = AsyncMock(return_value=5_000_000)
    balances.get_sol_balance = AsyncMock(return_value=Decimal("1.5"))
    balances.get_recent_anti_replay_token = mock_ledger.get_recent_anti_replay_token
    return balances


@pytest.fixture
def mock_probe():
    probe = MagicMock()
    probe.is_listed = AsyncMock(return_value=False)
    return probe


@pytest.fixture
def store():
    return PositionStore()


@pytest.fixture
def service(pipeline, store, mock_probe, mock_oracle, mock_balances, owner):
    return TradingService(
        pipeline=pipeline,
        store=store,
        selector=PlatformSelector(probe=mock_probe),
        oracle=mock_oracle,
        balances=mock_balances,
        owner=owner,
    )


# =============================================================================
# Position Fixtures
# =============================================================================


@pytest.fixture
def make_position():
    """Factory for an open position and its tracker."""

    def _make(token_id, entry_price=Decimal("1.00"), strategy=StrategyType.CONSERVATIVE_ATH):
        now = datetime.now(timezone.utc)
        position = Position(
            token_id=token_id,
            entry_price=entry_price,
            amount_held=5_000_000,
            entry_time=now,
            strategy=strategy,
            entry_signature="sig-entry",
        )
        return position, ATHTracker.for_entry(entry_price, strategy, now)

    return _make
