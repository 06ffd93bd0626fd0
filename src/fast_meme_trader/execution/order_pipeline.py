"""
Order Execution Pipeline.

Turns a trade intent into a confirmed on-chain transaction:

    VALIDATING -> QUOTING -> BUILDING -> SIGNING -> BROADCASTING -> CONFIRMED
                                                                  \\-> FAILED

Retry policy:
    - Quoting: up to 3 attempts, linear backoff (base_delay * attempt),
      bounded by a hard phase timeout. Structural errors are not retried.
    - Building: no retry, the quote may already be stale.
    - Signing: fresh recent blockhash, any signing error is fatal.
    - Broadcasting: up to 5 attempts, exponential backoff
      (base_delay * 2^(attempt-1)), re-signed with a new blockhash on every
      retry because the old one will be rejected. Bounded by a phase timeout.

Sleeps go through a Clock so tests don't wait on wall-clock backoff.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Protocol

from solders.pubkey import Pubkey

from .errors import (
    FailedAfterRetries,
    SigningError,
    TradeError,
    TransientRemoteError,
    ValidationError,
)
from .models import SOL_MINT, Platform, Quote, TradeRequest, TradeSide

logger = logging.getLogger(__name__)


class TradePhase(str, Enum):
    """Phase of an order ticket."""

    VALIDATING = "validating"
    QUOTING = "quoting"
    BUILDING = "building"
    SIGNING = "signing"
    BROADCASTING = "broadcasting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock implementation of Clock."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class OrderVenue(Protocol):
    """Quote/build half of an order gateway (one per platform)."""

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> Quote: ...

    async def build_transaction(
        self,
        quote: Quote,
        signer_public_key: str,
        priority_fee: int,
    ) -> bytes: ...


class Ledger(Protocol):
    """Broadcast half of an order gateway."""

    async def get_recent_anti_replay_token(self) -> str: ...

    async def broadcast(self, signed_payload: bytes) -> str: ...


class Signer(Protocol):
    @property
    def public_key(self) -> str: ...

    def sign(self, unsigned_payload: bytes, anti_replay_token: str) -> bytes: ...


class PriorityFeeEstimator(Protocol):
    async def estimate_priority_fee(self) -> int: ...


@dataclass
class PipelineConfig:
    """Configuration for order execution."""

    # Validation bounds for buys
    min_buy_sol: Decimal = Decimal("0.000001")
    max_buy_sol: Decimal = Decimal("50")
    min_buy_lamports: int = 1000

    # Slippage
    default_slippage_bps: int = 100  # Used when 0 is requested
    max_slippage_bps: int = 5000
    sell_slippage_bps: int = 500

    # Quoting
    quote_max_attempts: int = 3
    quote_base_delay_seconds: float = 0.5
    quote_timeout_seconds: float = 15.0

    # Building / signing
    build_timeout_seconds: float = 30.0
    blockhash_timeout_seconds: float = 10.0

    # Broadcasting
    broadcast_max_attempts: int = 5
    broadcast_base_delay_seconds: float = 0.5
    broadcast_attempt_timeout_seconds: float = 60.0
    broadcast_timeout_seconds: float = 120.0


@dataclass
class OrderTicket:
    """State of one trade as it moves through the pipeline."""

    side: TradeSide
    token_id: str
    input_mint: str
    output_mint: str
    amount: int
    slippage_bps: int
    platform: Platform = Platform.JUPITER
    phase: TradePhase = TradePhase.VALIDATING
    phases: List[TradePhase] = field(default_factory=lambda: [TradePhase.VALIDATING])
    quote_attempts: int = 0
    broadcast_attempts: int = 0
    quote: Optional[Quote] = None
    signature: Optional[str] = None
    last_error: Optional[Exception] = None

    def advance(self, phase: TradePhase) -> None:
        logger.debug(
            f"{self.side.value} {self.token_id[:8]}: {self.phase.value} -> {phase.value}"
        )
        self.phase = phase
        self.phases.append(phase)


@dataclass
class ExecutionOutcome:
    """A confirmed trade."""

    signature: str
    out_amount: int
    ticket: OrderTicket


def validate_token_address(token_id: str) -> None:
    """
    Check that token_id is a base58 encoded 32-byte public key.

    Raises:
        ValidationError: If it isn't
    """
    if not token_id or not 32 <= len(token_id) <= 44:
        raise ValidationError(
            f"Invalid token address length: expected 32-44 characters, "
            f"got {len(token_id or '')}"
        )
    try:
        Pubkey.from_string(token_id)
    except ValueError:
        raise ValidationError(f"Invalid token address format: {token_id}")


class OrderPipeline:
    """
    Executes buy and sell tickets against a venue and the ledger.

    Usage:
        pipeline = OrderPipeline(
            venues={Platform.JUPITER: jupiter, Platform.PUMPFUN: pumpfun},
            ledger=rpc,
            signer=signer,
            fee_estimator=rpc,
        )

        ticket = pipeline.buy_ticket(request, Platform.JUPITER)
        outcome = await pipeline.execute(ticket)
    """

    def __init__(
        self,
        venues: Dict[Platform, OrderVenue],
        ledger: Ledger,
        signer: Signer,
        fee_estimator: PriorityFeeEstimator,
        config: Optional[PipelineConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._venues = venues
        self._ledger = ledger
        self._signer = signer
        self._fee_estimator = fee_estimator
        self._config = config or PipelineConfig()
        self._clock = clock or SystemClock()

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    # =========================================================================
    # Validation
    # =========================================================================

    def normalize_slippage(self, slippage_bps: int) -> int:
        """0 means default, anything above the cap is capped."""
        if slippage_bps <= 0:
            return self._config.default_slippage_bps
        return min(slippage_bps, self._config.max_slippage_bps)

    def validate_buy(self, request: TradeRequest) -> None:
        """
        Validate a buy request without touching the network.

        Raises:
            ValidationError: On a bad amount or token address
        """
        cfg = self._config
        if not request.amount_sol.is_finite():
            raise ValidationError(f"Amount must be a finite number, got {request.amount_sol}")
        if not cfg.min_buy_sol <= request.amount_sol <= cfg.max_buy_sol:
            raise ValidationError(
                f"Amount must be between {cfg.min_buy_sol} and {cfg.max_buy_sol} SOL"
            )
        if request.amount_lamports < cfg.min_buy_lamports:
            raise ValidationError(
                f"Amount too small: {request.amount_lamports} lamports"
            )
        validate_token_address(request.token_id)

    def buy_ticket(self, request: TradeRequest, platform: Platform) -> OrderTicket:
        """Validate a buy request and open a ticket for it."""
        self.validate_buy(request)
        return OrderTicket(
            side=TradeSide.BUY,
            token_id=request.token_id,
            input_mint=SOL_MINT,
            output_mint=request.token_id,
            amount=request.amount_lamports,
            slippage_bps=self.normalize_slippage(request.slippage_bps),
            platform=platform,
        )

    def sell_ticket(
        self,
        token_id: str,
        amount: int,
        platform: Platform = Platform.JUPITER,
    ) -> OrderTicket:
        """Validate a sell of `amount` atomic units and open a ticket for it."""
        validate_token_address(token_id)
        if amount <= 0:
            raise ValidationError(f"Sell amount must be positive, got {amount}")
        return OrderTicket(
            side=TradeSide.SELL,
            token_id=token_id,
            input_mint=token_id,
            output_mint=SOL_MINT,
            amount=amount,
            slippage_bps=self.normalize_slippage(self._config.sell_slippage_bps),
            platform=platform,
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self, ticket: OrderTicket) -> ExecutionOutcome:
        """
        Run a ticket through quoting, building, signing and broadcasting.

        Returns:
            ExecutionOutcome with the confirmed signature

        Raises:
            TradeError: Typed failure from whichever phase failed
        """
        venue = self._venues.get(ticket.platform)
        if venue is None:
            raise ValidationError(f"No venue configured for {ticket.platform.value}")

        try:
            ticket.advance(TradePhase.QUOTING)
            quote = await self._run_quoting(venue, ticket)
            ticket.quote = quote
            logger.info(
                f"{ticket.platform.value} quote: {quote.in_amount} {ticket.input_mint[:8]} "
                f"-> {quote.out_amount} {ticket.output_mint[:8]}"
            )

            ticket.advance(TradePhase.BUILDING)
            payload = await self._build(venue, ticket, quote)

            ticket.advance(TradePhase.SIGNING)
            signed = await self._sign(payload)

            ticket.advance(TradePhase.BROADCASTING)
            signature = await self._run_broadcasting(ticket, payload, signed)

        except TradeError as e:
            ticket.last_error = e
            ticket.advance(TradePhase.FAILED)
            raise

        ticket.signature = signature
        ticket.advance(TradePhase.CONFIRMED)
        logger.info(f"Transaction confirmed: {signature}")
        return ExecutionOutcome(
            signature=signature,
            out_amount=quote.out_amount,
            ticket=ticket,
        )

    async def _run_quoting(self, venue: OrderVenue, ticket: OrderTicket) -> Quote:
        timeout = self._config.quote_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._quote_with_retry(venue, ticket),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise self._phase_timeout(
                "quoting", ticket.quote_attempts, timeout, ticket.last_error
            )

    async def _quote_with_retry(self, venue: OrderVenue, ticket: OrderTicket) -> Quote:
        max_attempts = self._config.quote_max_attempts

        for attempt in range(1, max_attempts + 1):
            ticket.quote_attempts = attempt
            try:
                return await venue.quote(
                    ticket.input_mint,
                    ticket.output_mint,
                    ticket.amount,
                    ticket.slippage_bps,
                )
            except TransientRemoteError as e:
                ticket.last_error = e
                logger.warning(f"Quote attempt {attempt} failed: {e}")

            if attempt < max_attempts:
                await self._clock.sleep(self._config.quote_base_delay_seconds * attempt)

        raise FailedAfterRetries("quoting", max_attempts, ticket.last_error)

    async def _build(self, venue: OrderVenue, ticket: OrderTicket, quote: Quote) -> bytes:
        priority_fee = await self._fee_estimator.estimate_priority_fee()
        timeout = self._config.build_timeout_seconds
        try:
            return await asyncio.wait_for(
                venue.build_transaction(quote, self._signer.public_key, priority_fee),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise TransientRemoteError(f"building timed out after {timeout}s")

    async def _fetch_anti_replay_token(self) -> str:
        timeout = self._config.blockhash_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._ledger.get_recent_anti_replay_token(),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise TransientRemoteError(f"blockhash fetch timed out after {timeout}s")

    async def _sign(self, payload: bytes) -> bytes:
        blockhash = await self._fetch_anti_replay_token()
        try:
            return self._signer.sign(payload, blockhash)
        except SigningError:
            raise
        except Exception as e:
            raise SigningError(f"Failed to sign transaction: {e}") from e

    async def _run_broadcasting(
        self,
        ticket: OrderTicket,
        payload: bytes,
        signed: bytes,
    ) -> str:
        timeout = self._config.broadcast_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._broadcast_with_retry(ticket, payload, signed),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise self._phase_timeout(
                "broadcasting", ticket.broadcast_attempts, timeout, ticket.last_error
            )

    async def _broadcast_with_retry(
        self,
        ticket: OrderTicket,
        payload: bytes,
        signed: bytes,
    ) -> str:
        cfg = self._config
        max_attempts = cfg.broadcast_max_attempts

        for attempt in range(1, max_attempts + 1):
            ticket.broadcast_attempts = attempt
            logger.debug(f"Sending transaction attempt {attempt}/{max_attempts}")
            try:
                if attempt > 1:
                    signed = await self._sign(payload)
                return await asyncio.wait_for(
                    self._ledger.broadcast(signed),
                    timeout=cfg.broadcast_attempt_timeout_seconds,
                )
            except asyncio.TimeoutError:
                ticket.last_error = TransientRemoteError(
                    f"broadcast timed out after {cfg.broadcast_attempt_timeout_seconds}s"
                )
            except TransientRemoteError as e:
                ticket.last_error = e

            logger.warning(f"Transaction attempt {attempt} failed: {ticket.last_error}")
            if attempt < max_attempts:
                delay = cfg.broadcast_base_delay_seconds * (2 ** (attempt - 1))
                await self._clock.sleep(delay)

        raise FailedAfterRetries("broadcasting", max_attempts, ticket.last_error)

    @staticmethod
    def _phase_timeout(
        phase: str,
        attempts: int,
        timeout: float,
        last_error: Optional[Exception],
    ) -> FailedAfterRetries:
        message = f"{phase} timed out after {timeout}s"
        if last_error is not None:
            message = f"{message} (last error: {last_error})"
        return FailedAfterRetries(phase, attempts, TransientRemoteError(message))
