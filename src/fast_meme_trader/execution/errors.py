"""
Trade error taxonomy.

Every failure the execution layer can report is a TradeError subclass, so the
TradingService can turn it into a structured TradeResult:

    - ValidationError: rejected before any network call, never retried
    - TransientRemoteError: timeouts, non-2xx, unreadable bodies (retried in
      quoting and broadcasting, then surfaced as FailedAfterRetries)
    - StructuralResponseError: venue payload missing a required field (fatal)
    - SigningError: the transaction could not be signed (fatal)
    - InsufficientFundsError / NoPositionError: domain preconditions
"""
from __future__ import annotations

from typing import Optional


class TradeError(Exception):
    """Base class for all trade execution errors."""

    error_type = "trade_error"


class ValidationError(TradeError):
    """Bad amount or asset identifier. No network call was made."""

    error_type = "validation"


class TransientRemoteError(TradeError):
    """A remote call failed in a way that may succeed on retry."""

    error_type = "transient_remote"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StructuralResponseError(TradeError):
    """Remote payload does not have the shape we need."""

    error_type = "structural_response"


class SigningError(TradeError):
    """Transaction signing failed."""

    error_type = "signing"


class InsufficientFundsError(TradeError):
    """Wallet holds nothing to sell (or too little to buy)."""

    error_type = "insufficient_funds"


class NoPositionError(TradeError):
    """No open position for the requested token."""

    error_type = "no_position"


class FailedAfterRetries(TradeError):
    """A retried phase ran out of attempts (or out of time)."""

    error_type = "failed_after_retries"

    def __init__(self, phase: str, attempts: int, last_error: Optional[Exception]):
        self.phase = phase
        self.attempts = attempts
        self.last_error = last_error
        detail = str(last_error) if last_error is not None else "no attempt completed"
        super().__init__(f"{phase} failed after {attempts} attempts: {detail}")
