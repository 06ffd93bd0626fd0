"""
Response models for the venue and price APIs.

Only the fields we depend on are declared; everything else in the payload is
kept (extra="allow") so the raw quote can be echoed back to /swap.

Amounts arrive as strings or integers depending on the endpoint version,
pydantic coerces both.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class JupiterQuote(BaseModel):
    """A single Jupiter route quote."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    out_amount: int = Field(alias="outAmount")
    in_amount: Optional[int] = Field(default=None, alias="inAmount")
    input_mint: Optional[str] = Field(default=None, alias="inputMint")
    output_mint: Optional[str] = Field(default=None, alias="outputMint")
    slippage_bps: Optional[int] = Field(default=None, alias="slippageBps")


class JupiterSwapResponse(BaseModel):
    """Response of POST /swap."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    swap_transaction: str = Field(alias="swapTransaction")
    last_valid_block_height: Optional[int] = Field(default=None, alias="lastValidBlockHeight")


class JupiterPrice(BaseModel):
    """One entry of the price API's data map."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    price: Decimal


class PumpFunCoin(BaseModel):
    """The subset of pump.fun coin metadata we log."""

    model_config = ConfigDict(extra="allow")

    mint: str
    name: Optional[str] = None
    symbol: Optional[str] = None
    complete: Optional[bool] = None
