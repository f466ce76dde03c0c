"""
Simulated liquidity venues.

Provides:
    - Venue: Static venue parameters (fee, price variance band)
    - Quote: Priced quote from one venue for one order
    - QuoteSource: Async quote provider for a single venue
    - default_venues: The Raydium/Meteora pair built from config
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..config import VenueConfig
from ..errors import VenueError
from .order import Order

logger = logging.getLogger(__name__)

BPS = 10_000


@dataclass(frozen=True)
class Venue:
    """
    Liquidity venue parameters.

    Attributes:
        name: Venue identifier (e.g. "raydium")
        fee_bps: Swap fee in basis points
        price_band: Multiplicative band applied to the base price; a
            wider band models thinner liquidity
    """

    name: str
    fee_bps: float
    price_band: Tuple[float, float]


@dataclass(frozen=True)
class Quote:
    """Priced quote for one order at one venue."""

    dex: str
    price: float
    fee_bps: float
    expected_output: float
    latency_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dex": self.dex,
            "price": self.price,
            "feeBps": self.fee_bps,
            "expectedOutput": self.expected_output,
            "latencyMs": self.latency_ms,
        }


def expected_output(amount: float, price: float, fee_bps: float) -> float:
    """Output after fees: amount * price * (1 - fee_bps / 10000)."""
    return amount * price * (1 - fee_bps / BPS)


def default_venues(config: Optional[VenueConfig] = None) -> List[Venue]:
    """Raydium (narrow band) then Meteora (wide band); order is the tie-break order."""
    config = config or VenueConfig()
    return [
        Venue("raydium", fee_bps=config.raydium_fee_bps, price_band=(0.98, 1.02)),
        Venue("meteora", fee_bps=config.meteora_fee_bps, price_band=(0.97, 1.03)),
    ]


class QuoteSource:
    """
    Quote provider for a single venue.

    Each quote perturbs the base price within the venue's band, applies the
    venue fee and waits a random latency before returning, so that several
    venues can be queried concurrently.
    """

    def __init__(
        self,
        venue: Venue,
        base_price: float,
        latency_ms: Tuple[float, float] = (180.0, 360.0),
        failure_rate: float = 0.0,
        rng: Optional[np.random.Generator] = None,
    ):
        self.venue = venue
        self.base_price = base_price
        self.latency_ms = latency_ms
        self.failure_rate = failure_rate
        self.rng = rng or np.random.default_rng()

    @property
    def name(self) -> str:
        return self.venue.name

    async def quote(self, order: Order) -> Quote:
        """Price the order at this venue."""
        low, high = self.venue.price_band
        price = self.base_price * float(self.rng.uniform(low, high))
        latency_ms = float(self.rng.uniform(*self.latency_ms))

        await asyncio.sleep(latency_ms / 1000.0)

        if self.failure_rate > 0 and self.rng.random() < self.failure_rate:
            raise VenueError(f"{self.venue.name} quote request failed", venue=self.venue.name)

        quote = Quote(
            dex=self.venue.name,
            price=price,
            fee_bps=self.venue.fee_bps,
            expected_output=expected_output(order.amount, price, self.venue.fee_bps),
            latency_ms=latency_ms,
        )
        logger.debug(
            f"Quote {quote.dex}: price={quote.price:.6f} out={quote.expected_output:.6f} "
            f"latency={latency_ms:.0f}ms"
        )
        return quote
