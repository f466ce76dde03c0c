"""
Venue routing and simulated swap execution.

Provides:
    - DexRouter: Concurrent quoting, best-venue selection, execution
    - select_best_quote: Pure selection rule
    - ExecutionResult: Outcome of a simulated swap

Selection rule: highest expected output wins; on a tie the venue listed
first keeps the order (raydium before meteora by default).
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..config import VenueConfig
from ..errors import VenueError
from .order import Order
from .venues import Quote, QuoteSource, default_venues, expected_output

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    """
    Simulated swap outcome.

    Attributes:
        dex: Venue the swap settled on
        tx_hash: Random 32-byte transaction reference (hex)
        executed_price: Quoted price after slippage
        output_amount: Tokens received after fees
    """

    dex: str
    tx_hash: str
    executed_price: float
    output_amount: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dex": self.dex,
            "txHash": self.tx_hash,
            "executedPrice": self.executed_price,
            "outputAmount": self.output_amount,
        }


def select_best_quote(quotes: Mapping[str, Quote]) -> Quote:
    """
    Pick the quote with the greatest expected output.

    Iterates in mapping order and only replaces the current best on a
    strictly greater output, so ties go to the first-listed venue.

    Raises:
        VenueError: If no quotes were supplied
    """
    best: Optional[Quote] = None
    for quote in quotes.values():
        if best is None or quote.expected_output > best.expected_output:
            best = quote
    if best is None:
        raise VenueError("No venue quotes available")
    return best


def generate_tx_hash() -> str:
    """Random transaction reference from the OS CSPRNG."""
    return secrets.token_hex(32)


class DexRouter:
    """
    Routes swaps across venues.

    Example:
        >>> router = DexRouter.from_config(VenueConfig(seed=7))
        >>> quotes = await router.get_quotes(order)
        >>> best = router.select_best_quote(quotes)
        >>> result = await router.execute_swap(order, best)
    """

    def __init__(
        self,
        sources: Sequence[QuoteSource],
        settlement_latency_ms: Tuple[float, float] = (1800.0, 2600.0),
        max_slippage: float = 0.01,
        rng: Optional[np.random.Generator] = None,
    ):
        if not sources:
            raise ValueError("DexRouter needs at least one quote source")
        self.sources = list(sources)
        self.settlement_latency_ms = settlement_latency_ms
        self.max_slippage = max_slippage
        self.rng = rng or np.random.default_rng()

    @classmethod
    def from_config(cls, config: Optional[VenueConfig] = None) -> "DexRouter":
        """Build the default two-venue router from config."""
        config = config or VenueConfig()
        rng = np.random.default_rng(config.seed)
        sources = [
            QuoteSource(
                venue,
                base_price=config.base_price,
                latency_ms=config.quote_latency_ms,
                failure_rate=config.failure_rate,
                rng=rng,
            )
            for venue in default_venues(config)
        ]
        return cls(
            sources,
            settlement_latency_ms=config.settlement_latency_ms,
            max_slippage=config.max_slippage,
            rng=rng,
        )

    @property
    def venue_names(self) -> Tuple[str, ...]:
        return tuple(source.name for source in self.sources)

    async def get_quotes(self, order: Order) -> Dict[str, Quote]:
        """
        Request quotes from every venue concurrently.

        Returns:
            Quotes keyed by venue name, in source order
        """
        results = await asyncio.gather(*(source.quote(order) for source in self.sources))
        return {source.name: quote for source, quote in zip(self.sources, results)}

    def select_best_quote(self, quotes: Mapping[str, Quote]) -> Quote:
        return select_best_quote(quotes)

    async def execute_swap(self, order: Order, quote: Quote) -> ExecutionResult:
        """
        Simulate settlement against the chosen quote.

        Waits a random settlement latency, applies symmetric slippage to the
        quoted price and recomputes output with the venue fee.
        """
        latency_ms = float(self.rng.uniform(*self.settlement_latency_ms))
        await asyncio.sleep(latency_ms / 1000.0)

        slip = float(self.rng.uniform(-self.max_slippage, self.max_slippage))
        executed_price = quote.price * (1 + slip)

        result = ExecutionResult(
            dex=quote.dex,
            tx_hash=generate_tx_hash(),
            executed_price=executed_price,
            output_amount=expected_output(order.amount, executed_price, quote.fee_bps),
        )
        logger.info(
            f"Executed {order.amount} {order.token_in}->{order.token_out} on {result.dex} "
            f"at {executed_price:.6f} (slippage {slip:+.4%})"
        )
        return result
