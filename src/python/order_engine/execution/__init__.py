"""
Execution module.

Handles:
- Order and status event types
- Simulated venue quoting
- Best-venue routing and swap execution
"""

from .order import (
    Order,
    OrderStatus,
    OrderType,
    StatusEvent,
    VALID_TRANSITIONS,
    is_valid_transition,
)

from .venues import (
    Venue,
    Quote,
    QuoteSource,
    default_venues,
    expected_output,
)

from .routing import (
    DexRouter,
    ExecutionResult,
    select_best_quote,
    generate_tx_hash,
)


__all__ = [
    # Order
    "Order",
    "OrderStatus",
    "OrderType",
    "StatusEvent",
    "VALID_TRANSITIONS",
    "is_valid_transition",
    # Venues
    "Venue",
    "Quote",
    "QuoteSource",
    "default_venues",
    "expected_output",
    # Routing
    "DexRouter",
    "ExecutionResult",
    "select_best_quote",
    "generate_tx_hash",
]
