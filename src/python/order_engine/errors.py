"""
Error taxonomy for the order execution engine.

- ValidationError: malformed submission, rejected before any state exists
- OrderNotFoundError: operation references an unknown order id
- DuplicateOrderError: order id already exists in the store
- PersistenceError: backing store unreachable or erroring, always propagated
- VenueError: simulated routing/execution failure
- StalledJobError: a queued job outlived its lease without being settled
"""

from typing import Any, Dict, List, Optional


class OrderEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(OrderEngineError):
    """Submission payload failed validation."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


class OrderNotFoundError(OrderEngineError):
    """Order id is unknown to the store."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class DuplicateOrderError(OrderEngineError):
    """Order id is already taken."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} already exists")
        self.order_id = order_id


class PersistenceError(OrderEngineError):
    """Backing store failed."""


class VenueError(OrderEngineError):
    """Quote or execution failure at a venue."""

    def __init__(self, message: str, venue: Optional[str] = None):
        super().__init__(message)
        self.venue = venue


class StalledJobError(OrderEngineError):
    """Job lease expired while the job was still active."""

