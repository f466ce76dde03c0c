"""
Order classes and enums for swap execution.

Provides:
    - OrderStatus: Swap lifecycle states
    - OrderType: Supported order kinds (market only)
    - Order: Immutable swap order as submitted
    - StatusEvent: One persisted, timestamped status transition
    - VALID_TRANSITIONS: The execution state machine
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (or pass a datetime through) as aware UTC."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class OrderStatus(Enum):
    """Swap lifecycle states, in execution order."""

    PENDING = "pending"  # Accepted, job not yet picked up
    ROUTING = "routing"  # Requesting venue quotes
    BUILDING = "building"  # Best venue chosen, building transaction
    SUBMITTED = "submitted"  # Transaction broadcast
    CONFIRMED = "confirmed"  # Settled
    FAILED = "failed"  # Aborted at some stage

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.CONFIRMED, OrderStatus.FAILED)


class OrderType(Enum):
    """Order kinds."""

    MARKET = "market"


# Forward-only progression with an absorbing FAILED state
VALID_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.ROUTING, OrderStatus.FAILED},
    OrderStatus.ROUTING: {OrderStatus.BUILDING, OrderStatus.FAILED},
    OrderStatus.BUILDING: {OrderStatus.SUBMITTED, OrderStatus.FAILED},
    OrderStatus.SUBMITTED: {OrderStatus.CONFIRMED, OrderStatus.FAILED},
    OrderStatus.CONFIRMED: set(),  # Terminal
    OrderStatus.FAILED: set(),  # Terminal
}


def is_valid_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Check whether a status may follow another within one attempt."""
    return new in VALID_TRANSITIONS.get(current, set())


@dataclass(frozen=True)
class Order:
    """
    Swap order as accepted at submission.

    Orders never change after creation; progress lives in the
    StatusEvent history kept by the order store.

    Example:
        >>> order = Order(token_in="SOL", token_out="USDC", amount=1.5)
        >>> order.to_dict()["tokenIn"]
        'SOL'
    """

    token_in: str
    token_out: str
    amount: float
    wallet: Optional[str] = None
    order_type: OrderType = OrderType.MARKET
    order_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation."""
        return {
            "orderId": self.order_id,
            "tokenIn": self.token_in,
            "tokenOut": self.token_out,
            "amount": self.amount,
            "wallet": self.wallet,
            "orderType": self.order_type.value,
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """Rebuild an order from its wire representation."""
        return cls(
            order_id=data["orderId"],
            token_in=data["tokenIn"],
            token_out=data["tokenOut"],
            amount=float(data["amount"]),
            wallet=data.get("wallet"),
            order_type=OrderType(data.get("orderType", OrderType.MARKET.value)),
            created_at=parse_timestamp(data["createdAt"]),
        )


@dataclass(frozen=True)
class StatusEvent:
    """
    Persisted status transition.

    Attributes:
        event_id: Store-assigned id, increasing in insertion order
        order_id: Owning order
        status: New status
        detail: Opaque JSON-like payload for consumers
        timestamp: Assigned at persistence time, non-decreasing per order
    """

    event_id: int
    order_id: str
    status: OrderStatus
    timestamp: datetime
    detail: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Wire representation."""
        return {
            "eventId": self.event_id,
            "orderId": self.order_id,
            "status": self.status.value,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StatusEvent":
        return cls(
            event_id=int(data["eventId"]),
            order_id=data["orderId"],
            status=OrderStatus(data["status"]),
            detail=data.get("detail"),
            timestamp=parse_timestamp(data["timestamp"]),
        )
