"""
Status events module.

Handles:
- Persist-then-broadcast status distribution
- Per-order subscriptions
- Cross-process fan-out transports
"""

from .bus import StatusBus, StatusListener, Subscription
from .transport import (
    StatusTransport,
    TransportMessage,
    LocalBroker,
    LocalTransport,
    RedisTransport,
)

__all__ = [
    "StatusBus",
    "StatusListener",
    "Subscription",
    "StatusTransport",
    "TransportMessage",
    "LocalBroker",
    "LocalTransport",
    "RedisTransport",
]
