"""
DEX Order Execution Engine

Accepts market swap orders, routes each to the better of two simulated
Solana liquidity venues (Raydium, Meteora), simulates execution and
streams every status transition to live observers, including observers
attached to other server processes.

Core components:
- Retrying job queue with exponential backoff (in-memory or Redis)
- Routing/execution worker driving the order state machine
- Persist-then-broadcast status bus with pluggable cross-process fan-out
- Append-only order store (in-memory or SQLAlchemy)
- FastAPI HTTP/WebSocket surface

Usage:
    # As a library
    from order_engine import OrderEngine
    engine = OrderEngine()
    await engine.start()
    order = await engine.service.submit_order({"tokenIn": "SOL", "tokenOut": "USDC", "amount": 1.5})

    # As a CLI
    $ order-engine serve
    $ order-engine submit --token-in SOL --token-out USDC --amount 1.5
"""

__version__ = "1.0.0"

from . import database, events, execution, jobs, monitoring
from .config import Config, load_config
from .engine import OrderEngine, create_order_engine
from .errors import (
    DuplicateOrderError,
    OrderEngineError,
    OrderNotFoundError,
    PersistenceError,
    StalledJobError,
    ValidationError,
    VenueError,
)
from .service import OrderRequest, OrderService
from .worker import OrderWorker

__all__ = [
    "__version__",
    "database",
    "events",
    "execution",
    "jobs",
    "monitoring",
    "Config",
    "load_config",
    "OrderEngine",
    "create_order_engine",
    "OrderEngineError",
    "ValidationError",
    "OrderNotFoundError",
    "DuplicateOrderError",
    "PersistenceError",
    "VenueError",
    "StalledJobError",
    "OrderRequest",
    "OrderService",
    "OrderWorker",
]
