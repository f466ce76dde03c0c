"""
Database module for the order execution engine.

Provides the order store interface with an in-memory backend and a
SQLAlchemy backend for durable, multi-process deployments.

Components:
- store: OrderStore interface and InMemoryOrderStore
- models: SQLAlchemy ORM models (orders, order_events)
- db: SQLOrderStore with session management

Example:
    >>> from order_engine.database import SQLOrderStore
    >>> store = SQLOrderStore("sqlite:///orders.db")
    >>> store.create_tables()
    >>> history = store.get_history(order_id)
"""

from .store import OrderStore, InMemoryOrderStore
from .models import Base, OrderRecord, OrderEventRecord
from .db import SQLOrderStore, retry_on_db_error

__all__ = [
    # Interface
    "OrderStore",
    "InMemoryOrderStore",
    # Models
    "Base",
    "OrderRecord",
    "OrderEventRecord",
    # SQL backend
    "SQLOrderStore",
    "retry_on_db_error",
]
