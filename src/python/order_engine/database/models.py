"""
SQLAlchemy ORM models for the order store.

Defines models for:
- OrderRecord: One row per swap order (immutable after insert)
- OrderEventRecord: Append-only status history, FK to the order

Event rows refuse UPDATE and DELETE at the ORM level.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Float,
    Integer,
    ForeignKey,
    CheckConstraint,
    Index,
    JSON,
    TypeDecorator,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB as PostgresJSONB
from sqlalchemy.orm import declarative_base, relationship

from ..errors import PersistenceError
from ..execution.order import Order, OrderStatus, OrderType, StatusEvent, parse_timestamp


class JSONB(TypeDecorator):
    """
    Cross-database compatible JSONB type.

    Uses PostgreSQL JSONB when available, falls back to standard JSON
    for other databases (SQLite, etc.).
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresJSONB())
        else:
            return dialect.type_descriptor(JSON())


Base = declarative_base()

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in OrderStatus)


class OrderRecord(Base):
    """
    Swap order as submitted.

    Attributes:
        id: Order id (uuid string)
        token_in: Input asset symbol
        token_out: Output asset symbol
        amount: Input amount
        wallet: Optional wallet reference
        order_type: Order kind ('market')
        created_at: Submission time
    """

    __tablename__ = "orders"

    id: str = Column(String(36), primary_key=True)
    token_in: str = Column(String(32), nullable=False)
    token_out: str = Column(String(32), nullable=False)
    amount: float = Column(Float, nullable=False)
    wallet: Optional[str] = Column(String(128))
    order_type: str = Column(String(16), nullable=False, default=OrderType.MARKET.value)
    created_at: datetime = Column(DateTime(timezone=True), nullable=False)

    events = relationship(
        "OrderEventRecord",
        back_populates="order",
        order_by="OrderEventRecord.id",
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_amount_positive"),
        Index("idx_orders_created_at", "created_at"),
    )

    @classmethod
    def from_order(cls, order: Order) -> "OrderRecord":
        return cls(
            id=order.order_id,
            token_in=order.token_in,
            token_out=order.token_out,
            amount=order.amount,
            wallet=order.wallet,
            order_type=order.order_type.value,
            created_at=order.created_at,
        )

    def to_order(self) -> Order:
        return Order(
            order_id=self.id,
            token_in=self.token_in,
            token_out=self.token_out,
            amount=self.amount,
            wallet=self.wallet,
            order_type=OrderType(self.order_type),
            created_at=parse_timestamp(self.created_at),
        )

    def __repr__(self) -> str:
        return f"<OrderRecord({self.id}: {self.amount} {self.token_in}->{self.token_out})>"


class OrderEventRecord(Base):
    """
    Append-only status event.

    Attributes:
        id: Autoincrement event id
        order_id: Owning order
        status: One of the OrderStatus values
        detail: Opaque JSON payload
        timestamp: Assigned by the store at append time
    """

    __tablename__ = "order_events"

    id: int = Column(Integer, primary_key=True, autoincrement=True)
    order_id: str = Column(String(36), ForeignKey("orders.id"), nullable=False)
    status: str = Column(String(16), nullable=False)
    detail: Optional[Dict[str, Any]] = Column(JSONB)
    timestamp: datetime = Column(DateTime(timezone=True), nullable=False)

    order = relationship("OrderRecord", back_populates="events")

    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_status_valid"),
        Index("idx_order_events_order_time", "order_id", "timestamp", "id"),
    )

    def to_event(self) -> StatusEvent:
        return StatusEvent(
            event_id=self.id,
            order_id=self.order_id,
            status=OrderStatus(self.status),
            detail=self.detail,
            timestamp=parse_timestamp(self.timestamp),
        )

    def __repr__(self) -> str:
        return f"<OrderEventRecord({self.order_id} #{self.id}: {self.status})>"


@event.listens_for(OrderEventRecord, "before_update")
def _forbid_event_update(mapper, connection, target):
    raise PersistenceError(f"Status events are append-only (update of event {target.id})")


@event.listens_for(OrderEventRecord, "before_delete")
def _forbid_event_delete(mapper, connection, target):
    raise PersistenceError(f"Status events are append-only (delete of event {target.id})")
