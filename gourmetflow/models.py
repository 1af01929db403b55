"""
SQLAlchemy Models for the Local Store

Four record kinds live on the device:
- offline_orders: orders captured while disconnected (or optimistically online)
- offline_customers: customers captured at the counter, deduplicated by phone
- menu_cache: one menu snapshot per restaurant, read when the backend is unreachable
- sync_queue: pending remote submissions derived from the records above

All timestamps are naive UTC.

Author: GourmetFlow Team
Version: 1.0.0
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Column, Integer, String, Float, DateTime, Text, Enum, Boolean, JSON, Index

from gourmetflow.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation SQLite round-trips."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DeliveryType(str, enum.Enum):
    """How the order leaves the kitchen."""
    DELIVERY = "delivery"
    PICKUP = "pickup"
    DINE_IN = "dine_in"


class SyncAction(str, enum.Enum):
    """Remote operation a queue item stands for."""
    CREATE_ORDER = "create_order"
    CREATE_CUSTOMER = "create_customer"
    UPDATE_ORDER = "update_order"


class QueueItemState(str, enum.Enum):
    """
    Queue item lifecycle.

    pending -> in_flight -> (removed on success | pending | failed)
    """
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    FAILED = "failed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class OfflineOrder(Base):
    """
    An order held on the device until the backend confirms it.

    ``id`` is the locally generated id and doubles as the idempotency key
    of its create submission. ``server_id`` is filled in once synced.
    """
    __tablename__ = "offline_orders"
    __table_args__ = (
        Index("ix_offline_orders_synced", "synced"),
        Index("ix_offline_orders_restaurant", "restaurant_id"),
    )

    id = Column(String(64), primary_key=True)
    order_number = Column(String(20), nullable=False)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_id = Column(String(64), nullable=True)
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_cpf = Column(String(20), nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    items = Column(JSON, nullable=False, default=list)
    delivery_type = Column(Enum(DeliveryType), nullable=False, default=DeliveryType.DELIVERY)
    delivery_address = Column(JSON, nullable=True)
    payment_method = Column(String(30), nullable=False, default="pending")
    notes = Column(Text, nullable=True)
    status = Column(String(30), nullable=False, default="new")

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    service_fee = Column(Float, nullable=False, default=0.0)
    discount = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False)

    # =========================================================================
    # SYNC TRACKING
    # =========================================================================
    restaurant_id = Column(String(64), nullable=False)
    synced = Column(Boolean, nullable=False, default=False)
    server_id = Column(String(64), nullable=True)
    sync_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    synced_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_cpf": self.customer_cpf,
            "items": list(self.items or []),
            "delivery_type": self.delivery_type.value if self.delivery_type else None,
            "delivery_address": self.delivery_address,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "status": self.status,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "service_fee": self.service_fee,
            "discount": self.discount,
            "total": self.total,
            "restaurant_id": self.restaurant_id,
            "synced": self.synced,
            "server_id": self.server_id,
            "sync_attempts": self.sync_attempts,
            "created_at": _iso(self.created_at),
            "synced_at": _iso(self.synced_at),
        }

    def __repr__(self):
        return f"<OfflineOrder {self.order_number} ({self.id}) synced={self.synced}>"


class OfflineCustomer(Base):
    """A customer captured on the device. Phone is the dedup key per restaurant."""
    __tablename__ = "offline_customers"
    __table_args__ = (
        Index("ix_offline_customers_synced", "synced"),
        Index("ix_offline_customers_restaurant", "restaurant_id"),
        Index("ix_offline_customers_phone", "phone"),
        Index("uq_offline_customers_restaurant_phone", "restaurant_id", "phone", unique=True),
    )

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=False)
    cpf = Column(String(20), nullable=True)
    address = Column(JSON, nullable=True)
    restaurant_id = Column(String(64), nullable=False)
    synced = Column(Boolean, nullable=False, default=False)
    server_id = Column(String(64), nullable=True)
    sync_attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    synced_at = Column(DateTime, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "cpf": self.cpf,
            "address": self.address,
            "restaurant_id": self.restaurant_id,
            "synced": self.synced,
            "server_id": self.server_id,
            "sync_attempts": self.sync_attempts,
            "created_at": _iso(self.created_at),
            "synced_at": _iso(self.synced_at),
        }

    def __repr__(self):
        return f"<OfflineCustomer {self.phone} ({self.id}) synced={self.synced}>"


class MenuCache(Base):
    """Latest menu snapshot for a restaurant. Keyed by restaurant id."""
    __tablename__ = "menu_cache"
    __table_args__ = (
        Index("ix_menu_cache_restaurant", "restaurant_id"),
    )

    id = Column(String(64), primary_key=True)
    restaurant_id = Column(String(64), nullable=False)
    categories = Column(JSON, nullable=False, default=list)
    items = Column(JSON, nullable=False, default=list)
    cached_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "categories": list(self.categories or []),
            "items": list(self.items or []),
            "cached_at": _iso(self.cached_at),
        }


class SyncQueueItem(Base):
    """
    One pending remote submission.

    ``entity_id`` points at an OfflineOrder or OfflineCustomer by local id.
    ``next_attempt_at`` is the earliest time a retry may be claimed.
    """
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("ix_sync_queue_action", "action"),
        Index("ix_sync_queue_entity", "entity_id"),
        Index("ix_sync_queue_restaurant_state", "restaurant_id", "state"),
    )

    id = Column(String(64), primary_key=True)
    action = Column(Enum(SyncAction), nullable=False)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(String(64), nullable=False)
    restaurant_id = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    state = Column(Enum(QueueItemState), nullable=False, default=QueueItemState.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "restaurant_id": self.restaurant_id,
            "data": self.data,
            "state": self.state.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "next_attempt_at": _iso(self.next_attempt_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<SyncQueueItem {self.action.value} {self.entity_id} {self.state.value}>"
