"""
Local Store

Durable, key-indexed storage for the four on-device record kinds.
The store is an ordinary object built around a LocalDatabase; whoever
starts the application constructs it and hands it to the sync engine
and the API layer.

Every public operation runs in its own short session so a drain that is
walking the queue never blocks the terminal from saving a new order.
Database failures surface as StorageError and are never swallowed here.
Unique-key conflicts are the exception: they reach the caller as
IntegrityError so a concurrent duplicate can be resolved.

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Union

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gourmetflow.core.exceptions import NotFound, StorageError
from gourmetflow.database import LocalDatabase
from gourmetflow.models import (
    DeliveryType,
    MenuCache,
    OfflineCustomer,
    OfflineOrder,
    QueueItemState,
    SyncAction,
    SyncQueueItem,
    utcnow,
)
from gourmetflow.schemas import OfflineCustomerCreate, OfflineOrderCreate, OfflineStats
from gourmetflow.services import ids

logger = logging.getLogger(__name__)


class RecordKind(str, Enum):
    """The four object stores kept on the device."""
    ORDERS = "offline_orders"
    CUSTOMERS = "offline_customers"
    MENU_CACHE = "menu_cache"
    SYNC_QUEUE = "sync_queue"


MODEL_BY_KIND = {
    RecordKind.ORDERS: OfflineOrder,
    RecordKind.CUSTOMERS: OfflineCustomer,
    RecordKind.MENU_CACHE: MenuCache,
    RecordKind.SYNC_QUEUE: SyncQueueItem,
}

# Kinds carrying a synced flag and an attempt counter
SYNCABLE_KINDS = (RecordKind.ORDERS, RecordKind.CUSTOMERS)

# Queue items name their target by entity_type
ENTITY_ORDERS = "orders"
ENTITY_CUSTOMERS = "customers"
MODEL_BY_ENTITY = {
    ENTITY_ORDERS: OfflineOrder,
    ENTITY_CUSTOMERS: OfflineCustomer,
}


def check_order_totals(order: OfflineOrder) -> None:
    """
    Enforce the pricing invariants of a freshly built order.

    Raises:
        ValueError: If a line total or the order total does not add up
    """
    subtotal = 0.0
    for line in order.items:
        expected_line = round(line["quantity"] * line["unit_price"], 2)
        if abs(line["total_price"] - expected_line) > 0.005:
            raise ValueError(f"Line total mismatch for {line['name']}")
        subtotal += line["total_price"]

    if abs(order.subtotal - round(subtotal, 2)) > 0.005:
        raise ValueError("Subtotal does not match the sum of line totals")

    expected_total = round(order.subtotal + order.delivery_fee + order.service_fee - order.discount, 2)
    if abs(order.total - expected_total) > 0.005:
        raise ValueError("Total does not match subtotal + fees - discount")
    if order.total < 0:
        raise ValueError("Discount exceeds the order value")


class LocalStore:
    """
    Async facade over the on-device database.

    Args:
        database: Initialized LocalDatabase
        clock: Returns naive UTC "now"; injectable for tests
        page_size: Rows fetched per round trip by the lazy iterators
    """

    def __init__(
        self,
        database: LocalDatabase,
        clock: Callable[[], datetime] = utcnow,
        page_size: int = 100,
    ):
        self.database = database
        self.clock = clock
        self.page_size = page_size
        self._last_stamp: Optional[datetime] = None

    # =========================================================================
    # INTERNALS
    # =========================================================================

    @asynccontextmanager
    async def _session(self):
        session = self.database.session()
        try:
            yield session
            await session.commit()
        except IntegrityError:
            # A constraint hit is a caller decision, not an unavailable store
            await session.rollback()
            raise
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Local store failure: {e}")
            raise StorageError(f"Local store unavailable: {e}") from e
        finally:
            await session.close()

    def _stamp(self) -> datetime:
        """Creation timestamp, strictly increasing within this process."""
        now = self.clock()
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    @staticmethod
    def _model(kind: Union[RecordKind, str]):
        return MODEL_BY_KIND[RecordKind(kind)]

    def _new_queue_item(
        self,
        action: SyncAction,
        entity_type: str,
        entity_id: str,
        restaurant_id: str,
        data: dict,
    ) -> SyncQueueItem:
        return SyncQueueItem(
            id=ids.generate_offline_id(),
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            restaurant_id=restaurant_id,
            data=data,
            state=QueueItemState.PENDING,
            attempts=0,
            created_at=self._stamp(),
        )

    async def _iter_ordered(self, model, *conditions) -> AsyncIterator[Any]:
        """Keyset-paginated scan in (created_at, id) order."""
        cursor = None
        while True:
            stmt = select(model).where(*conditions)
            if cursor is not None:
                created_at, key = cursor
                stmt = stmt.where(
                    or_(
                        model.created_at > created_at,
                        and_(model.created_at == created_at, model.id > key),
                    )
                )
            stmt = stmt.order_by(model.created_at, model.id).limit(self.page_size)

            async with self._session() as session:
                page = list((await session.scalars(stmt)).all())

            for row in page:
                yield row

            if len(page) < self.page_size:
                return
            cursor = (page[-1].created_at, page[-1].id)

    # =========================================================================
    # GENERIC RECORD ACCESS
    # =========================================================================

    async def put(self, kind: Union[RecordKind, str], record: Any) -> None:
        """
        Insert or replace a record by primary key.

        Args:
            kind: Record kind
            record: Model instance or dict of column values

        Raises:
            StorageError: If the device store is unavailable
        """
        model = self._model(kind)
        if isinstance(record, dict):
            record = model(**record)
        elif not isinstance(record, model):
            raise TypeError(f"Expected {model.__name__}, got {type(record).__name__}")

        async with self._session() as session:
            await session.merge(record)

    async def get(self, kind: Union[RecordKind, str], record_id: str) -> Any:
        """Fetch one record or raise NotFound."""
        model = self._model(kind)
        async with self._session() as session:
            record = await session.get(model, record_id)
        if record is None:
            raise NotFound(RecordKind(kind).value, record_id)
        return record

    async def get_unsynced(
        self,
        kind: Union[RecordKind, str],
        restaurant_id: str,
    ) -> AsyncIterator[Any]:
        """
        Lazily yield records of one restaurant that still need syncing.

        Orders and customers are yielded while ``synced`` is false; queue
        items while they are not failed. Order is insertion order.
        """
        kind = RecordKind(kind)
        model = self._model(kind)

        if kind == RecordKind.SYNC_QUEUE:
            condition = model.state != QueueItemState.FAILED
        elif kind in SYNCABLE_KINDS:
            condition = model.synced.is_(False)
        else:
            raise ValueError(f"{kind.value} records have no sync state")

        async for record in self._iter_ordered(model, model.restaurant_id == restaurant_id, condition):
            yield record

    async def mark_synced(
        self,
        kind: Union[RecordKind, str],
        record_id: str,
        server_id: Optional[str] = None,
    ) -> bool:
        """
        Flag an order or customer as synced.

        Idempotent: an already-synced record is left untouched.

        Returns:
            True if the record changed
        """
        kind = RecordKind(kind)
        if kind not in SYNCABLE_KINDS:
            raise ValueError(f"{kind.value} records have no sync state")
        model = self._model(kind)
        async with self._session() as session:
            record = await session.get(model, record_id)
            if record is None:
                raise NotFound(RecordKind(kind).value, record_id)
            if record.synced:
                return False
            record.synced = True
            record.synced_at = self.clock()
            if server_id:
                record.server_id = server_id
        return True

    async def increment_sync_attempt(self, kind: Union[RecordKind, str], record_id: str) -> int:
        kind = RecordKind(kind)
        if kind not in SYNCABLE_KINDS:
            raise ValueError(f"{kind.value} records have no sync state")
        model = self._model(kind)
        async with self._session() as session:
            record = await session.get(model, record_id)
            if record is None:
                raise NotFound(RecordKind(kind).value, record_id)
            record.sync_attempts += 1
            attempts = record.sync_attempts
        return attempts

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def save_offline_order(self, data: Union[OfflineOrderCreate, dict]) -> OfflineOrder:
        """
        Store a new order and queue its creation on the backend.

        Totals are computed here; the order and its queue item are written
        in the same transaction.
        """
        if isinstance(data, dict):
            data = OfflineOrderCreate.model_validate(data)

        order = OfflineOrder(
            id=ids.generate_offline_id(),
            order_number=ids.generate_offline_order_number(),
            customer_id=data.customer_id,
            customer_name=data.customer_name,
            customer_phone=data.customer_phone,
            customer_cpf=data.customer_cpf,
            items=[
                {
                    "menu_item_id": item.menu_item_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "unit_price": item.unit_price,
                    "total_price": item.total_price,
                    "notes": item.notes,
                }
                for item in data.items
            ],
            delivery_type=DeliveryType(data.delivery_type.value),
            delivery_address=data.delivery_address.model_dump() if data.delivery_address else None,
            payment_method=data.payment_method.value,
            notes=data.notes,
            status=data.status,
            subtotal=data.subtotal,
            delivery_fee=data.delivery_fee,
            service_fee=data.service_fee,
            discount=data.discount,
            total=data.total,
            restaurant_id=data.restaurant_id,
            synced=False,
            sync_attempts=0,
            created_at=self._stamp(),
        )
        check_order_totals(order)

        queue_item = self._new_queue_item(
            SyncAction.CREATE_ORDER,
            ENTITY_ORDERS,
            order.id,
            order.restaurant_id,
            order.to_dict(),
        )

        async with self._session() as session:
            session.add_all([order, queue_item])

        logger.info(f"Offline order {order.order_number} saved ({order.id}) total={order.total:.2f}")
        return order

    async def list_orders(self, restaurant_id: str, include_synced: bool = False) -> list[OfflineOrder]:
        conditions = [OfflineOrder.restaurant_id == restaurant_id]
        if not include_synced:
            conditions.append(OfflineOrder.synced.is_(False))
        return [order async for order in self._iter_ordered(OfflineOrder, *conditions)]

    async def queue_order_update(self, order_id: str, changes: dict) -> SyncQueueItem:
        """
        Apply changes to a stored order and queue them for the backend.

        The update item is ordered after the order's create item, so the
        engine never sends it before the order exists remotely.
        """
        if not changes:
            raise ValueError("No changes to queue")

        async with self._session() as session:
            order = await session.get(OfflineOrder, order_id)
            if order is None:
                raise NotFound(RecordKind.ORDERS.value, order_id)

            for field in ("status", "payment_method", "notes"):
                if field in changes:
                    setattr(order, field, changes[field])

            queue_item = self._new_queue_item(
                SyncAction.UPDATE_ORDER,
                ENTITY_ORDERS,
                order.id,
                order.restaurant_id,
                dict(changes),
            )
            session.add(queue_item)

        logger.debug(f"Queued update for order {order_id}: {sorted(changes)}")
        return queue_item

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    async def find_customer_by_phone(self, restaurant_id: str, phone: str) -> Optional[OfflineCustomer]:
        async with self._session() as session:
            stmt = (
                select(OfflineCustomer)
                .where(OfflineCustomer.phone == phone, OfflineCustomer.restaurant_id == restaurant_id)
                .order_by(OfflineCustomer.created_at)
                .limit(1)
            )
            return (await session.scalars(stmt)).first()

    async def save_offline_customer(
        self,
        data: Union[OfflineCustomerCreate, dict],
    ) -> tuple[OfflineCustomer, bool]:
        """
        Store a customer unless one with the same phone already exists.

        Returns:
            (customer, created) where created is False for a dedup hit
        """
        if isinstance(data, dict):
            data = OfflineCustomerCreate.model_validate(data)

        existing = await self.find_customer_by_phone(data.restaurant_id, data.phone)
        if existing is not None:
            logger.debug(f"Customer {data.phone} already stored as {existing.id}")
            return existing, False

        customer = OfflineCustomer(
            id=ids.generate_offline_id(),
            name=data.name,
            phone=data.phone,
            cpf=data.cpf,
            address=data.address.model_dump() if data.address else None,
            restaurant_id=data.restaurant_id,
            synced=False,
            sync_attempts=0,
            created_at=self._stamp(),
        )
        queue_item = self._new_queue_item(
            SyncAction.CREATE_CUSTOMER,
            ENTITY_CUSTOMERS,
            customer.id,
            customer.restaurant_id,
            customer.to_dict(),
        )

        try:
            async with self._session() as session:
                session.add_all([customer, queue_item])
        except IntegrityError:
            # Another capture of the same phone committed first
            existing = await self.find_customer_by_phone(data.restaurant_id, data.phone)
            if existing is None:
                raise StorageError(f"Customer {data.phone} conflicted but could not be read back")
            logger.debug(f"Customer {data.phone} captured concurrently as {existing.id}")
            return existing, False

        logger.info(f"Offline customer {customer.phone} saved ({customer.id})")
        return customer, True

    # =========================================================================
    # MENU CACHE
    # =========================================================================

    async def cache_menu(
        self,
        restaurant_id: str,
        categories: Iterable[dict],
        items: Iterable[dict],
    ) -> MenuCache:
        """Overwrite the cached menu snapshot of a restaurant."""
        snapshot = MenuCache(
            id=restaurant_id,
            restaurant_id=restaurant_id,
            categories=list(categories),
            items=list(items),
            cached_at=self.clock(),
        )
        async with self._session() as session:
            snapshot = await session.merge(snapshot)
        return snapshot

    async def get_menu_cache(self, restaurant_id: str) -> MenuCache:
        """Return the cached snapshot or raise NotFound."""
        async with self._session() as session:
            cached = await session.get(MenuCache, restaurant_id)
        if cached is None:
            raise NotFound(RecordKind.MENU_CACHE.value, restaurant_id)
        return cached

    async def is_menu_cache_valid(self, restaurant_id: str, max_age_minutes: int = 60) -> bool:
        try:
            cached = await self.get_menu_cache(restaurant_id)
        except NotFound:
            return False
        return self.clock() - cached.cached_at < timedelta(minutes=max_age_minutes)

    # =========================================================================
    # SYNC QUEUE
    # =========================================================================

    async def enqueue(
        self,
        action: SyncAction,
        entity_type: str,
        entity_id: str,
        restaurant_id: str,
        data: Optional[dict] = None,
    ) -> SyncQueueItem:
        item = self._new_queue_item(SyncAction(action), entity_type, entity_id, restaurant_id, data or {})
        async with self._session() as session:
            session.add(item)
        return item

    async def iter_queue(
        self,
        restaurant_id: str,
        states: Optional[Iterable[QueueItemState]] = None,
    ) -> AsyncIterator[SyncQueueItem]:
        conditions = [SyncQueueItem.restaurant_id == restaurant_id]
        if states is not None:
            conditions.append(SyncQueueItem.state.in_(list(states)))
        async for item in self._iter_ordered(SyncQueueItem, *conditions):
            yield item

    async def list_queue(
        self,
        restaurant_id: str,
        states: Optional[Iterable[QueueItemState]] = None,
    ) -> list[SyncQueueItem]:
        return [item async for item in self.iter_queue(restaurant_id, states)]

    async def list_failed(self, restaurant_id: str) -> list[SyncQueueItem]:
        return await self.list_queue(restaurant_id, [QueueItemState.FAILED])

    async def get_queue_item(self, item_id: str) -> SyncQueueItem:
        return await self.get(RecordKind.SYNC_QUEUE, item_id)

    async def update_queue_item(self, item_id: str, **updates: Any) -> SyncQueueItem:
        async with self._session() as session:
            item = await session.get(SyncQueueItem, item_id)
            if item is None:
                raise NotFound(RecordKind.SYNC_QUEUE.value, item_id)
            for key, value in updates.items():
                setattr(item, key, value)
        return item

    async def remove_queue_item(self, item_id: str) -> None:
        async with self._session() as session:
            await session.execute(delete(SyncQueueItem).where(SyncQueueItem.id == item_id))

    async def claim_queue_item(self, item_id: str) -> Optional[SyncQueueItem]:
        """
        Move a pending item to in_flight and count the attempt.

        The conditional UPDATE makes the claim exclusive: a second claim
        of the same item returns None.
        """
        async with self._session() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == item_id, SyncQueueItem.state == QueueItemState.PENDING)
                .values(
                    state=QueueItemState.IN_FLIGHT,
                    attempts=SyncQueueItem.attempts + 1,
                    updated_at=self.clock(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            item = await session.get(SyncQueueItem, item_id, populate_existing=True)
            if item.action != SyncAction.UPDATE_ORDER:
                entity = await session.get(MODEL_BY_ENTITY[item.entity_type], item.entity_id)
                if entity is not None:
                    entity.sync_attempts += 1
        return item

    async def complete_queue_item(self, item_id: str, server_id: Optional[str] = None) -> None:
        """
        Record a successful submission: the entity becomes synced and the
        queue item is removed, atomically.
        """
        async with self._session() as session:
            item = await session.get(SyncQueueItem, item_id)
            if item is None:
                return

            if item.action != SyncAction.UPDATE_ORDER:
                entity = await session.get(MODEL_BY_ENTITY[item.entity_type], item.entity_id)
                if entity is not None and not entity.synced:
                    entity.synced = True
                    entity.synced_at = self.clock()
                    if server_id:
                        entity.server_id = server_id

            await session.delete(item)

    async def reschedule_queue_item(self, item_id: str, error: str, next_attempt_at: datetime) -> None:
        await self.update_queue_item(
            item_id,
            state=QueueItemState.PENDING,
            last_error=error,
            next_attempt_at=next_attempt_at,
        )

    async def fail_queue_item(self, item_id: str, error: str) -> None:
        await self.update_queue_item(item_id, state=QueueItemState.FAILED, last_error=error)

    async def retry_failed(self, item_id: str) -> SyncQueueItem:
        """Put a failed item back in the queue with a fresh attempt budget."""
        item = await self.get_queue_item(item_id)
        if item.state != QueueItemState.FAILED:
            raise ValueError(f"Queue item {item_id} is {item.state.value}, not failed")
        return await self.update_queue_item(
            item_id,
            state=QueueItemState.PENDING,
            attempts=0,
            next_attempt_at=None,
        )

    async def reset_in_flight(self, restaurant_id: Optional[str] = None) -> int:
        """
        Return items stranded in_flight (crash mid-submission) to pending.

        Safe only while the caller holds the drain lock.
        """
        stmt = update(SyncQueueItem).where(SyncQueueItem.state == QueueItemState.IN_FLIGHT)
        if restaurant_id is not None:
            stmt = stmt.where(SyncQueueItem.restaurant_id == restaurant_id)

        async with self._session() as session:
            result = await session.execute(
                stmt.values(state=QueueItemState.PENDING).execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.warning(f"Recovered {result.rowcount} in-flight queue item(s)")
        return result.rowcount

    # =========================================================================
    # STATISTICS & CLEANUP
    # =========================================================================

    async def get_stats(self, restaurant_id: Optional[str] = None) -> OfflineStats:
        def scoped(stmt, model):
            if restaurant_id is not None:
                return stmt.where(model.restaurant_id == restaurant_id)
            return stmt

        async with self._session() as session:
            pending_orders = await session.scalar(
                scoped(select(func.count()).select_from(OfflineOrder).where(OfflineOrder.synced.is_(False)), OfflineOrder)
            )
            pending_customers = await session.scalar(
                scoped(
                    select(func.count()).select_from(OfflineCustomer).where(OfflineCustomer.synced.is_(False)),
                    OfflineCustomer,
                )
            )
            queue_size = await session.scalar(
                scoped(select(func.count()).select_from(SyncQueueItem), SyncQueueItem)
            )
            failed = await session.scalar(
                scoped(
                    select(func.count()).select_from(SyncQueueItem).where(
                        SyncQueueItem.state == QueueItemState.FAILED
                    ),
                    SyncQueueItem,
                )
            )

        return OfflineStats(
            pending_orders=pending_orders or 0,
            pending_customers=pending_customers or 0,
            sync_queue_size=queue_size or 0,
            failed_items=failed or 0,
            needs_attention=bool(failed),
        )

    async def clear_synced_data(self, older_than_days: int = 7) -> dict[str, int]:
        """
        Delete synced orders and customers older than the retention window.

        Records still referenced by a queue item are kept.
        """
        cutoff = self.clock() - timedelta(days=older_than_days)
        referenced = select(SyncQueueItem.entity_id)
        removed = {}

        async with self._session() as session:
            for name, model in (("orders", OfflineOrder), ("customers", OfflineCustomer)):
                result = await session.execute(
                    delete(model)
                    .where(
                        model.synced.is_(True),
                        model.created_at < cutoff,
                        model.id.not_in(referenced),
                    )
                    .execution_options(synchronize_session=False)
                )
                removed[name] = result.rowcount

        if any(removed.values()):
            logger.info(f"Pruned synced data older than {older_than_days}d: {removed}")
        return removed
