"""
Sync Queue Engine

Drains the sync queue of one restaurant into the remote backend.

Per queue item:

    pending ──claim──> in_flight ──ok──────> removed (entity synced)
                           │
                           ├──NetworkError──> pending (backoff) ──> failed at max attempts
                           └──RemoteRejected─> failed

Rules:
    - Items are processed sequentially in creation order.
    - An item that fails, is waiting for its backoff, or is failed blocks
      later items of the SAME entity only. Other entities keep flowing.
    - Every submission carries a locally generated idempotency key, so a
      retry after a lost response never creates a duplicate.
    - Each remote call is bounded by a timeout; a timeout is retryable.
    - At most one drain runs per device: an asyncio.Lock inside the
      process and a FileLock across processes (API + Celery worker).
      A drain requested while another runs is skipped, not queued.

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Union

from filelock import FileLock, Timeout as FileLockTimeout

from gourmetflow.core.config import Settings
from gourmetflow.core.exceptions import (
    NotFound,
    RemoteRejected,
    SyncError,
    SyncTimeout,
)
from gourmetflow.models import (
    MenuCache,
    OfflineOrder,
    QueueItemState,
    SyncAction,
    SyncQueueItem,
    utcnow,
)
from gourmetflow.schemas import MenuSnapshot, SyncReport
from gourmetflow.services.ids import is_offline_id
from gourmetflow.services.local_store import LocalStore, RecordKind
from gourmetflow.services.remote.base import BaseRemoteBackend

logger = logging.getLogger(__name__)

# Per-item outcomes of a drain
SYNCED = "synced"
RETRY = "retry"
FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    The n-th failed attempt waits ``min(base_delay * 2**(n-1), max_delay)``
    seconds; the item is failed once ``max_attempts`` attempts were made.
    """
    max_attempts: int = 5
    base_delay: float = 2.0
    max_delay: float = 60.0

    def delay_for(self, attempts: int) -> float:
        return min(self.base_delay * (2 ** max(attempts - 1, 0)), self.max_delay)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.sync_max_attempts,
            base_delay=settings.sync_base_delay_seconds,
            max_delay=settings.sync_max_delay_seconds,
        )


class _Blocked(Exception):
    """Raised while preparing an item whose prerequisite is not synced yet."""


class SyncEngine:
    """
    Sequential, idempotent queue drainer.

    Args:
        store: Local store shared with the UI
        remote: Backend adapter
        policy: Retry/backoff policy
        request_timeout: Upper bound for each remote call, in seconds
        lock_path: File used to exclude drains in other processes
        clock: Naive UTC "now"; injectable for tests
    """

    def __init__(
        self,
        store: LocalStore,
        remote: BaseRemoteBackend,
        policy: Optional[RetryPolicy] = None,
        request_timeout: float = 10.0,
        lock_path: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.remote = remote
        self.policy = policy or RetryPolicy()
        self.request_timeout = request_timeout
        self.clock = clock

        self._lock = asyncio.Lock()
        self._file_lock: Optional[FileLock] = None
        if lock_path is not None:
            Path(lock_path).parent.mkdir(parents=True, exist_ok=True)
            self._file_lock = FileLock(str(lock_path))

        self.last_sync_time: Optional[datetime] = None
        self.last_report: Optional[SyncReport] = None

    @property
    def is_draining(self) -> bool:
        return self._lock.locked()

    # =========================================================================
    # DRAIN
    # =========================================================================

    async def drain(self, restaurant_id: str) -> SyncReport:
        """
        Submit every due queue item of a restaurant.

        Returns a report with ``skipped=True`` when another drain holds
        the lock. Sync failures are recorded on the items; only local
        store failures propagate.
        """
        if self._lock.locked():
            logger.debug("Drain already running, trigger coalesced")
            return SyncReport(restaurant_id=restaurant_id, skipped=True)

        async with self._lock:
            if self._file_lock is not None:
                try:
                    self._file_lock.acquire(timeout=0)
                except FileLockTimeout:
                    logger.debug("Drain running in another process, trigger coalesced")
                    return SyncReport(restaurant_id=restaurant_id, skipped=True)

            try:
                report = await self._drain(restaurant_id)
            finally:
                if self._file_lock is not None:
                    self._file_lock.release()

        self.last_report = report
        self.last_sync_time = report.finished_at
        return report

    async def _drain(self, restaurant_id: str) -> SyncReport:
        report = SyncReport(restaurant_id=restaurant_id, started_at=self.clock())

        # Anything in_flight now was stranded by a crash: we hold the lock.
        await self.store.reset_in_flight(restaurant_id)

        blocked: set[str] = set()
        async for item in self.store.iter_queue(restaurant_id):
            if item.entity_id in blocked:
                report.deferred += 1
                continue

            if item.state == QueueItemState.FAILED:
                blocked.add(item.entity_id)
                continue

            if item.next_attempt_at is not None and item.next_attempt_at > self.clock():
                blocked.add(item.entity_id)
                report.deferred += 1
                continue

            outcome, error = await self._process(item, blocked)
            if outcome is None:
                report.deferred += 1
                continue

            report.processed += 1
            if outcome == SYNCED:
                report.synced += 1
            elif outcome == RETRY:
                report.retried += 1
            else:
                report.failed += 1

            if error:
                report.errors.append(f"{item.action.value} {item.entity_id}: {error}")

        report.finished_at = self.clock()

        if report.synced or report.failed:
            logger.info(
                f"Drain {restaurant_id}: synced={report.synced} retried={report.retried} "
                f"failed={report.failed} deferred={report.deferred}"
            )
        else:
            logger.debug(f"Drain {restaurant_id}: nothing synced (deferred={report.deferred})")
        return report

    async def _process(self, item: SyncQueueItem, blocked: set[str]) -> tuple[Optional[str], Optional[str]]:
        """
        Claim and submit one item.

        Returns (outcome, error). The outcome is None when the item had to
        wait for a prerequisite.
        """
        try:
            submit = await self._prepare(item, blocked)
        except _Blocked as e:
            logger.debug(f"Deferring {item.action.value} {item.entity_id}: {e}")
            blocked.add(item.entity_id)
            return None, None
        except NotFound as e:
            await self.store.fail_queue_item(item.id, str(e))
            blocked.add(item.entity_id)
            return FAILED, str(e)

        claimed = await self.store.claim_queue_item(item.id)
        if claimed is None:
            blocked.add(item.entity_id)
            return None, None

        try:
            try:
                server_id = await asyncio.wait_for(submit(), timeout=self.request_timeout)
            except asyncio.TimeoutError as e:
                raise SyncTimeout(f"No response within {self.request_timeout}s") from e
        except RemoteRejected as e:
            logger.warning(f"Backend rejected {item.action.value} {item.entity_id}: {e}")
            await self.store.fail_queue_item(item.id, str(e))
            blocked.add(item.entity_id)
            return FAILED, str(e)
        except SyncError as e:
            error = str(e) or type(e).__name__
            return await self._record_failure(claimed, error, blocked), error
        except Exception as e:
            logger.exception(f"Unexpected error syncing {item.action.value} {item.entity_id}")
            error = f"{type(e).__name__}: {e}"
            return await self._record_failure(claimed, error, blocked), error

        await self.store.complete_queue_item(item.id, server_id)
        logger.debug(f"Synced {item.action.value} {item.entity_id} -> {server_id}")
        return SYNCED, None

    async def _record_failure(self, item: SyncQueueItem, error: str, blocked: set[str]) -> str:
        blocked.add(item.entity_id)

        if self.policy.exhausted(item.attempts):
            logger.warning(
                f"Giving up on {item.action.value} {item.entity_id} after "
                f"{item.attempts} attempts: {error}"
            )
            await self.store.fail_queue_item(item.id, error)
            return FAILED

        delay = self.policy.delay_for(item.attempts)
        await self.store.reschedule_queue_item(
            item.id,
            error,
            self.clock() + timedelta(seconds=delay),
        )
        logger.info(
            f"Retrying {item.action.value} {item.entity_id} in {delay:.0f}s "
            f"(attempt {item.attempts}/{self.policy.max_attempts}): {error}"
        )
        return RETRY

    # =========================================================================
    # PAYLOADS
    # =========================================================================

    async def _prepare(self, item: SyncQueueItem, blocked: set[str]):
        """Build the remote call for an item; returns a zero-arg coroutine factory."""
        if item.action == SyncAction.CREATE_CUSTOMER:
            customer = await self.store.get(RecordKind.CUSTOMERS, item.entity_id)
            payload = {
                "name": customer.name,
                "phone": customer.phone,
                "cpf": customer.cpf,
                "address": customer.address,
                "restaurant_id": customer.restaurant_id,
            }

            async def submit() -> str:
                record = await self.remote.upsert_customer(payload, idempotency_key=customer.id)
                return record.id
            return submit

        order = await self.store.get(RecordKind.ORDERS, item.entity_id)

        if item.action == SyncAction.CREATE_ORDER:
            payload = await self._order_payload(order, blocked)

            async def submit() -> str:
                record = await self.remote.create_order(payload, idempotency_key=order.id)
                return record.id
            return submit

        if item.action == SyncAction.UPDATE_ORDER:
            if not order.synced or not order.server_id:
                raise _Blocked(f"order {order.id} not created remotely yet")
            changes = dict(item.data or {})

            async def submit() -> str:
                record = await self.remote.update_order(order.server_id, changes, idempotency_key=item.id)
                return record.id
            return submit

        raise ValueError(f"Unknown sync action {item.action}")

    async def _order_payload(self, order: OfflineOrder, blocked: set[str]) -> dict:
        customer_id = order.customer_id
        if customer_id and is_offline_id(customer_id):
            if customer_id in blocked:
                raise _Blocked(f"customer {customer_id} is not synced")
            try:
                customer = await self.store.get(RecordKind.CUSTOMERS, customer_id)
            except NotFound:
                customer = None
            if customer is not None:
                if not customer.synced:
                    raise _Blocked(f"customer {customer_id} is not synced")
                customer_id = customer.server_id
            else:
                customer_id = None

        return {
            "order_number": order.order_number,
            "customer_id": customer_id,
            "customer_name": order.customer_name,
            "customer_phone": order.customer_phone,
            "customer_cpf": order.customer_cpf,
            "subtotal": order.subtotal,
            "delivery_fee": order.delivery_fee,
            "service_fee": order.service_fee,
            "discount": order.discount,
            "total": order.total,
            "delivery_type": order.delivery_type.value,
            "payment_method": order.payment_method or "pending",
            "delivery_address": order.delivery_address,
            "notes": order.notes,
            "status": order.status or "new",
            "restaurant_id": order.restaurant_id,
            "items": [
                {
                    # Items created offline have no server-side menu entry
                    "menu_item_id": None if is_offline_id(line["menu_item_id"]) else line["menu_item_id"],
                    "name": line["name"],
                    "quantity": line["quantity"],
                    "unit_price": line["unit_price"],
                    "total_price": line["total_price"],
                    "notes": line.get("notes"),
                }
                for line in order.items
            ],
        }

    # =========================================================================
    # MENU
    # =========================================================================

    async def refresh_menu(self, restaurant_id: str) -> Optional[MenuCache]:
        """Pull the remote menu into the cache. Returns None if unreachable."""
        try:
            snapshot = await asyncio.wait_for(
                self.remote.fetch_menu(restaurant_id), timeout=self.request_timeout
            )
        except (SyncError, asyncio.TimeoutError) as e:
            logger.warning(f"Menu refresh for {restaurant_id} failed, keeping cache: {e}")
            return None

        cached = await self.store.cache_menu(
            restaurant_id,
            [category.model_dump() for category in snapshot.categories],
            [item.model_dump() for item in snapshot.items],
        )
        logger.info(
            f"Menu cached for {restaurant_id}: {len(snapshot.categories)} categories, "
            f"{len(snapshot.items)} items"
        )
        return cached

    async def load_menu(self, restaurant_id: str, refresh: bool = True) -> MenuSnapshot:
        """
        Read-through menu access: remote first, cached snapshot as fallback.

        Args:
            restaurant_id: Restaurant whose menu is wanted
            refresh: Try the backend first; False serves the cache directly

        Raises:
            NotFound: If the backend is unreachable and nothing is cached
        """
        cached = await self.refresh_menu(restaurant_id) if refresh else None
        from_cache = cached is None
        if cached is None:
            cached = await self.store.get_menu_cache(restaurant_id)

        return MenuSnapshot(
            restaurant_id=restaurant_id,
            categories=cached.categories,
            items=cached.items,
            cached_at=cached.cached_at,
            from_cache=from_cache,
        )
