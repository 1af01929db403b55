"""
Celery Tasks
Background sync for terminals where the local API is not running.

Each task opens its own runtime on the same local database and drain
lock as the API, so a beat-triggered drain and a UI-triggered drain
never overlap.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from gourmetflow.celery_worker import celery_app
from gourmetflow.core.config import get_settings
from gourmetflow.runtime import SyncRuntime, create_runtime
from gourmetflow.services.remote import reset_remote_backend

T = TypeVar("T")


async def _with_runtime(work: Callable[[SyncRuntime], Awaitable[T]]) -> T:
    runtime = await create_runtime(get_settings())
    try:
        return await work(runtime)
    finally:
        await runtime.close()
        # The HTTP client is bound to this event loop
        await runtime.remote.aclose()
        reset_remote_backend()


@celery_app.task(bind=True)
def drain_sync_queue(self, restaurant_id: Optional[str] = None) -> dict:
    """
    Push pending offline records to the backend.

    Skipped when the backend is unreachable or another drain holds the
    device lock.
    """
    task_id = self.request.id
    start_time = time.time()

    async def work(runtime: SyncRuntime) -> dict:
        target = restaurant_id or runtime.settings.restaurant_id
        if not await runtime.remote.health_check():
            return {"restaurant_id": target, "skipped": True, "reason": "offline"}
        report = await runtime.engine.drain(target)
        return report.model_dump(mode="json")

    result = asyncio.run(_with_runtime(work))
    result["task_id"] = task_id
    result["processing_time_seconds"] = round(time.time() - start_time, 3)

    if result.get("synced") or result.get("failed"):
        print(
            f"🔄 Task {task_id}: synced={result['synced']} "
            f"failed={result['failed']} in {result['processing_time_seconds']}s"
        )
    return result


@celery_app.task
def refresh_menu_cache(restaurant_id: Optional[str] = None, force: bool = False) -> dict:
    """Pull the menu into the local cache once it is older than the max age."""

    async def work(runtime: SyncRuntime) -> dict:
        target = restaurant_id or runtime.settings.restaurant_id
        max_age = runtime.settings.menu_cache_max_age_minutes
        if not force and await runtime.store.is_menu_cache_valid(target, max_age):
            return {"restaurant_id": target, "refreshed": False, "reason": "fresh"}

        cached = await runtime.engine.refresh_menu(target)
        return {
            "restaurant_id": target,
            "refreshed": cached is not None,
            "items": len(cached.items) if cached is not None else 0,
        }

    return asyncio.run(_with_runtime(work))


@celery_app.task
def prune_synced_data(older_than_days: Optional[int] = None) -> dict:
    """Delete synced records past the retention window."""

    async def work(runtime: SyncRuntime) -> dict:
        days = older_than_days if older_than_days is not None else runtime.settings.retention_days
        removed = await runtime.store.clear_synced_data(days)
        return {"older_than_days": days, "removed": removed}

    return asyncio.run(_with_runtime(work))


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
