"""
Runtime wiring.

Builds the database, store, engine and driver from settings and tears
them down again. The FastAPI lifespan, the Celery tasks and the
simulation script all go through here, so every entry point owns its
own explicitly constructed instances.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from gourmetflow.core.config import Settings, get_settings
from gourmetflow.database import LocalDatabase
from gourmetflow.services.local_store import LocalStore
from gourmetflow.services.remote import BaseRemoteBackend, get_remote_backend
from gourmetflow.services.sync_driver import SyncDriver
from gourmetflow.services.sync_engine import RetryPolicy, SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class SyncRuntime:
    settings: Settings
    database: LocalDatabase
    store: LocalStore
    remote: BaseRemoteBackend
    engine: SyncEngine
    driver: SyncDriver

    async def close(self) -> None:
        await self.driver.stop()
        await self.database.dispose()


async def create_runtime(
    settings: Optional[Settings] = None,
    remote: Optional[BaseRemoteBackend] = None,
    online: bool = False,
) -> SyncRuntime:
    """
    Open the local store and assemble the sync stack.

    Raises:
        StorageError: If the local database cannot be opened
    """
    settings = settings or get_settings()
    settings.data_path.mkdir(parents=True, exist_ok=True)

    database = LocalDatabase(settings.database_url, echo=settings.debug)
    await database.init()

    store = LocalStore(database)
    remote = remote or get_remote_backend()
    engine = SyncEngine(
        store,
        remote,
        policy=RetryPolicy.from_settings(settings),
        request_timeout=settings.remote_timeout_seconds,
        lock_path=settings.drain_lock_path,
    )
    driver = SyncDriver(
        engine,
        settings.restaurant_id,
        interval_seconds=settings.sync_interval_seconds,
        online=online,
    )

    logger.info(f"Sync runtime ready for {settings.restaurant_id} (remote={remote.provider_name})")
    return SyncRuntime(
        settings=settings,
        database=database,
        store=store,
        remote=remote,
        engine=engine,
        driver=driver,
    )
