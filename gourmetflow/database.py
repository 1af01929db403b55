"""
Database Connection Module
Handles the on-device SQLite database using the SQLAlchemy async engine.

The database is an explicitly constructed object owned by application
startup/teardown; nothing in this module opens a connection at import time.
"""

import logging
from typing import Optional

from sqlalchemy import event, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from gourmetflow.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# Bumped whenever a table or index is added. Migrations are additive only.
SCHEMA_VERSION = 3


# Base class for all our models
class Base(DeclarativeBase):
    pass


def _enable_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """WAL lets UI writes proceed while a drain is reading."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _has_duplicates(sync_conn, index) -> bool:
    columns = list(index.columns)
    stmt = select(*columns).group_by(*columns).having(func.count() > 1).limit(1)
    return sync_conn.execute(stmt).first() is not None


def _migrate(sync_conn) -> int:
    """
    Bring an existing store up to SCHEMA_VERSION.

    Missing tables are created; missing indexes on existing tables are
    created too. Nothing is ever dropped or rewritten, so a unique index
    whose columns already hold duplicates is left out until they are
    resolved by hand.
    """
    inspector = inspect(sync_conn)
    existing_tables = set(inspector.get_table_names())

    created = 0
    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            table.create(sync_conn)
            created += 1
            continue

        existing_indexes = {ix["name"] for ix in inspector.get_indexes(table.name)}
        for index in table.indexes:
            if index.name not in existing_indexes:
                if index.unique and _has_duplicates(sync_conn, index):
                    logger.warning(
                        f"Migrating: skipping unique index {index.name}, "
                        f"{table.name} holds duplicate rows"
                    )
                    continue
                logger.info(f"Migrating: creating index {index.name} on {table.name}")
                index.create(sync_conn)
                created += 1

    if sync_conn.dialect.name == "sqlite":
        version = sync_conn.exec_driver_sql("PRAGMA user_version").scalar() or 0
        if version < SCHEMA_VERSION:
            sync_conn.exec_driver_sql(f"PRAGMA user_version = {SCHEMA_VERSION}")
            logger.info(f"Local store upgraded from schema v{version} to v{SCHEMA_VERSION}")

    return created


class LocalDatabase:
    """
    Owns the async engine and session factory for the local store.

    Example:
        >>> db = LocalDatabase("sqlite+aiosqlite:///data/offline.db")
        >>> await db.init()
        >>> async with db.session() as session:
        ...     ...
        >>> await db.dispose()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo)

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_pragmas)

        # Session factory - creates new database sessions
        self._session_maker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False  # Objects remain accessible after commit
        )

    def session(self) -> AsyncSession:
        return self._session_maker()

    async def init(self) -> Optional[int]:
        """
        Create or upgrade the schema.

        Raises:
            StorageError: If the database file cannot be opened or migrated
        """
        try:
            async with self.engine.begin() as conn:
                created = await conn.run_sync(_migrate)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not open local store at {self.url}: {e}") from e

        logger.info(f"✅ Local store ready ({created} schema objects created)")
        return created

    async def dispose(self) -> None:
        await self.engine.dispose()
