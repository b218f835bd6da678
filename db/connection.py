import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from config import DB_CONNECT_ATTEMPTS, DB_CONNECT_RETRY_DELAY, DB_POOL_SIZE

logger = logging.getLogger(__name__)

_db_pool: "ConnectionPool | None" = None


async def connect_with_retry(
    db_path: Path,
    attempts: int = DB_CONNECT_ATTEMPTS,
    retry_delay: float = DB_CONNECT_RETRY_DELAY,
    source: str = "",
) -> aiosqlite.Connection:
    """Open a connection, retrying ``attempts`` times before giving up.

    Exhausting the attempts is fatal: the process exits.
    """
    for attempt in range(1, attempts + 1):
        try:
            db = await aiosqlite.connect(db_path)
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA foreign_keys=ON")
            logger.debug(f"Created new database connection ({source})")
            return db
        except (aiosqlite.Error, OSError) as e:
            logger.critical(f"There is a problem connecting to the database {db_path}: {e}")
            if attempt >= attempts:
                break
            logger.critical(f"Retrying connection to database in {retry_delay:g} seconds, retry: {attempt}/{attempts}")
            await asyncio.sleep(retry_delay)

    logger.critical("Database is not responding, please check your configuration")
    sys.exit(1)


class ConnectionPool:
    def __init__(
        self,
        db_path: Path,
        size: int = DB_POOL_SIZE,
        attempts: int = DB_CONNECT_ATTEMPTS,
        retry_delay: float = DB_CONNECT_RETRY_DELAY,
    ) -> None:
        self.db_path = Path(db_path)
        self.size = size
        self._attempts = attempts
        self._retry_delay = retry_delay
        self._semaphore = asyncio.Semaphore(size)
        self._idle: list[aiosqlite.Connection] = []

    @asynccontextmanager
    async def acquire(self, source: str = ""):
        async with self._semaphore:
            if self._idle:
                db = self._idle.pop()
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                db = await connect_with_retry(self.db_path, self._attempts, self._retry_delay, source)
            try:
                yield db
            finally:
                try:
                    if db.in_transaction:
                        await db.rollback()
                finally:
                    self._idle.append(db)

    @property
    def idle_connections(self) -> int:
        return len(self._idle)

    async def close(self) -> None:
        while self._idle:
            db = self._idle.pop()
            await db.close()


def get_pool(settings: dict) -> ConnectionPool:
    global _db_pool
    if _db_pool is None:
        database = settings["database"]
        _db_pool = ConnectionPool(
            Path(database["database"]),
            size=int(database.get("poolSize") or DB_POOL_SIZE),
        )
    return _db_pool


async def close_pool() -> None:
    global _db_pool
    if _db_pool:
        await _db_pool.close()
        _db_pool = None


async def db_update(pool: ConnectionPool, table: str, field: str, value, row_id) -> bool:
    async with pool.acquire(f"db_update: {field} | Table: {table}") as db:
        try:
            cursor = await db.execute(f"UPDATE {table} SET {field} = ? WHERE id = ?", (value, row_id))
            await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"Error updating {table} table, id: {row_id} {field}: {value!r}: {e}")
            return False
    return cursor.rowcount > 0


async def db_select(pool: ConnectionPool, query: str, field: str, params: tuple = ()) -> str:
    async with pool.acquire(f"db_select: {query}") as db:
        db.row_factory = aiosqlite.Row
        try:
            cursor = await db.execute(query, params)
            row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error(f"Error getting {field} from database: {e}")
            return ""
        finally:
            db.row_factory = None
    if row is None or row[field] is None:
        return ""
    return str(row[field])
