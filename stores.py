# stores.py
"""
Relay Stores
============

Adapters over the two external stores the relay talks to.

VOLATILE STORE (short-term memory):
- `RedisStore`: redis.asyncio client, string values with per-key expiry
- `InMemoryStore`: process-local dict with the same interface, used when
  CACHE_BACKEND=memory (local development) and in tests

DURABLE STORE (long-term memory):
- `PostgresUserStore`: one `users` table keyed by phone, psycopg2 connection
  pool, every call pushed to a worker thread so the event loop never blocks

Backend exceptions are translated into `CacheError` / `DurableStoreError`
at this boundary; nothing above this module imports redis or psycopg2.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Tuple

import psycopg2
import psycopg2.extras
import psycopg2.pool
import redis.asyncio as redis_async
from redis.exceptions import RedisError, WatchError

from errors import CacheError, DurableStoreError
from models import UserRecord

logger = logging.getLogger(__name__)

# mutate(current_raw_value_or_None) -> new raw value
Mutator = Callable[[Optional[str]], str]


# ---------- Volatile Store: Redis ----------
class RedisStore:
    """String key/value store with expiry, backed by Redis."""

    def __init__(self, client: "redis_async.Redis"):
        self.r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        client = redis_async.from_url(url, decode_responses=True)
        logger.info("Volatile store: Redis client created for %s", url)
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.r.get(key)
        except RedisError as e:
            raise CacheError(f"Redis GET {key} failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.r.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheError(f"Redis SET {key} failed: {e}") from e

    async def atomic_update(self, key: str, mutate: Mutator, ttl_seconds: int) -> str:
        """
        Read-modify-write `key` inside a WATCH/MULTI transaction.

        If another client writes the key between our read and our EXEC the
        transaction is discarded and the mutation re-applied to the new value.
        """
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        current = await pipe.get(key)
                        new_value = mutate(current)
                        pipe.multi()
                        pipe.set(key, new_value, ex=ttl_seconds)
                        await pipe.execute()
                        return new_value
                    except WatchError:
                        logger.debug("Concurrent write on %s, re-applying update", key)
                        continue
        except RedisError as e:
            raise CacheError(f"Redis transaction on {key} failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self.r.ping())
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self.r.aclose()


# ---------- Volatile Store: in-process fallback ----------
class InMemoryStore:
    """
    Process-local key/value store with expiry.

    Same interface as `RedisStore`. `clock` returns seconds and can be
    replaced to simulate the passage of time.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, max_entries: int = 5000):
        self._clock = clock
        self._max_entries = max_entries
        self._data: Dict[str, Tuple[str, float]] = {}

    def _read(self, key: str) -> Optional[str]:
        row = self._data.get(key)
        if row is None:
            return None
        value, expires_at = row
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    def _write(self, key: str, value: str, ttl_seconds: int) -> None:
        if key not in self._data and len(self._data) >= self._max_entries:
            now = self._clock()
            expired = [k for k, (_, exp) in self._data.items() if exp <= now]
            for k in expired:
                self._data.pop(k, None)
            if len(self._data) >= self._max_entries:
                # oldest insertion goes first
                self._data.pop(next(iter(self._data)), None)
        self._data[key] = (value, self._clock() + max(1, int(ttl_seconds)))

    async def get(self, key: str) -> Optional[str]:
        return self._read(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._write(key, value, ttl_seconds)

    async def atomic_update(self, key: str, mutate: Mutator, ttl_seconds: int) -> str:
        # no await between read and write, so no other task can interleave
        new_value = mutate(self._read(key))
        self._write(key, new_value, ttl_seconds)
        return new_value

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()


# ---------- Durable Store: PostgreSQL ----------
class PostgresUserStore:
    """Authoritative user records in PostgreSQL, one row per phone."""

    def __init__(self, pool: psycopg2.pool.AbstractConnectionPool, maxconn: int = 10):
        self.pool = pool
        # the pool raises PoolError rather than blocking when exhausted:
        # at most `maxconn` worker threads may hold a connection at once
        self._slots = asyncio.Semaphore(maxconn)

    @classmethod
    def connect(cls, config: Dict[str, Any], maxconn: int = 10) -> "PostgresUserStore":
        try:
            pool = psycopg2.pool.ThreadedConnectionPool(1, maxconn, **config)
        except psycopg2.Error as e:
            raise DurableStoreError(f"PostgreSQL connect failed: {e}") from e
        logger.info("Durable store: connected to PostgreSQL '%s'", config.get("database"))
        return cls(pool, maxconn=maxconn)

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        async with self._slots:
            return await asyncio.to_thread(fn, *args)

    # ---------- Schema ----------
    def _create_tables_if_not_exists(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    phone VARCHAR(64) PRIMARY KEY,
                    name TEXT,
                    profile JSONB NOT NULL DEFAULT '{}'::jsonb,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    last_updated TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );
            """)
            # tables created before names became unbounded
            cur.execute("ALTER TABLE users ALTER COLUMN name TYPE TEXT;")
        logger.info("PostgreSQL users table ensured.")

    async def ensure_schema(self) -> None:
        try:
            await self._run(self._create_tables_if_not_exists)
        except psycopg2.Error as e:
            raise DurableStoreError(f"Create tables failed: {e}") from e

    # ---------- Reads ----------
    def _fetch_user(self, phone: str) -> Optional[UserRecord]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    "SELECT phone, name, profile FROM users WHERE phone = %s LIMIT 1;",
                    (phone,),
                )
                row = cur.fetchone()
        return self._row_to_record(row) if row else None

    async def get_user(self, phone: str) -> Optional[UserRecord]:
        try:
            return await self._run(self._fetch_user, phone)
        except psycopg2.Error as e:
            raise DurableStoreError(f"User lookup failed for {phone}: {e}") from e

    # ---------- Writes ----------
    def _upsert_user(self, record: UserRecord) -> UserRecord:
        # COALESCE keeps the stored name when none is given; JSONB || merges
        # profile fields with the incoming values winning
        with self._connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(
                    """
                    INSERT INTO users (phone, name, profile, last_updated)
                    VALUES (%s, %s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (phone) DO UPDATE SET
                        name = COALESCE(EXCLUDED.name, users.name),
                        profile = users.profile || EXCLUDED.profile,
                        last_updated = CURRENT_TIMESTAMP
                    RETURNING phone, name, profile;
                    """,
                    (record.phone, record.name, psycopg2.extras.Json(record.extra)),
                )
                row = cur.fetchone()
        return self._row_to_record(row)

    async def upsert_user(self, record: UserRecord) -> UserRecord:
        try:
            return await self._run(self._upsert_user, record)
        except psycopg2.Error as e:
            raise DurableStoreError(f"User upsert failed for {record.phone}: {e}") from e

    # ---------- Lifecycle ----------
    def _select_one(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("SELECT 1;")
            cur.fetchone()

    async def ping(self) -> bool:
        try:
            await self._run(self._select_one)
            return True
        except psycopg2.Error as e:
            logger.warning("PostgreSQL ping failed: %s", e)
            return False

    async def close(self) -> None:
        self.pool.closeall()

    @staticmethod
    def _row_to_record(row: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            phone=row["phone"],
            name=row.get("name"),
            extra=dict(row.get("profile") or {}),
        )
