"""Alert ledger: the durable set of transactions already alerted.

The ledger lets a restarted process skip transactions that produced a
delivered alert in an earlier run. Every backend keeps an in-process
cache of known hashes so `contains()` never waits on I/O after `load()`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from whale_observer.storage.database import DatabaseManager
from whale_observer.storage.repos import AlertedTransactionDTO, AlertedTransactionRepository

if TYPE_CHECKING:
    from whale_observer.detector.models import WhaleEvent

logger = logging.getLogger(__name__)

DEFAULT_REDIS_KEY = "whale_observer:alerted_transactions"
DEFAULT_LOAD_LIMIT = 10_000


class AlertLedgerError(Exception):
    """Raised when the ledger backend cannot be read or written."""


class AlertLedger(Protocol):
    """Set of transaction hashes that already produced an alert."""

    async def load(self) -> set[str]: ...

    async def contains(self, tx_hash: str) -> bool: ...

    async def record(self, tx_hash: str, event: WhaleEvent | None = None) -> None: ...

    async def close(self) -> None: ...


class InMemoryAlertLedger:
    """Process-lifetime ledger used when no backend is configured."""

    def __init__(self) -> None:
        self._known: set[str] = set()

    def __len__(self) -> int:
        return len(self._known)

    async def load(self) -> set[str]:
        return set(self._known)

    async def contains(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._known

    async def record(self, tx_hash: str, event: WhaleEvent | None = None) -> None:
        self._known.add(tx_hash.lower())

    async def close(self) -> None:
        return None


class DatabaseAlertLedger(InMemoryAlertLedger):
    """Ledger persisted in the `alerted_transactions` table.

    Example:
        ```python
        ledger = DatabaseAlertLedger(DatabaseManager("sqlite+aiosqlite:///alerts.db"))
        await ledger.load()
        if not await ledger.contains(tx_hash):
            ...
        await ledger.record(tx_hash, event)
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        pool_address: str = "",
        create_schema: bool = True,
        load_limit: int = DEFAULT_LOAD_LIMIT,
    ) -> None:
        """Initialize the ledger.

        Args:
            db: Database manager owning the engine.
            pool_address: Pool recorded alongside each transaction.
            create_schema: Create the table on load if it does not exist.
            load_limit: Most recent rows loaded into the cache on startup.
        """
        super().__init__()
        self._db = db
        self._pool_address = pool_address
        self._create_schema = create_schema
        self._load_limit = load_limit

    async def load(self) -> set[str]:
        try:
            if self._create_schema:
                await self._db.init_schema_async()
            async with self._db.get_async_session() as session:
                rows = await AlertedTransactionRepository(session).list_recent(limit=self._load_limit)
        except (SQLAlchemyError, OSError) as e:
            raise AlertLedgerError(f"Failed to load alert ledger: {e}") from e

        self._known.update(row.tx_hash.lower() for row in rows)
        logger.info("Loaded %d alerted transactions from database", len(rows))
        return set(self._known)

    async def record(self, tx_hash: str, event: WhaleEvent | None = None) -> None:
        await super().record(tx_hash, event)
        dto = AlertedTransactionDTO(
            tx_hash=tx_hash,
            pool_address=self._pool_address,
            alerted_at=datetime.now(UTC),
        )
        if event is not None:
            dto.block_number = event.trade.block_number
            dto.direction = event.direction
            dto.notional_units = Decimal(event.notional)
        try:
            async with self._db.get_async_session() as session:
                await AlertedTransactionRepository(session).insert_if_absent(dto)
        except (SQLAlchemyError, OSError) as e:
            raise AlertLedgerError(f"Failed to record tx {tx_hash}: {e}") from e

    async def close(self) -> None:
        await self._db.dispose_async()


class RedisAlertLedger(InMemoryAlertLedger):
    """Ledger persisted as a Redis set."""

    def __init__(self, redis: Redis, *, key: str = DEFAULT_REDIS_KEY, owns_client: bool = False) -> None:
        super().__init__()
        self._redis = redis
        self._key = key
        self._owns_client = owns_client

    async def load(self) -> set[str]:
        try:
            members = await self._redis.smembers(self._key)
        except RedisError as e:
            raise AlertLedgerError(f"Failed to load alert ledger: {e}") from e

        for member in members:
            value = member.decode() if isinstance(member, bytes) else str(member)
            self._known.add(value.lower())
        logger.info("Loaded %d alerted transactions from redis", len(members))
        return set(self._known)

    async def record(self, tx_hash: str, event: WhaleEvent | None = None) -> None:
        await super().record(tx_hash, event)
        try:
            await self._redis.sadd(self._key, tx_hash.lower())
        except RedisError as e:
            raise AlertLedgerError(f"Failed to record tx {tx_hash}: {e}") from e

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()


def create_alert_ledger(url: str | None, *, pool_address: str = "") -> AlertLedger:
    """Build a ledger for a backend URL.

    Args:
        url: `redis://`, `rediss://`, `postgresql(+asyncpg)://` or
            `sqlite(+aiosqlite)://` URL. None selects the in-memory ledger.
        pool_address: Pool recorded with each database row.

    Raises:
        AlertLedgerError: If the URL scheme is not supported.
    """
    if not url:
        return InMemoryAlertLedger()
    if url.startswith(("redis://", "rediss://")):
        return RedisAlertLedger(Redis.from_url(url), owns_client=True)
    if url.startswith(("postgresql", "sqlite")):
        return DatabaseAlertLedger(DatabaseManager(url), pool_address=pool_address)
    raise AlertLedgerError(f"Unsupported alert ledger URL scheme: {url.split(':', 1)[0]}")
