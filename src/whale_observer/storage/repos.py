"""Repository pattern implementations for data access.

This module provides the data access abstraction for alerted
transactions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from whale_observer.storage.models import AlertedTransactionModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass
class AlertedTransactionDTO:
    """Data transfer object for alerted transactions."""

    tx_hash: str
    pool_address: str
    block_number: int | None = None
    direction: str | None = None
    notional_units: Decimal | None = None
    alerted_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AlertedTransactionModel) -> AlertedTransactionDTO:
        return cls(
            tx_hash=model.tx_hash,
            pool_address=model.pool_address,
            block_number=model.block_number,
            direction=model.direction,
            notional_units=model.notional_units,
            alerted_at=model.alerted_at,
        )


class AlertedTransactionRepository:
    """Repository for transactions that already produced an alert."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tx_hash: str) -> AlertedTransactionDTO | None:
        result = await self.session.execute(
            select(AlertedTransactionModel).where(AlertedTransactionModel.tx_hash == tx_hash.lower())
        )
        model = result.scalar_one_or_none()
        return AlertedTransactionDTO.from_model(model) if model else None

    async def exists(self, tx_hash: str) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(AlertedTransactionModel)
            .where(AlertedTransactionModel.tx_hash == tx_hash.lower())
        )
        return bool(result.scalar_one())

    async def insert_if_absent(self, dto: AlertedTransactionDTO) -> bool:
        """Record a transaction; a repeat tx_hash is a no-op.

        Returns:
            True if a new row was written.
        """
        values = {
            "tx_hash": dto.tx_hash.lower(),
            "pool_address": dto.pool_address.lower(),
            "block_number": dto.block_number,
            "direction": dto.direction,
            "notional_units": dto.notional_units,
            "alerted_at": dto.alerted_at or datetime.now(UTC),
        }
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = pg_insert(AlertedTransactionModel).values(**values)
            stmt = stmt.on_conflict_do_nothing(index_elements=["tx_hash"])
            result = await self.session.execute(stmt)
        else:
            sqlite_stmt = sqlite_insert(AlertedTransactionModel).values(**values)
            sqlite_stmt = sqlite_stmt.on_conflict_do_nothing(index_elements=["tx_hash"])
            result = await self.session.execute(sqlite_stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def list_recent(self, *, limit: int = 1000) -> list[AlertedTransactionDTO]:
        result = await self.session.execute(
            select(AlertedTransactionModel)
            .order_by(AlertedTransactionModel.alerted_at.desc())
            .limit(limit)
        )
        return [AlertedTransactionDTO.from_model(m) for m in result.scalars().all()]

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Prune rows alerted before `cutoff`. Returns the number deleted."""
        result = await self.session.execute(
            delete(AlertedTransactionModel).where(AlertedTransactionModel.alerted_at < cutoff)
        )
        await self.session.flush()
        deleted = result.rowcount or 0
        if deleted:
            logger.info("Pruned %d alerted transactions older than %s", deleted, cutoff.isoformat())
        return deleted
