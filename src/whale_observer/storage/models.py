"""SQLAlchemy models for persistent storage.

This module defines the schema for the alert ledger: the set of
transactions that have already produced a delivered alert.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, Index, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AlertedTransactionModel(Base):
    """A transaction for which a whale alert was delivered."""

    __tablename__ = "alerted_transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True, nullable=False)
    pool_address: Mapped[str] = mapped_column(String(42), nullable=False)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    direction: Mapped[str | None] = mapped_column(String(6), nullable=True)

    # Reference-leg magnitude in base units (uint256 range).
    notional_units: Mapped[Decimal | None] = mapped_column(Numeric(78, 0), nullable=True)

    alerted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_alerted_transactions_alerted_at", "alerted_at"),
        Index("idx_alerted_transactions_pool", "pool_address"),
    )
