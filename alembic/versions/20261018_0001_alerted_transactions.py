"""Alert ledger table.

Revision ID: 001_alerted_transactions
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_alerted_transactions"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "alerted_transactions",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("pool_address", sa.String(42), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("direction", sa.String(6), nullable=True),
        sa.Column("notional_units", sa.Numeric(78, 0), nullable=True),
        sa.Column("alerted_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index("idx_alerted_transactions_alerted_at", "alerted_transactions", ["alerted_at"])
    op.create_index("idx_alerted_transactions_pool", "alerted_transactions", ["pool_address"])


def downgrade() -> None:
    op.drop_index("idx_alerted_transactions_pool", table_name="alerted_transactions")
    op.drop_index("idx_alerted_transactions_alerted_at", table_name="alerted_transactions")
    op.drop_table("alerted_transactions")
