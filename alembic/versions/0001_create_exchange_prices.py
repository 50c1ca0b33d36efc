"""create exchange_prices

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "exchange_prices",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("exchange", sa.String(20), nullable=False),
        sa.Column("price", sa.Numeric(20, 8), nullable=False),
        sa.Column("observed_at_ms", sa.BigInteger(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("symbol", "exchange", "day", name="uq_exchange_prices_symbol_exchange_day"),
    )
    op.create_index("idx_exchange_prices_symbol_exchange", "exchange_prices", ["symbol", "exchange"])
    op.create_index("ix_exchange_prices_observed_at_ms", "exchange_prices", ["observed_at_ms"])
    op.create_index("ix_exchange_prices_deleted_at", "exchange_prices", ["deleted_at"])


def downgrade() -> None:
    op.drop_index("ix_exchange_prices_deleted_at", table_name="exchange_prices")
    op.drop_index("ix_exchange_prices_observed_at_ms", table_name="exchange_prices")
    op.drop_index("idx_exchange_prices_symbol_exchange", table_name="exchange_prices")
    op.drop_table("exchange_prices")
