"""Initial schema: accounts, risk overrides, trade ledger and performance history.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "trading_accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "risk_limits",
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("max_loss_per_trade_usd", sa.Float(), nullable=True),
        sa.Column("max_risk_percent_per_trade", sa.Float(), nullable=True),
        sa.Column("max_total_portfolio_risk_percent", sa.Float(), nullable=True),
        sa.Column("max_portfolio_drawdown_percent", sa.Float(), nullable=True),
        sa.Column("max_strategy_drawdown_percent", sa.Float(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["trading_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("account_id"),
    )

    op.create_table(
        "strategy_allocations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("strategy_id", sa.String(length=64), nullable=False),
        sa.Column("allocation_pct", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["trading_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "strategy_id", name="uq_strategy_allocation_account_strategy"),
    )

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("trading_account_id", sa.Integer(), nullable=False),
        sa.Column("strategy_name", sa.String(length=64), nullable=True),
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("side", sa.String(length=5), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("entry_price", sa.Float(), nullable=True),
        sa.Column("stop_loss", sa.Float(), nullable=True),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["trading_account_id"], ["trading_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trades_account_status", "trades", ["trading_account_id", "status"])
    op.create_index("ix_trades_account_symbol", "trades", ["trading_account_id", "symbol"])

    op.create_table(
        "portfolio_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("trading_account_id", sa.Integer(), nullable=False),
        sa.Column("total_equity", sa.Float(), nullable=False),
        sa.Column("unrealized_pnl", sa.Float(), nullable=False, server_default="0"),
        sa.Column("realized_pnl_today", sa.Float(), nullable=False, server_default="0"),
        sa.Column("peak_equity", sa.Float(), nullable=False),
        sa.Column("drawdown_pct", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("strategy_allocations", sa.JSON(), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["trading_account_id"], ["trading_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_portfolio_snapshots_account_time", "portfolio_snapshots", ["trading_account_id", "snapshot_at"]
    )

    op.create_table(
        "strategy_performance",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("trading_account_id", sa.Integer(), nullable=False),
        sa.Column("strategy_id", sa.String(length=64), nullable=False),
        sa.Column("total_pnl", sa.Float(), nullable=False, server_default="0"),
        sa.Column("win_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("loss_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("peak_equity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("current_equity", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_drawdown", sa.Float(), nullable=False, server_default="0"),
        sa.Column("sharpe_ratio", sa.Float(), nullable=True),
        sa.Column("current_allocation_pct", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["trading_account_id"], ["trading_accounts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_strategy_performance_account_strategy",
        "strategy_performance",
        ["trading_account_id", "strategy_id", "id"],
    )


def downgrade() -> None:
    op.drop_index("ix_strategy_performance_account_strategy", table_name="strategy_performance")
    op.drop_table("strategy_performance")
    op.drop_index("ix_portfolio_snapshots_account_time", table_name="portfolio_snapshots")
    op.drop_table("portfolio_snapshots")
    op.drop_index("ix_trades_account_symbol", table_name="trades")
    op.drop_index("ix_trades_account_status", table_name="trades")
    op.drop_table("trades")
    op.drop_table("strategy_allocations")
    op.drop_table("risk_limits")
    op.drop_table("trading_accounts")
