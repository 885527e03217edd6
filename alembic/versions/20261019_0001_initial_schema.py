"""Initial schema for tokens, transfers, signals and alerts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tokens",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("chain", sa.String(32), nullable=False),
        sa.Column("symbol", sa.String(32), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("contract_address", sa.String(128), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chain", "contract_address", name="uq_tokens_chain_contract"),
    )
    op.create_index("idx_tokens_active", "tokens", ["active"])

    op.create_table(
        "wallets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("address", sa.String(128), nullable=False),
        sa.Column("label", sa.String(64), nullable=True),
        sa.Column("tracked", sa.Boolean(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=True),
        sa.Column("win_rate", sa.Numeric(6, 2), nullable=True),
        sa.Column("total_trades", sa.Integer(), nullable=False),
        sa.Column("score_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("address", name="uq_wallets_address"),
    )
    op.create_index("idx_wallets_tracked", "wallets", ["tracked"])
    op.create_index("idx_wallets_label", "wallets", ["label"])

    # Amounts are smallest-unit integers up to uint256.
    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tx_hash", sa.String(128), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("from_address", sa.String(128), nullable=False),
        sa.Column("to_address", sa.String(128), nullable=False),
        sa.Column("amount", sa.Numeric(78, 0), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tx_hash", "token_id", name="uq_transfers_tx_token"),
    )
    op.create_index("idx_transfers_token_time", "transfers", ["token_id", "timestamp"])
    op.create_index("idx_transfers_from", "transfers", ["from_address"])
    op.create_index("idx_transfers_to", "transfers", ["to_address"])

    op.create_table(
        "wallet_positions",
        sa.Column("wallet_id", sa.Integer(), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("balance", sa.Numeric(78, 0), nullable=False),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("wallet_id", "token_id"),
    )
    op.create_index("idx_wallet_positions_token", "wallet_positions", ["token_id"])

    op.create_table(
        "accumulation_signals",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("signal_type", sa.String(32), nullable=False),
        sa.Column("score", sa.Numeric(5, 2), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("wallets_json", sa.Text(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "token_id", "signal_type", "window_start", name="uq_signals_token_type_start"
        ),
    )
    op.create_index(
        "idx_signals_token_type_end",
        "accumulation_signals",
        ["token_id", "signal_type", "window_end"],
    )
    op.create_index("idx_signals_created_at", "accumulation_signals", ["created_at"])
    op.create_index("idx_signals_score", "accumulation_signals", ["score"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("plan", sa.String(16), nullable=False),
        sa.Column("alert_threshold", sa.Numeric(5, 2), nullable=False),
        sa.Column("telegram_enabled", sa.Boolean(), nullable=False),
        sa.Column("email_enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_plan", "users", ["plan"])

    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("signal_id", sa.String(36), nullable=False),
        sa.Column("telegram", sa.Boolean(), nullable=False),
        sa.Column("email", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "signal_id", name="uq_alerts_user_signal"),
    )
    op.create_index("idx_alerts_status_created", "alerts", ["status", "created_at"])
    op.create_index("idx_alerts_signal", "alerts", ["signal_id"])


def downgrade() -> None:
    op.drop_index("idx_alerts_signal", table_name="alerts")
    op.drop_index("idx_alerts_status_created", table_name="alerts")
    op.drop_table("alerts")

    op.drop_index("idx_users_plan", table_name="users")
    op.drop_table("users")

    op.drop_index("idx_signals_score", table_name="accumulation_signals")
    op.drop_index("idx_signals_created_at", table_name="accumulation_signals")
    op.drop_index("idx_signals_token_type_end", table_name="accumulation_signals")
    op.drop_table("accumulation_signals")

    op.drop_index("idx_wallet_positions_token", table_name="wallet_positions")
    op.drop_table("wallet_positions")

    op.drop_index("idx_transfers_to", table_name="transfers")
    op.drop_index("idx_transfers_from", table_name="transfers")
    op.drop_index("idx_transfers_token_time", table_name="transfers")
    op.drop_table("transfers")

    op.drop_index("idx_wallets_label", table_name="wallets")
    op.drop_index("idx_wallets_tracked", table_name="wallets")
    op.drop_table("wallets")

    op.drop_index("idx_tokens_active", table_name="tokens")
    op.drop_table("tokens")
