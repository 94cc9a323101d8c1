"""initial cap table schema

Revision ID: 3c1f9a2b7d10
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1f9a2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Decimal amounts are stored as canonical text (see captable_sync.db.types.DecimalText).
AMOUNT = sa.String(78)


def upgrade() -> None:
    """Create issuer, reference entity, transaction and dead-letter tables."""
    op.create_table(
        "issuer",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("legal_name", sa.Text(), nullable=False),
        sa.Column("chain_id", sa.BigInteger(), nullable=True),
        sa.Column("deployed_to", sa.String(42), nullable=True),
        sa.Column("tx_hash", sa.String(66), nullable=True),
        sa.Column("initial_shares_authorized", AMOUNT, nullable=False),
        sa.Column("shares_authorized", AMOUNT, nullable=False),
        sa.Column("last_processed_block", sa.BigInteger(), nullable=True),
        sa.Column("deployment_block", sa.BigInteger(), nullable=True),
        sa.Column("is_onchain_synced", sa.Boolean(), nullable=False),
        sa.Column("sync_failures", sa.Integer(), nullable=False),
        sa.Column("quarantined", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "stock_class",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("issuer_id", sa.String(36), sa.ForeignKey("issuer.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("class_type", sa.String(16), nullable=False),
        sa.Column("votes_per_share", AMOUNT, nullable=False),
        sa.Column("price_per_share", AMOUNT, nullable=True),
        sa.Column("liquidation_preference_multiple", AMOUNT, nullable=False),
        sa.Column("initial_shares_authorized", AMOUNT, nullable=False),
        sa.Column("shares_authorized", AMOUNT, nullable=False),
        sa.Column("is_onchain_synced", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_stock_class_issuer_id", "stock_class", ["issuer_id"])

    op.create_table(
        "stock_plan",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("issuer_id", sa.String(36), sa.ForeignKey("issuer.id"), nullable=False),
        sa.Column("plan_name", sa.Text(), nullable=False),
        sa.Column("stock_class_id", sa.String(36), nullable=True),
        sa.Column("initial_shares_reserved", AMOUNT, nullable=False),
        sa.Column("shares_reserved", AMOUNT, nullable=False),
        sa.Column("is_onchain_synced", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_stock_plan_issuer_id", "stock_plan", ["issuer_id"])

    op.create_table(
        "stakeholder",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("issuer_id", sa.String(36), sa.ForeignKey("issuer.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("current_relationship", sa.String(32), nullable=True),
        sa.Column("is_onchain_synced", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_stakeholder_issuer_id", "stakeholder", ["issuer_id"])

    op.create_table(
        "ledger_transaction",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(64), nullable=False),
        sa.Column("issuer_id", sa.String(36), sa.ForeignKey("issuer.id"), nullable=False),
        sa.Column("security_id", sa.String(36), nullable=True),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("comments", sa.JSON(), nullable=True),
        sa.Column("block_number", sa.BigInteger(), nullable=True),
        sa.Column("tx_index", sa.Integer(), nullable=True),
        sa.Column("log_index", sa.Integer(), nullable=True),
        sa.Column("is_onchain_synced", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stakeholder_id", sa.String(36), nullable=True),
        sa.Column("stock_class_id", sa.String(36), nullable=True),
        sa.Column("stock_plan_id", sa.String(36), nullable=True),
        sa.Column("quantity", AMOUNT, nullable=True),
        sa.Column("share_price", AMOUNT, nullable=True),
        sa.Column("share_price_currency", sa.String(3), nullable=True),
        sa.Column("issuance_type", sa.String(32), nullable=True),
        sa.Column("compensation_type", sa.String(32), nullable=True),
        sa.Column("new_shares_authorized", AMOUNT, nullable=True),
        sa.Column("shares_reserved", AMOUNT, nullable=True),
        sa.Column("board_approval_date", sa.String(32), nullable=True),
        sa.Column("stockholder_approval_date", sa.String(32), nullable=True),
        sa.Column("balance_security_id", sa.String(36), nullable=True),
        sa.Column("resulting_security_ids", sa.JSON(), nullable=True),
        sa.Column("reason_text", sa.Text(), nullable=True),
        sa.Column("consideration_text", sa.Text(), nullable=True),
        sa.Column("exercise_triggers", sa.JSON(), nullable=True),
        sa.Column("investment_amount", AMOUNT, nullable=True),
        sa.Column("convertible_type", sa.String(32), nullable=True),
    )
    op.create_index("ix_ledger_transaction_kind", "ledger_transaction", ["kind"])
    op.create_index("ix_ledger_transaction_issuer_id", "ledger_transaction", ["issuer_id"])
    op.create_index("ix_ledger_transaction_security_id", "ledger_transaction", ["security_id"])

    op.create_table(
        "sync_dead_letter",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("issuer_id", sa.String(36), sa.ForeignKey("issuer.id"), nullable=False),
        sa.Column("start_block", sa.BigInteger(), nullable=True),
        sa.Column("end_block", sa.BigInteger(), nullable=True),
        sa.Column("error_type", sa.String(64), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_sync_dead_letter_issuer_id", "sync_dead_letter", ["issuer_id"])


def downgrade() -> None:
    """Drop every cap table table."""
    op.drop_index("ix_sync_dead_letter_issuer_id", table_name="sync_dead_letter")
    op.drop_table("sync_dead_letter")
    op.drop_index("ix_ledger_transaction_security_id", table_name="ledger_transaction")
    op.drop_index("ix_ledger_transaction_issuer_id", table_name="ledger_transaction")
    op.drop_index("ix_ledger_transaction_kind", table_name="ledger_transaction")
    op.drop_table("ledger_transaction")
    op.drop_index("ix_stakeholder_issuer_id", table_name="stakeholder")
    op.drop_table("stakeholder")
    op.drop_index("ix_stock_plan_issuer_id", table_name="stock_plan")
    op.drop_table("stock_plan")
    op.drop_index("ix_stock_class_issuer_id", table_name="stock_class")
    op.drop_table("stock_class")
    op.drop_table("issuer")
