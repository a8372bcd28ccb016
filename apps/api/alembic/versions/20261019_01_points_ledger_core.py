"""Points ledger core schema.

Revision ID: 20261019_01
Revises: 
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


account_role = sa.Enum("admin", "manager", "staff", "customer", "fleet_owner", name="account_role")
account_status = sa.Enum("active", "inactive", "blocked", name="account_status")
ledger_entry_type = sa.Enum("credit", "debit", "expiry", "adjustment", "refund", name="points_ledger_entry_type")
reward_type = sa.Enum("discount", "free_item", "cashback", "voucher", name="reward_type")
reward_availability = sa.Enum("unlimited", "limited", name="reward_availability")
reward_status = sa.Enum("active", "inactive", "expired", name="reward_status")
redemption_status = sa.Enum(
    "pending", "approved", "rejected", "used", "expired", "cancelled", name="redemption_status"
)
campaign_type = sa.Enum("multiplier", "bonus_points", "bonus_percentage", name="campaign_type")
campaign_status = sa.Enum("draft", "active", "paused", "expired", "cancelled", name="campaign_status")
transaction_category = sa.Enum("Fuel", "Lubricant", "Store", "Service", name="transaction_category")
payment_mode = sa.Enum("Cash", "Card", "UPI", "Wallet", "Other", name="payment_mode")
transaction_status = sa.Enum("completed", "pending", "cancelled", "refunded", name="transaction_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("role", account_role, nullable=False, server_default="customer"),
        sa.Column("status", account_status, nullable=False, server_default="active"),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("mobile", sa.String(), nullable=True),
        sa.Column("loyalty_id", sa.String(), nullable=True),
        sa.Column("total_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("redeemed_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expired_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("available_points >= 0", name="ck_accounts_available_non_negative"),
    )
    op.create_index("ix_accounts_mobile", "accounts", ["mobile"], unique=True)
    op.create_index("ix_accounts_loyalty_id", "accounts", ["loyalty_id"], unique=True)

    op.create_table(
        "system_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fuel_points_per_liter", sa.Numeric(10, 3), nullable=False, server_default="1"),
        sa.Column("lubricant_points_per_100", sa.Numeric(10, 3), nullable=False, server_default="5"),
        sa.Column("store_points_per_100", sa.Numeric(10, 3), nullable=False, server_default="5"),
        sa.Column("service_points_per_100", sa.Numeric(10, 3), nullable=False, server_default="5"),
        sa.Column("expiry_duration_months", sa.Integer(), nullable=False, server_default="12"),
        sa.Column("expiry_notification_days", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )

    op.create_table(
        "rewards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("reward_type", reward_type, nullable=False, server_default="discount"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("availability", reward_availability, nullable=False, server_default="unlimited"),
        sa.Column("total_quantity", sa.Integer(), nullable=True),
        sa.Column("redeemed_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", reward_status, nullable=False, server_default="active"),
        *_timestamps(),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("campaign_type", campaign_type, nullable=False),
        sa.Column("multiplier", sa.Numeric(8, 2), nullable=True),
        sa.Column("bonus_points", sa.Integer(), nullable=True),
        sa.Column("bonus_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", campaign_status, nullable=False, server_default="draft"),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("categories", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("frequency_limit", sa.Integer(), nullable=True),
        sa.Column("pump_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_campaigns_status", "campaigns", ["status"])
    op.create_index("ix_campaigns_start_date", "campaigns", ["start_date"])
    op.create_index("ix_campaigns_end_date", "campaigns", ["end_date"])

    op.create_table(
        "pump_transactions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("pump_id", sa.String(), nullable=False),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("operator_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("liters", sa.Numeric(10, 3), nullable=True),
        sa.Column("category", transaction_category, nullable=False),
        sa.Column("bill_number", sa.String(), nullable=False),
        sa.Column("payment_mode", payment_mode, nullable=False),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id"), nullable=True),
        sa.Column("status", transaction_status, nullable=False, server_default="completed"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("pump_id", "bill_number", name="uq_pump_transactions_pump_bill"),
    )
    op.create_index("ix_pump_transactions_pump_id", "pump_transactions", ["pump_id"])
    op.create_index("ix_pump_transactions_account_id", "pump_transactions", ["account_id"])
    op.create_index("ix_pump_transactions_campaign_id", "pump_transactions", ["campaign_id"])

    op.create_table(
        "redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reward_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("rewards.id"), nullable=True),
        sa.Column("points_used", sa.Integer(), nullable=False),
        sa.Column("points_debited", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redemption_code", sa.String(), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="pending"),
        sa.Column("requested_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pump_id", sa.String(), nullable=True),
        sa.Column("used_at_pump", sa.String(), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rejected_reason", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_redemptions_account_id", "redemptions", ["account_id"])
    op.create_index("ix_redemptions_redemption_code", "redemptions", ["redemption_code"], unique=True)

    op.create_table(
        "points_ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_type", ledger_entry_type, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consumed_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lot_allocations", sa.JSON(), nullable=True),
        sa.Column("transaction_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("redemption_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("points <> 0", name="ck_points_ledger_points_non_zero"),
        sa.CheckConstraint("consumed_points >= 0", name="ck_points_ledger_consumed_non_negative"),
    )
    op.create_index("ix_points_ledger_entries_account_id", "points_ledger_entries", ["account_id"])
    op.create_index("ix_points_ledger_entries_transaction_id", "points_ledger_entries", ["transaction_id"])
    op.create_index("ix_points_ledger_entries_redemption_id", "points_ledger_entries", ["redemption_id"])
    op.create_index("ix_points_ledger_account_created", "points_ledger_entries", ["account_id", "created_at"])
    op.create_index(
        "ix_points_ledger_account_expiry",
        "points_ledger_entries",
        ["account_id", "entry_type", "expiry_date"],
    )


def downgrade() -> None:
    op.drop_table("points_ledger_entries")
    op.drop_table("redemptions")
    op.drop_table("pump_transactions")
    op.drop_table("campaigns")
    op.drop_table("rewards")
    op.drop_table("system_config")
    op.drop_table("accounts")

    bind = op.get_bind()
    for enum_type in (
        transaction_status,
        payment_mode,
        transaction_category,
        campaign_status,
        campaign_type,
        redemption_status,
        reward_status,
        reward_availability,
        reward_type,
        ledger_entry_type,
        account_status,
        account_role,
    ):
        enum_type.drop(bind, checkfirst=True)
