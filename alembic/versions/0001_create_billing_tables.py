"""create billing tables

Revision ID: 0001_create_billing_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_create_billing_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("username", sa.String(length=128), nullable=False, unique=True),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False, server_default="resident"),
        sa.Column("telegram_chat_id", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_role", "user", ["role"])

    op.create_table(
        "billingsetting",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "electricityreading",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("month", sa.String(length=16), nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("start_unit", sa.Integer, nullable=False, server_default="0"),
        sa.Column("end_unit", sa.Integer, nullable=True),
        sa.Column("recorded_by", sa.Integer, sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("month", "year", name="uq_electricity_reading_month_year"),
    )

    op.create_table(
        "bill",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("reference", sa.String(length=32), nullable=False, unique=True),
        sa.Column("for_month", sa.String(length=100), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="draft"),
        sa.Column("electricity_units", sa.Integer, nullable=False, server_default="0"),
        sa.Column("electricity_start_unit", sa.Integer, nullable=True),
        sa.Column("electricity_end_unit", sa.Integer, nullable=True),
        sa.Column("electricity_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("electricity_bill", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("line_items", sa.JSON(), nullable=True),
        sa.Column("total_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("returned_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("final_total", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Integer, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("updated_by", sa.Integer, sa.ForeignKey("user.id"), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_bill_status", "bill", ["status"])
    op.create_index("ix_bill_deleted_at", "bill", ["deleted_at"])

    op.create_table(
        "billshare",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "bill_id", sa.Integer, sa.ForeignKey("bill.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("user.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("last_paid_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("bill_id", "user_id", name="uq_billshare_bill_user"),
    )
    op.create_index("ix_billshare_bill_id", "billshare", ["bill_id"])
    op.create_index("ix_billshare_user_id", "billshare", ["user_id"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "bill_share_id",
            sa.Integer,
            sa.ForeignKey("billshare.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("recorded_by", sa.Integer, sa.ForeignKey("user.id"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_on", sa.Date(), nullable=False),
        sa.Column("method", sa.String(length=100), nullable=False, server_default="cash"),
        sa.Column("reference", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_payment_bill_share_id", "payment", ["bill_share_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_bill_share_id", table_name="payment")
    op.drop_table("payment")
    op.drop_index("ix_billshare_user_id", table_name="billshare")
    op.drop_index("ix_billshare_bill_id", table_name="billshare")
    op.drop_table("billshare")
    op.drop_index("ix_bill_deleted_at", table_name="bill")
    op.drop_index("ix_bill_status", table_name="bill")
    op.drop_table("bill")
    op.drop_table("electricityreading")
    op.drop_table("billingsetting")
    op.drop_index("ix_user_role", table_name="user")
    op.drop_table("user")
