"""add payment breakdown, balances, refunds and therapist payments

Revision ID: b7d2f3a4c6e8
Revises: a4c1e2d3f5b6
Create Date: 2026-10-05 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "b7d2f3a4c6e8"
down_revision = "a4c1e2d3f5b6"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("appointments", schema=None) as batch_op:
        batch_op.add_column(sa.Column("payment_method", sa.String(length=20), nullable=True))
        batch_op.add_column(sa.Column("sessions_paid_with_balance", sa.Numeric(8, 2), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("sessions_paid_with_stripe", sa.Numeric(8, 2), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("refunded_units_from_balance", sa.Numeric(8, 2), nullable=False, server_default="0"))
        batch_op.add_column(sa.Column("refunded_units_from_stripe", sa.Numeric(8, 2), nullable=False, server_default="0"))

    op.create_table(
        "balances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("units", sa.Numeric(8, 2), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("balances", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_balances_user_id"), ["user_id"], unique=True)

    op.create_table(
        "balance_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("balance_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("units", sa.Numeric(8, 2), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("appointment_id", sa.Integer(), nullable=True),
        sa.Column("admin_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["admin_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"]),
        sa.ForeignKeyConstraint(["balance_id"], ["balances.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("balance_entries", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_balance_entries_balance_id"), ["balance_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_balance_entries_appointment_id"), ["appointment_id"], unique=False)

    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("appointment_id", sa.Integer(), nullable=False),
        sa.Column("requested_by", sa.Integer(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=160), nullable=False),
        sa.Column("policy", sa.String(length=10), nullable=False),
        sa.Column("from_balance", sa.Numeric(8, 2), nullable=False),
        sa.Column("from_stripe", sa.Numeric(8, 2), nullable=False),
        sa.Column("money_refund", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("stripe_refund_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"]),
        sa.ForeignKeyConstraint(["requested_by"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("refunds", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_refunds_appointment_id"), ["appointment_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_refunds_dedupe_key"), ["dedupe_key"], unique=True)

    op.create_table(
        "therapist_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("therapist_id", sa.Integer(), nullable=False),
        sa.Column("recorded_by", sa.Integer(), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("session_ids", sa.JSON(), nullable=False),
        sa.Column("appointment_ids", sa.JSON(), nullable=False),
        sa.Column("method", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["recorded_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["therapist_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("therapist_payments", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_therapist_payments_therapist_id"), ["therapist_id"], unique=False)


def downgrade():
    op.drop_table("therapist_payments")
    op.drop_table("refunds")
    op.drop_table("balance_entries")
    op.drop_table("balances")

    with op.batch_alter_table("appointments", schema=None) as batch_op:
        batch_op.drop_column("refunded_units_from_stripe")
        batch_op.drop_column("refunded_units_from_balance")
        batch_op.drop_column("sessions_paid_with_stripe")
        batch_op.drop_column("sessions_paid_with_balance")
        batch_op.drop_column("payment_method")
