"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "time_slots",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("max_tickets", sa.Integer(), nullable=False),
        sa.Column("sold_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("date", "start_time", "end_time", name="uq_time_slot_date_start_end"),
        sa.CheckConstraint("sold_count >= 0", name="ck_time_slot_sold_nonneg"),
    )
    op.create_index("ix_time_slots_date", "time_slots", ["date"], unique=False)

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("time_slot_id", sa.String(length=36), nullable=True),
        sa.Column("date", sa.String(length=10), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("tickets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("bundle_name", sa.String(length=120), nullable=True),
        sa.Column("bundle_discount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bundle_price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bundle_tickets", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("socks_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cancellation_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancellation_fee", sa.Float(), nullable=False, server_default="0"),
        sa.Column("administration_fee", sa.Float(), nullable=False, server_default="0"),
        sa.Column("amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Float(), nullable=False, server_default="0"),
        sa.Column("coupon_code", sa.String(length=40), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("surname", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("postal_code", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("source", sa.String(length=12), nullable=False, server_default="online"),
        sa.Column("payment_method", sa.String(length=8), nullable=False, server_default="card"),
        sa.Column("payment_status", sa.String(length=12), nullable=False, server_default="pending"),
        sa.Column("stripe_session_id", sa.String(length=255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("cancel_ticket", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_status", sa.String(length=12), nullable=False, server_default="none"),
        sa.Column("refunded_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("refund_transaction_id", sa.String(length=255), nullable=True),
        sa.Column("refund_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tickets_ticket_id", "tickets", ["ticket_id"], unique=True)
    op.create_index("ix_tickets_time_slot_id", "tickets", ["time_slot_id"], unique=False)
    op.create_index("ix_tickets_date", "tickets", ["date"], unique=False)
    op.create_index("ix_tickets_email", "tickets", ["email"], unique=False)
    op.create_index("ix_tickets_stripe_session_id", "tickets", ["stripe_session_id"], unique=True)
    op.create_index("ix_tickets_stripe_payment_intent_id", "tickets", ["stripe_payment_intent_id"], unique=False)
    op.create_index("ix_tickets_cancel_ticket", "tickets", ["cancel_ticket"], unique=False)
    op.create_index("ix_tickets_created_at", "tickets", ["created_at"], unique=False)

    op.create_table(
        "pending_bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("session_id", sa.String(length=255), nullable=False),
        sa.Column("time_slot_id", sa.String(length=36), nullable=False),
        sa.Column("admissions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("booking_info", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_pending_bookings_session_id", "pending_bookings", ["session_id"], unique=True)
    op.create_index("ix_pending_bookings_time_slot_id", "pending_bookings", ["time_slot_id"], unique=False)

    op.create_table(
        "ticket_bundles",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("discount_percent", sa.Float(), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("tickets", sa.Integer(), nullable=False),
    )

    op.create_table(
        "settings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("location_name", sa.String(length=120), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("ticket_price", sa.Float(), nullable=False),
        sa.Column("socks_price", sa.Float(), nullable=False),
        sa.Column("cancellation_fee", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_settings_location_name", "settings", ["location_name"], unique=True)

    op.create_table(
        "discount_vouchers",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("discount_type", sa.String(length=12), nullable=False),
        sa.Column("discount_value", sa.Float(), nullable=False),
        sa.Column("minimum_amount", sa.Float(), nullable=False, server_default="0"),
        sa.Column("maximum_discount", sa.Float(), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=False, server_default="-1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("applicable_for", sa.String(length=12), nullable=False, server_default="all"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_discount_vouchers_code", "discount_vouchers", ["code"], unique=True)

    op.create_table(
        "cancel_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=False, server_default="No reason provided"),
        sa.Column("reviewed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_cancel_requests_ticket_id", "cancel_requests", ["ticket_id"], unique=False)

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("ticket_id", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="SENT"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_retry", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_email_logs_email", "email_logs", ["email"], unique=False)
    op.create_index("ix_email_logs_ticket_id", "email_logs", ["ticket_id"], unique=False)
    op.create_index("ix_email_logs_status", "email_logs", ["status"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor", sa.String(length=320), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)


def downgrade() -> None:
    for table in ("audit_logs", "email_logs", "cancel_requests", "discount_vouchers", "settings",
                  "ticket_bundles", "pending_bookings", "tickets", "time_slots", "users"):
        op.drop_table(table)
