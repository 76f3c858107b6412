"""Initial schema: users, threads, messages, duels, usage ledgers, subscriptions, payments

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Adds:
- threads with the lock_state / locked_provider state machine
- duels holding both candidate answers of a thread's first turn
- usage_ledgers unique per (user_id, period_key)
- payments unique per order_id
"""
from alembic import op
import sqlalchemy as sa

revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── threads ──────────────────────────────────────────────
    op.create_table(
        "threads",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("lock_state", sa.String(20), nullable=False, server_default="unlocked"),
        sa.Column("locked_provider", sa.String(1), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_threads_user_id", "threads", ["user_id"])
    op.create_index("ix_threads_user_updated", "threads", ["user_id", "updated_at"])

    # ── messages ─────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(36), nullable=False, unique=True),
        sa.Column("thread_id", sa.String(36), sa.ForeignKey("threads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_messages_thread_id", "messages", ["thread_id"])
    op.create_index("ix_messages_thread_role", "messages", ["thread_id", "role"])

    # ── duels ────────────────────────────────────────────────
    op.create_table(
        "duels",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("thread_id", sa.String(36), sa.ForeignKey("threads.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_message_id", sa.String(36), sa.ForeignKey("messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("option_a", sa.Text, nullable=False),
        sa.Column("option_b", sa.Text, nullable=False),
        sa.Column("ui_order_seed", sa.Integer, nullable=False),
        sa.Column("chosen", sa.String(1), nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("chosen_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_duels_thread_id", "duels", ["thread_id"])

    # ── usage_ledgers ────────────────────────────────────────
    op.create_table(
        "usage_ledgers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period_key", sa.String(7), nullable=False),
        sa.Column("messages_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("verified_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("verified_used_today", sa.Integer, nullable=False, server_default="0"),
        sa.Column("verified_day_key", sa.String(10), nullable=False),
        sa.Column("updated_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint("user_id", "period_key", name="uq_usage_ledger_user_period"),
    )

    # ── subscriptions ────────────────────────────────────────
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime, nullable=False),
        sa.Column("current_period_end", sa.DateTime, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
    )
    op.create_index(
        "ix_subscriptions_user_status_end", "subscriptions",
        ["user_id", "status", "current_period_end"],
    )

    # ── payments ─────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan", sa.String(10), nullable=False),
        sa.Column("amount", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("order_id", sa.String(100), nullable=False, unique=True),
        sa.Column("payment_id", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="created"),
        sa.Column("created_at", sa.DateTime, nullable=True),
        sa.Column("updated_at", sa.DateTime, nullable=True),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_subscriptions_user_status_end", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("usage_ledgers")
    op.drop_index("ix_duels_thread_id", table_name="duels")
    op.drop_table("duels")
    op.drop_index("ix_messages_thread_role", table_name="messages")
    op.drop_index("ix_messages_thread_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_threads_user_updated", table_name="threads")
    op.drop_index("ix_threads_user_id", table_name="threads")
    op.drop_table("threads")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
