"""create routing and handoff tables

Revision ID: 5b8e1d0c7a21
Revises:
Create Date: 2026-10-18
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5b8e1d0c7a21"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_tenant_id"), "users", ["tenant_id"], unique=False)

    op.create_table(
        "tenant_agent_bindings",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("agent_id", sa.String(length=255), nullable=False),
        sa.Column("agent_name", sa.String(length=255), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenant_agent_bindings_tenant_id"), "tenant_agent_bindings", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_tenant_agent_bindings_agent_id"), "tenant_agent_bindings", ["agent_id"], unique=True)

    op.create_table(
        "tenant_channel_accounts",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("channel_type", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("verify_token", sa.String(length=255), nullable=False),
        sa.Column("app_secret", sa.String(length=255), nullable=True),
        sa.Column("phone_number_id", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_webhook_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenant_channel_accounts_tenant_id"), "tenant_channel_accounts", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_tenant_channel_accounts_channel_type"), "tenant_channel_accounts", ["channel_type"], unique=False)
    op.create_index(op.f("ix_tenant_channel_accounts_verify_token"), "tenant_channel_accounts", ["verify_token"], unique=True)
    op.create_index(op.f("ix_tenant_channel_accounts_phone_number_id"), "tenant_channel_accounts", ["phone_number_id"], unique=True)

    op.create_table(
        "tenant_bot_credentials",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("allowed_origins", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenant_bot_credentials_tenant_id"), "tenant_bot_credentials", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_tenant_bot_credentials_key_hash"), "tenant_bot_credentials", ["key_hash"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=True),
        sa.Column("function_name", sa.String(length=128), nullable=True),
        sa.Column("endpoint_url", sa.Text(), nullable=False),
        sa.Column("auth_token_enc", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("timeout_ms", sa.Integer(), nullable=False),
        sa.Column("total_calls", sa.Integer(), nullable=False),
        sa.Column("success_calls", sa.Integer(), nullable=False),
        sa.Column("last_called_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "event_type", name="uq_subscriptions_tenant_event"),
        sa.UniqueConstraint("tenant_id", "function_name", name="uq_subscriptions_tenant_function"),
    )
    op.create_index(op.f("ix_subscriptions_tenant_id"), "subscriptions", ["tenant_id"], unique=False)

    op.create_table(
        "delivery_attempts",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_delivery_attempts_subscription_id"), "delivery_attempts", ["subscription_id"], unique=False)
    op.create_index(op.f("ix_delivery_attempts_tenant_id"), "delivery_attempts", ["tenant_id"], unique=False)
    op.create_index(
        "ix_delivery_attempts_sub_created",
        "delivery_attempts",
        ["subscription_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "human_agents",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("active_sessions", sa.Integer(), nullable=False),
        sa.Column("max_sessions", sa.Integer(), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_human_agents_tenant_user"),
        sa.CheckConstraint("active_sessions >= 0", name="ck_human_agents_active_sessions_nonneg"),
    )
    op.create_index(op.f("ix_human_agents_tenant_id"), "human_agents", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_human_agents_user_id"), "human_agents", ["user_id"], unique=False)

    op.create_table(
        "handoff_sessions",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("chat_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("assigned_agent_id", sa.String(length=64), nullable=True),
        sa.Column("conversation_history", sa.JSON(), nullable=False),
        sa.Column("last_user_message", sa.Text(), nullable=True),
        sa.Column("user_email", sa.String(length=255), nullable=True),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("picked_up_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_by", sa.String(length=128), nullable=True),
        sa.Column("message_seq", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_handoff_sessions_tenant_id"), "handoff_sessions", ["tenant_id"], unique=False)
    op.create_index(op.f("ix_handoff_sessions_assigned_agent_id"), "handoff_sessions", ["assigned_agent_id"], unique=False)
    op.create_index("ix_handoff_sessions_tenant_status", "handoff_sessions", ["tenant_id", "status"], unique=False)
    op.create_index("ix_handoff_sessions_tenant_chat", "handoff_sessions", ["tenant_id", "chat_id"], unique=False)
    op.create_index(
        "uq_handoff_sessions_open_chat",
        "handoff_sessions",
        ["tenant_id", "chat_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'active')"),
        sqlite_where=sa.text("status IN ('pending', 'active')"),
    )

    op.create_table(
        "handoff_messages",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("handoff_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("sender_type", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("handoff_id", "seq", name="uq_handoff_messages_handoff_seq"),
    )
    op.create_index(op.f("ix_handoff_messages_handoff_id"), "handoff_messages", ["handoff_id"], unique=False)
    op.create_index(op.f("ix_handoff_messages_tenant_id"), "handoff_messages", ["tenant_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_handoff_messages_tenant_id"), table_name="handoff_messages")
    op.drop_index(op.f("ix_handoff_messages_handoff_id"), table_name="handoff_messages")
    op.drop_table("handoff_messages")

    op.drop_index("uq_handoff_sessions_open_chat", table_name="handoff_sessions")
    op.drop_index("ix_handoff_sessions_tenant_chat", table_name="handoff_sessions")
    op.drop_index("ix_handoff_sessions_tenant_status", table_name="handoff_sessions")
    op.drop_index(op.f("ix_handoff_sessions_assigned_agent_id"), table_name="handoff_sessions")
    op.drop_index(op.f("ix_handoff_sessions_tenant_id"), table_name="handoff_sessions")
    op.drop_table("handoff_sessions")

    op.drop_index(op.f("ix_human_agents_user_id"), table_name="human_agents")
    op.drop_index(op.f("ix_human_agents_tenant_id"), table_name="human_agents")
    op.drop_table("human_agents")

    op.drop_index("ix_delivery_attempts_sub_created", table_name="delivery_attempts")
    op.drop_index(op.f("ix_delivery_attempts_tenant_id"), table_name="delivery_attempts")
    op.drop_index(op.f("ix_delivery_attempts_subscription_id"), table_name="delivery_attempts")
    op.drop_table("delivery_attempts")

    op.drop_index(op.f("ix_subscriptions_tenant_id"), table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index(op.f("ix_tenant_bot_credentials_key_hash"), table_name="tenant_bot_credentials")
    op.drop_index(op.f("ix_tenant_bot_credentials_tenant_id"), table_name="tenant_bot_credentials")
    op.drop_table("tenant_bot_credentials")

    op.drop_index(op.f("ix_tenant_channel_accounts_phone_number_id"), table_name="tenant_channel_accounts")
    op.drop_index(op.f("ix_tenant_channel_accounts_verify_token"), table_name="tenant_channel_accounts")
    op.drop_index(op.f("ix_tenant_channel_accounts_channel_type"), table_name="tenant_channel_accounts")
    op.drop_index(op.f("ix_tenant_channel_accounts_tenant_id"), table_name="tenant_channel_accounts")
    op.drop_table("tenant_channel_accounts")

    op.drop_index(op.f("ix_tenant_agent_bindings_agent_id"), table_name="tenant_agent_bindings")
    op.drop_index(op.f("ix_tenant_agent_bindings_tenant_id"), table_name="tenant_agent_bindings")
    op.drop_table("tenant_agent_bindings")

    op.drop_index(op.f("ix_users_tenant_id"), table_name="users")
    op.drop_table("users")

    op.drop_table("tenants")
