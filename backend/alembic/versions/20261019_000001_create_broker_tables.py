"""Create credential broker and provisioning queue tables.

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261019_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "activations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("automation_slug", sa.String(255), nullable=False, server_default=""),
        sa.Column("status", sa.String(50), nullable=False, server_default="pending"),
        sa.Column("required_providers", sa.JSON(), nullable=True),
        sa.Column("config", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "credential_connections",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("activation_id", sa.Uuid(), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="connected"),
        sa.Column("encrypted_payload", sa.Text(), nullable=True),
        sa.Column("encryption_iv", sa.String(32), nullable=True),
        sa.Column("encryption_tag", sa.String(32), nullable=True),
        sa.Column("key_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("granted_scopes", sa.JSON(), nullable=True),
        sa.Column("connected_email", sa.String(255), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["activation_id"], ["activations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        # Payload, IV and tag are written together or not at all
        sa.CheckConstraint(
            "(encrypted_payload IS NULL AND encryption_iv IS NULL AND encryption_tag IS NULL)"
            " OR (encrypted_payload IS NOT NULL AND encryption_iv IS NOT NULL"
            " AND encryption_tag IS NOT NULL)",
            name="ck_credential_connections_payload_complete",
        ),
    )
    op.create_index(
        "ix_credential_connections_user_provider",
        "credential_connections",
        ["user_id", "provider"],
    )
    op.create_index(
        "ix_credential_connections_status_expires",
        "credential_connections",
        ["status", "expires_at"],
    )

    op.create_table(
        "oauth_states",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("state_token", sa.String(128), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("redirect_path", sa.String(2048), nullable=True),
        sa.Column("activation_id", sa.Uuid(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("state_token"),
    )

    op.create_table(
        "provisioning_jobs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("activation_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="queued"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column(
            "scheduled_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("claimed_by", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "attempt_count <= max_attempts",
            name="ck_provisioning_jobs_attempts",
        ),
    )
    op.create_index(
        "ix_provisioning_jobs_status_scheduled",
        "provisioning_jobs",
        ["status", "scheduled_at"],
    )

    op.create_table(
        "operation_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("function_name", sa.String(100), nullable=False),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_operation_logs_function_timestamp",
        "operation_logs",
        ["function_name", "timestamp"],
    )


def downgrade() -> None:
    op.drop_index("ix_operation_logs_function_timestamp", table_name="operation_logs")
    op.drop_table("operation_logs")
    op.drop_index("ix_provisioning_jobs_status_scheduled", table_name="provisioning_jobs")
    op.drop_table("provisioning_jobs")
    op.drop_table("oauth_states")
    op.drop_index(
        "ix_credential_connections_status_expires", table_name="credential_connections"
    )
    op.drop_index(
        "ix_credential_connections_user_provider", table_name="credential_connections"
    )
    op.drop_table("credential_connections")
    op.drop_table("activations")
    op.drop_table("users")
