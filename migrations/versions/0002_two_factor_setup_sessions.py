"""add two factor setup sessions table

Revision ID: 0002_two_factor_setup_sessions
Revises: 0001_users
Create Date: 2025-09-05

"""
from alembic import op
import sqlalchemy as sa

revision = "0002_two_factor_setup_sessions"
down_revision = "0001_users"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "two_factor_setup_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(length=36), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("shown_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("token", name="uq_two_factor_setup_sessions_token"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'expired', 'cancelled')",
            name="ck_two_factor_setup_sessions_status",
        ),
    )
    op.create_index(
        "ix_two_factor_setup_sessions_user_status",
        "two_factor_setup_sessions",
        ["user_id", "status"],
    )
    op.create_index(
        "ix_two_factor_setup_sessions_expires_at",
        "two_factor_setup_sessions",
        ["expires_at"],
    )
    op.create_index(
        "uq_two_factor_setup_sessions_one_pending",
        "two_factor_setup_sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_two_factor_setup_sessions_one_pending", table_name="two_factor_setup_sessions")
    op.drop_index("ix_two_factor_setup_sessions_expires_at", table_name="two_factor_setup_sessions")
    op.drop_index("ix_two_factor_setup_sessions_user_status", table_name="two_factor_setup_sessions")
    op.drop_table("two_factor_setup_sessions")
