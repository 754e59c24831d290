"""Initial schema: users, message templates, pending messages

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=False),
        sa.Column("location", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    templates = op.create_table(
        "message_templates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_message_templates_name"),
    )
    op.bulk_insert(
        templates,
        [{"id": 1, "name": "birthday", "content": "Hey, {full_name} it's your birthday"}],
    )

    op.create_table(
        "pending_messages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("message_templates.id"),
            nullable=False,
        ),
        sa.Column("dispatch_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("claimed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "template_id", name="uq_pending_user_template"),
    )
    op.create_index("ix_pending_messages_user_id", "pending_messages", ["user_id"])
    op.create_index(
        "ix_pending_messages_status_dispatch_at",
        "pending_messages",
        ["status", "dispatch_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_pending_messages_status_dispatch_at", table_name="pending_messages")
    op.drop_index("ix_pending_messages_user_id", table_name="pending_messages")
    op.drop_table("pending_messages")
    op.drop_table("message_templates")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
