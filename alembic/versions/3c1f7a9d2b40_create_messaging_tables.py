"""Create messaging tables

Revision ID: 3c1f7a9d2b40
Revises:
Create Date: 2026-10-19

users, properties and reservations belong to the accounts and booking
services and must already exist.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3c1f7a9d2b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLE = sa.Enum(
    "Tenant", "HomeOwner", "Manager", name="participantrole", native_enum=False
)


def upgrade() -> None:
    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("sender_role", ROLE, nullable=False),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("recipient_role", ROLE, nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "reservation_id",
            sa.Integer(),
            sa.ForeignKey("reservations.id"),
            nullable=True,
        ),
        sa.Column("conversation_key", sa.String(length=128), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_messages_id", "messages", ["id"])
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_recipient_id", "messages", ["recipient_id"])
    op.create_index("ix_messages_reservation_id", "messages", ["reservation_id"])
    op.create_index("ix_messages_conversation_key", "messages", ["conversation_key"])
    op.create_index(
        "ix_messages_conversation_sent", "messages", ["conversation_key", "sent_at"]
    )
    op.create_index(
        "ix_messages_recipient_unread", "messages", ["recipient_id", "is_read"]
    )

    op.create_table(
        "message_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "message_id",
            sa.Integer(),
            sa.ForeignKey("messages.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_url", sa.String(length=1024), nullable=False),
        sa.Column("file_type", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_message_attachments_id", "message_attachments", ["id"])
    op.create_index(
        "ix_message_attachments_message_id", "message_attachments", ["message_id"]
    )

    op.create_table(
        "conversation_index",
        sa.Column("key", sa.String(length=128), primary_key=True),
        sa.Column("participant_low_id", sa.Integer(), nullable=False),
        sa.Column("participant_high_id", sa.Integer(), nullable=False),
        sa.Column("reservation_id", sa.Integer(), nullable=True),
        sa.Column("conversation_type", sa.String(length=20), nullable=False),
        sa.Column("first_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "last_message_id",
            sa.Integer(),
            sa.ForeignKey("messages.id"),
            nullable=False,
        ),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_messages", sa.Integer(), nullable=False),
    )
    for column in (
        "participant_low_id",
        "participant_high_id",
        "reservation_id",
        "conversation_type",
        "last_message_at",
    ):
        op.create_index(
            f"ix_conversation_index_{column}", "conversation_index", [column]
        )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("request_method", sa.String(), nullable=True),
        sa.Column("request_path", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
    )
    for column in ("id", "user_id", "action", "resource_type", "resource_id", "status", "timestamp"):
        op.create_index(f"ix_audit_logs_{column}", "audit_logs", [column])


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("conversation_index")
    op.drop_table("message_attachments")
    op.drop_table("messages")
