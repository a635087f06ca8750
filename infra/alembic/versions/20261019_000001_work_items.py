"""Work item schema: work items, comments and attachments."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "work_items",
        sa.Column("seq", sa.BigInteger(), sa.Identity(), primary_key=True, nullable=False),
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.String(length=4000), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("priority", sa.String(length=64), nullable=True),
        sa.Column("assignee_id", sa.String(length=64), nullable=True),
        sa.Column("due_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("state_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.UniqueConstraint("id", name="uq_work_items_id"),
    )
    op.create_index("ix_work_items_updated_at", "work_items", ["updated_at"])
    op.create_index("ix_work_items_assignee_id", "work_items", ["assignee_id"])

    op.create_table(
        "work_item_comments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "work_item_id",
            sa.String(length=36),
            sa.ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("body", sa.String(length=2000), nullable=False),
        sa.Column("author_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_work_item_comments_work_item_id", "work_item_comments", ["work_item_id"])

    op.create_table(
        "work_item_attachments",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column(
            "work_item_id",
            sa.String(length=36),
            sa.ForeignKey("work_items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=256), nullable=False),
        sa.Column("content_type", sa.String(length=128), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("storage_uri", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("size >= 0", name="ck_work_item_attachments_size_non_negative"),
    )
    op.create_index("ix_work_item_attachments_work_item_id", "work_item_attachments", ["work_item_id"])


def downgrade() -> None:
    op.drop_index("ix_work_item_attachments_work_item_id", table_name="work_item_attachments")
    op.drop_table("work_item_attachments")
    op.drop_index("ix_work_item_comments_work_item_id", table_name="work_item_comments")
    op.drop_table("work_item_comments")
    op.drop_index("ix_work_items_assignee_id", table_name="work_items")
    op.drop_index("ix_work_items_updated_at", table_name="work_items")
    op.drop_table("work_items")
