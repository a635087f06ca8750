"""SQLModel table definitions for the work item data layer."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class WorkItemTable(SQLModel, table=True):
    """Work items; ``state_version`` is the optimistic concurrency token.

    ``seq`` records insertion order and breaks ``updated_at`` ties when listing.
    """

    __tablename__ = "work_items"
    __table_args__ = (
        UniqueConstraint("id", name="uq_work_items_id"),
        Index("ix_work_items_updated_at", "updated_at"),
    )

    seq: int | None = Field(
        default=None,
        sa_column=Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True),
    )
    id: str = Field(sa_column=Column(String(36), nullable=False))
    title: str = Field(sa_column=Column(String(200), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(String(4000), nullable=True))
    status: str = Field(sa_column=Column(String(32), nullable=False))
    priority: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    assignee_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))
    due_date: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    state_version: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))


class WorkItemCommentTable(SQLModel, table=True):
    """Comments belonging to a work item."""

    __tablename__ = "work_item_comments"

    id: str = Field(sa_column=Column(String(36), primary_key=True))
    work_item_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    body: str = Field(sa_column=Column(String(2000), nullable=False))
    author_id: str | None = Field(default=None, sa_column=Column(String(64), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkItemAttachmentTable(SQLModel, table=True):
    """Attachment metadata belonging to a work item."""

    __tablename__ = "work_item_attachments"
    __table_args__ = (CheckConstraint("size >= 0", name="ck_work_item_attachments_size_non_negative"),)

    id: str = Field(sa_column=Column(String(36), primary_key=True))
    work_item_id: str = Field(
        sa_column=Column(
            String(36), ForeignKey("work_items.id", ondelete="CASCADE"), nullable=False, index=True
        )
    )
    file_name: str = Field(sa_column=Column(String(256), nullable=False))
    content_type: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
    size: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))
    storage_uri: str | None = Field(default=None, sa_column=Column(String(512), nullable=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
