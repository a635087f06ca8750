from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Generic, Sequence, TypeVar

from .state import WorkItemStatus
from .versioning import next_version

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 4000
PRIORITY_MAX_LENGTH = 64
IDENTIFIER_MAX_LENGTH = 64
COMMENT_BODY_MAX_LENGTH = 2000
FILE_NAME_MAX_LENGTH = 256
CONTENT_TYPE_MAX_LENGTH = 128
STORAGE_URI_MAX_LENGTH = 512

MAX_PAGE_SIZE = 200
# OFFSET is bound as a signed 64-bit integer by both supported drivers
MAX_OFFSET = 2**63 - 1

T = TypeVar("T")


@dataclass(slots=True)
class WorkItem:
    """Aggregate root tracked through the lifecycle."""

    id: str
    title: str
    description: str | None
    status: WorkItemStatus
    priority: str | None
    assignee_id: str | None
    due_date: datetime | None
    created_at: datetime
    updated_at: datetime
    state_version: int

    def advance(self, now: datetime, **changes: object) -> "WorkItem":
        """Return a copy with ``changes`` applied, ``updated_at`` refreshed and the version bumped."""

        return replace(
            self,
            **changes,
            updated_at=now,
            state_version=next_version(self.state_version),
        )


@dataclass(slots=True)
class WorkItemComment:
    """Immutable note attached to a work item."""

    id: str
    work_item_id: str
    body: str
    author_id: str | None
    created_at: datetime


@dataclass(slots=True)
class WorkItemAttachment:
    """Attachment metadata; file contents live elsewhere."""

    id: str
    work_item_id: str
    file_name: str
    content_type: str | None
    size: int
    storage_uri: str | None
    created_at: datetime


@dataclass(slots=True)
class WorkItemDetail:
    """Container bundling the work item with its comments and attachments."""

    work_item: WorkItem
    comments: Sequence[WorkItemComment]
    attachments: Sequence[WorkItemAttachment]


@dataclass(slots=True)
class WorkItemCreate:
    """Fields accepted when a work item is created."""

    title: str
    description: str | None = None
    priority: str | None = None
    assignee_id: str | None = None
    due_date: datetime | None = None


@dataclass(slots=True)
class WorkItemUpdate:
    """Full replacement of the mutable work item fields."""

    title: str
    status: WorkItemStatus
    description: str | None = None
    priority: str | None = None
    assignee_id: str | None = None
    due_date: datetime | None = None


@dataclass(slots=True)
class AttachmentMetadata:
    file_name: str
    size: int = 0
    content_type: str | None = None
    storage_uri: str | None = None


@dataclass(slots=True)
class WorkItemListQuery:
    """Conjunctive filter and page request for listing work items."""

    status: WorkItemStatus | None = None
    assignee_id: str | None = None
    search: str | None = None
    page: int = 1
    page_size: int = 20

    def normalized(self, *, max_page_size: int = MAX_PAGE_SIZE) -> "WorkItemListQuery":
        search = self.search.strip() if self.search else None
        page_size = min(max(self.page_size, 1), max_page_size)
        return replace(
            self,
            search=search or None,
            page=min(max(self.page, 1), MAX_OFFSET // page_size + 1),
            page_size=page_size,
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(slots=True)
class PaginatedResult(Generic[T]):
    items: Sequence[T]
    page: int
    page_size: int
    total_count: int
