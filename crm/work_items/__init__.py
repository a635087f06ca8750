"""Work item domain models, lifecycle rules and the mutation engine."""

from .errors import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    LockTimeoutError,
    WorkItemNotFoundError,
    WorkItemServiceError,
    WorkItemValidationError,
)
from .locking import RowLockCoordinator
from .models import (
    AttachmentMetadata,
    PaginatedResult,
    WorkItem,
    WorkItemAttachment,
    WorkItemComment,
    WorkItemCreate,
    WorkItemDetail,
    WorkItemListQuery,
    WorkItemUpdate,
)
from .repository import WorkItemRepository
from .service import WorkItemService
from .state import WorkItemStateMachine, WorkItemStatus

__all__ = [
    "AttachmentMetadata",
    "ConcurrencyConflictError",
    "IllegalTransitionError",
    "LockTimeoutError",
    "PaginatedResult",
    "RowLockCoordinator",
    "WorkItem",
    "WorkItemAttachment",
    "WorkItemComment",
    "WorkItemCreate",
    "WorkItemDetail",
    "WorkItemListQuery",
    "WorkItemNotFoundError",
    "WorkItemRepository",
    "WorkItemService",
    "WorkItemServiceError",
    "WorkItemStateMachine",
    "WorkItemStatus",
    "WorkItemUpdate",
    "WorkItemValidationError",
]
