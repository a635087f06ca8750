from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .state import WorkItemStatus


class WorkItemServiceError(RuntimeError):
    """Base error for work item engine issues."""


class WorkItemNotFoundError(WorkItemServiceError):
    """Raised when an operation targets a non-existent work item."""

    def __init__(self, work_item_id: str) -> None:
        super().__init__(f"Work item {work_item_id} not found")
        self.work_item_id = work_item_id


class ConcurrencyConflictError(WorkItemServiceError):
    """Raised when the stored version no longer matches the caller's view."""

    def __init__(self, work_item_id: str, *, expected: int | None, actual: int | None) -> None:
        super().__init__(f"Work item {work_item_id} was modified by another request")
        self.work_item_id = work_item_id
        self.expected = expected
        self.actual = actual


class IllegalTransitionError(WorkItemServiceError, ValueError):
    """Raised when the requested status edge does not exist."""

    def __init__(self, source: WorkItemStatus, target: WorkItemStatus) -> None:
        super().__init__(f"Transition from {source.label} to {target.label} is not permitted")
        self.source = source
        self.target = target


class LockTimeoutError(WorkItemServiceError):
    """Raised when the row lock for a work item could not be acquired in time."""

    def __init__(self, work_item_id: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for lock on work item {work_item_id}")
        self.work_item_id = work_item_id
        self.timeout = timeout


class WorkItemValidationError(WorkItemServiceError, ValueError):
    """Raised when submitted fields violate the work item data model."""
