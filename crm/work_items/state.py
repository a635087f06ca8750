from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from .errors import IllegalTransitionError


class WorkItemStatus(str, Enum):
    """Supported states for a work item's lifecycle."""

    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return "".join(part.capitalize() for part in self.value.split("_"))


_TRANSITIONS: Mapping[WorkItemStatus, frozenset[WorkItemStatus]] = MappingProxyType(
    {
        WorkItemStatus.DRAFT: frozenset({WorkItemStatus.OPEN, WorkItemStatus.CANCELLED}),
        WorkItemStatus.OPEN: frozenset({WorkItemStatus.IN_PROGRESS, WorkItemStatus.CANCELLED}),
        WorkItemStatus.IN_PROGRESS: frozenset({WorkItemStatus.RESOLVED, WorkItemStatus.CANCELLED}),
        WorkItemStatus.RESOLVED: frozenset({WorkItemStatus.CLOSED, WorkItemStatus.IN_PROGRESS}),
        WorkItemStatus.CLOSED: frozenset(),
        WorkItemStatus.CANCELLED: frozenset(),
    }
)


class WorkItemStateMachine:
    """Validate work item lifecycle transitions.

    The table is shared read-only by every caller; there is no self-edge, so
    ``Draft -> Draft`` is rejected like any other missing edge.
    """

    _TRANSITIONS = _TRANSITIONS

    @classmethod
    def initial_state(cls) -> WorkItemStatus:
        return WorkItemStatus.DRAFT

    @classmethod
    def allowed_targets(cls, current: WorkItemStatus) -> frozenset[WorkItemStatus]:
        return cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def is_terminal(cls, status: WorkItemStatus) -> bool:
        return not cls.allowed_targets(status)

    @classmethod
    def can_transition(cls, current: WorkItemStatus, target: WorkItemStatus) -> bool:
        return target in cls.allowed_targets(current)

    @classmethod
    def assert_transition(cls, current: WorkItemStatus, target: WorkItemStatus) -> None:
        if not cls.can_transition(current, target):
            raise IllegalTransitionError(current, target)
