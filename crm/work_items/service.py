from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterator

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from crm.metrics import MetricsRegistry, register_default_metrics

from .errors import (
    ConcurrencyConflictError,
    IllegalTransitionError,
    WorkItemNotFoundError,
    WorkItemValidationError,
)
from .locking import RowLockCoordinator
from .models import (
    COMMENT_BODY_MAX_LENGTH,
    CONTENT_TYPE_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    FILE_NAME_MAX_LENGTH,
    IDENTIFIER_MAX_LENGTH,
    MAX_PAGE_SIZE,
    PRIORITY_MAX_LENGTH,
    STORAGE_URI_MAX_LENGTH,
    TITLE_MAX_LENGTH,
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
from .state import WorkItemStateMachine, WorkItemStatus
from .versioning import INITIAL_VERSION, ensure_version

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

Mutation = Callable[[WorkItem, datetime], WorkItem]
ChildWriter = Callable[[AsyncSession, WorkItem], Awaitable[Any]]


def _require_text(field_name: str, value: str | None, max_length: int) -> str:
    if value is None or not value.strip():
        raise WorkItemValidationError(f"{field_name} is required")
    _bounded_text(field_name, value, max_length)
    return value


def _bounded_text(field_name: str, value: str | None, max_length: int) -> str | None:
    if value is not None and len(value) > max_length:
        raise WorkItemValidationError(f"{field_name} must be at most {max_length} characters")
    return value


class WorkItemService:
    """Apply lifecycle mutations to work items.

    ``update_work_item``, ``transition_status``, ``add_comment`` and
    ``add_attachment`` are optimistic: the write is conditioned on the version
    read in the same transaction. ``assign_work_item`` is pessimistic and runs
    under the :class:`RowLockCoordinator`. Every accepted mutation advances
    ``state_version`` by exactly one.
    """

    def __init__(
        self,
        repository: WorkItemRepository,
        *,
        state_machine: type[WorkItemStateMachine] = WorkItemStateMachine,
        lock_coordinator: RowLockCoordinator | None = None,
        metrics: MetricsRegistry | None = None,
        max_attempts: int = 3,
        max_page_size: int = MAX_PAGE_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._repository = repository
        self._state_machine = state_machine
        self._metrics = register_default_metrics(metrics)
        self._lock_coordinator = lock_coordinator or RowLockCoordinator(repository, metrics=self._metrics)
        self._max_attempts = max_attempts
        self._max_page_size = min(max(max_page_size, 1), MAX_PAGE_SIZE)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_work_item(self, fields: WorkItemCreate) -> WorkItem:
        self._validate_item_fields(
            title=fields.title,
            description=fields.description,
            priority=fields.priority,
            assignee_id=fields.assignee_id,
        )
        now = self._clock()
        item = WorkItem(
            id=str(uuid.uuid4()),
            title=fields.title,
            description=fields.description,
            status=self._state_machine.initial_state(),
            priority=fields.priority,
            assignee_id=fields.assignee_id,
            due_date=fields.due_date,
            created_at=now,
            updated_at=now,
            state_version=INITIAL_VERSION,
        )
        with self._observe("create", item.id):
            await self._repository.insert_work_item(item)
        self._record_mutation("create", item)
        return item

    async def list_work_items(self, query: WorkItemListQuery | None = None) -> PaginatedResult[WorkItem]:
        normalized = (query or WorkItemListQuery()).normalized(max_page_size=self._max_page_size)
        items, total = await self._repository.search(normalized)
        return PaginatedResult(
            items=items,
            page=normalized.page,
            page_size=normalized.page_size,
            total_count=total,
        )

    async def get_work_item(self, work_item_id: str) -> WorkItem:
        item = await self._repository.get_work_item(work_item_id)
        if item is None:
            raise WorkItemNotFoundError(work_item_id)
        return item

    async def get_work_item_detail(self, work_item_id: str) -> WorkItemDetail | None:
        return await self._repository.fetch_detail(work_item_id)

    async def update_work_item(
        self, work_item_id: str, fields: WorkItemUpdate, *, expected_version: int
    ) -> WorkItemDetail:
        """Replace every mutable field if ``expected_version`` is still current.

        The status is written as given: the lifecycle table is only enforced by
        :meth:`transition_status`.
        """

        self._validate_item_fields(
            title=fields.title,
            description=fields.description,
            priority=fields.priority,
            assignee_id=fields.assignee_id,
        )

        def mutation(current: WorkItem, now: datetime) -> WorkItem:
            return current.advance(
                now,
                title=fields.title,
                description=fields.description,
                status=fields.status,
                priority=fields.priority,
                assignee_id=fields.assignee_id,
                due_date=fields.due_date,
            )

        detail, _ = await self._apply("update", work_item_id, mutation, expected_version=expected_version)
        return detail

    async def transition_status(self, work_item_id: str, target: WorkItemStatus) -> WorkItemDetail:
        def mutation(current: WorkItem, now: datetime) -> WorkItem:
            try:
                self._state_machine.assert_transition(current.status, target)
            except IllegalTransitionError:
                self._metrics.counter("work_item_illegal_transitions_total").inc()
                logger.warning(
                    "work_item.transition_rejected id=%s from=%s to=%s",
                    current.id,
                    current.status.value,
                    target.value,
                )
                raise
            return current.advance(now, status=target)

        detail, _ = await self._apply("transition", work_item_id, mutation)
        return detail

    async def assign_work_item(self, work_item_id: str, assignee_id: str) -> WorkItemDetail:
        assignee_id = _require_text("assignee_id", assignee_id, IDENTIFIER_MAX_LENGTH)
        with self._observe("assign", work_item_id):
            async with self._lock_coordinator.hold(work_item_id) as session:
                current = await self._repository.fetch_work_item(session, work_item_id)
                if current is None:
                    raise WorkItemNotFoundError(work_item_id)
                updated = current.advance(self._clock(), assignee_id=assignee_id)
                await self._repository.write_work_item(session, updated, observed_version=current.state_version)
                detail = await self._repository.fetch_children(session, updated)
        self._record_mutation("assign", updated)
        return detail

    async def add_comment(
        self, work_item_id: str, *, body: str, author_id: str | None = None
    ) -> WorkItemComment:
        body = _require_text("body", body, COMMENT_BODY_MAX_LENGTH)
        _bounded_text("author_id", author_id, IDENTIFIER_MAX_LENGTH)

        async def insert(session: AsyncSession, item: WorkItem) -> WorkItemComment:
            comment = WorkItemComment(
                id=str(uuid.uuid4()),
                work_item_id=item.id,
                body=body,
                author_id=author_id,
                created_at=item.updated_at,
            )
            await self._repository.insert_comment(session, comment)
            return comment

        _, comment = await self._apply("add_comment", work_item_id, _touch, child=insert)
        return comment

    async def add_attachment(self, work_item_id: str, metadata: AttachmentMetadata) -> WorkItemAttachment:
        _require_text("file_name", metadata.file_name, FILE_NAME_MAX_LENGTH)
        _bounded_text("content_type", metadata.content_type, CONTENT_TYPE_MAX_LENGTH)
        _bounded_text("storage_uri", metadata.storage_uri, STORAGE_URI_MAX_LENGTH)
        if metadata.size < 0:
            raise WorkItemValidationError("size must not be negative")

        async def insert(session: AsyncSession, item: WorkItem) -> WorkItemAttachment:
            attachment = WorkItemAttachment(
                id=str(uuid.uuid4()),
                work_item_id=item.id,
                file_name=metadata.file_name,
                content_type=metadata.content_type,
                size=metadata.size,
                storage_uri=metadata.storage_uri,
                created_at=item.updated_at,
            )
            await self._repository.insert_attachment(session, attachment)
            return attachment

        _, attachment = await self._apply("add_attachment", work_item_id, _touch, child=insert)
        return attachment

    async def delete_work_item(self, work_item_id: str) -> None:
        deleted = await self._repository.delete_work_item(work_item_id)
        if not deleted:
            raise WorkItemNotFoundError(work_item_id)
        logger.info("work_item.delete id=%s", work_item_id)

    async def _apply(
        self,
        operation: str,
        work_item_id: str,
        mutation: Mutation,
        *,
        expected_version: int | None = None,
        child: ChildWriter | None = None,
    ) -> tuple[WorkItemDetail, Any]:
        """Run the load, check, write cycle as one transaction.

        A lost compare-and-swap is retried from a fresh read, unless the caller
        pinned ``expected_version``, in which case the conflict is final.
        """

        attempts = 1 if expected_version is not None else self._max_attempts
        for attempt in range(1, attempts + 1):
            try:
                with self._observe(operation, work_item_id):
                    async with self._repository.transaction() as session:
                        current = await self._repository.fetch_work_item(session, work_item_id)
                        if current is None:
                            raise WorkItemNotFoundError(work_item_id)
                        if expected_version is not None:
                            ensure_version(work_item_id, current=current.state_version, expected=expected_version)
                        updated = mutation(current, self._clock())
                        await self._repository.write_work_item(
                            session, updated, observed_version=current.state_version
                        )
                        created = await child(session, updated) if child is not None else None
                        detail = await self._repository.fetch_children(session, updated)
            except ConcurrencyConflictError as exc:
                self._metrics.counter("work_item_conflicts_total").inc(labels={"operation": operation})
                if attempt >= attempts:
                    logger.warning(
                        "work_item.conflict op=%s id=%s expected=%s actual=%s",
                        operation,
                        work_item_id,
                        exc.expected,
                        exc.actual,
                    )
                    raise
                logger.info("work_item.retry op=%s id=%s attempt=%d", operation, work_item_id, attempt)
                continue
            self._record_mutation(operation, updated)
            return detail, created
        raise AssertionError("unreachable")  # pragma: no cover

    @contextmanager
    def _observe(self, operation: str, work_item_id: str) -> Iterator[None]:
        with tracer.start_as_current_span(f"work_item.{operation}") as span:
            span.set_attribute("work_item.id", work_item_id)
            with self._metrics.time_summary(
                "work_item_operation_duration_seconds", labels={"operation": operation}
            ):
                yield

    def _record_mutation(self, operation: str, item: WorkItem) -> None:
        self._metrics.counter("work_item_mutations_total").inc(labels={"operation": operation})
        logger.info("work_item.%s id=%s version=%d", operation, item.id, item.state_version)

    @staticmethod
    def _validate_item_fields(
        *, title: str, description: str | None, priority: str | None, assignee_id: str | None
    ) -> None:
        _require_text("title", title, TITLE_MAX_LENGTH)
        _bounded_text("description", description, DESCRIPTION_MAX_LENGTH)
        _bounded_text("priority", priority, PRIORITY_MAX_LENGTH)
        _bounded_text("assignee_id", assignee_id, IDENTIFIER_MAX_LENGTH)


def _touch(current: WorkItem, now: datetime) -> WorkItem:
    return current.advance(now)

