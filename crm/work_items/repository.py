from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import delete, func, or_, text, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, col, select

from crm.db.models import WorkItemAttachmentTable, WorkItemCommentTable, WorkItemTable

from .errors import ConcurrencyConflictError
from .models import WorkItem, WorkItemAttachment, WorkItemComment, WorkItemDetail, WorkItemListQuery
from .state import WorkItemStatus


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class WorkItemRepository:
    """Persistence helper wrapping `work_items`, comments and attachments.

    Methods taking a ``session`` participate in a transaction opened through
    :meth:`transaction`; the others open and commit their own.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Yield a session whose transaction commits on exit and rolls back on error."""

        async with self._session_factory() as session:
            async with session.begin():
                yield session

    async def insert_work_item(self, item: WorkItem) -> None:
        async with self.transaction() as session:
            session.add(
                WorkItemTable(
                    id=item.id,
                    title=item.title,
                    description=item.description,
                    status=item.status.value,
                    priority=item.priority,
                    assignee_id=item.assignee_id,
                    due_date=item.due_date,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                    state_version=item.state_version,
                )
            )

    async def fetch_work_item(self, session: AsyncSession, work_item_id: str) -> WorkItem | None:
        result = await session.execute(select(WorkItemTable).where(col(WorkItemTable.id) == work_item_id))
        row = result.scalars().first()
        if row is None:
            return None
        return self._row_to_work_item(row)

    async def get_work_item(self, work_item_id: str) -> WorkItem | None:
        async with self._session_factory() as session:
            return await self.fetch_work_item(session, work_item_id)

    async def fetch_detail(self, work_item_id: str) -> WorkItemDetail | None:
        async with self._session_factory() as session:
            item = await self.fetch_work_item(session, work_item_id)
            if item is None:
                return None
            return await self.fetch_children(session, item)

    async def fetch_children(self, session: AsyncSession, item: WorkItem) -> WorkItemDetail:
        """Bundle ``item`` with its comments and attachments, newest first."""

        comment_rows = (
            await session.execute(
                select(WorkItemCommentTable)
                .where(col(WorkItemCommentTable.work_item_id) == item.id)
                .order_by(col(WorkItemCommentTable.created_at).desc(), col(WorkItemCommentTable.id).desc())
            )
        ).scalars().all()
        attachment_rows = (
            await session.execute(
                select(WorkItemAttachmentTable)
                .where(col(WorkItemAttachmentTable.work_item_id) == item.id)
                .order_by(col(WorkItemAttachmentTable.created_at).desc(), col(WorkItemAttachmentTable.id).desc())
            )
        ).scalars().all()
        return WorkItemDetail(
            work_item=item,
            comments=[self._row_to_comment(row) for row in comment_rows],
            attachments=[self._row_to_attachment(row) for row in attachment_rows],
        )

    async def search(self, query: WorkItemListQuery) -> tuple[list[WorkItem], int]:
        """Return one page of matches plus the unpaged match count.

        ``query`` is expected to be normalized already.
        """

        conditions = []
        if query.status is not None:
            conditions.append(col(WorkItemTable.status) == query.status.value)
        if query.assignee_id is not None:
            conditions.append(col(WorkItemTable.assignee_id) == query.assignee_id)
        if query.search:
            pattern = f"%{_escape_like(query.search)}%"
            conditions.append(
                or_(
                    col(WorkItemTable.title).ilike(pattern, escape="\\"),
                    col(WorkItemTable.description).ilike(pattern, escape="\\"),
                )
            )

        count_statement = select(func.count()).select_from(WorkItemTable).where(*conditions)
        page_statement = (
            select(WorkItemTable)
            .where(*conditions)
            .order_by(
                col(WorkItemTable.updated_at).desc(),
                col(WorkItemTable.seq).asc(),
            )
            .offset(query.offset)
            .limit(query.page_size)
        )

        async with self._session_factory() as session:
            total = (await session.execute(count_statement)).scalar_one()
            rows = (await session.execute(page_statement)).scalars().all()
        return [self._row_to_work_item(row) for row in rows], int(total)

    async def write_work_item(self, session: AsyncSession, item: WorkItem, *, observed_version: int) -> None:
        """Persist ``item`` only if the stored version is still ``observed_version``."""

        result = await session.execute(
            update(WorkItemTable)
            .where(
                col(WorkItemTable.id) == item.id,
                col(WorkItemTable.state_version) == observed_version,
            )
            .values(
                title=item.title,
                description=item.description,
                status=item.status.value,
                priority=item.priority,
                assignee_id=item.assignee_id,
                due_date=item.due_date,
                updated_at=item.updated_at,
                state_version=item.state_version,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrencyConflictError(item.id, expected=observed_version, actual=None)

    async def insert_comment(self, session: AsyncSession, comment: WorkItemComment) -> None:
        session.add(
            WorkItemCommentTable(
                id=comment.id,
                work_item_id=comment.work_item_id,
                body=comment.body,
                author_id=comment.author_id,
                created_at=comment.created_at,
            )
        )

    async def insert_attachment(self, session: AsyncSession, attachment: WorkItemAttachment) -> None:
        session.add(
            WorkItemAttachmentTable(
                id=attachment.id,
                work_item_id=attachment.work_item_id,
                file_name=attachment.file_name,
                content_type=attachment.content_type,
                size=attachment.size,
                storage_uri=attachment.storage_uri,
                created_at=attachment.created_at,
            )
        )

    async def lock_row(
        self, session: AsyncSession, work_item_id: str, *, lock_timeout: float | None = None
    ) -> bool:
        """Take ``FOR UPDATE`` on the work item row; returns whether the row exists."""

        if lock_timeout is not None and session.get_bind().dialect.name == "postgresql":
            await session.execute(text(f"SET LOCAL lock_timeout = {max(int(lock_timeout * 1000), 1)}"))
        result = await session.execute(
            select(col(WorkItemTable.id)).where(col(WorkItemTable.id) == work_item_id).with_for_update()
        )
        return result.scalar_one_or_none() is not None

    async def delete_work_item(self, work_item_id: str) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                delete(WorkItemTable)
                .where(col(WorkItemTable.id) == work_item_id)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    @staticmethod
    def _row_to_work_item(row: Any) -> WorkItem:
        return WorkItem(
            id=str(row.id),
            title=str(row.title),
            description=row.description,
            status=WorkItemStatus(str(row.status)),
            priority=row.priority,
            assignee_id=row.assignee_id,
            due_date=_ensure_datetime(row.due_date) if row.due_date is not None else None,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            state_version=int(row.state_version),
        )

    @staticmethod
    def _row_to_comment(row: Any) -> WorkItemComment:
        return WorkItemComment(
            id=str(row.id),
            work_item_id=str(row.work_item_id),
            body=str(row.body),
            author_id=row.author_id,
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _row_to_attachment(row: Any) -> WorkItemAttachment:
        return WorkItemAttachment(
            id=str(row.id),
            work_item_id=str(row.work_item_id),
            file_name=str(row.file_name),
            content_type=row.content_type,
            size=int(row.size),
            storage_uri=row.storage_uri,
            created_at=_ensure_datetime(row.created_at),
        )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
