"""Pessimistic per-work-item locking used by the assignment path."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from time import perf_counter
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from crm.metrics import MetricsRegistry, register_default_metrics

from .errors import LockTimeoutError, WorkItemNotFoundError
from .repository import WorkItemRepository

logger = logging.getLogger(__name__)

# lock_not_available, raised by PostgreSQL when ``lock_timeout`` expires
_LOCK_NOT_AVAILABLE = "55P03"


@dataclass(slots=True)
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class RowLockCoordinator:
    """Serialize read-modify-write sequences against a single work item.

    Two layers are taken in order: an in-process ``asyncio.Lock`` keyed by the
    work item id, then ``SELECT ... FOR UPDATE`` inside the transaction so other
    processes sharing the database are serialized as well. Both are released
    when :meth:`hold` exits, whether the transaction committed or rolled back.
    """

    def __init__(
        self,
        repository: WorkItemRepository,
        *,
        timeout: float = 5.0,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._repository = repository
        self._timeout = timeout
        self._metrics = register_default_metrics(metrics)
        self._entries: dict[str, _LockEntry] = {}

    @property
    def timeout(self) -> float:
        return self._timeout

    def is_locked(self, work_item_id: str) -> bool:
        entry = self._entries.get(work_item_id)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, work_item_id: str) -> AsyncIterator[AsyncSession]:
        """Yield a session holding the exclusive lock on ``work_item_id``.

        Raises :class:`WorkItemNotFoundError` when the row does not exist and
        :class:`LockTimeoutError` when either lock layer is not granted in time.
        """

        entry = self._entries.setdefault(work_item_id, _LockEntry())
        entry.users += 1
        started = perf_counter()
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                self._record_timeout(work_item_id)
                raise LockTimeoutError(work_item_id, self._timeout) from exc

            try:
                async with self._repository.transaction() as session:
                    try:
                        exists = await self._repository.lock_row(
                            session, work_item_id, lock_timeout=self._remaining(started)
                        )
                    except DBAPIError as exc:
                        if getattr(exc.orig, "sqlstate", None) == _LOCK_NOT_AVAILABLE:
                            self._record_timeout(work_item_id)
                            raise LockTimeoutError(work_item_id, self._timeout) from exc
                        raise
                    self._metrics.summary("work_item_lock_wait_seconds").observe(perf_counter() - started)
                    if not exists:
                        raise WorkItemNotFoundError(work_item_id)
                    yield session
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(work_item_id, None)

    def _remaining(self, started: float) -> float:
        return max(self._timeout - (perf_counter() - started), 0.001)

    def _record_timeout(self, work_item_id: str) -> None:
        self._metrics.counter("work_item_lock_timeouts_total").inc()
        logger.warning("work_item.lock_timeout id=%s timeout=%.3f", work_item_id, self._timeout)
