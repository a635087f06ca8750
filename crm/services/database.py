from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DatabaseHealthCheck:
    """Explicit connectivity probe against the configured database."""

    engine: AsyncEngine
    timeout: float = 5.0

    async def _probe(self) -> None:
        async with self.engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

    async def test_connection(self) -> bool:
        """Return ``True`` when ``SELECT 1`` succeeds within the timeout."""

        try:
            await asyncio.wait_for(self._probe(), timeout=self.timeout)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.warning("Database health check failed: %s", exc)
            return False
        return True
