"""Database table definitions and engine helpers."""

from .models import WorkItemAttachmentTable, WorkItemCommentTable, WorkItemTable
from .session import create_engine_from_url, to_async_dsn

__all__ = [
    "WorkItemAttachmentTable",
    "WorkItemCommentTable",
    "WorkItemTable",
    "create_engine_from_url",
    "to_async_dsn",
]
