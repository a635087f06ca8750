"""Route modules exposed by the API package."""

from . import health, work_items

__all__ = ["health", "work_items"]
