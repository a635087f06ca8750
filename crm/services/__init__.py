"""Infrastructure services used by the application lifespan."""

from .database import DatabaseHealthCheck

__all__ = ["DatabaseHealthCheck"]
