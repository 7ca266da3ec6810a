"""Agent templates, instances and scheduling."""

from . import schemas
from .service import AgentInstanceRegistry, create_postgres_registry

__all__ = [
    "AgentInstanceRegistry",
    "create_postgres_registry",
    "schemas",
]
