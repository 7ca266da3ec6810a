"""Conversation store and the orchestration state machine."""

from . import schemas
from .repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)

__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
    "schemas",
]
