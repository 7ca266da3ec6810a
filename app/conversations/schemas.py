"""Pydantic schemas for conversations, messages, summaries and escalations."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from app.agents.schemas import AgentRun

ConversationStatus = Literal["active", "completed", "escalated", "closed"]
SenderType = Literal["agent", "employee", "system"]
Sentiment = Literal["positive", "neutral", "negative", "mixed"]
RiskLevel = Literal["low", "moderate", "high"]
Priority = Literal["low", "medium", "high"]
EscalationType = Literal["safety", "negative_sentiment"]
EscalationStatus = Literal["open", "resolved"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "escalated", "closed"})


class Conversation(BaseModel):
    id: UUID
    company_id: UUID
    agent_instance_id: UUID
    participant_user_id: UUID
    employee_name: str | None = None
    agent_type: str | None = None
    agent_name: str | None = None
    status: ConversationStatus = "active"
    message_count: int = 0
    unread_count: int = 0
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ConversationList(BaseModel):
    items: list[Conversation]
    total: int


class Message(BaseModel):
    id: UUID
    company_id: UUID
    conversation_id: UUID
    sender_type: SenderType
    content: str
    sequence: int
    is_read: bool = False
    created_at: datetime


class MessagePage(BaseModel):
    items: list[Message]
    next_cursor: datetime | None = None


class MessageCreate(BaseModel):
    content: str = Field(..., description="Employee-authored message body")


class ActionItem(BaseModel):
    text: str
    priority: Priority = "medium"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class FeedbackSummary(BaseModel):
    """Derived analytics for one conversation; recomputed after each reply."""

    id: UUID | None = None
    company_id: UUID | None = None
    conversation_id: UUID | None = None
    agent_instance_id: UUID | None = None
    sentiment: Sentiment = "neutral"
    sentiment_score: float | None = None
    risk_level: RiskLevel = "low"
    tags: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    engagement_score: float = 0.0
    escalated: bool = False
    summary: str = ""
    status: Literal["ok", "unavailable"] = "ok"
    created_at: datetime | None = None


class Escalation(BaseModel):
    id: UUID
    company_id: UUID
    conversation_id: UUID
    agent_instance_id: UUID
    participant_user_id: UUID
    escalation_type: EscalationType
    severity: RiskLevel
    reason: str
    status: EscalationStatus = "open"
    created_at: datetime


class ReplyResult(BaseModel):
    response: Message | None = None
    escalated: bool = False
    status: ConversationStatus = "active"


class RunResult(BaseModel):
    run: AgentRun
    conversations: list[Conversation] = Field(default_factory=list)
    skipped: int = 0


class ReadReceipt(BaseModel):
    conversation_id: UUID
    unread_count: int = 0
    marked: int = 0


__all__ = [
    "ActionItem",
    "Conversation",
    "ConversationList",
    "ConversationStatus",
    "Escalation",
    "EscalationType",
    "FeedbackSummary",
    "Message",
    "MessageCreate",
    "MessagePage",
    "ReadReceipt",
    "ReplyResult",
    "RunResult",
    "SenderType",
    "TERMINAL_STATUSES",
]
