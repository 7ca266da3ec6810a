"""Company-level aggregation of conversations and feedback summaries."""
from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.agents.repository import AgentRepository
from app.agents.schemas import AgentRun
from app.conversations.repository import ConversationRepository
from app.conversations.schemas import Conversation, FeedbackSummary, Priority
from app.core.errors import NotFoundError, ValidationError
from app.employees import EmployeeDirectory

PERIODS: Dict[str, Optional[int]] = {"7d": 7, "30d": 30, "90d": 90, "all": None}
DEFAULT_PERIOD = "30d"
SENTIMENTS = ("positive", "neutral", "negative", "mixed")
RECENT_RUNS = 10
_PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


class TagCount(BaseModel):
    tag: str
    count: int


class ActionItemCount(BaseModel):
    text: str
    priority: Priority
    count: int
    conversation_ids: List[UUID] = Field(default_factory=list)


class AnalyticsSnapshot(BaseModel):
    total_conversations: int = 0
    active_conversations: int = 0
    completed_conversations: int = 0
    escalated_conversations: int = 0
    sentiment_distribution: Dict[str, int] = Field(default_factory=dict)
    top_tags: List[TagCount] = Field(default_factory=list)
    action_items: List[ActionItemCount] = Field(default_factory=list)
    avg_sentiment_score: float = 0.0
    participation_rate: float = 0.0


class CompanyInsights(AnalyticsSnapshot):
    period: str = DEFAULT_PERIOD
    agent_instance_id: Optional[UUID] = None
    conversations_by_status: Dict[str, int] = Field(default_factory=dict)
    total_messages: int = 0
    messages_by_sender: Dict[str, int] = Field(default_factory=dict)
    response_rate: int = 0
    escalation_count: int = 0
    escalations_by_status: Dict[str, int] = Field(default_factory=dict)
    unique_participants: int = 0
    total_employees: int = 0
    engagement_rate: int = 0
    active_agents: int = 0
    recent_runs: List[AgentRun] = Field(default_factory=list)


def top_tags(summaries: Iterable[FeedbackSummary], limit: int = 10) -> List[TagCount]:
    """Most frequent tags, count descending and then tag ascending."""

    counts: Counter = Counter()
    for summary in summaries:
        counts.update(set(summary.tags))
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [TagCount(tag=tag, count=count) for tag, count in ranked[:limit]]


def roll_up_action_items(summaries: Iterable[FeedbackSummary]) -> List[ActionItemCount]:
    """Merge action items by text, keeping the highest priority seen.

    Ordered by priority, then by how many conversations raised the item.
    """

    merged: Dict[str, ActionItemCount] = {}
    for summary in summaries:
        for item in summary.action_items:
            entry = merged.get(item.text)
            if entry is None:
                entry = merged[item.text] = ActionItemCount(text=item.text, priority=item.priority, count=0)
            elif _PRIORITY_RANK[item.priority] < _PRIORITY_RANK[entry.priority]:
                entry.priority = item.priority
            entry.count += 1
            if summary.conversation_id is not None:
                entry.conversation_ids.append(summary.conversation_id)
    return sorted(merged.values(), key=lambda e: (_PRIORITY_RANK[e.priority], -e.count, e.text))


def aggregate(
    conversations: Iterable[Conversation],
    summaries: Iterable[FeedbackSummary],
    target_count: int,
    *,
    top_n: int = 10,
) -> AnalyticsSnapshot:
    """Fold conversations and their summaries into an :class:`AnalyticsSnapshot`.

    ``participation_rate`` is conversations per targeted employee and is 0
    when nothing was targeted. Summaries marked unavailable carry no
    sentiment, so they are left out of the distribution and the average.
    """

    conversations = list(conversations)
    summaries = list(summaries)
    available = [s for s in summaries if s.status == "ok"]
    status_counts = Counter(c.status for c in conversations)
    distribution = {sentiment: 0 for sentiment in SENTIMENTS}
    for summary in available:
        distribution[summary.sentiment] = distribution.get(summary.sentiment, 0) + 1
    scores = [s.sentiment_score for s in available if s.sentiment_score is not None]
    total = len(conversations)
    return AnalyticsSnapshot(
        total_conversations=total,
        active_conversations=status_counts.get("active", 0),
        completed_conversations=status_counts.get("completed", 0),
        escalated_conversations=status_counts.get("escalated", 0),
        sentiment_distribution=distribution,
        top_tags=top_tags(summaries, top_n),
        action_items=roll_up_action_items(summaries),
        avg_sentiment_score=round(sum(scores) / len(scores), 2) if scores else 0.0,
        participation_rate=round(total / target_count, 2) if target_count > 0 else 0.0,
    )


def period_start(period: str, now: datetime) -> Optional[datetime]:
    if period not in PERIODS:
        raise ValidationError(
            f"Unknown period '{period}'; expected one of {', '.join(PERIODS)}", field="period"
        )
    days = PERIODS[period]
    return None if days is None else now - timedelta(days=days)


class InsightsService:
    """Builds the admin insights dashboard for one company, or one agent instance."""

    def __init__(
        self,
        agents: AgentRepository,
        conversations: ConversationRepository,
        directory: EmployeeDirectory,
        *,
        top_n: int = 10,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._agents = agents
        self._conversations = conversations
        self._directory = directory
        self._top_n = top_n
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def insights(
        self, period: str = DEFAULT_PERIOD, agent_instance_id: Optional[UUID] = None
    ) -> CompanyInsights:
        since = period_start(period, self._clock())
        conversations = self._conversations.list_conversations(since=since)
        summaries = self._conversations.list_summaries(since=since)
        escalations = self._conversations.list_escalations(since=since)
        if agent_instance_id is None:
            instances = self._agents.list_instances()
        else:
            instance = self._agents.get_instance(agent_instance_id)
            if instance is None:
                raise NotFoundError(f"Agent instance {agent_instance_id} not found")
            instances = [instance]
            conversations = [c for c in conversations if c.agent_instance_id == agent_instance_id]
            summaries = [s for s in summaries if s.agent_instance_id == agent_instance_id]
            escalations = [e for e in escalations if e.agent_instance_id == agent_instance_id]
        target_count = sum(len(self._agents.list_targets(instance.id)) for instance in instances)
        snapshot = aggregate(conversations, summaries, target_count, top_n=self._top_n)

        by_sender = self._conversations.messages_by_sender(
            since=since, agent_instance_id=agent_instance_id
        )
        agent_messages = by_sender.get("agent", 0)
        employee_messages = by_sender.get("employee", 0)
        participants = {c.participant_user_id for c in conversations}
        total_employees = self._directory.count_active()

        return CompanyInsights(
            **snapshot.model_dump(),
            period=period,
            agent_instance_id=agent_instance_id,
            conversations_by_status=dict(Counter(c.status for c in conversations)),
            total_messages=sum(by_sender.values()),
            messages_by_sender=by_sender,
            response_rate=round(employee_messages / agent_messages * 100) if agent_messages else 0,
            escalation_count=len(escalations),
            escalations_by_status=dict(Counter(e.status for e in escalations)),
            unique_participants=len(participants),
            total_employees=total_employees,
            engagement_rate=round(len(participants) / total_employees * 100) if total_employees else 0,
            active_agents=self._agents.count_active_instances(),
            recent_runs=self._agents.list_runs(
                limit=RECENT_RUNS, since=since, agent_instance_id=agent_instance_id
            ),
        )


__all__ = [
    "ActionItemCount",
    "AnalyticsSnapshot",
    "CompanyInsights",
    "InsightsService",
    "TagCount",
    "aggregate",
    "period_start",
    "roll_up_action_items",
    "top_tags",
]
