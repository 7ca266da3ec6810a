"""Database repository for conversations, messages, summaries and escalations."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, ContextManager, Dict, Iterator, List, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from app.agents.schemas import InstanceStats
from app.core.db import require_company_id
from app.core.errors import ConflictError, NotFoundError

from . import schemas

TICK = timedelta(microseconds=1)


def _next_timestamp(now: datetime, previous: Optional[datetime]) -> datetime:
    if previous is not None and now <= previous:
        return previous + TICK
    return now


class ConversationRepository(Protocol):
    """Abstraction for persisting conversation artefacts for one company.

    Callers mutate a conversation only inside :meth:`locked`, which hands back
    a fresh read of the row and serialises concurrent writers.
    """

    @property
    def company_id(self) -> UUID: ...

    def create_if_absent(
        self,
        agent_instance_id: UUID,
        participant_user_id: UUID,
        *,
        employee_name: Optional[str],
        agent_type: Optional[str],
        now: datetime,
    ) -> schemas.Conversation: ...

    def find_active(
        self, agent_instance_id: UUID, participant_user_id: UUID
    ) -> Optional[schemas.Conversation]: ...

    def get(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def locked(self, conversation_id: UUID) -> ContextManager[schemas.Conversation]: ...

    def append_message(
        self, conversation_id: UUID, sender_type: str, content: str, now: datetime
    ) -> schemas.Message: ...

    def set_status(self, conversation_id: UUID, status: str) -> schemas.Conversation: ...

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Message]: ...

    def list_conversations(
        self,
        *,
        participant_user_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Conversation]: ...

    def mark_read(self, conversation_id: UUID) -> int: ...

    def save_summary(self, summary: schemas.FeedbackSummary) -> schemas.FeedbackSummary: ...

    def get_summary(self, conversation_id: UUID) -> Optional[schemas.FeedbackSummary]: ...

    def list_summaries(self, since: Optional[datetime] = None) -> List[schemas.FeedbackSummary]: ...

    def create_escalation(
        self,
        conversation: schemas.Conversation,
        reason: str,
        now: datetime,
        *,
        escalation_type: str,
        severity: str,
    ) -> schemas.Escalation: ...

    def list_escalations(self, since: Optional[datetime] = None) -> List[schemas.Escalation]: ...

    def instance_stats(self) -> Dict[UUID, InstanceStats]: ...

    def messages_by_sender(
        self, since: Optional[datetime] = None, agent_instance_id: Optional[UUID] = None
    ) -> Dict[str, int]: ...


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`."""

    _COLUMNS = (
        "id, company_id, agent_instance_id, participant_user_id, employee_name, agent_type, "
        "status, message_count, unread_count, last_message_at, created_at, updated_at"
    )
    _MESSAGE_COLUMNS = "id, company_id, conversation_id, sender_type, content, sequence, is_read, created_at"
    _SUMMARY_COLUMNS = (
        "id, company_id, conversation_id, agent_instance_id, sentiment, sentiment_score, risk_level, "
        "tags, action_items, engagement_score, escalated, summary, status, created_at"
    )
    _ESCALATION_COLUMNS = (
        "id, company_id, conversation_id, agent_instance_id, participant_user_id, "
        "escalation_type, severity, reason, status, created_at"
    )

    def __init__(self, conn: psycopg.Connection, company_id: UUID | str) -> None:
        self._conn = conn
        self._company_id = require_company_id(company_id)

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    @property
    def company_id(self) -> UUID:
        return self._company_id

    # Conversation operations --------------------------------------------------
    def create_if_absent(
        self,
        agent_instance_id: UUID,
        participant_user_id: UUID,
        *,
        employee_name: Optional[str],
        agent_type: Optional[str],
        now: datetime,
    ) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO conversations
                    (company_id, agent_instance_id, participant_user_id, employee_name, agent_type,
                     status, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, 'active', %s, %s)
                ON CONFLICT (agent_instance_id, participant_user_id) WHERE status = 'active'
                DO NOTHING
                RETURNING {self._COLUMNS}
                """,
                (
                    self._company_id,
                    agent_instance_id,
                    participant_user_id,
                    employee_name,
                    agent_type,
                    now,
                    now,
                ),
            )
            row = cur.fetchone()
        if not row:
            raise ConflictError(
                f"Active conversation already exists for {agent_instance_id}/{participant_user_id}"
            )
        return schemas.Conversation(**row)

    def find_active(
        self, agent_instance_id: UUID, participant_user_id: UUID
    ) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM conversations
                WHERE company_id = %s AND agent_instance_id = %s
                  AND participant_user_id = %s AND status = 'active'
                """,
                (self._company_id, agent_instance_id, participant_user_id),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    def get(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {self._COLUMNS} FROM conversations WHERE company_id = %s AND id = %s",
                (self._company_id, conversation_id),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row) if row else None

    @contextmanager
    def locked(self, conversation_id: UUID) -> Iterator[schemas.Conversation]:
        # The row lock lives until the surrounding transaction ends.
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._COLUMNS} FROM conversations
                WHERE company_id = %s AND id = %s
                FOR UPDATE
                """,
                (self._company_id, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        yield schemas.Conversation(**row)

    def append_message(
        self, conversation_id: UUID, sender_type: str, content: str, now: datetime
    ) -> schemas.Message:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT sequence, created_at FROM messages
                WHERE company_id = %s AND conversation_id = %s
                ORDER BY sequence DESC
                LIMIT 1
                """,
                (self._company_id, conversation_id),
            )
            last = cur.fetchone()
            sequence = (last["sequence"] if last else 0) + 1
            created_at = _next_timestamp(now, last["created_at"] if last else None)
            cur.execute(
                f"""
                INSERT INTO messages
                    (company_id, conversation_id, sender_type, content, sequence, is_read, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {self._MESSAGE_COLUMNS}
                """,
                (
                    self._company_id,
                    conversation_id,
                    sender_type,
                    content,
                    sequence,
                    sender_type == "employee",
                    created_at,
                ),
            )
            row = cur.fetchone()
            cur.execute(
                """
                UPDATE conversations
                SET message_count = message_count + 1,
                    unread_count = unread_count + %s,
                    last_message_at = %s,
                    updated_at = now()
                WHERE company_id = %s AND id = %s
                """,
                (0 if sender_type == "employee" else 1, created_at, self._company_id, conversation_id),
            )
        return schemas.Message(**row)

    def set_status(self, conversation_id: UUID, status: str) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE conversations SET status = %s, updated_at = now()
                WHERE company_id = %s AND id = %s
                RETURNING {self._COLUMNS}
                """,
                (status, self._company_id, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return schemas.Conversation(**row)

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Message]:
        query = f"SELECT {self._MESSAGE_COLUMNS} FROM messages WHERE company_id = %s AND conversation_id = %s"
        params: List[Any] = [self._company_id, conversation_id]
        if after is not None:
            query += " AND created_at > %s"
            params.append(after)
        query += " ORDER BY sequence ASC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def list_conversations(
        self,
        *,
        participant_user_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Conversation]:
        columns = ", ".join(f"c.{column.strip()}" for column in self._COLUMNS.split(","))
        query = f"""
            SELECT {columns}, i.name AS agent_name
            FROM conversations c
            LEFT JOIN agent_instances i ON i.id = c.agent_instance_id AND i.company_id = c.company_id
            WHERE c.company_id = %s
        """
        params: List[Any] = [self._company_id]
        if participant_user_id is not None:
            query += " AND c.participant_user_id = %s"
            params.append(participant_user_id)
        if since is not None:
            query += " AND c.created_at >= %s"
            params.append(since)
        query += " ORDER BY c.last_message_at DESC NULLS LAST, c.created_at DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.Conversation(**row) for row in rows]

    def mark_read(self, conversation_id: UUID) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE messages SET is_read = true
                WHERE company_id = %s AND conversation_id = %s
                  AND sender_type <> 'employee' AND NOT is_read
                """,
                (self._company_id, conversation_id),
            )
            marked = cur.rowcount or 0
            cur.execute(
                """
                UPDATE conversations SET unread_count = 0, updated_at = now()
                WHERE company_id = %s AND id = %s
                """,
                (self._company_id, conversation_id),
            )
        return marked

    # Summaries ----------------------------------------------------------------
    def save_summary(self, summary: schemas.FeedbackSummary) -> schemas.FeedbackSummary:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO feedback_summaries
                    (company_id, conversation_id, agent_instance_id, sentiment, sentiment_score,
                     risk_level, tags, action_items, engagement_score, escalated, summary, status)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (conversation_id) DO UPDATE
                SET sentiment = EXCLUDED.sentiment,
                    sentiment_score = EXCLUDED.sentiment_score,
                    risk_level = EXCLUDED.risk_level,
                    tags = EXCLUDED.tags,
                    action_items = EXCLUDED.action_items,
                    engagement_score = EXCLUDED.engagement_score,
                    escalated = EXCLUDED.escalated,
                    summary = EXCLUDED.summary,
                    status = EXCLUDED.status,
                    created_at = now()
                RETURNING {self._SUMMARY_COLUMNS}
                """,
                (
                    self._company_id,
                    summary.conversation_id,
                    summary.agent_instance_id,
                    summary.sentiment,
                    summary.sentiment_score,
                    summary.risk_level,
                    Jsonb(list(summary.tags)),
                    Jsonb([item.model_dump() for item in summary.action_items]),
                    summary.engagement_score,
                    summary.escalated,
                    summary.summary,
                    summary.status,
                ),
            )
            row = cur.fetchone()
        return schemas.FeedbackSummary(**row)

    def get_summary(self, conversation_id: UUID) -> Optional[schemas.FeedbackSummary]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {self._SUMMARY_COLUMNS} FROM feedback_summaries
                WHERE company_id = %s AND conversation_id = %s
                """,
                (self._company_id, conversation_id),
            )
            row = cur.fetchone()
        return schemas.FeedbackSummary(**row) if row else None

    def list_summaries(self, since: Optional[datetime] = None) -> List[schemas.FeedbackSummary]:
        columns = ", ".join(f"s.{column.strip()}" for column in self._SUMMARY_COLUMNS.split(","))
        query = f"""
            SELECT {columns} FROM feedback_summaries s
            JOIN conversations c ON c.id = s.conversation_id AND c.company_id = s.company_id
            WHERE s.company_id = %s
        """
        params: List[Any] = [self._company_id]
        if since is not None:
            query += " AND c.created_at >= %s"
            params.append(since)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.FeedbackSummary(**row) for row in rows]

    # Escalations --------------------------------------------------------------
    def create_escalation(
        self,
        conversation: schemas.Conversation,
        reason: str,
        now: datetime,
        *,
        escalation_type: str,
        severity: str,
    ) -> schemas.Escalation:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO agent_escalations
                    (company_id, conversation_id, agent_instance_id, participant_user_id,
                     escalation_type, severity, reason, status, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, 'open', %s)
                RETURNING {self._ESCALATION_COLUMNS}
                """,
                (
                    self._company_id,
                    conversation.id,
                    conversation.agent_instance_id,
                    conversation.participant_user_id,
                    escalation_type,
                    severity,
                    reason,
                    now,
                ),
            )
            row = cur.fetchone()
        return schemas.Escalation(**row)

    def list_escalations(self, since: Optional[datetime] = None) -> List[schemas.Escalation]:
        query = f"""
            SELECT {self._ESCALATION_COLUMNS}
            FROM agent_escalations
            WHERE company_id = %s
        """
        params: List[Any] = [self._company_id]
        if since is not None:
            query += " AND created_at >= %s"
            params.append(since)
        query += " ORDER BY created_at DESC"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.Escalation(**row) for row in rows]

    # Analytics ----------------------------------------------------------------
    def instance_stats(self) -> Dict[UUID, InstanceStats]:
        # feedback_summaries is unique per conversation, so the join never fans out.
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT c.agent_instance_id,
                       COUNT(*) AS conversations,
                       COUNT(*) FILTER (WHERE c.status = 'active') AS active_conversations,
                       COUNT(*) FILTER (WHERE c.status = 'completed') AS completed_conversations,
                       COALESCE(SUM(c.message_count), 0) AS messages,
                       AVG(s.sentiment_score) FILTER (WHERE s.status = 'ok') AS avg_sentiment_score,
                       COUNT(*) FILTER (WHERE s.escalated) AS escalations
                FROM conversations c
                LEFT JOIN feedback_summaries s
                  ON s.conversation_id = c.id AND s.company_id = c.company_id
                WHERE c.company_id = %s
                GROUP BY c.agent_instance_id
                """,
                (self._company_id,),
            )
            rows = cur.fetchall()
        return {
            row["agent_instance_id"]: InstanceStats(
                conversations=int(row["conversations"]),
                active_conversations=int(row["active_conversations"]),
                completed_conversations=int(row["completed_conversations"]),
                messages=int(row["messages"]),
                avg_sentiment_score=round(float(row["avg_sentiment_score"] or 0.0), 2),
                escalations=int(row["escalations"]),
            )
            for row in rows
        }

    def messages_by_sender(
        self, since: Optional[datetime] = None, agent_instance_id: Optional[UUID] = None
    ) -> Dict[str, int]:
        query = """
            SELECT m.sender_type, COUNT(*) AS total
            FROM messages m
            JOIN conversations c ON c.id = m.conversation_id AND c.company_id = m.company_id
            WHERE m.company_id = %s
        """
        params: List[Any] = [self._company_id]
        if since is not None:
            query += " AND m.created_at >= %s"
            params.append(since)
        if agent_instance_id is not None:
            query += " AND c.agent_instance_id = %s"
            params.append(agent_instance_id)
        query += " GROUP BY m.sender_type"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return {row["sender_type"]: int(row["total"]) for row in rows}


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryConversationRepository:
    """Thread-safe in-process store with the same contract as the Postgres one.

    ``shared`` lets several company-scoped views (and several threads) work
    against one backing store, the way separate requests share a database.
    """

    def __init__(self, company_id: UUID | str, *, shared: Optional[Dict[str, Any]] = None) -> None:
        self._company_id = require_company_id(company_id)
        state = shared if shared is not None else {}
        self._conversations: Dict[UUID, schemas.Conversation] = state.setdefault("conversations", {})
        self._messages: Dict[UUID, List[schemas.Message]] = state.setdefault("messages", {})
        self._summaries: Dict[UUID, schemas.FeedbackSummary] = state.setdefault("summaries", {})
        self._escalations: List[schemas.Escalation] = state.setdefault("escalations", [])
        self._row_locks: Dict[UUID, threading.RLock] = state.setdefault("row_locks", {})
        self._lock: threading.RLock = state.setdefault("conversation_lock", threading.RLock())

    @property
    def company_id(self) -> UUID:
        return self._company_id

    def _row_lock(self, conversation_id: UUID) -> threading.RLock:
        with self._lock:
            return self._row_locks.setdefault(conversation_id, threading.RLock())

    def _scoped(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.company_id != self._company_id:
            return None
        return conversation

    def create_if_absent(
        self,
        agent_instance_id: UUID,
        participant_user_id: UUID,
        *,
        employee_name: Optional[str],
        agent_type: Optional[str],
        now: datetime,
    ) -> schemas.Conversation:
        with self._lock:
            if self.find_active(agent_instance_id, participant_user_id) is not None:
                raise ConflictError(
                    f"Active conversation already exists for {agent_instance_id}/{participant_user_id}"
                )
            conversation = schemas.Conversation(
                id=uuid4(),
                company_id=self._company_id,
                agent_instance_id=agent_instance_id,
                participant_user_id=participant_user_id,
                employee_name=employee_name,
                agent_type=agent_type,
                status="active",
                created_at=now,
                updated_at=now,
            )
            self._conversations[conversation.id] = conversation
            self._messages[conversation.id] = []
        return conversation.model_copy()

    def find_active(
        self, agent_instance_id: UUID, participant_user_id: UUID
    ) -> Optional[schemas.Conversation]:
        for conversation in self._conversations.values():
            if (
                conversation.company_id == self._company_id
                and conversation.agent_instance_id == agent_instance_id
                and conversation.participant_user_id == participant_user_id
                and conversation.status == "active"
            ):
                return conversation.model_copy()
        return None

    def get(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        conversation = self._scoped(conversation_id)
        return conversation.model_copy() if conversation else None

    @contextmanager
    def locked(self, conversation_id: UUID) -> Iterator[schemas.Conversation]:
        if self._scoped(conversation_id) is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        with self._row_lock(conversation_id):
            yield self._conversations[conversation_id].model_copy()

    def append_message(
        self, conversation_id: UUID, sender_type: str, content: str, now: datetime
    ) -> schemas.Message:
        with self._row_lock(conversation_id):
            conversation = self._scoped(conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            history = self._messages.setdefault(conversation_id, [])
            previous = history[-1] if history else None
            created_at = _next_timestamp(now, previous.created_at if previous else None)
            message = schemas.Message(
                id=uuid4(),
                company_id=self._company_id,
                conversation_id=conversation_id,
                sender_type=sender_type,
                content=content,
                sequence=(previous.sequence if previous else 0) + 1,
                is_read=sender_type == "employee",
                created_at=created_at,
            )
            history.append(message)
            self._conversations[conversation_id] = conversation.model_copy(
                update={
                    "message_count": conversation.message_count + 1,
                    "unread_count": conversation.unread_count + (0 if sender_type == "employee" else 1),
                    "last_message_at": created_at,
                    "updated_at": datetime.now(timezone.utc),
                }
            )
        return message.model_copy()

    def set_status(self, conversation_id: UUID, status: str) -> schemas.Conversation:
        with self._row_lock(conversation_id):
            conversation = self._scoped(conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            updated = conversation.model_copy(
                update={"status": status, "updated_at": datetime.now(timezone.utc)}
            )
            self._conversations[conversation_id] = updated
        return updated.model_copy()

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Message]:
        if self._scoped(conversation_id) is None:
            return []
        items = [
            m.model_copy()
            for m in self._messages.get(conversation_id, [])
            if after is None or m.created_at > after
        ]
        return items[:limit] if limit is not None else items

    def list_conversations(
        self,
        *,
        participant_user_id: Optional[UUID] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[schemas.Conversation]:
        items = [
            c.model_copy()
            for c in self._conversations.values()
            if c.company_id == self._company_id
            and (participant_user_id is None or c.participant_user_id == participant_user_id)
            and (since is None or c.created_at >= since)
        ]
        items.sort(key=lambda c: (c.last_message_at or c.created_at, c.created_at), reverse=True)
        return items[:limit] if limit is not None else items

    def mark_read(self, conversation_id: UUID) -> int:
        with self._row_lock(conversation_id):
            conversation = self._scoped(conversation_id)
            if conversation is None:
                raise NotFoundError(f"Conversation {conversation_id} not found")
            marked = 0
            history = self._messages.get(conversation_id, [])
            for index, message in enumerate(history):
                if message.sender_type != "employee" and not message.is_read:
                    history[index] = message.model_copy(update={"is_read": True})
                    marked += 1
            self._conversations[conversation_id] = conversation.model_copy(update={"unread_count": 0})
        return marked

    def save_summary(self, summary: schemas.FeedbackSummary) -> schemas.FeedbackSummary:
        existing = self._summaries.get(summary.conversation_id)
        stored = summary.model_copy(
            update={
                "id": existing.id if existing else uuid4(),
                "company_id": self._company_id,
                "created_at": datetime.now(timezone.utc),
            }
        )
        with self._lock:
            self._summaries[summary.conversation_id] = stored
        return stored.model_copy()

    def get_summary(self, conversation_id: UUID) -> Optional[schemas.FeedbackSummary]:
        summary = self._summaries.get(conversation_id)
        if summary is None or summary.company_id != self._company_id:
            return None
        return summary.model_copy()

    def list_summaries(self, since: Optional[datetime] = None) -> List[schemas.FeedbackSummary]:
        allowed = {c.id for c in self.list_conversations(since=since)}
        return [s.model_copy() for cid, s in self._summaries.items() if cid in allowed]

    def create_escalation(
        self,
        conversation: schemas.Conversation,
        reason: str,
        now: datetime,
        *,
        escalation_type: str,
        severity: str,
    ) -> schemas.Escalation:
        escalation = schemas.Escalation(
            id=uuid4(),
            company_id=self._company_id,
            conversation_id=conversation.id,
            agent_instance_id=conversation.agent_instance_id,
            participant_user_id=conversation.participant_user_id,
            escalation_type=escalation_type,
            severity=severity,
            reason=reason,
            created_at=now,
        )
        with self._lock:
            self._escalations.append(escalation)
        return escalation.model_copy()

    def list_escalations(self, since: Optional[datetime] = None) -> List[schemas.Escalation]:
        items = [
            e.model_copy()
            for e in self._escalations
            if e.company_id == self._company_id and (since is None or e.created_at >= since)
        ]
        items.sort(key=lambda e: e.created_at, reverse=True)
        return items

    def instance_stats(self) -> Dict[UUID, InstanceStats]:
        stats: Dict[UUID, InstanceStats] = {}
        scores: Dict[UUID, List[float]] = {}
        for conversation in self.list_conversations():
            entry = stats.setdefault(conversation.agent_instance_id, InstanceStats())
            entry.conversations += 1
            entry.messages += conversation.message_count
            if conversation.status == "active":
                entry.active_conversations += 1
            elif conversation.status == "completed":
                entry.completed_conversations += 1
            summary = self._summaries.get(conversation.id)
            if summary is None:
                continue
            if summary.escalated:
                entry.escalations += 1
            if summary.status == "ok" and summary.sentiment_score is not None:
                scores.setdefault(conversation.agent_instance_id, []).append(summary.sentiment_score)
        for instance_id, values in scores.items():
            stats[instance_id].avg_sentiment_score = round(sum(values) / len(values), 2)
        return stats

    def messages_by_sender(
        self, since: Optional[datetime] = None, agent_instance_id: Optional[UUID] = None
    ) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for conversation in self.list_conversations():
            if agent_instance_id is not None and conversation.agent_instance_id != agent_instance_id:
                continue
            for message in self._messages.get(conversation.id, []):
                if since is None or message.created_at >= since:
                    counts[message.sender_type] = counts.get(message.sender_type, 0) + 1
        return counts


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
]
