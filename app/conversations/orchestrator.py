"""Conversation state machine: agent runs and employee turn-taking.

States are ``active`` (initial), ``completed``, ``escalated`` and ``closed``
(terminal). Only :meth:`Orchestrator.handle_employee_reply` moves a
conversation out of ``active``; read tracking is the one mutation accepted
once a conversation is terminal.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import UUID

import psycopg

from app.agents import schemas as agent_schemas
from app.agents.audience import AudienceResolver
from app.agents.repository import AgentRepository, PostgresAgentRepository
from app.agents.schedule import next_run
from app.agents.service import resolve_limits
from app.agents.templates import MessageComposer, TemplateCatalog, TemplateMessageComposer
from app.core.config import OrchestrationSettings, get_settings
from app.core.errors import (
    ConflictError,
    EscalatedError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.core.principal import Principal
from app.employees import EmployeeDirectory, PostgresEmployeeDirectory
from app.feedback.summarizer import Summarizer, detect_distress

from . import schemas
from .repository import ConversationRepository, PostgresConversationRepository

logger = logging.getLogger(__name__)

ESCALATION_NOTICE = "This conversation has been escalated to HR for follow-up."
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100
LIST_LIMIT = 50
CONVERSATION_VIEWS = ("employee", "admin")

_SIGN_OFF = re.compile(
    r"\b(?:that'?s all|that is all|all good for now|nothing else|no more questions|good ?bye|bye)\b",
    re.I,
)


def is_sign_off(text: str) -> bool:
    return bool(_SIGN_OFF.search(text.replace("’", "'")))


class Orchestrator:
    """Drives agent runs and employee replies for one company."""

    def __init__(
        self,
        agents: AgentRepository,
        conversations: ConversationRepository,
        directory: EmployeeDirectory,
        *,
        catalog: Optional[TemplateCatalog] = None,
        composer: Optional[MessageComposer] = None,
        summarizer: Optional[Summarizer] = None,
        settings: Optional[OrchestrationSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._agents = agents
        self._conversations = conversations
        self._directory = directory
        self._resolver = AudienceResolver(directory)
        self._catalog = catalog or TemplateCatalog()
        self._composer = composer or TemplateMessageComposer()
        self._settings = settings or get_settings()
        self._summarizer = summarizer or Summarizer(risk_threshold=self._settings.negative_threshold)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # Runs -----------------------------------------------------------------------
    def run(self, instance_id: UUID, run_type: str = "manual") -> schemas.RunResult:
        """Open a conversation with every targeted employee who has no active one.

        Re-running is idempotent per employee: existing active conversations
        are skipped, and a lost create race is treated the same way.
        """

        started_at = self._clock()
        instance = self._agents.get_instance(instance_id)
        if instance is None:
            raise NotFoundError(f"Agent instance {instance_id} not found")
        if instance.status != "active":
            raise InvalidStateError(
                f"Agent instance is {instance.status}", state=instance.status
            )

        agent_type = self._agent_type(instance)
        targets = sorted(self._resolver.resolve(instance.config), key=str)
        employees = self._directory.get_employees(targets)
        created: List[schemas.Conversation] = []
        skipped = 0
        for employee_id in targets:
            if self._conversations.find_active(instance.id, employee_id) is not None:
                skipped += 1
                continue
            employee = employees.get(employee_id)
            try:
                conversation = self._conversations.create_if_absent(
                    instance.id,
                    employee_id,
                    employee_name=employee.full_name if employee else None,
                    agent_type=agent_type,
                    now=self._clock(),
                )
            except ConflictError:
                logger.debug("Lost create race for %s/%s; skipping", instance.id, employee_id)
                skipped += 1
                continue
            greeting = self._composer.greeting(agent_type, instance.config.tone_preset)
            with self._conversations.locked(conversation.id):
                self._conversations.append_message(conversation.id, "agent", greeting, self._clock())
            created.append(self._conversations.get(conversation.id) or conversation)

        finished_at = self._clock()
        self._advance_schedule(instance.id, finished_at)
        run = self._agents.record_run(
            agent_schemas.AgentRunCreate(
                agent_instance_id=instance.id,
                run_type=run_type,
                status="completed",
                started_at=started_at,
                finished_at=finished_at,
                messages_sent=len(created),
                conversations_touched=len(created),
            )
        )
        logger.info(
            "Agent run %s for instance %s: %d conversations started, %d skipped",
            run.id,
            instance.id,
            len(created),
            skipped,
        )
        return schemas.RunResult(run=run, conversations=created, skipped=skipped)

    def run_due(self, now: Optional[datetime] = None) -> List[agent_schemas.AgentRun]:
        """Run every active instance whose schedule is due at ``now``."""

        now = now or self._clock()
        runs: List[agent_schemas.AgentRun] = []
        for schedule in self._agents.list_due_schedules(now):
            try:
                result = self.run(schedule.agent_instance_id, run_type="scheduled")
            except (InvalidStateError, NotFoundError) as exc:
                logger.info("Skipping scheduled run for %s: %s", schedule.agent_instance_id, exc)
                self._advance_schedule(schedule.agent_instance_id, now)
                continue
            runs.append(result.run)
        return runs

    def _advance_schedule(self, instance_id: UUID, now: datetime) -> None:
        schedule = self._agents.get_schedule(instance_id)
        if schedule is None:
            return
        self._agents.upsert_schedule(
            instance_id,
            cadence=schedule.cadence,
            timezone_name=schedule.timezone,
            next_run_at=next_run(schedule.cadence, now, schedule.timezone),
            last_run_at=now,
            is_active=schedule.is_active and schedule.cadence != "once",
        )

    # Replies --------------------------------------------------------------------
    def handle_employee_reply(
        self, conversation_id: UUID, content: str, employee_user_id: UUID
    ) -> schemas.ReplyResult:
        text = (content or "").strip()
        if not text:
            raise ValidationError("Message content is required", field="content")
        if len(text) > self._settings.max_message_length:
            raise ValidationError(
                f"Message exceeds {self._settings.max_message_length} characters",
                field="content",
            )

        with self._conversations.locked(conversation_id) as conversation:
            if conversation.participant_user_id != employee_user_id:
                raise ForbiddenError("Only the conversation participant can reply")
            self._ensure_open(conversation)

            instance = self._agents.get_instance(conversation.agent_instance_id)
            template = self._catalog.find(instance.agent_id) if instance else None
            if instance is not None:
                max_messages, escalation_enabled = resolve_limits(
                    instance, template, self._settings.default_max_messages
                )
                tone = instance.config.tone_preset
            else:
                max_messages, escalation_enabled = self._settings.default_max_messages, True
                tone = "friendly_peer"

            self._conversations.append_message(conversation.id, "employee", text, self._clock())
            history = self._conversations.list_messages(conversation.id)
            summary = self._summarize(conversation, history, escalation_enabled)

            if summary.risk_level == "high":
                return self._escalate(conversation, history, summary)

            message_count = conversation.message_count + 1
            if message_count >= max_messages:
                self._conversations.set_status(conversation.id, "completed")
                logger.info("Conversation %s reached its message budget", conversation.id)
                return schemas.ReplyResult(response=None, escalated=False, status="completed")

            closing = message_count + 1 >= max_messages or is_sign_off(text)
            turn = sum(1 for m in history if m.sender_type == "employee")
            reply = self._composer.follow_up(
                conversation.agent_type or (template.agent_type if template else "default"),
                tone,
                turn,
                last_reply=text,
                negative=summary.sentiment == "negative",
                closing=closing,
            )
            message = self._conversations.append_message(
                conversation.id, "agent", reply, self._clock()
            )
            status = "active"
            if closing:
                self._conversations.set_status(conversation.id, "completed")
                status = "completed"
            return schemas.ReplyResult(response=message, escalated=False, status=status)

    def _ensure_open(self, conversation: schemas.Conversation) -> None:
        if conversation.status == "escalated":
            raise EscalatedError()
        if conversation.is_terminal:
            raise InvalidStateError(
                f"Conversation is {conversation.status}", state=conversation.status
            )

    def _summarize(
        self,
        conversation: schemas.Conversation,
        history: List[schemas.Message],
        escalation_enabled: bool,
    ) -> schemas.FeedbackSummary:
        summary = self._summarizer.summarize(history, escalation_enabled=escalation_enabled)
        summary = summary.model_copy(
            update={
                "conversation_id": conversation.id,
                "agent_instance_id": conversation.agent_instance_id,
            }
        )
        if summary.status == "unavailable":
            logger.warning("Summary unavailable for conversation %s", conversation.id)
        return self._conversations.save_summary(summary)

    def _escalate(
        self,
        conversation: schemas.Conversation,
        history: List[schemas.Message],
        summary: schemas.FeedbackSummary,
    ) -> schemas.ReplyResult:
        signals: List[str] = []
        for message in history:
            if message.sender_type == "employee":
                signals.extend(s for s in detect_distress(message.content) if s not in signals)
        if signals:
            reason = f"Distress language detected: {', '.join(signals)}"
            escalation_type, severity = "safety", "high"
        else:
            reason = f"Strongly negative sentiment (score {summary.sentiment_score})"
            escalation_type, severity = "negative_sentiment", "moderate"
        self._conversations.save_summary(summary.model_copy(update={"escalated": True}))
        self._conversations.append_message(conversation.id, "system", ESCALATION_NOTICE, self._clock())
        self._conversations.set_status(conversation.id, "escalated")
        escalation = self._conversations.create_escalation(
            conversation,
            reason,
            self._clock(),
            escalation_type=escalation_type,
            severity=severity,
        )
        logger.warning(
            "Conversation %s escalated to HR (escalation %s): %s",
            conversation.id,
            escalation.id,
            reason,
        )
        return schemas.ReplyResult(response=None, escalated=True, status="escalated")

    # Reads ----------------------------------------------------------------------
    def list_conversations(
        self, principal: Principal, view: str = "employee"
    ) -> schemas.ConversationList:
        if view not in CONVERSATION_VIEWS:
            raise ValidationError(f"Unknown view '{view}'", field="view")
        if view == "admin":
            if not principal.is_admin:
                raise ForbiddenError("Admin access required")
            items = self._conversations.list_conversations(limit=LIST_LIMIT)
        else:
            items = self._conversations.list_conversations(
                participant_user_id=principal.user_id, limit=LIST_LIMIT
            )
        return schemas.ConversationList(items=items, total=len(items))

    def get_messages(
        self,
        conversation_id: UUID,
        principal: Principal,
        *,
        cursor: Optional[datetime] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> schemas.MessagePage:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")
        conversation = self._require(conversation_id)
        if not principal.is_admin and conversation.participant_user_id != principal.user_id:
            raise ForbiddenError("You do not have access to this conversation")
        items = self._conversations.list_messages(conversation_id, after=cursor, limit=limit)
        next_cursor = items[-1].created_at if len(items) == limit else None
        return schemas.MessagePage(items=items, next_cursor=next_cursor)

    def mark_read(self, conversation_id: UUID, principal: Principal) -> schemas.ReadReceipt:
        conversation = self._require(conversation_id)
        if conversation.participant_user_id != principal.user_id:
            raise ForbiddenError("Only the conversation participant can mark it read")
        with self._conversations.locked(conversation_id):
            marked = self._conversations.mark_read(conversation_id)
        return schemas.ReadReceipt(conversation_id=conversation_id, unread_count=0, marked=marked)

    # Helpers --------------------------------------------------------------------
    def _require(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _agent_type(self, instance: agent_schemas.AgentInstance) -> str:
        template = self._catalog.find(instance.agent_id)
        return template.agent_type if template else instance.agent_id


def create_postgres_orchestrator(conn: psycopg.Connection, company_id: UUID | str) -> Orchestrator:
    return Orchestrator(
        PostgresAgentRepository(conn, company_id),
        PostgresConversationRepository(conn, company_id),
        PostgresEmployeeDirectory(conn, company_id),
    )


__all__ = [
    "ESCALATION_NOTICE",
    "Orchestrator",
    "create_postgres_orchestrator",
    "is_sign_off",
]
