"""Tests for :class:`app.agents.service.AgentInstanceRegistry`."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest
from app.agents.schemas import AgentInstanceCreate, AgentTemplate, ScheduleSpec, InstanceConfig
from app.agents.service import resolve_limits
from app.agents.templates import TemplateCatalog
from app.core.errors import NotFoundError, ValidationError
from app.feedback.summarizer import Summarizer

from conftest import employee_record


@pytest.fixture
def stack(make_stack):
    company_id = uuid.uuid4()
    employees = [
        employee_record(company_id, "Sarah Chen", "Engineering"),
        employee_record(company_id, "David Kim", "Engineering"),
        employee_record(company_id, "Tom Becker", "Engineering", is_active=False),
        employee_record(company_id, "Maria Lopez", "Product"),
    ]
    return make_stack(employees)


def _payload(**overrides) -> AgentInstanceCreate:
    data = {
        "agent_id": "pulse_check",
        "name": "Engineering Weekly Pulse",
        "config": {"audience_type": "department", "target_department": "Engineering"},
        "schedule": {"cadence": "weekly", "timezone": "America/New_York"},
    }
    data.update(overrides)
    return AgentInstanceCreate(**data)


def test_templates_are_listed() -> None:
    ids = {template.id for template in TemplateCatalog().list()}
    assert {"pulse_check", "onboarding", "exit_interview", "manager_coaching"} <= ids


def test_create_stores_targets_and_schedule(stack) -> None:
    registry = stack.registry()
    admin_id = uuid.uuid4()

    detail = registry.create(_payload(), created_by=admin_id)

    assert detail.status == "active"
    assert detail.created_by == admin_id
    assert detail.template.id == "pulse_check"
    assert len(detail.target_employee_ids) == 2
    assert detail.schedule.cadence == "weekly"
    assert detail.schedule.timezone == "America/New_York"
    # 2024-03-04 is a Monday; the next run is the following Monday at 09:00 EDT.
    assert detail.schedule.next_run_at == datetime(2024, 3, 11, 13, 0, tzinfo=timezone.utc)
    assert detail.stats.conversations == 0


def test_create_defaults_timezone_from_settings(stack) -> None:
    detail = stack.registry().create(_payload(schedule={"cadence": "daily"}))
    assert detail.schedule.timezone == "America/New_York"


@pytest.mark.parametrize(
    ("overrides", "field"),
    [
        ({"agent_id": "nope"}, "agent_id"),
        ({"name": "   "}, "name"),
        ({"config": None}, "config"),
        ({"config": {"audience_type": "department"}}, "target_department"),
        ({"config": {"audience_type": "all", "tone_preset": "grumpy"}}, "tone_preset"),
        ({"schedule": None}, "schedule"),
        ({"schedule": {"cadence": "hourly"}}, "cadence"),
        ({"schedule": {"cadence": "weekly", "timezone": "Nowhere/Land"}}, "timezone"),
    ],
)
def test_create_rejects_invalid_payloads(stack, overrides, field) -> None:
    registry = stack.registry()

    with pytest.raises(ValidationError) as excinfo:
        registry.create(_payload(**overrides))

    assert excinfo.value.field == field
    assert registry.list().total == 0


def test_set_status_any_to_any(stack) -> None:
    registry = stack.registry()
    detail = registry.create(_payload())

    assert registry.set_status(detail.id, "paused").status == "paused"
    assert registry.set_status(detail.id, "draft").status == "draft"
    assert registry.set_status(detail.id, "active").status == "active"


def test_set_status_rejects_unknown_values(stack) -> None:
    registry = stack.registry()
    detail = registry.create(_payload())

    with pytest.raises(ValidationError) as excinfo:
        registry.set_status(detail.id, "archived")

    assert excinfo.value.field == "status"


def test_unknown_instance_is_not_found(stack) -> None:
    registry = stack.registry()
    with pytest.raises(NotFoundError):
        registry.get(uuid.uuid4())
    with pytest.raises(NotFoundError):
        registry.set_status(uuid.uuid4(), "paused")


def test_update_config_rederives_targets(stack) -> None:
    registry = stack.registry()
    detail = registry.create(_payload())

    updated = registry.update_config(
        detail.id, {"audience_type": "department", "target_department": "Product"}
    )

    assert len(updated.target_employee_ids) == 1
    assert updated.config.audience.department == "Product"


def test_instances_are_company_scoped(stack, make_stack) -> None:
    detail = stack.registry().create(_payload())
    other = make_stack(company_id=uuid.uuid4(), shared=stack.shared)

    assert other.registry().list().total == 0
    with pytest.raises(NotFoundError):
        other.registry().get(detail.id)


class _ConstantClassifier:
    def __init__(self, value: float) -> None:
        self._value = value

    def score(self, text: str) -> float:
        return self._value


def test_list_reports_conversation_stats(stack) -> None:
    registry = stack.registry()
    detail = registry.create(_payload())
    orchestrator = stack.orchestrator(summarizer=Summarizer(_ConstantClassifier(0.6)))
    first, second = orchestrator.run(detail.id).conversations
    orchestrator.handle_employee_reply(first.id, "I can't cope anymore", first.participant_user_id)
    orchestrator.handle_employee_reply(second.id, "All good here", second.participant_user_id)

    listed = registry.list()

    assert listed.total == 1
    stats = listed.items[0].stats
    assert stats.conversations == 2
    assert stats.active_conversations == 1
    assert stats.completed_conversations == 0
    # Two greetings, two replies, one agent follow-up and one escalation notice.
    assert stats.messages == 6
    assert stats.escalations == 1
    assert stats.avg_sentiment_score == 0.6
    assert stats.participation_rate == 1.0
    assert registry.get(detail.id).stats == stats


def _template(max_messages: int, escalation_enabled: bool) -> AgentTemplate:
    base = TemplateCatalog().find("pulse_check")
    return base.model_copy(
        update={
            "default_config": base.default_config.model_copy(
                update={"max_messages": max_messages, "escalation_enabled": escalation_enabled}
            )
        }
    )


def test_resolve_limits_prefers_instance_then_template_then_default(stack) -> None:
    registry = stack.registry()
    instance = registry.create(_payload())
    template = _template(6, False)

    assert resolve_limits(instance, template, 10) == (6, False)
    assert resolve_limits(instance, None, 10) == (10, True)

    overridden = instance.model_copy(
        update={"config": InstanceConfig(max_messages=4, escalation_enabled=True)}
    )
    assert resolve_limits(overridden, template, 10) == (4, True)


def test_schedule_spec_accepts_missing_timezone() -> None:
    assert ScheduleSpec(cadence="once").timezone is None
