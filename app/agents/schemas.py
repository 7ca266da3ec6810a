"""Pydantic schemas for agent templates, instances, schedules and runs."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..core.errors import ValidationError

AgentType = Literal[
    "pulse_check", "onboarding", "exit_interview", "manager_coaching", "chat_agent"
]
TonePreset = Literal["poke_lite", "friendly_peer", "professional_hr", "witty_but_safe"]
InstanceStatus = Literal["active", "paused", "draft"]
Cadence = Literal["once", "daily", "weekly", "biweekly", "monthly"]
RunType = Literal["manual", "scheduled"]
RunStatus = Literal["completed", "failed"]

TONE_PRESETS: tuple[str, ...] = (
    "poke_lite",
    "friendly_peer",
    "professional_hr",
    "witty_but_safe",
)
CADENCES: tuple[str, ...] = ("once", "daily", "weekly", "biweekly", "monthly")
INSTANCE_STATUSES: tuple[str, ...] = ("active", "paused", "draft")


# ---------------------------------------------------------------------------
# Templates


class TemplateDefaults(BaseModel):
    max_messages: int = 10
    escalation_enabled: bool = True


class AgentTemplate(BaseModel):
    """System-provided agent definition; never mutated by companies."""

    model_config = {"frozen": True}

    id: str
    name: str
    slug: str
    agent_type: AgentType
    description: str
    base_prompt: str
    tools_allowed: tuple[str, ...] = ()
    default_config: TemplateDefaults = Field(default_factory=TemplateDefaults)


class AgentTemplateList(BaseModel):
    items: list[AgentTemplate]
    total: int


# ---------------------------------------------------------------------------
# Audience tagged union


class AllAudience(BaseModel):
    type: Literal["all"] = "all"


class DepartmentAudience(BaseModel):
    type: Literal["department"] = "department"
    department: str = Field(..., min_length=1)


class SpecificAudience(BaseModel):
    type: Literal["specific"] = "specific"
    employee_ids: list[UUID] = Field(..., min_length=1)


Audience = Annotated[
    Union[AllAudience, DepartmentAudience, SpecificAudience],
    Field(discriminator="type"),
]


class InstanceConfig(BaseModel):
    """Decoded instance configuration.

    The stored JSON keeps the flat shape used by the admin UI
    (``audience_type``, ``target_department``, ``target_employee_ids``);
    :func:`decode_instance_config` turns it into this typed form once.
    """

    tone_preset: TonePreset = "friendly_peer"
    audience: Audience = Field(default_factory=AllAudience)
    max_messages: int | None = Field(default=None, ge=2)
    escalation_enabled: bool | None = None

    def to_storage(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tone_preset": self.tone_preset,
            "audience_type": self.audience.type,
        }
        if isinstance(self.audience, DepartmentAudience):
            data["target_department"] = self.audience.department
        elif isinstance(self.audience, SpecificAudience):
            data["target_employee_ids"] = [str(i) for i in self.audience.employee_ids]
        if self.max_messages is not None:
            data["max_messages"] = self.max_messages
        if self.escalation_enabled is not None:
            data["escalation_enabled"] = self.escalation_enabled
        return data


def decode_instance_config(raw: Mapping[str, Any] | None) -> InstanceConfig:
    """Validate the loosely-typed ``config`` payload of an instance.

    Raises:
        ValidationError: With ``field`` set to the offending config key.
    """

    if raw is None:
        raise ValidationError("config is required", field="config")
    if isinstance(raw, InstanceConfig):
        return raw
    audience_type = raw.get("audience_type")
    if audience_type is None:
        raise ValidationError("config.audience_type is required", field="audience_type")
    if audience_type == "all":
        audience: dict[str, Any] = {"type": "all"}
    elif audience_type == "department":
        department = raw.get("target_department")
        if not isinstance(department, str) or not department.strip():
            raise ValidationError(
                "config.target_department is required for department audiences",
                field="target_department",
            )
        audience = {"type": "department", "department": department}
    elif audience_type == "specific":
        ids = raw.get("target_employee_ids")
        if not ids:
            raise ValidationError(
                "config.target_employee_ids is required for specific audiences",
                field="target_employee_ids",
            )
        audience = {"type": "specific", "employee_ids": list(ids)}
    else:
        raise ValidationError(
            f"Unknown audience_type '{audience_type}'", field="audience_type"
        )

    payload: dict[str, Any] = {
        "tone_preset": raw.get("tone_preset") or "friendly_peer",
        "audience": audience,
    }
    for key in ("max_messages", "escalation_enabled"):
        if raw.get(key) is not None:
            payload[key] = raw[key]
    try:
        return InstanceConfig.model_validate(payload)
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        loc = [str(part) for part in error.get("loc", ()) if not isinstance(part, int)]
        field = _FIELD_ALIASES.get(loc[-1] if loc else "config", loc[-1] if loc else "config")
        raise ValidationError(f"Invalid config: {error.get('msg')}", field=field) from exc


_FIELD_ALIASES = {
    "employee_ids": "target_employee_ids",
    "department": "target_department",
    "audience": "audience_type",
}


# ---------------------------------------------------------------------------
# Schedules


class ScheduleSpec(BaseModel):
    cadence: str
    timezone: str | None = None


class AgentSchedule(BaseModel):
    id: UUID
    company_id: UUID
    agent_instance_id: UUID
    cadence: Cadence
    timezone: str
    next_run_at: datetime
    last_run_at: datetime | None = None
    is_active: bool = True


# ---------------------------------------------------------------------------
# Instances


class AgentInstanceCreate(BaseModel):
    """Payload used to create a new agent instance."""

    agent_id: str = Field(..., description="Template identifier, e.g. 'pulse_check'")
    name: str
    config: dict[str, Any] | None = None
    schedule: ScheduleSpec | None = None


class AgentInstanceStatusUpdate(BaseModel):
    status: str


class AgentInstanceConfigUpdate(BaseModel):
    config: dict[str, Any]


class AgentInstance(BaseModel):
    id: UUID
    company_id: UUID
    agent_id: str
    created_by: UUID | None = None
    name: str
    config: InstanceConfig
    status: InstanceStatus = "active"
    created_at: datetime
    updated_at: datetime


class InstanceStats(BaseModel):
    """Per-instance dashboard figures; ``participation_rate`` is conversations per target."""

    conversations: int = 0
    active_conversations: int = 0
    completed_conversations: int = 0
    messages: int = 0
    avg_sentiment_score: float = 0.0
    escalations: int = 0
    participation_rate: float = 0.0


class AgentInstanceSummary(AgentInstance):
    template: AgentTemplate | None = None
    schedule: AgentSchedule | None = None
    stats: InstanceStats = Field(default_factory=InstanceStats)


class AgentInstanceDetail(AgentInstanceSummary):
    target_employee_ids: list[UUID] = Field(default_factory=list)


class AgentInstanceList(BaseModel):
    items: list[AgentInstanceSummary]
    total: int


# ---------------------------------------------------------------------------
# Runs


class AgentRun(BaseModel):
    id: UUID
    company_id: UUID
    agent_instance_id: UUID
    run_type: RunType = "manual"
    status: RunStatus = "completed"
    started_at: datetime
    finished_at: datetime | None = None
    messages_sent: int = 0
    conversations_touched: int = 0
    agent_name: str | None = None


class AgentRunCreate(BaseModel):
    agent_instance_id: UUID
    run_type: RunType = "manual"
    status: RunStatus = "completed"
    started_at: datetime
    finished_at: datetime | None = None
    messages_sent: int = 0
    conversations_touched: int = 0


class AgentRunList(BaseModel):
    items: list[AgentRun]
    total: int
