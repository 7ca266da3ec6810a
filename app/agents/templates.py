"""System agent templates and the message tables agents speak from.

Greetings and follow-ups are plain data keyed by agent type and tone. The
:class:`MessageComposer` protocol is the seam a generative backend would plug
into; the orchestrator only ever talks to a composer.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol

from .schemas import AgentTemplate, TemplateDefaults

AGENT_TEMPLATES: tuple[AgentTemplate, ...] = (
    AgentTemplate(
        id="pulse_check",
        name="Pulse Check",
        slug="pulse_check",
        agent_type="pulse_check",
        description="Regular check-ins to understand employee sentiment and wellbeing",
        base_prompt=(
            "You are a friendly HR assistant conducting a pulse check. Ask about "
            "workload, wellbeing, and any blockers. Keep responses short and empathetic."
        ),
        tools_allowed=("sentiment_analysis", "topic_extraction"),
        default_config=TemplateDefaults(max_messages=6, escalation_enabled=True),
    ),
    AgentTemplate(
        id="onboarding",
        name="Onboarding Assistant",
        slug="onboarding",
        agent_type="onboarding",
        description="Helps new employees get settled and answers common questions",
        base_prompt=(
            "You are a welcoming onboarding assistant helping new employees get "
            "settled. Ask about their experience, equipment needs, and team integration."
        ),
        tools_allowed=("sentiment_analysis", "escalation"),
        default_config=TemplateDefaults(max_messages=10, escalation_enabled=True),
    ),
    AgentTemplate(
        id="exit_interview",
        name="Exit Interview",
        slug="exit_interview",
        agent_type="exit_interview",
        description="Conducts thoughtful exit interviews to gather feedback",
        base_prompt=(
            "You are conducting a thoughtful exit interview. Ask about reasons for "
            "leaving, feedback on management, and suggestions for improvement."
        ),
        tools_allowed=("sentiment_analysis", "topic_extraction", "escalation"),
        default_config=TemplateDefaults(max_messages=12, escalation_enabled=True),
    ),
    AgentTemplate(
        id="manager_coaching",
        name="Manager Coaching",
        slug="manager_coaching",
        agent_type="manager_coaching",
        description="Supports managers with leadership and team challenges",
        base_prompt=(
            "You are a supportive coaching assistant for managers. Discuss team "
            "dynamics, leadership challenges, and development opportunities."
        ),
        tools_allowed=("sentiment_analysis",),
        default_config=TemplateDefaults(max_messages=10, escalation_enabled=False),
    ),
    AgentTemplate(
        id="chat_agent",
        name="HR Chat",
        slug="chat_agent",
        agent_type="chat_agent",
        description="Open-ended HR conversations started by the company",
        base_prompt="You are an approachable HR assistant. Listen first and keep answers brief.",
        tools_allowed=("sentiment_analysis", "escalation"),
        default_config=TemplateDefaults(max_messages=20, escalation_enabled=True),
    ),
)


class TemplateCatalog:
    """Read-only lookup over the system agent templates."""

    def __init__(self, templates: Sequence[AgentTemplate] = AGENT_TEMPLATES) -> None:
        self._templates = {template.id: template for template in templates}

    def list(self) -> list[AgentTemplate]:
        return list(self._templates.values())

    def find(self, template_id: str) -> AgentTemplate | None:
        return self._templates.get(template_id)


# ---------------------------------------------------------------------------
# Message tables

DEFAULT_KEY = "default"

GREETINGS: Mapping[str, Mapping[str, str]] = {
    "pulse_check": {
        "poke_lite": "Hey! Quick check - how's your week going? 🙂",
        "friendly_peer": "Hi there! Just wanted to check in - how are things going for you this week?",
        "professional_hr": "Good day! I'm reaching out to understand how your week has been going. How are you feeling about your workload?",
        "witty_but_safe": "Hey! Time for our weekly vibe check. On a scale of 'living the dream' to 'send coffee', where are we today?",
    },
    "onboarding": {
        "poke_lite": "Welcome aboard! How's your first day going? 🎉",
        "friendly_peer": "Hey, welcome to the team! How are you settling in so far?",
        "professional_hr": "Welcome to the company! I'm here to help you get started. How has your onboarding experience been?",
        "witty_but_safe": "Welcome to the crew! Ready to change the world (or at least get your laptop working)?",
    },
    "exit_interview": {
        "poke_lite": "Hey, sorry to see you go! Mind sharing what led to your decision?",
        "friendly_peer": "Hi there. I know you're moving on, and I wanted to chat about your experience here. What's been on your mind?",
        "professional_hr": "Thank you for taking the time to speak with me. As you transition, I'd like to understand your experience. What factors contributed to your decision to leave?",
        "witty_but_safe": "So, you're breaking up with us... We promise not to cry. What made you swipe left?",
    },
    "manager_coaching": {
        "poke_lite": "Hey! How's the team doing? Any wins or challenges lately?",
        "friendly_peer": "Hi! Just checking in on how things are going with your team. What's top of mind for you?",
        "professional_hr": "Hello! I'd like to discuss your team's progress. What leadership challenges or opportunities are you currently navigating?",
        "witty_but_safe": "Captain! How's the ship sailing? Any mutinies we should know about?",
    },
    DEFAULT_KEY: {
        DEFAULT_KEY: "Hi there! Just wanted to check in - how are things going for you this week?",
    },
}

FOLLOW_UP_QUESTIONS: Mapping[str, Sequence[str]] = {
    "pulse_check": (
        "Is there anything blocking you or causing extra stress right now?",
        "How are you feeling about the team dynamics lately?",
        "What's one thing that would make next week better for you?",
    ),
    "onboarding": (
        "Do you have everything you need - laptop, accounts, access?",
        "How are you getting along with your team so far?",
        "Is anything about how we work still unclear?",
        "Who has been most helpful to you this week?",
    ),
    "exit_interview": (
        "How would you describe your relationship with your manager?",
        "Were there growth opportunities you felt were missing?",
        "How do you feel about how your work was recognised?",
        "What's one thing we should change for the people who stay?",
    ),
    "manager_coaching": (
        "What's the biggest challenge your team is facing right now?",
        "How are you supporting the people who are stretched the most?",
        "What would help you grow as a leader this quarter?",
    ),
    DEFAULT_KEY: (
        "Would you like to tell me more about that?",
        "How are you feeling about things overall?",
        "Is there anything specific you'd like to discuss?",
    ),
}

ACKNOWLEDGEMENTS: Mapping[str, str] = {
    "poke_lite": "Got it!",
    "friendly_peer": "Thanks for sharing!",
    "professional_hr": "Thank you for sharing that.",
    "witty_but_safe": "Noted, and appreciated.",
    DEFAULT_KEY: "Thanks for sharing!",
}

EMPATHETIC_ACKNOWLEDGEMENTS: Mapping[str, str] = {
    "poke_lite": "Oof, sorry to hear that.",
    "friendly_peer": "I hear you, that sounds tough.",
    "professional_hr": "I'm sorry to hear that, and I appreciate you being candid.",
    "witty_but_safe": "That sounds rough, no jokes here.",
    DEFAULT_KEY: "I hear you, that sounds tough.",
}

QUESTION_ACKNOWLEDGEMENT = "Good question - I'll make sure HR sees it."

CLOSINGS: Mapping[str, str] = {
    "poke_lite": "Thanks for the chat! Catch you next time 👋",
    "friendly_peer": "Thanks so much for taking the time to chat. Take care, and talk soon!",
    "professional_hr": "Thank you for your time. Your feedback will be shared with HR in aggregate.",
    "witty_but_safe": "That's a wrap! Thanks for humouring your friendly neighbourhood bot.",
    DEFAULT_KEY: "Thanks so much for taking the time to chat. Take care, and talk soon!",
}


class MessageComposer(Protocol):
    """Produces agent-authored text for a conversation turn."""

    def greeting(self, agent_type: str, tone: str) -> str: ...

    def follow_up(
        self,
        agent_type: str,
        tone: str,
        turn: int,
        *,
        last_reply: str,
        negative: bool,
        closing: bool,
    ) -> str: ...


class TemplateMessageComposer:
    """Resolve agent messages from the static tables with explicit fallbacks."""

    def __init__(
        self,
        extra_greetings: Mapping[str, Mapping[str, str]] | None = None,
        extra_follow_ups: Mapping[str, Sequence[str]] | None = None,
    ) -> None:
        self._greetings: dict[str, dict[str, str]] = {
            key: dict(value) for key, value in GREETINGS.items()
        }
        if extra_greetings:
            for agent_type, mapping in extra_greetings.items():
                self._greetings.setdefault(agent_type, {}).update(mapping)
        self._follow_ups: dict[str, tuple[str, ...]] = {
            key: tuple(value) for key, value in FOLLOW_UP_QUESTIONS.items()
        }
        if extra_follow_ups:
            for agent_type, questions in extra_follow_ups.items():
                self._follow_ups[agent_type] = tuple(questions)

    def greeting(self, agent_type: str, tone: str) -> str:
        by_tone = self._greetings.get(agent_type) or {}
        if tone in by_tone:
            return by_tone[tone]
        return self._greetings[DEFAULT_KEY][DEFAULT_KEY]

    def follow_up(
        self,
        agent_type: str,
        tone: str,
        turn: int,
        *,
        last_reply: str,
        negative: bool,
        closing: bool,
    ) -> str:
        """Return the agent message for employee turn ``turn`` (1-based)."""

        table = EMPATHETIC_ACKNOWLEDGEMENTS if negative else ACKNOWLEDGEMENTS
        acknowledgement = table.get(tone, table[DEFAULT_KEY])
        if last_reply.rstrip().endswith("?") and not negative:
            acknowledgement = QUESTION_ACKNOWLEDGEMENT
        if closing:
            return f"{acknowledgement} {CLOSINGS.get(tone, CLOSINGS[DEFAULT_KEY])}"
        questions = self._follow_ups.get(agent_type) or self._follow_ups[DEFAULT_KEY]
        index = max(turn, 1) - 1
        if index < len(questions):
            question = questions[index]
        else:
            generic = self._follow_ups[DEFAULT_KEY]
            question = generic[(index - len(questions)) % len(generic)]
        return f"{acknowledgement} {question}"


__all__ = [
    "AGENT_TEMPLATES",
    "MessageComposer",
    "TemplateCatalog",
    "TemplateMessageComposer",
]
