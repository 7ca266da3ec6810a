"""Exception taxonomy shared by the agent orchestration core.

Routers translate these into HTTP responses (see ``app.routers``); services
raise them without knowing anything about the transport.
"""

from __future__ import annotations

__all__ = [
    "AgentCoreError",
    "ConflictError",
    "EscalatedError",
    "ForbiddenError",
    "InvalidStateError",
    "NotFoundError",
    "ValidationError",
    "ESCALATED_MESSAGE",
]


ESCALATED_MESSAGE = (
    "This conversation has been escalated to HR. Someone will reach out to you directly."
)


class AgentCoreError(RuntimeError):
    """Base class for errors raised by the orchestration core."""


class ValidationError(AgentCoreError, ValueError):
    """Malformed input; ``field`` names the offending attribute when known."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(AgentCoreError, LookupError):
    """An instance, template or conversation id did not resolve."""


class ForbiddenError(AgentCoreError, PermissionError):
    """The principal may not act on the requested resource."""


class InvalidStateError(AgentCoreError):
    """The target is in a state that does not allow the operation."""

    def __init__(self, message: str, *, state: str | None = None) -> None:
        super().__init__(message)
        self.state = state


class EscalatedError(InvalidStateError):
    """The conversation was handed over to HR; the agent no longer replies."""

    def __init__(self, message: str = ESCALATED_MESSAGE) -> None:
        super().__init__(message, state="escalated")


class ConflictError(AgentCoreError):
    """A create-if-absent race was lost; callers treat this as a no-op."""
