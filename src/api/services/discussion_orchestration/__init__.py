"""Discussion orchestration primitives.

Only dependency-free building blocks are re-exported here. The orchestrator,
generator and prompt builder depend on the context service (which itself uses
these primitives) and are imported from their modules directly.
"""

from .errors import (
    DiscussionError,
    GenerationFailedError,
    InvalidStateError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    RetrievalFailedError,
    SequenceConflictError,
    ValidationFailedError,
)
from .events import (
    AgentCompleteEvent,
    AgentErrorEvent,
    AgentStartingEvent,
    DiscussionEventPublisher,
    DiscussionUpdateEvent,
    normalize_discussion_event,
)
from .guard import ControlRequest, DiscussionGuard
from .policy import IntensityPolicy
from .scheduler import Complete, Decision, Speak, TurnScheduler

__all__ = [
    "DiscussionError",
    "GenerationFailedError",
    "InvalidStateError",
    "MalformedResponseError",
    "NotFoundError",
    "RateLimitedError",
    "RetrievalFailedError",
    "SequenceConflictError",
    "ValidationFailedError",
    "AgentCompleteEvent",
    "AgentErrorEvent",
    "AgentStartingEvent",
    "DiscussionEventPublisher",
    "DiscussionUpdateEvent",
    "normalize_discussion_event",
    "ControlRequest",
    "DiscussionGuard",
    "IntensityPolicy",
    "Complete",
    "Decision",
    "Speak",
    "TurnScheduler",
]
