"""Typed failures raised by discussion orchestration."""

from __future__ import annotations

from typing import Any, Dict, Optional

from src.api.models.discussion import DiscussionState


class DiscussionError(Exception):
    """Base class for every failure surfaced by the discussion core."""

    code = "discussion_error"

    def __init__(self, message: str, *, discussion_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.discussion_id = discussion_id

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.discussion_id:
            payload["discussion_id"] = self.discussion_id
        return payload


class ValidationFailedError(DiscussionError):
    """Bad input, rejected before any state mutation."""

    code = "validation_failed"


class NotFoundError(DiscussionError):
    """Unknown discussion (or collaborator record) id."""

    code = "not_found"


class InvalidStateError(DiscussionError):
    """Operation is not legal from the discussion's current state."""

    code = "invalid_state"

    def __init__(
        self,
        message: str,
        *,
        current_state: DiscussionState,
        discussion_id: Optional[str] = None,
    ):
        super().__init__(message, discussion_id=discussion_id)
        self.current_state = current_state

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["current_state"] = self.current_state.value
        return payload


class SequenceConflictError(DiscussionError):
    """A turn append did not match the ledger's current cursor."""

    code = "sequence_conflict"

    def __init__(self, message: str, *, expected: int, received: int, discussion_id: Optional[str] = None):
        super().__init__(message, discussion_id=discussion_id)
        self.expected = expected
        self.received = received


class GenerationFailedError(DiscussionError):
    """Generation of one agent turn failed.

    ``transient`` marks failures worth retrying; permanent ones (malformed
    persona, exhausted quota) are escalated on the first attempt.
    """

    code = "generation_failed"

    def __init__(
        self,
        message: str,
        *,
        transient: bool = True,
        agent_id: Optional[str] = None,
        sequence: Optional[int] = None,
        attempts: int = 0,
        discussion_id: Optional[str] = None,
    ):
        super().__init__(message, discussion_id=discussion_id)
        self.transient = transient
        self.agent_id = agent_id
        self.sequence = sequence
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update(
            {
                "agent_id": self.agent_id,
                "sequence": self.sequence,
                "attempts": self.attempts,
            }
        )
        return payload


class RateLimitedError(GenerationFailedError):
    """Completion service asked us to slow down."""

    code = "rate_limited"


class MalformedResponseError(GenerationFailedError):
    """Completion output did not satisfy the reply schema."""

    code = "malformed_response"


class RetrievalFailedError(DiscussionError):
    """Semantic retrieval failed; only ever logged, never escalated."""

    code = "retrieval_failed"
