"""Structured discussion progress events and a best-effort publisher."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict

from src.api.services.service_contracts import DiscussionEventSinkLike

logger = logging.getLogger(__name__)


class _EventBase(BaseModel):
    """Common base for all discussion events."""

    model_config = ConfigDict(extra="allow")
    type: str
    discussion_id: str
    room_id: str


class DiscussionUpdateEvent(_EventBase):
    type: str = "discussion_update"
    status: str
    intensity: str
    current_turn: Optional[int] = None
    current_agent: Optional[str] = None
    next_agent: Optional[str] = None
    reason: Optional[str] = None


class AgentStartingEvent(_EventBase):
    type: str = "agent_starting"
    agent_id: str
    agent_name: Optional[str] = None
    turn: int
    total_turns: int


class AgentCompleteEvent(_EventBase):
    type: str = "agent_complete"
    agent_id: str
    agent_name: Optional[str] = None
    turn: int
    total_turns: int
    processing_ms: Optional[int] = None


class AgentErrorEvent(_EventBase):
    type: str = "agent_error"
    agent_id: str
    agent_name: Optional[str] = None
    turn: int
    total_turns: int
    error: str


DiscussionEventModel = Union[
    DiscussionUpdateEvent,
    AgentStartingEvent,
    AgentCompleteEvent,
    AgentErrorEvent,
]

_EVENT_MODEL_BY_TYPE: Dict[str, Type[_EventBase]] = {
    "discussion_update": DiscussionUpdateEvent,
    "agent_starting": AgentStartingEvent,
    "agent_complete": AgentCompleteEvent,
    "agent_error": AgentErrorEvent,
}


def normalize_discussion_event(event: Union[_EventBase, Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate and normalize one event into plain dict payload."""
    if isinstance(event, _EventBase):
        return event.model_dump(exclude_none=True)

    payload = dict(event)
    event_type = payload.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("discussion event must include non-empty string field 'type'")

    model_cls = _EVENT_MODEL_BY_TYPE.get(event_type)
    if model_cls is None:
        raise ValueError(f"unsupported discussion event type: {event_type}")

    return model_cls.model_validate(payload).model_dump(exclude_none=True)


class DiscussionEventPublisher:
    """Forwards events to the sink; a failing sink never affects a discussion."""

    def __init__(self, sink: Optional[DiscussionEventSinkLike] = None):
        self.sink = sink

    async def publish(self, event: DiscussionEventModel) -> None:
        if self.sink is None:
            return
        payload = normalize_discussion_event(event)
        try:
            await self.sink.publish(event.room_id, payload)
        except Exception as e:
            logger.warning(
                "[EVENTS] Failed to publish %s for %s: %s",
                payload.get("type"),
                event.discussion_id,
                e,
            )
