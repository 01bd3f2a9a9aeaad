"""Shared lightweight type contracts for the discussion collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from src.api.models.discussion import Discussion, DiscussionState, Turn, TurnStatus

EventPayload = Dict[str, Any]
PromptParts = List[Dict[str, str]]


@dataclass(frozen=True)
class RoomMessage:
    """One chronological message in a room."""

    content: str
    author: str
    kind: str = "USER"
    message_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class AgentProfile:
    """Persona attributes needed to speak as one agent."""

    id: str
    name: str
    persona: str
    style: str = ""
    emoji: Optional[str] = None


@dataclass(frozen=True)
class RetrievedSnippet:
    """One ranked hit from semantic retrieval."""

    content: str
    score: float
    source_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SupportsContent(Protocol):
    """Message-like object returned by chat model clients."""

    @property
    def content(self) -> Any: ...


CompletionOutput = Union[str, SupportsContent]


class DiscussionLedgerLike(Protocol):
    """Durable store for discussion state and the ordered turn list.

    Every method is atomic per discussion and raises ``NotFoundError`` for
    unknown ids.
    """

    async def create_discussion(self, discussion: Discussion) -> Discussion: ...

    async def load_discussion(self, discussion_id: str) -> Discussion: ...

    async def save_discussion_state(
        self,
        discussion_id: str,
        state: DiscussionState,
        cursor: Optional[int] = None,
        *,
        expected_states: Optional[Sequence[DiscussionState]] = None,
        last_error: Optional[str] = None,
    ) -> Discussion: ...

    async def append_turn(
        self,
        discussion_id: str,
        sequence: int,
        agent_id: str,
        content: str,
        status: TurnStatus,
        *,
        error: Optional[str] = None,
        attempts: int = 1,
    ) -> Turn: ...

    async def list_turns(self, discussion_id: str) -> List[Turn]: ...


class RoomDirectoryLike(Protocol):
    """Read-only room/message APIs."""

    async def get_message(self, room_id: str, message_id: str) -> Optional[RoomMessage]: ...

    async def recent_messages(self, room_id: str, limit: int) -> List[RoomMessage]: ...

    async def user_messages(self, room_id: str, user_id: str, limit: int) -> List[RoomMessage]: ...


class AgentDirectoryLike(Protocol):
    """Persona lookup for participating agents."""

    async def get_agent(self, agent_id: str) -> Optional[AgentProfile]: ...


class RetrievalServiceLike(Protocol):
    """Best-effort semantic retrieval over room history."""

    async def semantic_query(self, room_id: str, query_text: str, top_k: int) -> List[RetrievedSnippet]: ...


class CompletionClientLike(Protocol):
    """One call to an AI completion service."""

    async def complete(self, prompt_parts: PromptParts) -> CompletionOutput: ...


class DiscussionEventSinkLike(Protocol):
    """Receives progress events for live room displays."""

    async def publish(self, room_id: str, event: EventPayload) -> None: ...
