"""
Discussion data models

Defines Pydantic models for multi-agent discussions, their turns and the
read-only snapshots returned to callers
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DiscussionState(str, Enum):
    """Lifecycle states of one discussion"""
    CREATED = "CREATED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {DiscussionState.COMPLETED, DiscussionState.STOPPED, DiscussionState.FAILED}
)


class TurnStatus(str, Enum):
    """Outcome of one agent turn"""
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class Intensity(str, Enum):
    """Closed set of pacing levels; each maps to a turn bound"""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    BRUTAL = "BRUTAL"
    INTENSE = "INTENSE"
    EXTREME = "EXTREME"

    @classmethod
    def parse(cls, value: Any) -> "Intensity":
        """Parse a user-provided intensity, raising ValueError on unknown values."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"intensity must be one of {[item.value for item in cls]}")
        normalized = value.strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(
                f"unknown intensity '{value}', expected one of {[item.value for item in cls]}"
            ) from None


class Discussion(BaseModel):
    """Durable record of one discussion's lifecycle"""
    id: str = Field(..., description="Discussion unique identifier")
    room_id: str = Field(..., description="Room that spawned the discussion")
    origin_message_id: str = Field(..., description="Message that started the discussion")
    topic: Optional[str] = Field(None, description="Optional free-text framing")
    intensity: Intensity = Field(Intensity.NORMAL, description="Pacing level")
    participant_agent_ids: List[str] = Field(..., min_length=2, description="Ordered speaker rotation")
    state: DiscussionState = Field(DiscussionState.CREATED, description="Current lifecycle state")
    turn_cursor: int = Field(0, ge=0, description="Index of the next scheduling decision")
    max_turns: int = Field(..., ge=1, description="Hard ceiling on successful turns")
    last_error: Optional[str] = Field(None, description="Failure reason when state is FAILED")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Turn(BaseModel):
    """One agent's contribution, identified by (discussion_id, sequence)"""
    discussion_id: str
    sequence: int = Field(..., ge=0)
    agent_id: str
    content: str = ""
    status: TurnStatus = TurnStatus.PENDING
    error: Optional[str] = None
    attempts: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class SpeakerPreview(BaseModel):
    """Who speaks now and who speaks after, for progress displays"""
    current_agent_id: Optional[str] = None
    next_agent_id: Optional[str] = None


class DiscussionSnapshot(BaseModel):
    """Read-only view of a discussion and its ordered turns"""
    discussion: Discussion
    turns: List[Turn] = Field(default_factory=list)
    succeeded_turns: int = 0
    speakers: SpeakerPreview = Field(default_factory=SpeakerPreview)
    expected_duration_minutes: int = 0

    @property
    def state(self) -> DiscussionState:
        return self.discussion.state

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the snapshot for API/debug responses."""
        return self.model_dump(mode="json")


class ExecutionResult(BaseModel):
    """Outcome of one execute call"""
    discussion_id: str
    state: DiscussionState
    turn_cursor: int
    turns: List[Turn] = Field(default_factory=list)
    stop_reason: str
    already_running: bool = False
    error: Optional[str] = None


class DiscussionCreate(BaseModel):
    """Request body for starting a discussion"""
    room_id: str
    origin_message_id: str
    agent_ids: List[str]
    topic: Optional[str] = None
    intensity: Optional[str] = None
    order_by_style: Optional[bool] = None


class DiscussionExecuteRequest(BaseModel):
    """Request body for running a discussion's turn loop"""
    requesting_user_id: Optional[str] = None
    user_name: Optional[str] = None


class RoomMessageCreate(BaseModel):
    """Request body for posting a message into a room"""
    content: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    kind: str = "USER"
