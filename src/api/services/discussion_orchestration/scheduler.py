"""Pure turn scheduling: who speaks next and when the discussion is done."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from src.api.models.discussion import Intensity, SpeakerPreview, Turn, TurnStatus

from .policy import IntensityPolicy


@dataclass(frozen=True)
class Speak:
    """The agent that owns the next turn."""

    agent_id: str
    sequence: int


@dataclass(frozen=True)
class Complete:
    """No more turns; ``reason`` explains why."""

    reason: str = "turn_limit_reached"


Decision = Union[Speak, Complete]


class TurnScheduler:
    """Round-robin over the creation-time participant order.

    The decision depends only on its inputs, so replaying a discussion from
    its ledger always yields the same speakers.
    """

    def __init__(self, policy: Optional[IntensityPolicy] = None):
        self.policy = policy or IntensityPolicy()

    def turn_bound(self, intensity: Intensity, participant_count: int) -> int:
        return self.policy.max_turns(intensity, participant_count)

    def decide(
        self,
        participant_agent_ids: Sequence[str],
        turn_cursor: int,
        intensity: Intensity,
        turn_history: Sequence[Turn] = (),
        *,
        max_turns: Optional[int] = None,
    ) -> Decision:
        if len(participant_agent_ids) < 2:
            raise ValueError("scheduling requires at least 2 participants")
        if turn_cursor < 0:
            raise ValueError("turn_cursor cannot be negative")

        bound = max_turns if max_turns is not None else self.turn_bound(intensity, len(participant_agent_ids))
        succeeded = sum(1 for turn in turn_history if turn.status == TurnStatus.SUCCEEDED)
        if succeeded > turn_cursor:
            raise ValueError(
                f"turn history holds {succeeded} successful turns but cursor is {turn_cursor}"
            )
        if turn_cursor >= bound:
            return Complete()

        agent_id = participant_agent_ids[turn_cursor % len(participant_agent_ids)]
        return Speak(agent_id=agent_id, sequence=turn_cursor)

    def preview(
        self,
        participant_agent_ids: Sequence[str],
        turn_cursor: int,
        bound: int,
    ) -> SpeakerPreview:
        """Current and following speaker, or None past the bound."""
        count = len(participant_agent_ids)
        if count == 0:
            return SpeakerPreview()

        def _speaker_at(index: int) -> Optional[str]:
            if index >= bound:
                return None
            return participant_agent_ids[index % count]

        return SpeakerPreview(
            current_agent_id=_speaker_at(turn_cursor),
            next_agent_id=_speaker_at(turn_cursor + 1),
        )
