"""Intensity policy: turn bounds, pacing and tone knobs per intensity level."""

from typing import Dict, List, Sequence

from src.api.models.discussion import Intensity


class IntensityPolicy:
    """Pure lookup helpers so orchestration logic can stay focused on control flow."""

    # Full rounds each participant gets before the discussion completes.
    ROUNDS_PER_AGENT: Dict[Intensity, int] = {
        Intensity.LOW: 1,
        Intensity.NORMAL: 2,
        Intensity.HIGH: 3,
        Intensity.BRUTAL: 3,
        Intensity.INTENSE: 4,
        Intensity.EXTREME: 5,
    }

    DIRECTNESS: Dict[Intensity, float] = {
        Intensity.LOW: 0.75,
        Intensity.NORMAL: 1.0,
        Intensity.HIGH: 1.5,
        Intensity.BRUTAL: 1.5,
        Intensity.INTENSE: 2.0,
        Intensity.EXTREME: 3.0,
    }

    DURATION_MULTIPLIER: Dict[Intensity, float] = {
        Intensity.LOW: 0.8,
        Intensity.NORMAL: 1.0,
        Intensity.HIGH: 1.2,
        Intensity.BRUTAL: 1.2,
        Intensity.INTENSE: 1.5,
        Intensity.EXTREME: 2.0,
    }

    MINUTES_PER_AGENT = 2

    CHALLENGE_STYLE_PRIORITY: List[str] = [
        "BRUTAL_MENTOR",
        "TRUTH_TELLER",
        "STRATEGIC_CHALLENGER",
        "EXECUTION_DRILL_SERGEANT",
        "GROWTH_ACCELERATOR",
    ]
    STANDARD_STYLE_PRIORITY: List[str] = [
        "PROFESSIONAL",
        "ANALYTICAL",
        "DIRECT",
        "CREATIVE",
        "FRIENDLY",
    ]

    @staticmethod
    def max_turns(intensity: Intensity, participant_count: int) -> int:
        """Hard ceiling on successful turns for one discussion."""
        if participant_count < 1:
            raise ValueError("participant_count must be positive")
        return IntensityPolicy.ROUNDS_PER_AGENT[intensity] * participant_count

    @staticmethod
    def directness(intensity: Intensity) -> float:
        return IntensityPolicy.DIRECTNESS[intensity]

    @staticmethod
    def is_challenge_mode(intensity: Intensity) -> bool:
        """Intensities above NORMAL push agents to confront and analyse the user."""
        return IntensityPolicy.DIRECTNESS[intensity] > IntensityPolicy.DIRECTNESS[Intensity.NORMAL]

    @staticmethod
    def expected_duration_minutes(intensity: Intensity, participant_count: int) -> int:
        base = participant_count * IntensityPolicy.MINUTES_PER_AGENT
        return int(round(base * IntensityPolicy.DURATION_MULTIPLIER[intensity]))

    @staticmethod
    def order_by_style(
        agent_ids: Sequence[str],
        styles: Dict[str, str],
        intensity: Intensity,
    ) -> List[str]:
        """Stable-sort participants so tone-setting styles speak first.

        Agents whose style is unknown keep their relative order at the end.
        """
        priority = (
            IntensityPolicy.CHALLENGE_STYLE_PRIORITY
            if IntensityPolicy.is_challenge_mode(intensity)
            else IntensityPolicy.STANDARD_STYLE_PRIORITY
        )
        rank = {style: index for index, style in enumerate(priority)}
        fallback = len(priority)
        return sorted(
            agent_ids,
            key=lambda agent_id: rank.get((styles.get(agent_id) or "").upper(), fallback),
        )
