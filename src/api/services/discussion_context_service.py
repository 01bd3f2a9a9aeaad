"""Context assembly for one discussion turn.

Combines the chronological room history, the discussion's earlier turns and a
bounded set of semantically related snippets into a size-capped bundle.
Retrieval is best-effort: any failure degrades to chronological context.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from src.api.models.discussion import Intensity, Turn, TurnStatus
from src.api.services.discussion_orchestration.errors import RetrievalFailedError
from src.api.services.discussion_orchestration.log_utils import truncate_log_text
from src.api.services.discussion_orchestration.policy import IntensityPolicy
from src.api.services.service_contracts import (
    RetrievalServiceLike,
    RetrievedSnippet,
    RoomDirectoryLike,
    RoomMessage,
)

logger = logging.getLogger(__name__)

_AGENT_PREFIX_RE = re.compile(r"^\[AGENT:[^\]]*\]\n")


@dataclass(frozen=True)
class ContextLimits:
    """Caps that keep generation prompts bounded."""

    max_history_messages: int = 10
    retrieval_top_k: int = 5
    min_snippet_score: float = 0.0
    max_chars: int = 12000
    max_item_chars: int = 1600
    user_pattern_messages: int = 50

    @classmethod
    def from_settings(cls, settings: Any) -> "ContextLimits":
        return cls(
            max_history_messages=settings.context_max_history_messages,
            retrieval_top_k=settings.context_retrieval_top_k,
            min_snippet_score=settings.context_min_snippet_score,
            max_chars=settings.context_max_chars,
            max_item_chars=settings.context_max_item_chars,
        )


@dataclass
class UserPatterns:
    """Coarse behaviour hints mined from the requesting user's messages."""

    blind_spots: List[str] = field(default_factory=list)
    common_excuses: List[str] = field(default_factory=list)
    growth_blockers: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.blind_spots or self.common_excuses or self.growth_blockers)


@dataclass
class PriorTurn:
    """An earlier successful turn, as shown to the next speaker."""

    sequence: int
    agent_id: str
    content: str


@dataclass
class ContextBundle:
    """Everything the generator needs to ground one agent's reply."""

    room_id: str
    discussion_id: str
    topic: Optional[str]
    recent_messages: List[RoomMessage] = field(default_factory=list)
    prior_turns: List[PriorTurn] = field(default_factory=list)
    snippets: List[RetrievedSnippet] = field(default_factory=list)
    origin: Optional[RoomMessage] = None
    user_patterns: Optional[UserPatterns] = None
    retrieval_degraded: bool = False

    @property
    def origin_message(self) -> Optional[RoomMessage]:
        if self.origin is not None:
            return self.origin
        return self.recent_messages[-1] if self.recent_messages else None

    def total_chars(self) -> int:
        return (
            (len(self.origin.content) if self.origin is not None else 0)
            + sum(len(msg.content) for msg in self.recent_messages)
            + sum(len(turn.content) for turn in self.prior_turns)
            + sum(len(snippet.content) for snippet in self.snippets)
        )

    def to_log_dict(self) -> Dict[str, Any]:
        return {
            "discussion_id": self.discussion_id,
            "recent_messages": len(self.recent_messages),
            "prior_turns": len(self.prior_turns),
            "snippets": len(self.snippets),
            "chars": self.total_chars(),
            "retrieval_degraded": self.retrieval_degraded,
        }


class DiscussionContextService:
    """Builds the per-turn context bundle from room history and retrieval."""

    _EXCUSE_MARKERS = {
        "Time management issues": ("no time", "busy"),
        "Analysis paralysis": ("don't know", "not sure"),
        "Procrastination": ("later", "tomorrow"),
    }
    _BLOCKER_MARKERS = {
        "Perfectionism": ("perfect", "perfectly"),
        "Fear of failure": ("fail", "failure"),
        "Dependency issues": ("help", "stuck"),
    }

    def __init__(
        self,
        *,
        room_directory: RoomDirectoryLike,
        retrieval_service: Optional[RetrievalServiceLike] = None,
        limits: Optional[ContextLimits] = None,
    ):
        self.room_directory = room_directory
        self.retrieval_service = retrieval_service
        self.limits = limits or ContextLimits()

    async def assemble_context(
        self,
        room_id: str,
        discussion_id: str,
        topic: Optional[str],
        turn_history: Sequence[Turn],
        *,
        origin_message_id: Optional[str] = None,
        requesting_user_id: Optional[str] = None,
        intensity: Intensity = Intensity.NORMAL,
    ) -> ContextBundle:
        """Prepare the bounded context bundle for the next speaker."""
        bundle = ContextBundle(room_id=room_id, discussion_id=discussion_id, topic=topic)

        if origin_message_id:
            origin = await self.room_directory.get_message(room_id, origin_message_id)
            if origin is not None:
                bundle.origin = self._clean_message(origin)

        messages = await self.room_directory.recent_messages(room_id, self.limits.max_history_messages)
        bundle.recent_messages = [
            self._clean_message(msg)
            for msg in messages[-self.limits.max_history_messages:]
            if not (origin_message_id and msg.message_id == origin_message_id)
        ]

        bundle.prior_turns = [
            PriorTurn(
                sequence=turn.sequence,
                agent_id=turn.agent_id,
                content=truncate_log_text(turn.content, self.limits.max_item_chars),
            )
            for turn in sorted(turn_history, key=lambda t: t.sequence)
            if turn.status == TurnStatus.SUCCEEDED
        ]

        query_text = self._build_query_text(topic, bundle)
        try:
            bundle.snippets = await self._retrieve_snippets(room_id, query_text)
        except RetrievalFailedError as e:
            logger.warning("[CONTEXT] Retrieval degraded for %s: %s", discussion_id, e)
            bundle.retrieval_degraded = True

        if requesting_user_id and IntensityPolicy.is_challenge_mode(intensity):
            bundle.user_patterns = await self.analyze_user_patterns(room_id, requesting_user_id)

        self._enforce_budget(bundle)
        logger.debug("[CONTEXT] Assembled %s", bundle.to_log_dict())
        return bundle

    async def _retrieve_snippets(self, room_id: str, query_text: str) -> List[RetrievedSnippet]:
        if self.retrieval_service is None or not query_text or self.limits.retrieval_top_k <= 0:
            return []
        try:
            results = await self.retrieval_service.semantic_query(
                room_id, query_text, self.limits.retrieval_top_k
            )
            snippets = [
                RetrievedSnippet(
                    content=truncate_log_text(snippet.content, self.limits.max_item_chars),
                    score=float(snippet.score),
                    source_id=snippet.source_id,
                    metadata=dict(snippet.metadata),
                )
                for snippet in results or []
                if snippet.content and float(snippet.score) >= self.limits.min_snippet_score
            ]
        except Exception as e:
            raise RetrievalFailedError(f"semantic query failed: {e}") from e

        snippets.sort(key=lambda s: s.score, reverse=True)
        return snippets[: self.limits.retrieval_top_k]

    async def analyze_user_patterns(self, room_id: str, user_id: str) -> UserPatterns:
        """Keyword scan of the user's recent messages; empty on any failure."""
        patterns = UserPatterns()
        try:
            messages = await self.room_directory.user_messages(
                room_id, user_id, self.limits.user_pattern_messages
            )
        except Exception as e:
            logger.warning("[CONTEXT] User pattern lookup failed for %s: %s", user_id, e)
            return patterns

        text = " ".join(msg.content.lower() for msg in messages)
        if not text:
            return patterns
        for label, markers in self._EXCUSE_MARKERS.items():
            if any(marker in text for marker in markers):
                patterns.common_excuses.append(label)
        for label, markers in self._BLOCKER_MARKERS.items():
            if any(marker in text for marker in markers):
                patterns.growth_blockers.append(label)
        return patterns

    @staticmethod
    def _clean_message(message: RoomMessage) -> RoomMessage:
        content = _AGENT_PREFIX_RE.sub("", message.content or "").strip()
        if content == message.content:
            return message
        return RoomMessage(
            content=content,
            author=message.author,
            kind=message.kind,
            message_id=message.message_id,
            timestamp=message.timestamp,
        )

    @staticmethod
    def _build_query_text(topic: Optional[str], bundle: ContextBundle) -> str:
        parts: List[str] = []
        if topic and topic.strip():
            parts.append(topic.strip())
        if bundle.prior_turns:
            parts.append(bundle.prior_turns[-1].content[:500])
        elif bundle.origin_message is not None:
            parts.append(bundle.origin_message.content[:500])
        return "\n".join(parts)

    def _enforce_budget(self, bundle: ContextBundle) -> None:
        """Drop lowest-value items until the bundle fits ``max_chars``.

        Order: weakest snippets, then oldest room messages, then oldest turns.
        The origin message is only ever truncated, never dropped.
        """
        budget = self.limits.max_chars
        while bundle.total_chars() > budget and bundle.snippets:
            bundle.snippets.pop()
        while bundle.total_chars() > budget and bundle.recent_messages:
            bundle.recent_messages.pop(0)
        while bundle.total_chars() > budget and bundle.prior_turns:
            bundle.prior_turns.pop(0)
        if bundle.total_chars() > budget and bundle.origin is not None:
            origin = bundle.origin
            bundle.origin = RoomMessage(
                content=origin.content[:budget],
                author=origin.author,
                kind=origin.kind,
                message_id=origin.message_id,
                timestamp=origin.timestamp,
            )
