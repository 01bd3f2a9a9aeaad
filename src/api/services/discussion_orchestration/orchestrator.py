"""Discussion orchestrator: the durable state machine behind multi-agent debates.

Lifecycle::

    CREATED --execute--> RUNNING --scheduler done--> COMPLETED
    RUNNING --pause--> PAUSED --resume/execute--> RUNNING
    CREATED/RUNNING/PAUSED --stop--> STOPPED
    RUNNING --unrecoverable failure--> FAILED

Every transition is persisted through the ledger. Turn production is guarded
so only one loop runs per discussion; pause and stop are observed between
turns, never in the middle of a generation call.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from src.api.models.discussion import (
    Discussion,
    DiscussionSnapshot,
    DiscussionState,
    ExecutionResult,
    Intensity,
    Turn,
    TurnStatus,
)
from src.api.services.discussion_context_service import DiscussionContextService
from src.api.services.service_contracts import (
    AgentDirectoryLike,
    AgentProfile,
    DiscussionLedgerLike,
    RoomDirectoryLike,
)

from .errors import DiscussionError, GenerationFailedError, InvalidStateError, ValidationFailedError
from .events import (
    AgentCompleteEvent,
    AgentErrorEvent,
    AgentStartingEvent,
    DiscussionEventPublisher,
    DiscussionUpdateEvent,
)
from .generation import ResponseGenerator
from .guard import DiscussionGuard
from .log_utils import build_turns_preview_for_log
from .policy import IntensityPolicy
from .scheduler import Complete, Speak, TurnScheduler

logger = logging.getLogger(__name__)

_EXECUTABLE_STATES = (DiscussionState.CREATED, DiscussionState.RUNNING, DiscussionState.PAUSED)
_STOPPABLE_STATES = (DiscussionState.CREATED, DiscussionState.RUNNING, DiscussionState.PAUSED)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Creation-time defaults for new discussions."""

    order_by_style: bool = False
    default_intensity: Intensity = Intensity.NORMAL

    @classmethod
    def from_settings(cls, settings: Any) -> "OrchestratorConfig":
        return cls(
            order_by_style=bool(getattr(settings, "discussion_order_by_style", False)),
            default_intensity=Intensity.parse(getattr(settings, "discussion_default_intensity", "NORMAL")),
        )


class DiscussionOrchestrator:
    """Owns discussion lifecycle and drives the per-discussion turn loop."""

    def __init__(
        self,
        *,
        ledger: DiscussionLedgerLike,
        room_directory: RoomDirectoryLike,
        agent_directory: AgentDirectoryLike,
        context_service: DiscussionContextService,
        generator: ResponseGenerator,
        scheduler: Optional[TurnScheduler] = None,
        guard: Optional[DiscussionGuard] = None,
        event_publisher: Optional[DiscussionEventPublisher] = None,
        config: Optional[OrchestratorConfig] = None,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.ledger = ledger
        self.room_directory = room_directory
        self.agent_directory = agent_directory
        self.context_service = context_service
        self.generator = generator
        self.scheduler = scheduler or TurnScheduler()
        self.guard = guard or DiscussionGuard()
        self.events = event_publisher or DiscussionEventPublisher()
        self.config = config or OrchestratorConfig()
        self.id_factory = id_factory

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def create_discussion(
        self,
        room_id: str,
        origin_message_id: str,
        agent_ids: Sequence[str],
        topic: Optional[str] = None,
        intensity: Any = None,
        *,
        order_by_style: Optional[bool] = None,
    ) -> Discussion:
        """Validate input and materialize a CREATED discussion in the ledger."""
        if not isinstance(room_id, str) or not room_id.strip():
            raise ValidationFailedError("room_id is required")
        if not isinstance(origin_message_id, str) or not origin_message_id.strip():
            raise ValidationFailedError("origin_message_id is required")
        room_id = room_id.strip()
        origin_message_id = origin_message_id.strip()

        participants = self._normalize_agent_ids(agent_ids)
        if len(participants) < 2:
            raise ValidationFailedError("A discussion requires at least 2 distinct agents")

        try:
            resolved_intensity = (
                self.config.default_intensity if intensity is None else Intensity.parse(intensity)
            )
        except ValueError as e:
            raise ValidationFailedError(str(e)) from e

        try:
            origin = await self.room_directory.get_message(room_id, origin_message_id)
        except ValueError as e:
            raise ValidationFailedError(f"Room {room_id} cannot be resolved: {e}") from e
        if origin is None:
            raise ValidationFailedError(
                f"Message {origin_message_id} not found in room {room_id}"
            )

        profiles = await self._load_profiles(participants)
        missing = [agent_id for agent_id in participants if agent_id not in profiles]
        if missing:
            raise ValidationFailedError(f"Unknown agents: {', '.join(missing)}")

        use_style_order = self.config.order_by_style if order_by_style is None else order_by_style
        if use_style_order:
            participants = IntensityPolicy.order_by_style(
                participants,
                {agent_id: profile.style for agent_id, profile in profiles.items()},
                resolved_intensity,
            )

        normalized_topic = topic.strip() if isinstance(topic, str) and topic.strip() else None
        discussion = Discussion(
            id=self.id_factory(),
            room_id=room_id,
            origin_message_id=origin_message_id,
            topic=normalized_topic,
            intensity=resolved_intensity,
            participant_agent_ids=participants,
            max_turns=self.scheduler.turn_bound(resolved_intensity, len(participants)),
        )
        discussion = await self.ledger.create_discussion(discussion)
        logger.info(
            "[DISCUSSION] Created %s room=%s agents=%s intensity=%s max_turns=%s",
            discussion.id,
            room_id,
            participants,
            resolved_intensity.value,
            discussion.max_turns,
        )
        await self._publish_update(discussion)
        return discussion

    async def execute_discussion(
        self,
        discussion_id: str,
        requesting_user_id: Optional[str],
        *,
        user_name: Optional[str] = None,
    ) -> ExecutionResult:
        """Run the turn loop until completion, pause, stop or failure.

        A second caller arriving while a loop is active gets the current
        status back instead of starting a parallel loop.
        """
        discussion = await self.ledger.load_discussion(discussion_id)
        self._ensure_state(discussion, _EXECUTABLE_STATES, "execute")

        async with self.guard.try_claim(discussion_id) as owned:
            if not owned:
                current = await self.ledger.load_discussion(discussion_id)
                logger.info(
                    "[DISCUSSION] %s already has an active loop; returning status", discussion_id
                )
                return ExecutionResult(
                    discussion_id=discussion_id,
                    state=current.state,
                    turn_cursor=current.turn_cursor,
                    stop_reason="already_running",
                    already_running=True,
                )
            return await self._run_loop(discussion_id, requesting_user_id, user_name)

    async def pause_discussion(self, discussion_id: str) -> Discussion:
        """Request a pause; the active loop exits once its in-flight turn settles."""
        discussion = await self.ledger.load_discussion(discussion_id)
        if discussion.state == DiscussionState.PAUSED:
            return discussion
        self._ensure_state(discussion, (DiscussionState.RUNNING,), "pause")

        discussion = await self.ledger.save_discussion_state(
            discussion_id,
            DiscussionState.PAUSED,
            expected_states=(DiscussionState.RUNNING,),
        )
        self.guard.request(discussion_id, "pause")
        logger.info("[DISCUSSION] %s paused at cursor %s", discussion_id, discussion.turn_cursor)
        await self._publish_update(discussion)
        return discussion

    async def resume_discussion(self, discussion_id: str) -> Discussion:
        """Move PAUSED back to RUNNING; turns are produced by the next execute."""
        discussion = await self.ledger.load_discussion(discussion_id)
        if discussion.state == DiscussionState.RUNNING:
            return discussion
        self._ensure_state(discussion, (DiscussionState.PAUSED,), "resume")

        discussion = await self.ledger.save_discussion_state(
            discussion_id,
            DiscussionState.RUNNING,
            expected_states=(DiscussionState.PAUSED,),
        )
        self.guard.clear_request(discussion_id)
        logger.info("[DISCUSSION] %s resumed at cursor %s", discussion_id, discussion.turn_cursor)
        await self._publish_update(discussion, status="RESUMED")
        return discussion

    async def stop_discussion(self, discussion_id: str) -> Discussion:
        """Terminate the discussion; no further turns are ever recorded."""
        discussion = await self.ledger.load_discussion(discussion_id)
        if discussion.state == DiscussionState.STOPPED:
            return discussion
        self._ensure_state(discussion, _STOPPABLE_STATES, "stop")

        discussion = await self.ledger.save_discussion_state(
            discussion_id,
            DiscussionState.STOPPED,
            expected_states=_STOPPABLE_STATES,
        )
        self.guard.request(discussion_id, "stop")
        logger.info("[DISCUSSION] %s stopped at cursor %s", discussion_id, discussion.turn_cursor)
        await self._publish_update(discussion)
        return discussion

    async def get_discussion_status(self, discussion_id: str) -> DiscussionSnapshot:
        """Latest persisted state plus the ordered turn list."""
        discussion = await self.ledger.load_discussion(discussion_id)
        turns = await self.ledger.list_turns(discussion_id)
        speakers = self.scheduler.preview(
            discussion.participant_agent_ids,
            discussion.turn_cursor,
            discussion.max_turns,
        )
        if discussion.state.is_terminal:
            speakers = speakers.model_copy(update={"current_agent_id": None, "next_agent_id": None})
        return DiscussionSnapshot(
            discussion=discussion,
            turns=turns,
            succeeded_turns=sum(1 for turn in turns if turn.status == TurnStatus.SUCCEEDED),
            speakers=speakers,
            expected_duration_minutes=IntensityPolicy.expected_duration_minutes(
                discussion.intensity, len(discussion.participant_agent_ids)
            ),
        )

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------

    async def _run_loop(
        self,
        discussion_id: str,
        requesting_user_id: Optional[str],
        user_name: Optional[str],
    ) -> ExecutionResult:
        discussion = await self.ledger.load_discussion(discussion_id)
        self._ensure_state(discussion, _EXECUTABLE_STATES, "execute")
        if discussion.state != DiscussionState.RUNNING:
            previous = discussion.state
            discussion = await self.ledger.save_discussion_state(
                discussion_id,
                DiscussionState.RUNNING,
                expected_states=(previous,),
            )
            await self._publish_update(
                discussion,
                status="STARTED" if previous == DiscussionState.CREATED else "RESUMED",
            )
        logger.info(
            "[DISCUSSION] %s loop started at cursor %s/%s",
            discussion_id,
            discussion.turn_cursor,
            discussion.max_turns,
        )

        profiles = await self._load_profiles(discussion.participant_agent_ids)
        produced: List[Turn] = []

        while True:
            control = self.guard.control(discussion_id)
            if control is not None and control.is_requested:
                logger.info("[DISCUSSION] %s observed %s request", discussion_id, control.action)
                if control.action == "stop":
                    discussion = await self.ledger.load_discussion(discussion_id)
                    if discussion.state in _STOPPABLE_STATES:
                        discussion = await self.ledger.save_discussion_state(
                            discussion_id,
                            DiscussionState.STOPPED,
                            expected_states=_STOPPABLE_STATES,
                        )
                        await self._publish_update(discussion)
                    return self._result(discussion, produced, "stopped")

            discussion = await self.ledger.load_discussion(discussion_id)
            if discussion.state != DiscussionState.RUNNING:
                return self._result(discussion, produced, discussion.state.value.lower())

            turns = await self.ledger.list_turns(discussion_id)
            decision = self.scheduler.decide(
                discussion.participant_agent_ids,
                discussion.turn_cursor,
                discussion.intensity,
                turns,
                max_turns=discussion.max_turns,
            )

            if isinstance(decision, Complete):
                try:
                    discussion = await self.ledger.save_discussion_state(
                        discussion_id,
                        DiscussionState.COMPLETED,
                        expected_states=(DiscussionState.RUNNING,),
                    )
                except InvalidStateError:
                    # paused or stopped concurrently; observe it on the next pass
                    continue
                logger.info(
                    "[DISCUSSION] %s completed after %s turns (%s)",
                    discussion_id,
                    discussion.turn_cursor,
                    decision.reason,
                )
                await self._publish_update(discussion, status="CONCLUDED", reason=decision.reason)
                return self._result(discussion, produced, "completed")

            turn = await self._run_turn(
                discussion,
                decision,
                turns,
                profiles,
                requesting_user_id=requesting_user_id,
                user_name=user_name,
            )
            if turn is not None:
                produced.append(turn)
                logger.debug(
                    "[DISCUSSION] %s recent turns: %s",
                    discussion_id,
                    build_turns_preview_for_log(turns + [turn]),
                )

    async def _run_turn(
        self,
        discussion: Discussion,
        decision: Speak,
        history: List[Turn],
        profiles: Dict[str, AgentProfile],
        *,
        requesting_user_id: Optional[str],
        user_name: Optional[str],
    ) -> Optional[Turn]:
        """Generate and record one turn.

        Returns None when the discussion was stopped while the turn was in
        flight; the settled result is then discarded.
        """
        agent_id = decision.agent_id
        profile = profiles.get(agent_id)
        agent_name = profile.name if profile else agent_id
        await self.events.publish(
            AgentStartingEvent(
                discussion_id=discussion.id,
                room_id=discussion.room_id,
                agent_id=agent_id,
                agent_name=agent_name,
                turn=decision.sequence,
                total_turns=discussion.max_turns,
            )
        )

        try:
            if profile is None:
                raise GenerationFailedError(
                    f"Agent {agent_id} could not be resolved",
                    transient=False,
                    agent_id=agent_id,
                    sequence=decision.sequence,
                )
            bundle = await self.context_service.assemble_context(
                discussion.room_id,
                discussion.id,
                discussion.topic,
                history,
                origin_message_id=discussion.origin_message_id,
                requesting_user_id=requesting_user_id,
                intensity=discussion.intensity,
            )
            reply = await self.generator.generate(
                agent_id,
                profile,
                profile.style,
                bundle,
                requesting_user_id,
                intensity=discussion.intensity,
                sequence=decision.sequence,
                total_turns=discussion.max_turns,
                agent_names={key: value.name for key, value in profiles.items()},
                user_name=user_name,
            )
        except GenerationFailedError as e:
            return await self._fail_turn(discussion, decision, e)
        except DiscussionError:
            raise
        except Exception as e:
            logger.exception("[DISCUSSION] %s turn %s preparation failed", discussion.id, decision.sequence)
            failure = GenerationFailedError(
                f"Turn preparation failed: {e}",
                transient=False,
                agent_id=agent_id,
                sequence=decision.sequence,
            )
            failure.__cause__ = e
            return await self._fail_turn(discussion, decision, failure)

        try:
            turn = await self.ledger.append_turn(
                discussion.id,
                decision.sequence,
                agent_id,
                reply.content,
                TurnStatus.SUCCEEDED,
                attempts=reply.attempts,
            )
        except InvalidStateError as e:
            if e.current_state == DiscussionState.STOPPED:
                logger.info(
                    "[DISCUSSION] %s stopped during turn %s; discarding settled reply",
                    discussion.id,
                    decision.sequence,
                )
                return None
            raise

        await self.events.publish(
            AgentCompleteEvent(
                discussion_id=discussion.id,
                room_id=discussion.room_id,
                agent_id=agent_id,
                agent_name=agent_name,
                turn=decision.sequence,
                total_turns=discussion.max_turns,
                processing_ms=reply.duration_ms,
            )
        )
        updated = await self.ledger.load_discussion(discussion.id)
        await self._publish_update(updated)
        return turn

    async def _fail_turn(
        self,
        discussion: Discussion,
        decision: Speak,
        error: GenerationFailedError,
    ) -> None:
        """Record the failed attempt and move the discussion to FAILED.

        Raises the typed failure unless the discussion was stopped meanwhile,
        in which case stop wins and nothing is recorded.
        """
        reason = f"Turn {decision.sequence} ({decision.agent_id}) failed: {error.message}"
        try:
            await self.ledger.append_turn(
                discussion.id,
                decision.sequence,
                decision.agent_id,
                "",
                TurnStatus.FAILED,
                error=error.message,
                attempts=max(error.attempts, 1),
            )
            failed = await self.ledger.save_discussion_state(
                discussion.id,
                DiscussionState.FAILED,
                expected_states=(DiscussionState.RUNNING, DiscussionState.PAUSED),
                last_error=reason,
            )
        except InvalidStateError as e:
            if e.current_state == DiscussionState.STOPPED:
                logger.info(
                    "[DISCUSSION] %s stopped while turn %s was failing; keeping STOPPED",
                    discussion.id,
                    decision.sequence,
                )
                return None
            raise

        logger.error("[DISCUSSION] %s -> FAILED: %s", discussion.id, reason)
        await self.events.publish(
            AgentErrorEvent(
                discussion_id=discussion.id,
                room_id=discussion.room_id,
                agent_id=decision.agent_id,
                turn=decision.sequence,
                total_turns=discussion.max_turns,
                error=error.message,
            )
        )
        await self._publish_update(failed, reason=reason)
        raise GenerationFailedError(
            reason,
            transient=error.transient,
            agent_id=decision.agent_id,
            sequence=decision.sequence,
            attempts=error.attempts,
            discussion_id=discussion.id,
        ) from error

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_agent_ids(agent_ids: Optional[Iterable[Any]]) -> List[str]:
        if agent_ids is None or isinstance(agent_ids, str):
            return []
        normalized: List[str] = []
        seen = set()
        for agent_id in agent_ids:
            if not isinstance(agent_id, str):
                continue
            cleaned = agent_id.strip()
            if not cleaned or cleaned in seen:
                continue
            seen.add(cleaned)
            normalized.append(cleaned)
        return normalized

    async def _load_profiles(self, agent_ids: Sequence[str]) -> Dict[str, AgentProfile]:
        profiles: Dict[str, AgentProfile] = {}
        for agent_id in agent_ids:
            profile = await self.agent_directory.get_agent(agent_id)
            if profile is not None:
                profiles[agent_id] = profile
        return profiles

    @staticmethod
    def _ensure_state(
        discussion: Discussion,
        allowed: Sequence[DiscussionState],
        operation: str,
    ) -> None:
        if discussion.state not in allowed:
            raise InvalidStateError(
                f"Cannot {operation} discussion {discussion.id} in state {discussion.state.value}",
                current_state=discussion.state,
                discussion_id=discussion.id,
            )

    @staticmethod
    def _result(discussion: Discussion, produced: List[Turn], stop_reason: str) -> ExecutionResult:
        return ExecutionResult(
            discussion_id=discussion.id,
            state=discussion.state,
            turn_cursor=discussion.turn_cursor,
            turns=list(produced),
            stop_reason=stop_reason,
            error=discussion.last_error,
        )

    async def _publish_update(
        self,
        discussion: Discussion,
        *,
        status: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        speakers = self.scheduler.preview(
            discussion.participant_agent_ids,
            discussion.turn_cursor,
            discussion.max_turns,
        )
        await self.events.publish(
            DiscussionUpdateEvent(
                discussion_id=discussion.id,
                room_id=discussion.room_id,
                status=status or discussion.state.value,
                intensity=discussion.intensity.value,
                current_turn=discussion.turn_cursor,
                current_agent=speakers.current_agent_id,
                next_agent=speakers.next_agent_id,
                reason=reason,
            )
        )
