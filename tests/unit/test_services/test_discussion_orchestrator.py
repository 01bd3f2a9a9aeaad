"""Unit tests for the discussion orchestrator state machine and turn loop."""

import asyncio

import pytest

from src.api.models.discussion import DiscussionState, Intensity, TurnStatus
from src.api.services.discussion_context_service import DiscussionContextService
from src.api.services.discussion_orchestration.errors import (
    GenerationFailedError,
    InvalidStateError,
    NotFoundError,
    ValidationFailedError,
)
from src.api.services.discussion_orchestration.generation import ResponseGenerator
from src.api.services.discussion_orchestration.orchestrator import DiscussionOrchestrator
from src.api.services.room_directory import FileRoomDirectory


async def _create(orchestrator, agent_ids=("a", "b"), **kwargs):
    return await orchestrator.create_discussion("room-1", "m1", list(agent_ids), **kwargs)


def _event_types(event_sink):
    return [event["type"] for _, event in event_sink.events]


def _statuses(event_sink):
    return [event["status"] for _, event in event_sink.events if event["type"] == "discussion_update"]


# ==================== Creation ====================

@pytest.mark.asyncio
async def test_create_discussion_derives_turn_bound(orchestrator, ledger):
    discussion = await _create(orchestrator, topic="  Billing rewrite  ")

    assert discussion.state == DiscussionState.CREATED
    assert discussion.turn_cursor == 0
    assert discussion.max_turns == 4
    assert discussion.topic == "Billing rewrite"
    assert discussion.intensity == Intensity.NORMAL
    assert (await ledger.load_discussion(discussion.id)) == discussion


@pytest.mark.asyncio
async def test_create_dedupes_agents_preserving_first_occurrence(orchestrator):
    discussion = await _create(orchestrator, agent_ids=["b", "a", "b", " a ", "c"])
    assert discussion.participant_agent_ids == ["b", "a", "c"]


@pytest.mark.asyncio
@pytest.mark.parametrize("agent_ids", [[], ["a"], ["a", "a"], ["a", " "]])
async def test_create_requires_two_distinct_agents(orchestrator, agent_ids):
    with pytest.raises(ValidationFailedError):
        await _create(orchestrator, agent_ids=agent_ids)


@pytest.mark.asyncio
async def test_create_rejects_unknown_intensity(orchestrator):
    with pytest.raises(ValidationFailedError):
        await _create(orchestrator, intensity="WILD")


@pytest.mark.asyncio
async def test_create_rejects_unresolvable_origin(orchestrator):
    with pytest.raises(ValidationFailedError):
        await orchestrator.create_discussion("room-1", "missing", ["a", "b"])
    with pytest.raises(ValidationFailedError):
        await orchestrator.create_discussion("other-room", "m1", ["a", "b"])


@pytest.mark.asyncio
async def test_create_rejects_unknown_agents(orchestrator):
    with pytest.raises(ValidationFailedError) as exc:
        await _create(orchestrator, agent_ids=["a", "ghost"])
    assert "ghost" in exc.value.message


@pytest.mark.asyncio
async def test_create_can_order_participants_by_style(orchestrator):
    discussion = await _create(orchestrator, agent_ids=["c", "b", "a"], order_by_style=True)
    assert discussion.participant_agent_ids == ["a", "b", "c"]


# ==================== Execution ====================

@pytest.mark.asyncio
async def test_execute_runs_round_robin_to_completion(orchestrator, ledger, event_sink):
    discussion = await _create(orchestrator)

    result = await orchestrator.execute_discussion(discussion.id, "user-1")

    assert result.state == DiscussionState.COMPLETED
    assert result.stop_reason == "completed"
    assert result.turn_cursor == 4
    assert [t.agent_id for t in result.turns] == ["a", "b", "a", "b"]
    turns = await ledger.list_turns(discussion.id)
    assert [t.sequence for t in turns] == [0, 1, 2, 3]
    assert all(t.status == TurnStatus.SUCCEEDED for t in turns)

    assert _statuses(event_sink)[:2] == ["CREATED", "STARTED"]
    assert _statuses(event_sink)[-1] == "CONCLUDED"
    assert _event_types(event_sink).count("agent_starting") == 4
    assert _event_types(event_sink).count("agent_complete") == 4


@pytest.mark.asyncio
async def test_execute_with_three_agents_at_low_intensity(orchestrator):
    discussion = await _create(orchestrator, agent_ids=["a", "b", "c"], intensity="low")
    result = await orchestrator.execute_discussion(discussion.id, None)
    assert [t.agent_id for t in result.turns] == ["a", "b", "c"]
    assert result.state == DiscussionState.COMPLETED


@pytest.mark.asyncio
async def test_prompts_carry_prior_turns(orchestrator, completion_client):
    discussion = await _create(orchestrator)
    await orchestrator.execute_discussion(discussion.id, "user-1")

    second_system = completion_client.calls[1][0]["content"]
    assert "[Alpha]: reply 1" in second_system
    assert "Your turn: 2 of 4" in second_system


@pytest.mark.asyncio
async def test_generation_failure_marks_turn_and_discussion_failed(
    orchestrator, ledger, completion_client, event_sink
):
    completion_client.script = ["first", "second", TimeoutError(), TimeoutError()]
    discussion = await _create(orchestrator)

    with pytest.raises(GenerationFailedError) as exc:
        await orchestrator.execute_discussion(discussion.id, "user-1")

    assert exc.value.sequence == 2
    assert exc.value.agent_id == "a"
    assert exc.value.attempts == 2

    turns = await ledger.list_turns(discussion.id)
    assert [(t.sequence, t.status) for t in turns] == [
        (0, TurnStatus.SUCCEEDED),
        (1, TurnStatus.SUCCEEDED),
        (2, TurnStatus.FAILED),
    ]
    assert turns[2].attempts == 2

    snapshot = await orchestrator.get_discussion_status(discussion.id)
    assert snapshot.state == DiscussionState.FAILED
    assert snapshot.succeeded_turns == 2
    assert "Turn 2 (a) failed" in snapshot.discussion.last_error
    assert "agent_error" in _event_types(event_sink)

    with pytest.raises(InvalidStateError):
        await orchestrator.execute_discussion(discussion.id, "user-1")


@pytest.mark.asyncio
async def test_context_failure_fails_turn_without_retry(orchestrator, room_directory, completion_client):
    discussion = await _create(orchestrator)
    room_directory.fail_recent = True

    with pytest.raises(GenerationFailedError) as exc:
        await orchestrator.execute_discussion(discussion.id, "user-1")

    assert exc.value.transient is False
    assert completion_client.calls == []
    snapshot = await orchestrator.get_discussion_status(discussion.id)
    assert snapshot.state == DiscussionState.FAILED
    assert "Turn preparation failed" in snapshot.discussion.last_error


@pytest.mark.asyncio
async def test_create_with_unresolvable_room_id_is_validation_failure(
    tmp_path, ledger, agent_directory, completion_client
):
    rooms = FileRoomDirectory(tmp_path / "rooms")
    orchestrator = DiscussionOrchestrator(
        ledger=ledger,
        room_directory=rooms,
        agent_directory=agent_directory,
        context_service=DiscussionContextService(room_directory=rooms),
        generator=ResponseGenerator(completion_client=completion_client),
    )

    for room_id in ("room/../x", "my room"):
        with pytest.raises(ValidationFailedError):
            await orchestrator.create_discussion(room_id, "m1", ["a", "b"])


@pytest.mark.asyncio
async def test_execute_unknown_discussion_raises_not_found(orchestrator):
    with pytest.raises(NotFoundError):
        await orchestrator.execute_discussion("nope", "user-1")


# ==================== Pause / resume / stop ====================

@pytest.mark.asyncio
async def test_pause_lets_in_flight_turn_settle_then_resume_continues(
    orchestrator, ledger, completion_client
):
    discussion = await _create(orchestrator)
    completion_client.gate = asyncio.Event()

    task = asyncio.create_task(orchestrator.execute_discussion(discussion.id, "user-1"))
    await completion_client.started.wait()

    paused = await orchestrator.pause_discussion(discussion.id)
    assert paused.state == DiscussionState.PAUSED
    completion_client.gate.set()
    first = await task

    assert first.stop_reason == "paused"
    assert first.state == DiscussionState.PAUSED
    assert [t.sequence for t in first.turns] == [0]

    resumed = await orchestrator.resume_discussion(discussion.id)
    assert resumed.state == DiscussionState.RUNNING
    assert resumed.turn_cursor == 1

    second = await orchestrator.execute_discussion(discussion.id, "user-1")
    assert second.state == DiscussionState.COMPLETED
    assert [(t.sequence, t.agent_id) for t in second.turns] == [(1, "b"), (2, "a"), (3, "b")]

    turns = await ledger.list_turns(discussion.id)
    assert [t.sequence for t in turns] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_execute_on_paused_discussion_resumes_it(orchestrator, event_sink, completion_client):
    discussion = await _create(orchestrator)
    completion_client.gate = asyncio.Event()
    task = asyncio.create_task(orchestrator.execute_discussion(discussion.id, "user-1"))
    await completion_client.started.wait()
    await orchestrator.pause_discussion(discussion.id)
    completion_client.gate.set()
    await task

    result = await orchestrator.execute_discussion(discussion.id, "user-1")

    assert result.state == DiscussionState.COMPLETED
    assert "RESUMED" in _statuses(event_sink)


@pytest.mark.asyncio
async def test_stop_discards_in_flight_turn(orchestrator, ledger, completion_client):
    discussion = await _create(orchestrator)
    completion_client.gate = asyncio.Event()

    task = asyncio.create_task(orchestrator.execute_discussion(discussion.id, "user-1"))
    await completion_client.started.wait()
    stopped = await orchestrator.stop_discussion(discussion.id)
    completion_client.gate.set()
    result = await task

    assert stopped.state == DiscussionState.STOPPED
    assert result.stop_reason == "stopped"
    assert result.turns == []
    assert await ledger.list_turns(discussion.id) == []


@pytest.mark.asyncio
async def test_stop_request_on_guard_ends_loop_between_turns(orchestrator, ledger, completion_client):
    discussion = await _create(orchestrator)
    completion_client.gate = asyncio.Event()

    task = asyncio.create_task(orchestrator.execute_discussion(discussion.id, "user-1"))
    await completion_client.started.wait()
    assert orchestrator.guard.request(discussion.id, "stop") is True
    completion_client.gate.set()
    result = await task

    assert result.stop_reason == "stopped"
    assert result.state == DiscussionState.STOPPED
    assert [t.sequence for t in result.turns] == [0]
    assert len(completion_client.calls) == 1
    assert (await ledger.load_discussion(discussion.id)).state == DiscussionState.STOPPED


@pytest.mark.asyncio
async def test_stop_before_execute_blocks_further_execution(orchestrator, completion_client):
    discussion = await _create(orchestrator)

    stopped = await orchestrator.stop_discussion(discussion.id)
    assert stopped.state == DiscussionState.STOPPED

    with pytest.raises(InvalidStateError) as exc:
        await orchestrator.execute_discussion(discussion.id, "user-1")
    assert exc.value.current_state == DiscussionState.STOPPED
    assert completion_client.calls == []


@pytest.mark.asyncio
async def test_pause_and_stop_are_idempotent(orchestrator, ledger):
    discussion = await _create(orchestrator)
    await ledger.save_discussion_state(discussion.id, DiscussionState.RUNNING)

    first = await orchestrator.pause_discussion(discussion.id)
    second = await orchestrator.pause_discussion(discussion.id)
    assert first.state == second.state == DiscussionState.PAUSED

    await orchestrator.stop_discussion(discussion.id)
    again = await orchestrator.stop_discussion(discussion.id)
    assert again.state == DiscussionState.STOPPED


@pytest.mark.asyncio
async def test_illegal_transitions_raise_invalid_state(orchestrator, ledger):
    discussion = await _create(orchestrator)

    with pytest.raises(InvalidStateError):
        await orchestrator.pause_discussion(discussion.id)
    with pytest.raises(InvalidStateError):
        await orchestrator.resume_discussion(discussion.id)

    await orchestrator.execute_discussion(discussion.id, "user-1")
    with pytest.raises(InvalidStateError):
        await orchestrator.stop_discussion(discussion.id)
    with pytest.raises(InvalidStateError):
        await orchestrator.pause_discussion(discussion.id)


@pytest.mark.asyncio
async def test_resume_on_running_is_noop(orchestrator, ledger):
    discussion = await _create(orchestrator)
    await ledger.save_discussion_state(discussion.id, DiscussionState.RUNNING)

    resumed = await orchestrator.resume_discussion(discussion.id)

    assert resumed.state == DiscussionState.RUNNING


# ==================== Concurrency / recovery ====================

@pytest.mark.asyncio
async def test_concurrent_execute_returns_already_running(orchestrator, ledger, completion_client):
    discussion = await _create(orchestrator)
    completion_client.gate = asyncio.Event()

    owner = asyncio.create_task(orchestrator.execute_discussion(discussion.id, "user-1"))
    await completion_client.started.wait()

    late = await orchestrator.execute_discussion(discussion.id, "user-2")
    assert late.already_running is True
    assert late.stop_reason == "already_running"
    assert late.turns == []

    completion_client.gate.set()
    result = await owner

    assert result.state == DiscussionState.COMPLETED
    turns = await ledger.list_turns(discussion.id)
    assert [t.sequence for t in turns] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_different_discussions_run_in_parallel(orchestrator, completion_client):
    first = await _create(orchestrator)
    second = await _create(orchestrator)

    results = await asyncio.gather(
        orchestrator.execute_discussion(first.id, "user-1"),
        orchestrator.execute_discussion(second.id, "user-1"),
    )

    assert [r.state for r in results] == [DiscussionState.COMPLETED, DiscussionState.COMPLETED]
    assert len(completion_client.calls) == 8


@pytest.mark.asyncio
async def test_running_discussion_without_live_loop_is_resumed(orchestrator, ledger):
    discussion = await _create(orchestrator)
    await ledger.save_discussion_state(discussion.id, DiscussionState.RUNNING)
    await ledger.append_turn(discussion.id, 0, "a", "before restart", TurnStatus.SUCCEEDED)

    result = await orchestrator.execute_discussion(discussion.id, "user-1")

    assert [t.sequence for t in result.turns] == [1, 2, 3]
    assert result.state == DiscussionState.COMPLETED


# ==================== Status ====================

@pytest.mark.asyncio
async def test_status_snapshot_reports_progress(orchestrator):
    discussion = await _create(orchestrator, intensity="HIGH")

    snapshot = await orchestrator.get_discussion_status(discussion.id)
    assert snapshot.state == DiscussionState.CREATED
    assert snapshot.speakers.current_agent_id == "a"
    assert snapshot.speakers.next_agent_id == "b"
    assert snapshot.expected_duration_minutes == 5
    assert snapshot.to_dict()["discussion"]["intensity"] == "HIGH"

    await orchestrator.execute_discussion(discussion.id, "user-1")
    done = await orchestrator.get_discussion_status(discussion.id)
    assert done.succeeded_turns == 6
    assert done.speakers.current_agent_id is None
