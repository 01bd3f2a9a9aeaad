"""Unit tests for the per-discussion guard and progress events."""

import pytest

from src.api.services.discussion_orchestration import (
    AgentStartingEvent,
    ControlRequest,
    DiscussionEventPublisher,
    DiscussionGuard,
    DiscussionUpdateEvent,
    normalize_discussion_event,
)


@pytest.mark.asyncio
async def test_guard_admits_single_owner_per_discussion():
    guard = DiscussionGuard()

    async with guard.try_claim("d1") as first:
        assert first is True
        assert guard.is_active("d1")
        async with guard.try_claim("d1") as second:
            assert second is False
        async with guard.try_claim("d2") as other:
            assert other is True

    assert not guard.is_active("d1")
    async with guard.try_claim("d1") as again:
        assert again is True


@pytest.mark.asyncio
async def test_guard_releases_on_error():
    guard = DiscussionGuard()
    with pytest.raises(RuntimeError):
        async with guard.try_claim("d1") as owned:
            assert owned
            raise RuntimeError("loop crashed")
    assert not guard.is_active("d1")
    assert guard.control("d1") is None


@pytest.mark.asyncio
async def test_control_requests_only_reach_active_loops():
    guard = DiscussionGuard()
    assert guard.request("d1", "pause") is False

    async with guard.try_claim("d1"):
        assert guard.request("d1", "pause", "user asked") is True
        control = guard.control("d1")
        assert control.action == "pause"
        assert control.reason == "user asked"

        guard.clear_request("d1")
        assert not control.is_requested


def test_stop_outranks_pause():
    control = ControlRequest()
    control.request("stop")
    control.request("pause")
    assert control.action == "stop"
    assert control.reason == "stop"


def test_normalize_event_validates_dict_payloads():
    payload = normalize_discussion_event(
        {
            "type": "agent_starting",
            "discussion_id": "d1",
            "room_id": "room-1",
            "agent_id": "a",
            "turn": 0,
            "total_turns": 4,
        }
    )
    assert payload["agent_id"] == "a"
    assert "agent_name" not in payload

    with pytest.raises(ValueError):
        normalize_discussion_event({"type": "mystery", "discussion_id": "d1", "room_id": "r"})
    with pytest.raises(ValueError):
        normalize_discussion_event({"discussion_id": "d1"})


class _Sink:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    async def publish(self, room_id, event):
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append((room_id, event))


@pytest.mark.asyncio
async def test_publisher_forwards_normalized_payloads():
    sink = _Sink()
    publisher = DiscussionEventPublisher(sink)

    await publisher.publish(
        DiscussionUpdateEvent(discussion_id="d1", room_id="room-1", status="RUNNING", intensity="NORMAL")
    )

    assert sink.events == [
        (
            "room-1",
            {
                "type": "discussion_update",
                "discussion_id": "d1",
                "room_id": "room-1",
                "status": "RUNNING",
                "intensity": "NORMAL",
            },
        )
    ]


@pytest.mark.asyncio
async def test_publisher_swallows_sink_failures():
    publisher = DiscussionEventPublisher(_Sink(fail=True))
    await publisher.publish(
        AgentStartingEvent(discussion_id="d1", room_id="room-1", agent_id="a", turn=0, total_turns=2)
    )
