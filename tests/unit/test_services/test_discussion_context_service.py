"""Unit tests for discussion context assembly."""

import pytest

from src.api.models.discussion import Intensity, Turn, TurnStatus
from src.api.services.discussion_context_service import ContextLimits, DiscussionContextService
from src.api.services.service_contracts import RetrievedSnippet, RoomMessage


class _FakeRooms:
    def __init__(self, messages, user_history=None, fail_user_lookup=False):
        self.messages = list(messages)
        self.user_history = list(user_history or [])
        self.fail_user_lookup = fail_user_lookup

    async def get_message(self, room_id, message_id):
        for message in self.messages:
            if message.message_id == message_id:
                return message
        return None

    async def recent_messages(self, room_id, limit):
        return self.messages[-limit:]

    async def user_messages(self, room_id, user_id, limit):
        if self.fail_user_lookup:
            raise RuntimeError("user index unavailable")
        return self.user_history[-limit:]


class _FakeRetrieval:
    def __init__(self, snippets=None, error=None):
        self.snippets = list(snippets or [])
        self.error = error
        self.queries = []

    async def semantic_query(self, room_id, query_text, top_k):
        self.queries.append(query_text)
        if self.error is not None:
            raise self.error
        return list(self.snippets)


def _msg(message_id, content, author="user-1", kind="USER"):
    return RoomMessage(content=content, author=author, kind=kind, message_id=message_id)


def _turn(sequence, agent_id, content, status=TurnStatus.SUCCEEDED):
    return Turn(discussion_id="d1", sequence=sequence, agent_id=agent_id, content=content, status=status)


@pytest.mark.asyncio
async def test_assembles_history_turns_and_snippets():
    rooms = _FakeRooms(
        [
            _msg("m1", "We keep missing deadlines."),
            _msg("m2", "[AGENT:a]\nEarlier agent note", author="a", kind="AGENT"),
            _msg("m3", "What should we change?"),
        ]
    )
    retrieval = _FakeRetrieval(
        [
            RetrievedSnippet(content="low", score=0.1),
            RetrievedSnippet(content="high", score=0.9),
            RetrievedSnippet(content="mid", score=0.5),
        ]
    )
    service = DiscussionContextService(
        room_directory=rooms,
        retrieval_service=retrieval,
        limits=ContextLimits(retrieval_top_k=2, min_snippet_score=0.2),
    )

    bundle = await service.assemble_context(
        "room-1",
        "d1",
        "deadlines",
        [_turn(0, "a", "Plan smaller."), _turn(1, "b", "", status=TurnStatus.FAILED)],
        origin_message_id="m3",
    )

    assert bundle.origin.content == "What should we change?"
    assert [m.message_id for m in bundle.recent_messages] == ["m1", "m2"]
    assert bundle.recent_messages[1].content == "Earlier agent note"
    assert [t.content for t in bundle.prior_turns] == ["Plan smaller."]
    assert [s.content for s in bundle.snippets] == ["high", "mid"]
    assert bundle.retrieval_degraded is False
    assert retrieval.queries == ["deadlines\nPlan smaller."]


@pytest.mark.asyncio
async def test_retrieval_failure_degrades_to_chronological_context():
    rooms = _FakeRooms([_msg("m1", "Hello there")])
    service = DiscussionContextService(
        room_directory=rooms,
        retrieval_service=_FakeRetrieval(error=RuntimeError("vector store down")),
    )

    bundle = await service.assemble_context("room-1", "d1", None, [], origin_message_id="m1")

    assert bundle.retrieval_degraded is True
    assert bundle.snippets == []
    assert bundle.origin.content == "Hello there"


@pytest.mark.asyncio
async def test_malformed_retrieval_result_degrades_instead_of_failing():
    broken = RetrievedSnippet(content="scored oddly", score="not-a-number")
    service = DiscussionContextService(
        room_directory=_FakeRooms([_msg("m1", "Hello there")]),
        retrieval_service=_FakeRetrieval([broken]),
    )

    bundle = await service.assemble_context("room-1", "d1", "topic", [], origin_message_id="m1")

    assert bundle.retrieval_degraded is True
    assert bundle.snippets == []


@pytest.mark.asyncio
async def test_without_retrieval_service_bundle_is_not_degraded():
    service = DiscussionContextService(room_directory=_FakeRooms([_msg("m1", "Hi")]))
    bundle = await service.assemble_context("room-1", "d1", "topic", [])
    assert bundle.snippets == []
    assert bundle.retrieval_degraded is False
    assert bundle.origin_message.content == "Hi"


@pytest.mark.asyncio
async def test_budget_drops_snippets_then_history_then_turns():
    rooms = _FakeRooms(
        [
            _msg("m1", "a" * 40),
            _msg("m2", "b" * 40),
            _msg("m3", "origin"),
        ]
    )
    retrieval = _FakeRetrieval([RetrievedSnippet(content="s" * 40, score=1.0)])
    service = DiscussionContextService(
        room_directory=rooms,
        retrieval_service=retrieval,
        limits=ContextLimits(max_chars=100, max_item_chars=100),
    )

    bundle = await service.assemble_context(
        "room-1",
        "d1",
        None,
        [_turn(0, "a", "t" * 40)],
        origin_message_id="m3",
    )

    assert bundle.total_chars() <= 100
    assert bundle.snippets == []
    assert [m.message_id for m in bundle.recent_messages] == ["m2"]
    assert len(bundle.prior_turns) == 1
    assert bundle.origin.content == "origin"


@pytest.mark.asyncio
async def test_budget_truncates_oversized_origin():
    rooms = _FakeRooms([_msg("m1", "x" * 500)])
    service = DiscussionContextService(
        room_directory=rooms,
        limits=ContextLimits(max_chars=120, max_item_chars=1000),
    )

    bundle = await service.assemble_context("room-1", "d1", None, [], origin_message_id="m1")

    assert bundle.origin is not None
    assert bundle.total_chars() <= 120


@pytest.mark.asyncio
async def test_prior_turns_are_truncated_to_item_limit():
    service = DiscussionContextService(
        room_directory=_FakeRooms([]),
        limits=ContextLimits(max_item_chars=50),
    )
    bundle = await service.assemble_context("room-1", "d1", None, [_turn(0, "a", "y" * 400)])
    assert len(bundle.prior_turns[0].content) <= 50


@pytest.mark.asyncio
async def test_user_patterns_only_in_challenge_mode():
    rooms = _FakeRooms(
        [_msg("m1", "Start")],
        user_history=[_msg("u1", "I am too busy, I'll do it tomorrow"), _msg("u2", "I'm afraid to fail")],
    )
    service = DiscussionContextService(room_directory=rooms)

    calm = await service.assemble_context(
        "room-1", "d1", None, [], requesting_user_id="user-1", intensity=Intensity.NORMAL
    )
    assert calm.user_patterns is None

    intense = await service.assemble_context(
        "room-1", "d1", None, [], requesting_user_id="user-1", intensity=Intensity.BRUTAL
    )
    assert intense.user_patterns.common_excuses == ["Time management issues", "Procrastination"]
    assert intense.user_patterns.growth_blockers == ["Fear of failure"]


@pytest.mark.asyncio
async def test_user_pattern_failure_yields_empty_patterns():
    rooms = _FakeRooms([_msg("m1", "Start")], fail_user_lookup=True)
    service = DiscussionContextService(room_directory=rooms)

    patterns = await service.analyze_user_patterns("room-1", "user-1")

    assert patterns.is_empty()
