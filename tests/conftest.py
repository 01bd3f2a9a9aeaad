"""Shared pytest fixtures for all tests."""

import asyncio
import shutil
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from src.api.services.discussion_context_service import DiscussionContextService
from src.api.services.discussion_ledger import InMemoryDiscussionLedger
from src.api.services.discussion_orchestration.events import DiscussionEventPublisher
from src.api.services.discussion_orchestration.generation import ResponseGenerator, RetryPolicy
from src.api.services.discussion_orchestration.orchestrator import DiscussionOrchestrator
from src.api.services.service_contracts import AgentProfile, RoomMessage


def _create_workspace_temp_dir(kind: str) -> Path:
    """Create a temporary directory under repository-local .pytest_work."""
    repo_root = Path(__file__).resolve().parents[1]
    root_dir = repo_root / ".pytest_work" / kind
    root_dir.mkdir(parents=True, exist_ok=True)
    temp_dir = root_dir / f"{kind}_{uuid.uuid4().hex[:8]}"
    temp_dir.mkdir(parents=True, exist_ok=True)
    return temp_dir


@pytest.fixture
def tmp_path():
    """Workspace-local replacement for pytest's tmp_path fixture."""
    temp_dir = _create_workspace_temp_dir("tmp_path")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


class _FakeRoomDirectory:
    """In-memory room history keyed by room id."""

    def __init__(self, rooms: Optional[Dict[str, List[RoomMessage]]] = None):
        self.rooms: Dict[str, List[RoomMessage]] = {k: list(v) for k, v in (rooms or {}).items()}
        self.fail_recent = False

    def add(self, room_id: str, content: str, author: str = "user-1", kind: str = "USER") -> RoomMessage:
        messages = self.rooms.setdefault(room_id, [])
        message = RoomMessage(
            content=content,
            author=author,
            kind=kind,
            message_id=f"m{len(messages) + 1}",
        )
        messages.append(message)
        return message

    async def get_message(self, room_id, message_id):
        for message in self.rooms.get(room_id, []):
            if message.message_id == message_id:
                return message
        return None

    async def recent_messages(self, room_id, limit):
        if self.fail_recent:
            raise RuntimeError("room store offline")
        return list(self.rooms.get(room_id, []))[-limit:] if limit > 0 else []

    async def user_messages(self, room_id, user_id, limit):
        messages = [m for m in self.rooms.get(room_id, []) if m.author == user_id]
        return messages[-limit:]


class _FakeAgentDirectory:
    def __init__(self, profiles: List[AgentProfile]):
        self.profiles = {profile.id: profile for profile in profiles}

    async def get_agent(self, agent_id):
        return self.profiles.get(agent_id)


class _ScriptedCompletionClient:
    """Returns scripted outcomes in order; exceptions in the script are raised.

    Once the script is exhausted every call replies ``"reply <n>"`` where n is
    the 1-based call count.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls: List[list] = []
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def complete(self, prompt_parts):
        self.calls.append(prompt_parts)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.script:
            outcome = self.script.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return f"reply {len(self.calls)}"


class _RecordingSink:
    def __init__(self):
        self.events = []

    async def publish(self, room_id, event):
        self.events.append((room_id, event))


@pytest.fixture
def agent_profiles():
    return [
        AgentProfile(id="a", name="Alpha", persona="You are Alpha, a careful analyst.", style="analytical"),
        AgentProfile(id="b", name="Beta", persona="You are Beta, a blunt critic.", style="direct"),
        AgentProfile(id="c", name="Gamma", persona="You are Gamma, a patient coach.", style="supportive"),
    ]


@pytest.fixture
def room_directory():
    directory = _FakeRoomDirectory()
    directory.add("room-1", "Should we rewrite the billing service?", author="user-1")
    return directory


@pytest.fixture
def agent_directory(agent_profiles):
    return _FakeAgentDirectory(agent_profiles)


@pytest.fixture
def completion_client():
    return _ScriptedCompletionClient()


@pytest.fixture
def event_sink():
    return _RecordingSink()


@pytest.fixture
def ledger():
    return InMemoryDiscussionLedger()


@pytest.fixture
def orchestrator(ledger, room_directory, agent_directory, completion_client, event_sink):
    """Orchestrator over in-memory collaborators with instant retry backoff."""

    async def _no_sleep(_delay):
        return None

    generator = ResponseGenerator(
        completion_client=completion_client,
        retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=0.01, timeout_seconds=5.0),
        sleep=_no_sleep,
    )
    return DiscussionOrchestrator(
        ledger=ledger,
        room_directory=room_directory,
        agent_directory=agent_directory,
        context_service=DiscussionContextService(room_directory=room_directory),
        generator=generator,
        event_publisher=DiscussionEventPublisher(event_sink),
    )
