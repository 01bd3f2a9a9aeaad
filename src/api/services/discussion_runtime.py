"""
Process-wide wiring of the discussion orchestrator and its collaborators

Builds every collaborator from application settings once, so the concurrency
guard is shared by all requests served by this process.
"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from src.api.models.discussion import DiscussionState
from src.providers.langchain_completion import LangChainCompletionClient, build_chat_model
from src.utils.llm_logger import LLMLogger

from .agent_directory import AgentDirectoryService
from .discussion_context_service import ContextLimits, DiscussionContextService
from .discussion_ledger import FileDiscussionLedger
from .discussion_orchestration.events import DiscussionEventPublisher
from .discussion_orchestration.generation import ResponseGenerator, RetryPolicy
from .discussion_orchestration.orchestrator import DiscussionOrchestrator, OrchestratorConfig
from .room_directory import FileRoomDirectory, RoomHistoryRetrieval
from .service_contracts import DiscussionEventSinkLike

logger = logging.getLogger(__name__)


@dataclass
class DiscussionRuntime:
    """Collaborators shared by the HTTP layer"""

    orchestrator: DiscussionOrchestrator
    ledger: FileDiscussionLedger
    room_directory: FileRoomDirectory
    agent_directory: AgentDirectoryService

    async def recover_discussions(self) -> List[str]:
        """Report discussions left RUNNING by a previous process.

        They have no live loop here; the next execute call claims the guard and
        continues from the persisted cursor.
        """
        recoverable: List[str] = []
        for discussion_id in await self.ledger.list_discussion_ids():
            discussion = await self.ledger.load_discussion(discussion_id)
            if discussion.state == DiscussionState.RUNNING:
                recoverable.append(discussion_id)
        if recoverable:
            logger.info(
                "[DISCUSSION] %s discussion(s) were RUNNING at shutdown and can be resumed: %s",
                len(recoverable),
                recoverable,
            )
        return recoverable


def build_discussion_runtime(
    settings: Any,
    *,
    completion_client: Optional[Any] = None,
    event_sink: Optional[DiscussionEventSinkLike] = None,
) -> DiscussionRuntime:
    """Create the orchestrator stack described by ``settings``"""
    ledger = FileDiscussionLedger(settings.discussions_dir)
    room_directory = FileRoomDirectory(settings.rooms_dir)
    agent_directory = AgentDirectoryService(settings.agents_config_path)

    context_service = DiscussionContextService(
        room_directory=room_directory,
        retrieval_service=RoomHistoryRetrieval(room_directory),
        limits=ContextLimits.from_settings(settings),
    )
    if completion_client is None:
        completion_client = LangChainCompletionClient(build_chat_model(settings))
    generator = ResponseGenerator(
        completion_client=completion_client,
        retry_policy=RetryPolicy.from_settings(settings),
        llm_logger=LLMLogger(log_dir=str(settings.logs_dir)),
    )
    orchestrator = DiscussionOrchestrator(
        ledger=ledger,
        room_directory=room_directory,
        agent_directory=agent_directory,
        context_service=context_service,
        generator=generator,
        event_publisher=DiscussionEventPublisher(event_sink),
        config=OrchestratorConfig.from_settings(settings),
    )
    return DiscussionRuntime(
        orchestrator=orchestrator,
        ledger=ledger,
        room_directory=room_directory,
        agent_directory=agent_directory,
    )
