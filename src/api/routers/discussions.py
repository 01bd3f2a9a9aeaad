"""
Discussion API endpoints

Lifecycle operations for multi-agent discussions
"""
from dataclasses import asdict
from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException

from ..config import settings
from ..models.discussion import DiscussionCreate, DiscussionExecuteRequest, ExecutionResult
from ..services.discussion_orchestration.errors import (
    DiscussionError,
    GenerationFailedError,
    InvalidStateError,
    NotFoundError,
    SequenceConflictError,
    ValidationFailedError,
)
from ..services.discussion_runtime import DiscussionRuntime, build_discussion_runtime

router = APIRouter(prefix="/api/discussions", tags=["discussions"])

_STATUS_BY_ERROR = (
    (ValidationFailedError, 422),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (SequenceConflictError, 409),
    (GenerationFailedError, 502),
)


@lru_cache(maxsize=1)
def get_discussion_runtime() -> DiscussionRuntime:
    """Dependency injection: process-wide discussion runtime"""
    return build_discussion_runtime(settings)


def to_http_exception(error: DiscussionError) -> HTTPException:
    """Map a discussion failure to its HTTP status"""
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_cls):
            return HTTPException(status_code=status_code, detail=error.to_dict())
    return HTTPException(status_code=500, detail=error.to_dict())


@router.post("", status_code=201)
async def start_discussion(
    request: DiscussionCreate,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Create a discussion in CREATED state"""
    try:
        discussion = await runtime.orchestrator.create_discussion(
            request.room_id,
            request.origin_message_id,
            request.agent_ids,
            topic=request.topic,
            intensity=request.intensity,
            order_by_style=request.order_by_style,
        )
    except DiscussionError as e:
        raise to_http_exception(e)
    return discussion.model_dump(mode="json")


@router.get("/agents")
async def list_agents(runtime: DiscussionRuntime = Depends(get_discussion_runtime)):
    """Get the personas that can join discussions"""
    agents = await runtime.agent_directory.list_agents()
    return [asdict(agent) for agent in agents]


@router.get("/{discussion_id}")
async def get_discussion_status(
    discussion_id: str,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Get discussion state, ordered turns and speaker preview"""
    try:
        snapshot = await runtime.orchestrator.get_discussion_status(discussion_id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return snapshot.to_dict()


@router.post("/{discussion_id}/execute", response_model=ExecutionResult)
async def execute_discussion(
    discussion_id: str,
    request: DiscussionExecuteRequest = DiscussionExecuteRequest(),
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """
    Run the turn loop until completion, pause, stop or failure

    Returns immediately with ``already_running`` when another caller owns the loop.
    """
    try:
        return await runtime.orchestrator.execute_discussion(
            discussion_id,
            request.requesting_user_id,
            user_name=request.user_name,
        )
    except DiscussionError as e:
        raise to_http_exception(e)


@router.post("/{discussion_id}/pause")
async def pause_discussion(
    discussion_id: str,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Pause a running discussion after its in-flight turn"""
    try:
        discussion = await runtime.orchestrator.pause_discussion(discussion_id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return discussion.model_dump(mode="json")


@router.post("/{discussion_id}/resume")
async def resume_discussion(
    discussion_id: str,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Mark a paused discussion as running again"""
    try:
        discussion = await runtime.orchestrator.resume_discussion(discussion_id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return discussion.model_dump(mode="json")


@router.post("/{discussion_id}/stop")
async def stop_discussion(
    discussion_id: str,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Stop a discussion permanently"""
    try:
        discussion = await runtime.orchestrator.stop_discussion(discussion_id)
    except DiscussionError as e:
        raise to_http_exception(e)
    return discussion.model_dump(mode="json")
