"""
Room message API endpoints

Minimal room history surface so discussions have origin messages to start from
"""
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query

from ..models.discussion import RoomMessageCreate
from ..services.discussion_runtime import DiscussionRuntime
from .discussions import get_discussion_runtime

router = APIRouter(prefix="/api/rooms", tags=["rooms"])


def _message_payload(message) -> dict:
    payload = asdict(message)
    if message.timestamp is not None:
        payload["timestamp"] = message.timestamp.isoformat()
    return payload


@router.post("/{room_id}/messages", status_code=201)
async def post_message(
    room_id: str,
    request: RoomMessageCreate,
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Append a message to a room"""
    try:
        message = await runtime.room_directory.append_message(
            room_id, request.content, request.author, kind=request.kind
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _message_payload(message)


@router.get("/{room_id}/messages")
async def list_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=500),
    runtime: DiscussionRuntime = Depends(get_discussion_runtime),
):
    """Get the most recent messages of a room"""
    try:
        messages = await runtime.room_directory.recent_messages(room_id, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [_message_payload(message) for message in messages]

