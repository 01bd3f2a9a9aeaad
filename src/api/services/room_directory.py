"""
Room message storage service

Keeps each room's chronological message history in ``<rooms_dir>/<room_id>.yaml``
and offers lexical retrieval over it for discussion context.
"""
import asyncio
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import yaml

from .service_contracts import RetrievedSnippet, RoomMessage

logger = logging.getLogger(__name__)


def _message_to_dict(message: RoomMessage) -> dict:
    return {
        "message_id": message.message_id,
        "author": message.author,
        "kind": message.kind,
        "content": message.content,
        "timestamp": message.timestamp.isoformat() if message.timestamp else None,
    }


def _message_from_dict(data: dict) -> RoomMessage:
    timestamp = data.get("timestamp")
    if isinstance(timestamp, str):
        timestamp = datetime.fromisoformat(timestamp)
    return RoomMessage(
        content=str(data.get("content") or ""),
        author=str(data.get("author") or ""),
        kind=str(data.get("kind") or "USER"),
        message_id=data.get("message_id"),
        timestamp=timestamp,
    )


class FileRoomDirectory:
    """File-based room history store"""

    def __init__(self, rooms_dir: Path):
        """
        Initialize room directory

        Args:
            rooms_dir: Directory holding one YAML file per room
        """
        self.rooms_dir = Path(rooms_dir)
        self.rooms_dir.mkdir(parents=True, exist_ok=True)
        self._locks: Dict[str, asyncio.Lock] = {}

    def _path_for(self, room_id: str) -> Path:
        safe_id = "".join(ch for ch in room_id if ch.isalnum() or ch in "-_")
        if not safe_id or safe_id != room_id:
            raise ValueError(f"Invalid room id: {room_id!r}")
        return self.rooms_dir / f"{safe_id}.yaml"

    async def _load(self, room_id: str) -> List[RoomMessage]:
        path = self._path_for(room_id)
        if not path.exists():
            return []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        data = yaml.safe_load(content) or {}
        return [_message_from_dict(item) for item in data.get("messages") or []]

    async def append_message(
        self,
        room_id: str,
        content: str,
        author: str,
        kind: str = "USER",
    ) -> RoomMessage:
        """Append a message to the room and return it with its assigned id"""
        lock = self._locks.setdefault(room_id, asyncio.Lock())
        async with lock:
            messages = await self._load(room_id)
            message = RoomMessage(
                content=content,
                author=author,
                kind=kind,
                message_id=uuid.uuid4().hex,
                timestamp=datetime.now(timezone.utc),
            )
            messages.append(message)

            path = self._path_for(room_id)
            payload = {"room_id": room_id, "messages": [_message_to_dict(m) for m in messages]}
            temp_path = path.with_suffix(".yaml.tmp")
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(yaml.safe_dump(payload, allow_unicode=True, sort_keys=False))
            os.replace(str(temp_path), str(path))
            logger.debug("[ROOMS] %s: appended %s message %s", room_id, kind, message.message_id)
            return message

    async def get_message(self, room_id: str, message_id: str) -> Optional[RoomMessage]:
        for message in await self._load(room_id):
            if message.message_id == message_id:
                return message
        return None

    async def recent_messages(self, room_id: str, limit: int) -> List[RoomMessage]:
        if limit <= 0:
            return []
        messages = await self._load(room_id)
        return messages[-limit:]

    async def user_messages(self, room_id: str, user_id: str, limit: int) -> List[RoomMessage]:
        if limit <= 0:
            return []
        messages = [
            m for m in await self._load(room_id)
            if m.kind == "USER" and m.author == user_id
        ]
        return messages[-limit:]


class RoomHistoryRetrieval:
    """Lexical overlap search over a room's stored history"""

    _TOKEN_RE = re.compile(r"[A-Za-z0-9_]+|[\u4e00-\u9fff]")

    def __init__(self, room_directory: FileRoomDirectory, scan_limit: int = 500):
        self.room_directory = room_directory
        self.scan_limit = scan_limit

    @classmethod
    def tokenize_text(cls, text: str) -> List[str]:
        return cls._TOKEN_RE.findall((text or "").lower())

    async def semantic_query(self, room_id: str, query_text: str, top_k: int) -> List[RetrievedSnippet]:
        query_tokens = set(self.tokenize_text(query_text))
        if not query_tokens or top_k <= 0:
            return []

        snippets: List[RetrievedSnippet] = []
        for message in await self.room_directory.recent_messages(room_id, self.scan_limit):
            tokens = set(self.tokenize_text(message.content))
            if not tokens:
                continue
            overlap = len(query_tokens & tokens)
            if overlap == 0:
                continue
            snippets.append(
                RetrievedSnippet(
                    content=message.content,
                    score=overlap / len(query_tokens),
                    source_id=message.message_id,
                    metadata={"author": message.author, "kind": message.kind},
                )
            )
        snippets.sort(key=lambda s: s.score, reverse=True)
        return snippets[:top_k]
