"""Execution ledger: durable discussion state plus the ordered turn list.

Two implementations share the same transactional rules:

- ``InMemoryDiscussionLedger`` keeps records in process memory (tests, embedding)
- ``FileDiscussionLedger`` stores one YAML document per discussion

Every mutation runs under a per-discussion ``asyncio.Lock`` and writes the
whole record at once, so a reader never observes a turn without its cursor
advance (or the reverse).
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import aiofiles
import yaml

from src.api.models.discussion import Discussion, DiscussionState, Turn, TurnStatus, utc_now
from src.api.services.discussion_orchestration.errors import (
    InvalidStateError,
    NotFoundError,
    SequenceConflictError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

# States in which a settled turn may still be written.
_APPENDABLE_STATES = (DiscussionState.RUNNING, DiscussionState.PAUSED)


@dataclass
class LedgerRecord:
    """One discussion row together with its turns."""

    discussion: Discussion
    turns: List[Turn] = field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "discussion": self.discussion.model_dump(mode="json"),
            "turns": [turn.model_dump(mode="json") for turn in self.turns],
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "LedgerRecord":
        return cls(
            discussion=Discussion.model_validate(payload["discussion"]),
            turns=[Turn.model_validate(item) for item in payload.get("turns") or []],
        )

    def copy(self) -> "LedgerRecord":
        return LedgerRecord(
            discussion=self.discussion.model_copy(deep=True),
            turns=[turn.model_copy(deep=True) for turn in self.turns],
        )


class BaseDiscussionLedger(ABC):
    """Transactional rules shared by every ledger backend."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, discussion_id: str) -> asyncio.Lock:
        if discussion_id not in self._locks:
            self._locks[discussion_id] = asyncio.Lock()
        return self._locks[discussion_id]

    @abstractmethod
    async def _read(self, discussion_id: str) -> Optional[LedgerRecord]:
        """Return a private copy of the stored record, or None."""

    @abstractmethod
    async def _write(self, record: LedgerRecord) -> None:
        """Replace the stored record as one unit."""

    async def _require(self, discussion_id: str) -> LedgerRecord:
        record = await self._read(discussion_id)
        if record is None:
            raise NotFoundError(f"Discussion {discussion_id} not found", discussion_id=discussion_id)
        return record

    async def create_discussion(self, discussion: Discussion) -> Discussion:
        async with self._lock_for(discussion.id):
            if await self._read(discussion.id) is not None:
                raise ValidationFailedError(
                    f"Discussion {discussion.id} already exists",
                    discussion_id=discussion.id,
                )
            record = LedgerRecord(discussion=discussion.model_copy(deep=True))
            await self._write(record)
            logger.info("[LEDGER] Created discussion %s", discussion.id)
            return record.discussion.model_copy(deep=True)

    async def load_discussion(self, discussion_id: str) -> Discussion:
        record = await self._require(discussion_id)
        return record.discussion

    async def list_turns(self, discussion_id: str) -> List[Turn]:
        record = await self._require(discussion_id)
        return sorted(record.turns, key=lambda turn: (turn.sequence, turn.created_at))

    async def save_discussion_state(
        self,
        discussion_id: str,
        state: DiscussionState,
        cursor: Optional[int] = None,
        *,
        expected_states: Optional[Sequence[DiscussionState]] = None,
        last_error: Optional[str] = None,
    ) -> Discussion:
        """Persist a state transition, optionally as a compare-and-set.

        ``cursor=None`` keeps the stored cursor, so state-only transitions never
        race with a concurrent turn append.
        """
        async with self._lock_for(discussion_id):
            record = await self._require(discussion_id)
            current = record.discussion
            if expected_states is not None and current.state not in expected_states:
                raise InvalidStateError(
                    f"Discussion {discussion_id} is {current.state.value}, "
                    f"expected one of {[s.value for s in expected_states]}",
                    current_state=current.state,
                    discussion_id=discussion_id,
                )
            if current.state.is_terminal and state != current.state:
                raise InvalidStateError(
                    f"Discussion {discussion_id} already ended as {current.state.value}",
                    current_state=current.state,
                    discussion_id=discussion_id,
                )
            if cursor is None:
                cursor = current.turn_cursor
            if cursor < current.turn_cursor:
                raise SequenceConflictError(
                    f"Cursor for {discussion_id} cannot move backwards",
                    expected=current.turn_cursor,
                    received=cursor,
                    discussion_id=discussion_id,
                )

            update = {"state": state, "turn_cursor": cursor, "updated_at": utc_now()}
            if last_error is not None:
                update["last_error"] = last_error
            record.discussion = current.model_copy(update=update)
            await self._write(record)
            logger.debug(
                "[LEDGER] %s: %s -> %s (cursor=%s)",
                discussion_id,
                current.state.value,
                state.value,
                cursor,
            )
            return record.discussion.model_copy(deep=True)

    async def append_turn(
        self,
        discussion_id: str,
        sequence: int,
        agent_id: str,
        content: str,
        status: TurnStatus,
        *,
        error: Optional[str] = None,
        attempts: int = 1,
    ) -> Turn:
        """Append one turn; a SUCCEEDED turn also advances the cursor.

        The sequence must equal the current cursor, so successful turns stay
        a gapless prefix starting at 0.
        """
        async with self._lock_for(discussion_id):
            record = await self._require(discussion_id)
            current = record.discussion
            if current.state not in _APPENDABLE_STATES:
                raise InvalidStateError(
                    f"Cannot record turns while discussion is {current.state.value}",
                    current_state=current.state,
                    discussion_id=discussion_id,
                )
            if sequence != current.turn_cursor:
                raise SequenceConflictError(
                    f"Turn sequence {sequence} does not match cursor {current.turn_cursor}",
                    expected=current.turn_cursor,
                    received=sequence,
                    discussion_id=discussion_id,
                )
            if agent_id not in current.participant_agent_ids:
                raise ValidationFailedError(
                    f"Agent {agent_id} is not a participant of {discussion_id}",
                    discussion_id=discussion_id,
                )

            turn = Turn(
                discussion_id=discussion_id,
                sequence=sequence,
                agent_id=agent_id,
                content=content,
                status=status,
                error=error,
                attempts=attempts,
            )
            record.turns.append(turn)
            update = {"updated_at": utc_now()}
            if status == TurnStatus.SUCCEEDED:
                update["turn_cursor"] = sequence + 1
            record.discussion = current.model_copy(update=update)
            await self._write(record)
            return turn.model_copy(deep=True)


class InMemoryDiscussionLedger(BaseDiscussionLedger):
    """Process-local ledger; records are copied in and out to avoid aliasing."""

    def __init__(self):
        super().__init__()
        self._records: Dict[str, LedgerRecord] = {}

    async def _read(self, discussion_id: str) -> Optional[LedgerRecord]:
        record = self._records.get(discussion_id)
        return record.copy() if record is not None else None

    async def _write(self, record: LedgerRecord) -> None:
        self._records[record.discussion.id] = record.copy()


class FileDiscussionLedger(BaseDiscussionLedger):
    """Stores each discussion as ``<discussions_dir>/<id>.yaml``.

    Writes go to a temp file first and are moved into place with
    ``os.replace`` so a crash never leaves a half-written record.
    """

    def __init__(self, discussions_dir: Path):
        super().__init__()
        self.discussions_dir = Path(discussions_dir)
        self.discussions_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, discussion_id: str) -> Path:
        safe_id = "".join(ch for ch in discussion_id if ch.isalnum() or ch in "-_")
        if not safe_id or safe_id != discussion_id:
            raise NotFoundError(f"Discussion {discussion_id} not found", discussion_id=discussion_id)
        return self.discussions_dir / f"{safe_id}.yaml"

    async def _read(self, discussion_id: str) -> Optional[LedgerRecord]:
        path = self._path_for(discussion_id)
        if not path.exists():
            return None
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        data = yaml.safe_load(content) or {}
        return LedgerRecord.from_payload(data)

    async def _write(self, record: LedgerRecord) -> None:
        path = self._path_for(record.discussion.id)
        content = yaml.safe_dump(record.to_payload(), allow_unicode=True, sort_keys=False)
        temp_path = path.with_suffix(".yaml.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
            os.replace(str(temp_path), str(path))
        finally:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError:
                pass

    async def list_discussion_ids(self) -> List[str]:
        """Ids of every stored discussion, oldest file first."""
        paths = sorted(self.discussions_dir.glob("*.yaml"), key=lambda p: p.stat().st_mtime)
        return [path.stem for path in paths]
