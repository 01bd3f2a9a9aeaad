"""Per-discussion mutual exclusion and cooperative control requests."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Optional


@dataclass
class ControlRequest:
    """Pause/stop request observed by the turn loop between turns."""

    action: Optional[str] = None
    reason: str = ""

    @property
    def is_requested(self) -> bool:
        return self.action is not None

    def request(self, action: str, reason: Optional[str] = None) -> None:
        # stop outranks pause once set
        if self.action == "stop" and action != "stop":
            return
        self.action = action
        self.reason = (reason or action).strip() or action

    def clear(self) -> None:
        self.action = None
        self.reason = ""


class DiscussionGuard:
    """Holds at most one turn loop per discussion id.

    ``try_claim`` never waits: a caller that finds the lock held gets ``False``
    back immediately. Locks for different ids are independent.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._requests: Dict[str, ControlRequest] = {}

    def is_active(self, discussion_id: str) -> bool:
        lock = self._locks.get(discussion_id)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def try_claim(self, discussion_id: str) -> AsyncIterator[bool]:
        """Yield True while this caller owns the loop, False if someone else does."""
        lock = self._locks.setdefault(discussion_id, asyncio.Lock())
        if lock.locked():
            yield False
            return
        await lock.acquire()
        self._requests[discussion_id] = ControlRequest()
        try:
            yield True
        finally:
            self._requests.pop(discussion_id, None)
            lock.release()
            if not lock.locked() and self._locks.get(discussion_id) is lock:
                self._locks.pop(discussion_id, None)

    def control(self, discussion_id: str) -> Optional[ControlRequest]:
        """Control request of the active loop, if any."""
        return self._requests.get(discussion_id)

    def request(self, discussion_id: str, action: str, reason: Optional[str] = None) -> bool:
        """Flag the active loop; returns False when no loop is running."""
        control = self._requests.get(discussion_id)
        if control is None:
            return False
        control.request(action, reason)
        return True

    def clear_request(self, discussion_id: str) -> None:
        control = self._requests.get(discussion_id)
        if control is not None:
            control.clear()
