"""Shared log/text helpers for discussion orchestration."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

_TRUNCATION_MARKER = "\n...[truncated]...\n"


def truncate_log_text(text: Optional[str], max_chars: int = 1600) -> str:
    """Trim text to at most ``max_chars`` while preserving head and tail context."""
    content = (text or "").replace("\r", "")
    if len(content) <= max_chars:
        return content
    room = max_chars - len(_TRUNCATION_MARKER)
    if room <= 0:
        return content[:max_chars]
    head = int(room * 0.7)
    tail = room - head
    return f"{content[:head]}{_TRUNCATION_MARKER}{content[-tail:] if tail else ''}"


def build_turns_preview_for_log(
    turns: Sequence[Any],
    *,
    max_turns: int = 6,
    max_chars: int = 220,
) -> List[Dict[str, Any]]:
    """Build a compact recent-turn view for orchestration debugging."""
    preview: List[Dict[str, Any]] = []
    for turn in list(turns)[-max_turns:]:
        status = getattr(turn, "status", None)
        preview.append(
            {
                "sequence": getattr(turn, "sequence", None),
                "agent_id": getattr(turn, "agent_id", None),
                "status": getattr(status, "value", status),
                "content": truncate_log_text(getattr(turn, "content", "") or "", max_chars),
            }
        )
    return preview
