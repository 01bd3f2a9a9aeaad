"""Prompt composition for one discussion turn."""

from __future__ import annotations

from typing import List, Optional

from src.api.models.discussion import Intensity
from src.api.services.discussion_context_service import ContextBundle
from src.api.services.service_contracts import AgentProfile, PromptParts

from .policy import IntensityPolicy

COMMUNICATION_STYLE = """Communication style:
- Short, dense, to the point
- Do not ramble unless the user asks for detail
- Honest, no sugar-coating
- Focus on actionable solutions"""

RESPONSE_GUIDELINES = """Response guidelines:
- Be direct and specific, not vague
- Reference previous responses when relevant
- Add new insights rather than repeating points
- If you disagree, explain why constructively
- Keep responses focused and impactful"""

CHALLENGE_GUIDELINES = """Challenge mode:
- Challenge assumptions and call out weak reasoning
- Demand higher standards and execution
- Point out blind spots and avoidance behaviours
- Be uncomfortably honest but growth-focused"""


class DiscussionPromptBuilder:
    """Turns persona + context bundle into system/user prompt parts."""

    def __init__(self, *, communication_style: Optional[str] = COMMUNICATION_STYLE):
        self.communication_style = communication_style

    def build(
        self,
        *,
        agent: AgentProfile,
        context: ContextBundle,
        intensity: Intensity,
        sequence: int,
        total_turns: int,
        agent_names: Optional[dict] = None,
        user_name: Optional[str] = None,
    ) -> PromptParts:
        names = agent_names or {}
        system_sections: List[str] = [agent.persona.strip()]
        if self.communication_style:
            system_sections.append(self.communication_style)

        if context.prior_turns:
            lines = [
                f"[{names.get(turn.agent_id, turn.agent_id)}]: {turn.content}"
                for turn in context.prior_turns
            ]
            system_sections.append("Previous responses in this discussion:\n" + "\n\n".join(lines))

        if context.snippets:
            lines = [f"- ({snippet.score:.2f}) {snippet.content}" for snippet in context.snippets]
            system_sections.append("Relevant earlier conversation:\n" + "\n".join(lines))

        if context.user_patterns is not None and not context.user_patterns.is_empty():
            patterns = context.user_patterns
            system_sections.append(
                "User patterns noticed so far:\n"
                f"- Blind spots: {', '.join(patterns.blind_spots) or 'None detected yet'}\n"
                f"- Common excuses: {', '.join(patterns.common_excuses) or 'None detected yet'}\n"
                f"- Growth blockers: {', '.join(patterns.growth_blockers) or 'None detected yet'}"
            )

        role = (
            "You are STARTING this discussion. Set the tone and establish the key themes."
            if not context.prior_turns
            else "You are RESPONDING to previous agents. Build upon, challenge, or redirect the conversation."
        )
        framing = [
            "Discussion context:",
            f"- Topic: {context.topic or 'Open discussion'}",
            f"- Your turn: {sequence + 1} of {total_turns}",
            f"- Intensity level: {intensity.value} ({IntensityPolicy.directness(intensity):g}x directness)",
            f"- Role: {role}",
        ]
        if user_name:
            framing.append(f"- Current user: {user_name}")
        system_sections.append("\n".join(framing))
        system_sections.append(RESPONSE_GUIDELINES)
        if IntensityPolicy.is_challenge_mode(intensity):
            system_sections.append(CHALLENGE_GUIDELINES)

        history_lines = [f"{msg.author}: {msg.content}" for msg in context.recent_messages]
        origin = context.origin_message
        user_sections: List[str] = []
        if history_lines:
            user_sections.append("Recent room messages:\n" + "\n".join(history_lines))
        user_sections.append(
            f'Message that started this discussion: "{origin.content if origin else "No current message"}"'
        )
        user_sections.append(f"Reply as {agent.name}.")

        return [
            {"role": "system", "content": "\n\n".join(section for section in system_sections if section)},
            {"role": "user", "content": "\n\n".join(user_sections)},
        ]
