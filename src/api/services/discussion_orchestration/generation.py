"""Response generation for one agent turn, with bounded retries.

The completion collaborator is treated as unreliable: every attempt runs under
a timeout, its raw output is decoded through a strict schema, and transient
failures are retried with exponential backoff before being escalated.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from src.api.models.discussion import Intensity
from src.api.services.discussion_context_service import ContextBundle
from src.api.services.service_contracts import AgentProfile, CompletionClientLike, CompletionOutput
from src.utils.llm_logger import LLMLogger

from .errors import GenerationFailedError, MalformedResponseError
from .log_utils import truncate_log_text
from .prompt_builder import DiscussionPromptBuilder

logger = logging.getLogger(__name__)

_THINK_BLOCK_RE = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_AGENT_ECHO_RE = re.compile(r"^\s*\[[^\]\n]{1,80}\]:\s*")


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff curve for transient generation failures."""

    max_attempts: int = 2
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 8.0
    timeout_seconds: Optional[float] = 60.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following ``attempt`` (1-based)."""
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** max(attempt - 1, 0)))

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, int(settings.generation_max_attempts)),
            base_delay_seconds=settings.generation_backoff_base_seconds,
            max_delay_seconds=settings.generation_backoff_max_seconds,
            timeout_seconds=settings.generation_timeout_seconds,
        )


class AgentReply(BaseModel):
    """Schema every completion must satisfy before it becomes a turn."""

    content: str = Field(..., min_length=1, max_length=20000)

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply content is blank")
        return value


@dataclass(frozen=True)
class GeneratedReply:
    """Decoded reply plus bookkeeping about how it was obtained."""

    content: str
    attempts: int
    duration_ms: int


def decode_completion(raw: CompletionOutput) -> AgentReply:
    """Validate raw completion output into an ``AgentReply``.

    Accepts a plain string or a message-like object with string ``content``.
    Reasoning ``<think>`` blocks and a leading ``[Agent Name]:`` echo are
    removed; anything else that does not fit the schema is rejected.
    """
    content: Any = raw if isinstance(raw, str) else getattr(raw, "content", None)
    if not isinstance(content, str):
        raise MalformedResponseError(
            f"completion content must be a string, got {type(content).__name__}"
        )
    cleaned = _THINK_BLOCK_RE.sub("", content)
    cleaned = _AGENT_ECHO_RE.sub("", cleaned, count=1).strip()
    try:
        return AgentReply(content=cleaned)
    except ValidationError as e:
        raise MalformedResponseError(f"completion failed reply schema: {e.errors()[0]['msg']}") from e


class ResponseGenerator:
    """Uniform ``generate`` contract over the completion collaborator."""

    def __init__(
        self,
        *,
        completion_client: CompletionClientLike,
        retry_policy: Optional[RetryPolicy] = None,
        prompt_builder: Optional[DiscussionPromptBuilder] = None,
        llm_logger: Optional[LLMLogger] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.completion_client = completion_client
        self.retry_policy = retry_policy or RetryPolicy()
        if self.retry_policy.max_attempts < 1:
            raise ValueError("retry_policy.max_attempts must be at least 1")
        self.prompt_builder = prompt_builder or DiscussionPromptBuilder()
        self.llm_logger = llm_logger
        self._sleep = sleep

    async def generate(
        self,
        agent_id: str,
        persona: AgentProfile,
        style_tag: str,
        context_bundle: ContextBundle,
        requesting_user_id: Optional[str],
        *,
        intensity: Intensity,
        sequence: int,
        total_turns: int,
        agent_names: Optional[Dict[str, str]] = None,
        user_name: Optional[str] = None,
    ) -> GeneratedReply:
        """Produce one agent reply or raise ``GenerationFailedError``."""
        if not persona.persona or not persona.persona.strip():
            raise GenerationFailedError(
                f"Agent {agent_id} has no persona prompt",
                transient=False,
                agent_id=agent_id,
                sequence=sequence,
            )

        prompt_parts = self.prompt_builder.build(
            agent=persona,
            context=context_bundle,
            intensity=intensity,
            sequence=sequence,
            total_turns=total_turns,
            agent_names=agent_names,
            user_name=user_name,
        )
        trace_id = f"{context_bundle.discussion_id}:{sequence}"
        policy = self.retry_policy
        started = time.monotonic()
        last_error: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                raw = await self._call_once(prompt_parts)
                reply = decode_completion(raw)
            except (asyncio.TimeoutError, TimeoutError) as e:
                last_error = e
                reason = f"timed out after {policy.timeout_seconds}s"
            except GenerationFailedError as e:
                last_error = e
                reason = e.message
                if not e.transient:
                    logger.error(
                        "[GENERATION] %s non-transient failure for %s: %s",
                        trace_id,
                        agent_id,
                        reason,
                    )
                    self._log_error(trace_id, e, "non-transient")
                    raise GenerationFailedError(
                        reason,
                        transient=False,
                        agent_id=agent_id,
                        sequence=sequence,
                        attempts=attempt,
                        discussion_id=context_bundle.discussion_id,
                    ) from e
            except (ConnectionError, OSError) as e:
                last_error = e
                reason = f"connection error: {e}"
            except Exception as e:
                logger.error("[GENERATION] %s unexpected failure for %s: %s", trace_id, agent_id, e)
                self._log_error(trace_id, e, "unexpected")
                raise GenerationFailedError(
                    f"Unexpected generation error: {e}",
                    transient=False,
                    agent_id=agent_id,
                    sequence=sequence,
                    attempts=attempt,
                    discussion_id=context_bundle.discussion_id,
                ) from e
            else:
                duration_ms = int((time.monotonic() - started) * 1000)
                if self.llm_logger is not None:
                    self.llm_logger.log_interaction(
                        trace_id,
                        prompt_parts,
                        reply.content,
                        extra_params={
                            "agent_id": agent_id,
                            "style": style_tag,
                            "attempt": attempt,
                            "requesting_user_id": requesting_user_id,
                        },
                    )
                logger.info(
                    "[GENERATION] %s agent=%s attempt=%s chars=%s duration_ms=%s",
                    trace_id,
                    agent_id,
                    attempt,
                    len(reply.content),
                    duration_ms,
                )
                return GeneratedReply(content=reply.content, attempts=attempt, duration_ms=duration_ms)

            self._log_error(trace_id, last_error, f"attempt {attempt}/{policy.max_attempts}")
            if attempt >= policy.max_attempts:
                break
            delay = policy.delay_for(attempt)
            logger.warning(
                "[GENERATION] %s attempt %s/%s failed (%s); retrying in %.2fs",
                trace_id,
                attempt,
                policy.max_attempts,
                truncate_log_text(reason, 300),
                delay,
            )
            await self._sleep(delay)

        message = f"Generation failed after {policy.max_attempts} attempts: {reason}"
        logger.error("[GENERATION] %s %s", trace_id, message)
        raise GenerationFailedError(
            message,
            transient=True,
            agent_id=agent_id,
            sequence=sequence,
            attempts=policy.max_attempts,
            discussion_id=context_bundle.discussion_id,
        ) from last_error

    async def _call_once(self, prompt_parts) -> CompletionOutput:
        timeout = self.retry_policy.timeout_seconds
        if timeout is None or timeout <= 0:
            return await self.completion_client.complete(prompt_parts)
        return await asyncio.wait_for(self.completion_client.complete(prompt_parts), timeout=timeout)

    def _log_error(self, trace_id: str, error: Optional[Exception], context: str) -> None:
        if self.llm_logger is not None and error is not None:
            self.llm_logger.log_error(trace_id, error, context)
