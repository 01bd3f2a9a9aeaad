"""
LangChain completion client

Adapts a LangChain chat model to the single-call completion contract used by
discussion generation, and classifies provider errors into retryable and
non-retryable failures.
"""
import logging
from typing import Any, Dict, List, Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from src.api.services.discussion_orchestration.errors import (
    GenerationFailedError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

# Provider statuses that will fail the same way on every retry.
NON_TRANSIENT_STATUSES = frozenset({400, 401, 402, 403, 404})


def build_chat_model(settings: Any) -> ChatOpenAI:
    """Create the chat model described by application settings."""
    llm_kwargs: Dict[str, Any] = {
        "model": settings.llm_model,
        "temperature": settings.llm_temperature,
        "streaming": False,
        # Retries are owned by the discussion generator.
        "max_retries": 0,
    }
    if settings.llm_base_url:
        llm_kwargs["base_url"] = settings.llm_base_url
    if settings.llm_api_key:
        llm_kwargs["api_key"] = settings.llm_api_key
    return ChatOpenAI(**llm_kwargs)


def to_langchain_messages(prompt_parts: List[Dict[str, str]]) -> List[BaseMessage]:
    """Convert role/content prompt parts to LangChain message objects."""
    messages: List[BaseMessage] = []
    for part in prompt_parts:
        role = str(part.get("role") or "user").lower()
        content = str(part.get("content") or "")
        if role == "system":
            messages.append(SystemMessage(content=content))
        elif role == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    return messages


def _status_code_of(error: Exception) -> Optional[int]:
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class LangChainCompletionClient:
    """One ``ainvoke`` per completion; errors are normalized for the retry loop."""

    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    async def complete(self, prompt_parts: List[Dict[str, str]]) -> Any:
        messages = to_langchain_messages(prompt_parts)
        try:
            return await self.llm.ainvoke(messages)
        except Exception as e:
            raise self.classify_error(e) from e

    @staticmethod
    def classify_error(error: Exception) -> Exception:
        """Map a provider exception to the error the generator understands."""
        if isinstance(error, (GenerationFailedError, TimeoutError, ConnectionError)):
            return error

        name = error.__class__.__name__
        message = str(error)
        status = _status_code_of(error)
        code = str(getattr(error, "code", "") or "")

        if "insufficient_quota" in code or "quota" in message.lower():
            return GenerationFailedError(
                f"Provider quota exhausted: {message}",
                transient=False,
            )
        if status == 429 or "rate limit" in message.lower():
            return RateLimitedError(f"Rate limited by provider: {message}")
        if "Timeout" in name:
            return TimeoutError(message or name)
        if "Connection" in name:
            return ConnectionError(message or name)
        if status in NON_TRANSIENT_STATUSES:
            return GenerationFailedError(
                f"Provider rejected request (HTTP {status}): {message}",
                transient=False,
            )
        if status is not None and status >= 500:
            return GenerationFailedError(f"Provider error (HTTP {status}): {message}")

        logger.debug("Unclassified completion error %s: %s", name, message)
        return GenerationFailedError(f"{name}: {message}", transient=False)
