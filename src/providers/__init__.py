"""
LLM Provider Layer

Wraps LangChain chat models behind the single-call completion contract used
by discussion generation.

Usage:
    from src.providers import LangChainCompletionClient, build_chat_model

    client = LangChainCompletionClient(build_chat_model(settings))
    reply = await client.complete([{"role": "user", "content": "Hello"}])
"""
from .langchain_completion import (
    LangChainCompletionClient,
    build_chat_model,
    to_langchain_messages,
)

__all__ = [
    "LangChainCompletionClient",
    "build_chat_model",
    "to_langchain_messages",
]
