"""
Abstract base class for language model backends (provider adapters).

A provider adapter turns a ChatRequest into a ChatResponse. It is the
only component that talks to a vendor; the runnables, the agent loop
and summary memory see only this interface. Failures to obtain a
response (transport, authentication, rate limits) are raised as
ProviderError; the adapter does not retry on behalf of the caller.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, AsyncIterator, Sequence
from typing import Any
import asyncio

from .messages import (
    ChatRequest,
    ChatResponse,
    Message,
    ToolSpec,
    to_messages,
)


class BaseChatModel(ABC):
    """Abstract base class for chat models."""

    @abstractmethod
    def send(self, request: ChatRequest) -> ChatResponse:
        """
        Get the next response from the model synchronously.

        Args:
            request: the conversation, parameters and tool specs.

        Returns:
            The model's response (which may contain text content or
            tool calls).

        Raises:
            ProviderError: if no response could be obtained.
        """
        pass

    async def asend(self, request: ChatRequest) -> ChatResponse:
        """
        Get the next response from the model asynchronously.

        Default implementation delegates to the synchronous send method
        in a thread pool.
        """
        return await asyncio.to_thread(self.send, request)

    def stream(self, request: ChatRequest) -> Iterator[str]:
        """
        Stream the model's response synchronously.

        Default implementation yields the full response content at once.
        Note: This default implementation does not support streaming
        tool calls.
        """
        response = self.send(request)
        if response.text:
            yield response.text

    async def astream(self, request: ChatRequest) -> AsyncIterator[str]:
        """
        Stream the model's response asynchronously.

        Default implementation yields the full response content at once.
        """
        response = await self.asend(request)
        if response.text:
            yield response.text

    def chat(
        self,
        messages: Sequence[Message | str],
        tools: Sequence[ToolSpec] | None = None,
        **params: Any,
    ) -> ChatResponse:
        """Convenience wrapper of send: builds the request from the
        messages (strings are user messages), the tool specs and the
        model parameters."""
        request = ChatRequest(
            messages=tuple(to_messages(messages)),
            params=params,
            tools=tuple(tools or ()),
        )
        return self.send(request)

    def get_name(self) -> str:
        """A human-readable name of the model, used in diagnostics."""
        return self.__class__.__name__
