"""Abstract base for completion channels.

A channel is the only way the engine talks to an inference backend.
It turns a prompt into a stream of text increments followed by one
final result, and can be asked to stop early. How the backend is
reached (local server, remote endpoint) is up to the implementation.
"""
from __future__ import annotations

import abc
import logging
from collections.abc import AsyncIterator

from ..models import CompletionChunk, CompletionOptions, CompletionResult

logger = logging.getLogger(__name__)


class CompletionChannel(abc.ABC):
    """Abstract streaming-completion interface.

    Implementations:
    - LlamaServerChannel: llama.cpp HTTP server (/completion, SSE)
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short channel name for logs (e.g. 'llama-server')."""

    @abc.abstractmethod
    def stream(
        self,
        prompt: str,
        options: CompletionOptions,
    ) -> AsyncIterator[CompletionChunk]:
        """Stream a completion for ``prompt``.

        Yields partial CompletionChunk objects, then exactly one chunk
        with is_result=True. After interrupt() the stream ends early
        with a final result holding the text produced so far.

        Raises a ChannelError subclass when the backend fails.
        """

    @abc.abstractmethod
    async def interrupt(self) -> None:
        """Ask the in-flight stream to stop. Returns without waiting."""

    async def complete(
        self,
        prompt: str,
        options: CompletionOptions,
    ) -> CompletionResult:
        """Run a stream to completion and return only the final result."""
        parts: list[str] = []
        result: CompletionResult | None = None
        async for chunk in self.stream(prompt, options):
            if chunk.is_result:
                result = chunk.result
            else:
                parts.append(chunk.text)
        return result or CompletionResult(text="".join(parts))

    async def shutdown(self) -> None:
        """Release resources (sessions, connections).

        Default no-op. Override in channels that hold long-lived
        resources.
        """
        return None
