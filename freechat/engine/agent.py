"""Agent — one conversational identity talking to a completion channel.

The agent owns the running prompt (system prompt plus every turn
rendered as ``speaker: text`` lines), a live buffer holding the
reply generated so far in the current turn, and its status.

STATUS MODEL:

    READY ──listen_think_respond──> PROCESSING ──> READY
    READY ──warmup────────────────> WARMING_UP ──> READY

A turn or warmup may only start from READY, so there is never more
than one outstanding channel stream per agent. The return to READY
happens in a ``finally`` block: a failed stream never leaves the
agent stuck in PROCESSING.

Status changes and partial output are broadcast through the event
callback as ``agent_status_changed`` and ``partial_output_appended``.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from .config import fire_event
from .errors import AgentBusyError, InvalidTransitionError
from .lifecycle import is_busy, validate_transition
from .models import (
    DEFAULT_AGENT_ID,
    DEFAULT_CONTEXT_LENGTH,
    DEFAULT_SYSTEM_PROMPT,
    AgentStatus,
    CompletionOptions,
    CompletionResult,
)

if TYPE_CHECKING:
    from freechat.shared.models.message import Message

    from .channels.base import CompletionChannel
    from .config import EventCallback

logger = logging.getLogger(__name__)


def render_turn(speaker_id: str, text: str) -> str:
    """One transcript line as it appears in the running prompt."""
    return f"\n{speaker_id}: {text}\n"


class Agent:
    """Runs inference turns for one speaker identity."""

    def __init__(
        self,
        channel: CompletionChannel,
        agent_id: str = DEFAULT_AGENT_ID,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        prompt: str = "",
        model_path: str | None = None,
        context_length: int = DEFAULT_CONTEXT_LENGTH,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._channel = channel
        self._agent_id = agent_id
        self.system_prompt = system_prompt
        self.prompt = prompt
        self.model_path = model_path
        self.context_length = context_length
        self._event_callback = event_callback
        self._status = AgentStatus.READY
        self._pending_output = ""

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def channel(self) -> CompletionChannel:
        return self._channel

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        return self._status is AgentStatus.READY

    @property
    def pending_output(self) -> str:
        """Reply text received so far in the current turn."""
        return self._pending_output

    def clear_pending_output(self) -> None:
        self._pending_output = ""

    async def _transition(self, new_status: AgentStatus) -> None:
        validate_transition(self._status, new_status)
        old = self._status
        self._status = new_status
        logger.debug(
            "Agent %s: %s -> %s", self._agent_id[:8], old.value, new_status.value,
        )
        await fire_event(self._event_callback, {
            "event": "agent_status_changed",
            "agent_id": self._agent_id,
            "old_status": old.value,
            "new_status": new_status.value,
        })

    def _options(self, temperature: float | None, max_tokens: int | None = None) -> CompletionOptions:
        return CompletionOptions(
            temperature=temperature,
            context_length=self.context_length,
            model_ref=self.model_path,
            max_tokens=max_tokens,
        )

    def _prepare_prompt(
        self,
        speaker_id: str,
        message: str | Sequence[Message],
    ) -> None:
        if isinstance(message, str):
            if not self.prompt:
                self.prompt = self.system_prompt
            self.prompt += render_turn(speaker_id, message)
        else:
            # Rebuild from history so edits and deletions are reflected.
            lines = [
                render_turn(m.from_id, m.text)
                for m in message
                if not m.streaming and not m.is_deleted
            ]
            self.prompt = self.system_prompt + "".join(lines)
        self.prompt += f"{self._agent_id}: "

    async def listen_think_respond(
        self,
        speaker_id: str,
        message: str | Sequence[Message],
        temperature: float | None = None,
    ) -> CompletionResult:
        """Run one turn: listen to ``message``, stream a reply, return it.

        ``message`` is either the new line from ``speaker_id`` or the
        full ordered history of the conversation. Channel errors
        propagate unchanged.
        """
        try:
            await self._transition(AgentStatus.PROCESSING)
        except InvalidTransitionError as exc:
            raise AgentBusyError(self._agent_id) from exc

        try:
            self._prepare_prompt(speaker_id, message)
            self._pending_output = ""
            result: CompletionResult | None = None
            async for chunk in self._channel.stream(self.prompt, self._options(temperature)):
                if chunk.is_result:
                    result = chunk.result
                    continue
                if not chunk.text:
                    continue
                self.prompt += chunk.text
                self._pending_output += chunk.text
                await fire_event(self._event_callback, {
                    "event": "partial_output_appended",
                    "agent_id": self._agent_id,
                    "text": chunk.text,
                })
            if result is None:
                result = CompletionResult(text=self._pending_output)
            logger.info(
                "Agent %s: turn finished (%d chars, %s tok/s)",
                self._agent_id[:8], len(result.text), result.predicted_per_second,
            )
            return result
        finally:
            await self._transition(AgentStatus.READY)

    async def interrupt(self) -> None:
        """Ask the channel to stop the in-flight stream, if any."""
        if not is_busy(self._status):
            return
        logger.info("Agent %s: interrupting %s", self._agent_id[:8], self._status.value)
        await self._channel.interrupt()

    async def warmup(self) -> None:
        """Evaluate the running prompt so the server caches it.

        Nothing is displayed and errors are only logged.
        """
        if not self.prompt or not self.is_ready:
            return
        await self._transition(AgentStatus.WARMING_UP)
        try:
            await self._channel.complete(self.prompt, self._options(None, max_tokens=0))
        except Exception as exc:
            logger.warning("Agent %s: warmup failed: %s", self._agent_id[:8], exc)
        finally:
            await self._transition(AgentStatus.READY)

    async def shutdown(self) -> None:
        """Stop any stream and release the channel."""
        await self.interrupt()
        await self._channel.shutdown()
