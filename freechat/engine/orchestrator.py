"""Turn orchestrator — the submission pipeline for one conversation.

submit(text) drives a single turn:

1. Busy check. While the agent is not READY (or this conversation's
   previous turn has not settled) interrupt it, back off, and check
   again with the same input. Bounded by ``max_submit_retries``.
2. The user's message is created and persisted immediately.
3. An empty reply placeholder is created detached and becomes the
   pending message. It is attached to the conversation only after
   ``placeholder_delay_seconds`` so very fast replies never flash an
   empty bubble.
4. The agent runs the turn over the full ordered history.
   - success: the placeholder receives the final text and stats and is
     persisted;
   - ChannelError: the placeholder is deleted and the error is raised
     to the caller, which is the one place it gets shown;
   - cancelled: the placeholder is deleted and the cancellation
     propagates;
   - anything else: logged, turn abandoned, placeholder left alone.
"""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from freechat.shared.models.message import USER_SPEAKER_ID, Message

from .config import ChatConfig, fire_event
from .errors import AgentBusyError, ChannelError

if TYPE_CHECKING:
    from freechat.shared.models.conversation import Conversation
    from freechat.shared.services.store import ChatStore

    from .agent import Agent
    from .config import EventCallback
    from .models import CompletionResult

logger = logging.getLogger(__name__)


class TurnOrchestrator:
    """Runs user turns for one conversation against one agent."""

    def __init__(
        self,
        agent: Agent,
        conversation: Conversation,
        store: ChatStore,
        *,
        config: ChatConfig | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self.agent = agent
        self._conversation = conversation
        self._store = store
        self._config = config or ChatConfig()
        self._event_callback = event_callback or self._config.event_callback
        self.pending_message: Message | None = None
        self.messages: list[Message] = store.ordered_messages(conversation)
        self._turn_active = False

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def is_busy(self) -> bool:
        return self._turn_active or not self.agent.is_ready

    def refresh(self) -> list[Message]:
        """Re-read the ordered view of the conversation."""
        self.messages = self._store.ordered_messages(self._conversation)
        return self.messages

    async def submit(self, input_text: str) -> Message | None:
        """Submit ``input_text`` as the user's next turn.

        Returns the finalized reply, or None if the turn was abandoned
        on an unexpected error. Raises ChannelError when the backend
        fails and AgentBusyError when the agent never became free.
        """
        await self._wait_until_free()
        return await self._run_turn(input_text)

    async def _wait_until_free(self) -> None:
        limit = self._config.max_submit_retries
        attempts = 0
        while self.is_busy:
            if limit > 0 and attempts >= limit:
                logger.error(
                    "Agent %s still busy after %d interrupts; giving up",
                    self.agent.agent_id[:8], attempts,
                )
                raise AgentBusyError(self.agent.agent_id, attempts)
            attempts += 1
            logger.info(
                "Agent %s busy (%s); interrupting, attempt %d",
                self.agent.agent_id[:8], self.agent.status.value, attempts,
            )
            await self.agent.interrupt()
            await asyncio.sleep(self._config.retry_backoff_seconds)

    async def _run_turn(self, input_text: str) -> Message | None:
        self._turn_active = True
        try:
            system_prompt = self._conversation.effective_system_prompt(
                self._config.system_prompt
            )
            user_message = self._store.create_message(
                input_text,
                USER_SPEAKER_ID,
                self._conversation,
                system_prompt=system_prompt,
            )
            self.refresh()
            await self._emit("message_created", user_message)

            placeholder = self._store.new_message(
                "",
                self.agent.agent_id,
                system_prompt=system_prompt,
                streaming=True,
            )
            self.pending_message = placeholder
            self.agent.system_prompt = system_prompt
            reveal = asyncio.create_task(self._reveal_placeholder(placeholder))

            try:
                result = await self.agent.listen_think_respond(
                    USER_SPEAKER_ID,
                    list(self.messages),
                    temperature=self._config.temperature,
                )
            except (ChannelError, AgentBusyError) as exc:
                reveal.cancel()
                await self._rollback(placeholder, exc)
                raise
            except asyncio.CancelledError as exc:
                # A cancelled turn leaves no pending reply behind
                reveal.cancel()
                await self._rollback(placeholder, exc)
                raise
            except Exception:
                reveal.cancel()
                logger.exception(
                    "Unexpected failure in conversation %s; turn abandoned",
                    self._conversation.id[:8],
                )
                return None

            reveal.cancel()
            return await self._finalize(placeholder, result)
        finally:
            self._turn_active = False

    async def _reveal_placeholder(self, placeholder: Message) -> None:
        await asyncio.sleep(self._config.placeholder_delay_seconds)
        if placeholder.is_deleted or placeholder.conversation is not None:
            return
        if not self._store.contains(self._conversation):
            return
        if self._store.attach_message(placeholder, self._conversation):
            self.refresh()
            await self._emit("message_created", placeholder)

    async def _finalize(self, placeholder: Message, result: CompletionResult) -> Message:
        placeholder.apply_result(result)
        if placeholder.conversation is None:
            self._store.attach_message(placeholder, self._conversation)
        self._store.save()

        if (
            self.pending_message is placeholder
            and result.text
            and result.text.startswith(self.agent.pending_output)
        ):
            self.pending_message = None
            self.agent.clear_pending_output()

        self.refresh()
        await self._emit("message_finalized", placeholder)
        return placeholder

    async def _rollback(self, placeholder: Message, exc: BaseException) -> None:
        logger.warning(
            "Turn failed in conversation %s: %r",
            self._conversation.id[:8], exc,
        )
        if self.pending_message is placeholder:
            self.pending_message = None
        self._store.delete(placeholder)
        self._store.save()
        self.refresh()
        await self._emit("message_deleted", placeholder)

    async def _emit(self, event: str, message: Message) -> None:
        await fire_event(self._event_callback, {
            "event": event,
            "conversation_id": self._conversation.id,
            "message_id": message.id,
            "from_id": message.from_id,
            "text": message.text,
        })
