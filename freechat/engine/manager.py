"""Conversation manager — the application context.

One explicitly constructed object owns the active agent, the active
conversation and the root listings of the folder tree. Components that
need them receive the manager (or the pieces they need) instead of
reaching for a process-wide singleton.

Lifecycle:
    manager = ConversationManager(store, config)
    await manager.start()      # load store, build the agent
    ...
    await manager.stop()       # stop the agent, flush the store
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .agent import Agent
from .channels import build_channel
from .config import ChatConfig, fire_event
from .models import DEFAULT_AGENT_ID, ModelSpec
from .orchestrator import TurnOrchestrator
from freechat.shared.models.folder import DEFAULT_FOLDER_NAME

if TYPE_CHECKING:
    from freechat.shared.models.conversation import Conversation
    from freechat.shared.models.folder import Folder
    from freechat.shared.services.store import ChatStore

    from .channels.base import CompletionChannel

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[ChatConfig, "ModelSpec | None"], "CompletionChannel"]


class ConversationManager:
    """Creates, moves and lists conversations and folders; swaps agents."""

    def __init__(
        self,
        store: ChatStore,
        config: ChatConfig | None = None,
        *,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self._store = store
        self._config = config or ChatConfig()
        self._channel_factory = channel_factory or build_channel
        self._event_callback = self._config.event_callback
        self.agent = self._build_agent(self._config.system_prompt, None)
        self.loading_model_id: str | None = None
        self.current_conversation: Conversation | None = None
        self.root_folders: list[Folder] = []
        self.root_conversations: list[Conversation] = []
        self._orchestrators: dict[str, TurnOrchestrator] = {}
        self._started = False

    @property
    def store(self) -> ChatStore:
        return self._store

    @property
    def config(self) -> ChatConfig:
        return self._config

    # ── Lifecycle ──

    async def start(self) -> None:
        """Load the store and populate the root listings."""
        if self._started:
            return
        self._store.load()
        self.fetch_root_items()
        self._started = True
        logger.info(
            "ConversationManager started (%d root folders, %d root conversations)",
            len(self.root_folders), len(self.root_conversations),
        )

    async def stop(self) -> None:
        """Stop the agent's backend and flush the store."""
        await self.agent.shutdown()
        self._store.save()
        self._orchestrators.clear()
        self._started = False
        logger.info("ConversationManager stopped")

    # ── Active conversation ──

    def show_conversation(self) -> bool:
        return self.current_conversation is not None

    def unset_conversation(self) -> None:
        self.current_conversation = None

    def set_current_conversation(self, conversation: Conversation) -> TurnOrchestrator:
        self.current_conversation = conversation
        return self.orchestrator_for(conversation)

    def orchestrator_for(self, conversation: Conversation) -> TurnOrchestrator:
        """The turn orchestrator bound to ``conversation`` and the active agent."""
        orchestrator = self._orchestrators.get(conversation.id)
        if orchestrator is None:
            orchestrator = TurnOrchestrator(
                self.agent, conversation, self._store, config=self._config,
            )
            self._orchestrators[conversation.id] = orchestrator
        else:
            orchestrator.agent = self.agent
            orchestrator.refresh()
        return orchestrator

    # ── Conversations ──

    async def new_conversation(self, folder: Folder | None = None) -> Conversation:
        """Delete empty drafts, then create and activate a fresh conversation."""
        drafts = self._store.fetch_conversations(lambda c: c.is_draft)
        for draft in drafts:
            self._forget(draft)
            self._store.delete(draft)
            await fire_event(self._event_callback, {
                "event": "conversation_deleted",
                "conversation_id": draft.id,
            })
        if drafts:
            logger.info("Deleted %d empty draft conversations", len(drafts))

        conversation = self._store.create_conversation(folder=folder)
        if folder is None:
            self.root_conversations.append(conversation)
        self.current_conversation = conversation
        await fire_event(self._event_callback, {
            "event": "conversation_created",
            "conversation_id": conversation.id,
            "folder_id": folder.id if folder else None,
        })
        return conversation

    def _forget(self, conversation: Conversation) -> None:
        self._orchestrators.pop(conversation.id, None)
        if conversation in self.root_conversations:
            self.root_conversations.remove(conversation)
        if self.current_conversation is conversation:
            self.current_conversation = None

    async def delete_conversation(self, conversation: Conversation) -> None:
        self._forget(conversation)
        self._store.delete(conversation)
        self._store.save()
        await fire_event(self._event_callback, {
            "event": "conversation_deleted",
            "conversation_id": conversation.id,
        })

    async def move_conversation(
        self,
        conversation: Conversation,
        folder: Folder | None,
    ) -> None:
        """Move ``conversation`` into ``folder`` (None = root)."""
        conversation.set_folder(folder)
        if folder is None:
            if conversation not in self.root_conversations:
                self.root_conversations.append(conversation)
        elif conversation in self.root_conversations:
            self.root_conversations.remove(conversation)
        self._store.save()
        await fire_event(self._event_callback, {
            "event": "conversation_moved",
            "conversation_id": conversation.id,
            "folder_id": folder.id if folder else None,
        })

    # ── Folders ──

    async def new_folder(
        self,
        name: str = DEFAULT_FOLDER_NAME,
        parent: Folder | None = None,
    ) -> Folder:
        folder = self._store.create_folder(name=name, parent=parent)
        if parent is None:
            self.root_folders.append(folder)
        await fire_event(self._event_callback, {
            "event": "folder_created",
            "folder_id": folder.id,
            "parent_id": parent.id if parent else None,
            "name": folder.name,
        })
        return folder

    async def move_folder(self, folder: Folder, new_parent: Folder | None) -> None:
        """Re-parent ``folder``. Raises FolderCycleError on a cycle."""
        folder.move_to(new_parent)
        if new_parent is None:
            if folder not in self.root_folders:
                self.root_folders.append(folder)
        elif folder in self.root_folders:
            self.root_folders.remove(folder)
        self._store.save()
        await fire_event(self._event_callback, {
            "event": "folder_moved",
            "folder_id": folder.id,
            "parent_id": new_parent.id if new_parent else None,
        })

    async def delete_folder(self, folder: Folder) -> None:
        """Delete ``folder``; its contents move to the root."""
        orphans = list(folder.children)
        conversations = list(folder.conversations)
        parent = folder.parent
        self._store.delete(folder)
        self._store.save()
        if folder in self.root_folders:
            self.root_folders.remove(folder)
        self.root_folders.extend(f for f in orphans if f not in self.root_folders)
        self.root_conversations.extend(
            c for c in conversations if c not in self.root_conversations
        )
        logger.info(
            "Deleted folder %s; promoted %d folders, %d conversations",
            folder.id[:8], len(orphans), len(conversations),
        )
        await fire_event(self._event_callback, {
            "event": "folder_deleted",
            "folder_id": folder.id,
            "parent_id": parent.id if parent else None,
            "promoted_folder_ids": [f.id for f in orphans],
            "promoted_conversation_ids": [c.id for c in conversations],
        })

    def fetch_root_items(self) -> tuple[list[Folder], list[Conversation]]:
        """Top-level folders by name and conversations by latest activity."""
        self.root_folders = sorted(
            self._store.fetch_folders(lambda f: f.parent is None),
            key=lambda f: f.name or "",
        )
        self.root_conversations = sorted(
            self._store.fetch_conversations(lambda c: c.folder is None),
            key=lambda c: c.last_message_at,
            reverse=True,
        )
        return self.root_folders, self.root_conversations

    # ── Agent ──

    def _build_agent(self, system_prompt: str, model: ModelSpec | None) -> Agent:
        channel = self._channel_factory(self._config, model)
        return Agent(
            channel,
            DEFAULT_AGENT_ID,
            system_prompt=system_prompt,
            model_path=model.path if model else self._config.model_path,
            context_length=self._config.context_length,
            event_callback=self._event_callback,
        )

    async def reboot_agent(
        self,
        model: ModelSpec,
        system_prompt: str | None = None,
    ) -> Agent | None:
        """Replace the agent with a fresh one bound to ``model``.

        Does nothing for a model without a path.
        """
        if not model.path:
            logger.warning("Model %s has no path; agent not rebooted", model.id)
            return None
        system_prompt = system_prompt or self._config.system_prompt

        await self.agent.shutdown()
        self.loading_model_id = model.id
        await fire_event(self._event_callback, {
            "event": "model_loading",
            "model_id": model.id,
            "loading": True,
        })

        try:
            self.agent = self._build_agent(system_prompt, model)
            for orchestrator in self._orchestrators.values():
                orchestrator.agent = self.agent
            model.error = None
        finally:
            self.loading_model_id = None
            await fire_event(self._event_callback, {
                "event": "model_loading",
                "model_id": model.id,
                "loading": False,
            })

        self._store.save()
        logger.info("Agent rebooted with model %s (%s)", model.id, model.path)
        await fire_event(self._event_callback, {
            "event": "agent_rebooted",
            "agent_id": self.agent.agent_id,
            "model_id": model.id,
            "model_path": model.path,
        })
        return self.agent
