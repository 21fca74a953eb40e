"""Conversation store — the folder/conversation/message graph.

Keeps every entity in memory and flushes to StorePersistence on
save(). All reads and writes go through one re-entrant lock so an
ordered snapshot of a conversation always reflects a consistent
append history, even when the UI reads while a turn writes.

Save failures are logged and reported through the return value;
they never abort the caller, which keeps working on the in-memory
state.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Union

from freechat.engine.errors import StoreError
from freechat.shared.models.conversation import Conversation
from freechat.shared.models.folder import DEFAULT_FOLDER_NAME, Folder
from freechat.shared.models.message import Message
from freechat.shared.services.persistence import StorePersistence

logger = logging.getLogger(__name__)

Entity = Union[Folder, Conversation, Message]


class ChatStore:
    """In-memory entity store with optional JSON persistence."""

    def __init__(self, persistence: StorePersistence | None = None) -> None:
        self._persistence = persistence
        self._lock = threading.RLock()
        self._folders: dict[str, Folder] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, Message] = {}

    @property
    def persistence(self) -> StorePersistence | None:
        return self._persistence

    def load(self) -> None:
        """Replace the in-memory graph with what is on disk.

        Raises StoreError if the file exists but cannot be read.
        """
        if self._persistence is None:
            return
        snapshot = self._persistence.load()
        with self._lock:
            self._folders = {f.id: f for f in snapshot.folders}
            self._conversations = {c.id: c for c in snapshot.conversations}
            self._messages = {m.id: m for m in snapshot.messages}

    def save(self) -> bool:
        """Flush to disk. Returns False (and logs) on failure."""
        if self._persistence is None:
            return True
        with self._lock:
            folders = list(self._folders.values())
            conversations = list(self._conversations.values())
            try:
                self._persistence.save(folders, conversations)
            except StoreError as exc:
                logger.error("Failed to save store: %s", exc)
                return False
        return True

    # ── Create ──

    def create_folder(
        self,
        name: str = DEFAULT_FOLDER_NAME,
        parent: Folder | None = None,
        system_prompt: str | None = None,
    ) -> Folder:
        with self._lock:
            folder = Folder(name=name, system_prompt=system_prompt)
            if parent is not None:
                parent.add_subfolder(folder)
            self._folders[folder.id] = folder
            self.save()
        logger.info("Created folder %s (%s)", folder.id[:8], name)
        return folder

    def create_conversation(
        self,
        folder: Folder | None = None,
        title: str | None = None,
    ) -> Conversation:
        with self._lock:
            conversation = Conversation(title=title)
            if folder is not None:
                conversation.set_folder(folder)
            self._conversations[conversation.id] = conversation
            self.save()
        logger.info("Created conversation %s", conversation.id[:8])
        return conversation

    def create_message(
        self,
        text: str,
        from_id: str,
        conversation: Conversation,
        system_prompt: str | None = None,
    ) -> Message:
        """Create, attach and persist a message."""
        with self._lock:
            message = self.new_message(text, from_id, system_prompt=system_prompt)
            self.attach_message(message, conversation)
            self.save()
        return message

    def new_message(
        self,
        text: str,
        from_id: str,
        *,
        system_prompt: str | None = None,
        streaming: bool = False,
    ) -> Message:
        """Build a detached message. It is not stored until attached."""
        return Message(
            text=text,
            from_id=from_id,
            system_prompt=system_prompt,
            streaming=streaming,
        )

    def attach_message(self, message: Message, conversation: Conversation) -> bool:
        """Add ``message`` to ``conversation``.

        Returns False (doing nothing) if the message was deleted or the
        conversation is no longer in the store.
        """
        with self._lock:
            if message.is_deleted or conversation.id not in self._conversations:
                return False
            conversation.add_message(message)
            self._messages[message.id] = message
            return True

    # ── Delete ──

    def delete(self, entity: Entity) -> None:
        """Remove an entity.

        Deleting a conversation deletes its messages. Deleting a folder
        moves its subfolders and conversations to the root.
        """
        with self._lock:
            if isinstance(entity, Message):
                self._delete_message(entity)
            elif isinstance(entity, Conversation):
                self._delete_conversation(entity)
            elif isinstance(entity, Folder):
                self._delete_folder(entity)
            else:
                raise TypeError(f"Cannot delete {type(entity).__name__}")

    def _delete_message(self, message: Message) -> None:
        message.is_deleted = True
        message.streaming = False
        if message.conversation is not None:
            message.conversation.remove_message(message)
        self._messages.pop(message.id, None)

    def _delete_conversation(self, conversation: Conversation) -> None:
        for message in list(conversation.messages):
            self._delete_message(message)
        conversation.set_folder(None)
        self._conversations.pop(conversation.id, None)
        logger.info("Deleted conversation %s", conversation.id[:8])

    def _delete_folder(self, folder: Folder) -> None:
        for child in list(folder.children):
            child.move_to(None)
        for conversation in list(folder.conversations):
            conversation.set_folder(None)
        folder.move_to(None)
        self._folders.pop(folder.id, None)
        logger.info("Deleted folder %s (%s)", folder.id[:8], folder.name)

    # ── Fetch ──

    def contains(self, entity: Entity) -> bool:
        with self._lock:
            if isinstance(entity, Message):
                return self._messages.get(entity.id) is entity
            if isinstance(entity, Conversation):
                return self._conversations.get(entity.id) is entity
            if isinstance(entity, Folder):
                return self._folders.get(entity.id) is entity
            return False

    def get_folder(self, folder_id: str) -> Folder | None:
        with self._lock:
            return self._folders.get(folder_id)

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(conversation_id)

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            return self._messages.get(message_id)

    def fetch_folders(
        self, predicate: Callable[[Folder], bool] | None = None,
    ) -> list[Folder]:
        with self._lock:
            return [f for f in self._folders.values() if predicate is None or predicate(f)]

    def fetch_conversations(
        self, predicate: Callable[[Conversation], bool] | None = None,
    ) -> list[Conversation]:
        with self._lock:
            return [
                c for c in self._conversations.values()
                if predicate is None or predicate(c)
            ]

    def fetch_messages(
        self, predicate: Callable[[Message], bool] | None = None,
    ) -> list[Message]:
        with self._lock:
            return [m for m in self._messages.values() if predicate is None or predicate(m)]

    def ordered_messages(self, conversation: Conversation) -> list[Message]:
        """Snapshot of a conversation's messages in display order."""
        with self._lock:
            return conversation.ordered_messages
