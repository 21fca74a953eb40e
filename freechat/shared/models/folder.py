"""Folder model — a node in the conversation tree.

A folder has at most one parent, so the hierarchy is a strict tree.
Linking is kept symmetric: setting a parent also updates that
parent's children, and the same holds for contained conversations.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid

from freechat.engine.errors import FolderCycleError
from freechat.shared.models.conversation import Conversation

DEFAULT_FOLDER_NAME = "New Folder"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class Folder:
    name: str = DEFAULT_FOLDER_NAME
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    # Overrides the configured system prompt for everything below.
    system_prompt: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime | None = None
    parent: Folder | None = field(default=None, repr=False)
    children: list[Folder] = field(default_factory=list, repr=False)
    conversations: list[Conversation] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if self.updated_at is None:
            self.updated_at = self.created_at

    def _touch(self) -> None:
        self.updated_at = _utcnow()

    # ── Tree structure ──

    @property
    def subfolders(self) -> list[Folder]:
        return sorted(self.children, key=lambda f: f.name or "")

    @property
    def is_root(self) -> bool:
        return self.parent is None

    def ancestors(self) -> Iterator[Folder]:
        node = self.parent
        while node is not None:
            yield node
            node = node.parent

    def is_ancestor_of(self, other: Folder) -> bool:
        return any(node is self for node in other.ancestors())

    def move_to(self, new_parent: Folder | None) -> None:
        """Re-parent this folder (None = root).

        Raises FolderCycleError if ``new_parent`` is this folder or one
        of its descendants.
        """
        if new_parent is not None and (new_parent is self or self.is_ancestor_of(new_parent)):
            raise FolderCycleError(self.id, new_parent.id)
        if self.parent is new_parent:
            return
        old = self.parent
        if old is not None:
            old.children.remove(self)
            old._touch()
        self.parent = new_parent
        if new_parent is not None:
            new_parent.children.append(self)
            new_parent._touch()
        self._touch()

    def add_subfolder(self, subfolder: Folder) -> None:
        subfolder.move_to(self)

    def remove_subfolder(self, subfolder: Folder) -> None:
        if subfolder.parent is self:
            subfolder.move_to(None)

    # ── Conversations ──

    def _adopt_conversation(self, conversation: Conversation) -> None:
        if conversation not in self.conversations:
            self.conversations.append(conversation)
            self._touch()

    def _discard_conversation(self, conversation: Conversation) -> None:
        if conversation in self.conversations:
            self.conversations.remove(conversation)
            self._touch()

    @property
    def all_conversations(self) -> list[Conversation]:
        """Direct and nested conversations, most recently active first."""
        found = list(self.conversations)
        for sub in self.subfolders:
            found.extend(sub.all_conversations)
        return sorted(found, key=lambda c: c.last_message_at, reverse=True)

    # ── Attributes ──

    def rename(self, name: str) -> None:
        self.name = name
        self._touch()

    def set_system_prompt(self, prompt: str | None) -> None:
        self.system_prompt = prompt
        self._touch()

    def effective_system_prompt(self, default: str) -> str:
        """Nearest override walking up from this folder, else ``default``."""
        if self.system_prompt:
            return self.system_prompt
        for node in self.ancestors():
            if node.system_prompt:
                return node.system_prompt
        return default
