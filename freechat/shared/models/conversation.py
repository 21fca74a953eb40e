"""Conversation model — an ordered thread of messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING
import uuid

from freechat.shared.models.message import Message

if TYPE_CHECKING:
    from freechat.shared.models.folder import Folder

# Characters of the first message considered for a derived title.
TITLE_PREFIX_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_date_title(value: datetime) -> str:
    """Format a timestamp the way untitled conversations are named.

    en_US short form in local time, e.g. ``10/19/2026, 4:05 PM``.
    """
    local = value.astimezone()
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return f"{local.month}/{local.day}/{local.year}, {hour}:{local.minute:02d} {meridiem}"


@dataclass(eq=False)
class Conversation:
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    last_message_at: datetime | None = None
    updated_at: datetime | None = None
    folder: Folder | None = field(default=None, repr=False)
    # Append order; use ordered_messages for display order.
    messages: list[Message] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        if self.last_message_at is None:
            self.last_message_at = self.created_at
        if self.updated_at is None:
            self.updated_at = self.created_at

    def _touch(self) -> None:
        self.updated_at = _utcnow()

    @property
    def ordered_messages(self) -> list[Message]:
        # sorted() is stable: equal timestamps keep append order
        return sorted(self.messages, key=lambda m: m.created_at)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def is_draft(self) -> bool:
        return not self.messages

    @property
    def date_title(self) -> str:
        return format_date_title(self.created_at)

    @property
    def title_with_default(self) -> str:
        if self.title is not None:
            return self.title
        if self.messages:
            first = self.ordered_messages[0]
            prefix = (first.text or "")[:TITLE_PREFIX_LENGTH]
            for line in prefix.split("\n"):
                if line:
                    return line
        return self.date_title

    def add_message(self, message: Message) -> None:
        """Append a message and advance last_message_at (never backwards)."""
        if message in self.messages:
            return
        message.conversation = self
        self.messages.append(message)
        if self.last_message_at is None or message.created_at > self.last_message_at:
            self.last_message_at = message.created_at

    def remove_message(self, message: Message) -> None:
        if message in self.messages:
            self.messages.remove(message)
        if message.conversation is self:
            message.conversation = None

    def set_title(self, title: str | None) -> None:
        self.title = title
        self._touch()

    def set_folder(self, folder: Folder | None) -> None:
        """Move into ``folder`` (None = root), keeping both sides linked."""
        if self.folder is folder:
            return
        old = self.folder
        if old is not None:
            old._discard_conversation(self)
        self.folder = folder
        if folder is not None:
            folder._adopt_conversation(self)
        self._touch()

    def effective_system_prompt(self, default: str) -> str:
        if self.folder is not None:
            return self.folder.effective_system_prompt(default)
        return default
