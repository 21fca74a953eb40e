"""Event types emitted by the chat engine.

Each event corresponds to an engine callback dict, parsed into
a typed dataclass so front ends never depend on dict keys.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ChatEvent:
    """Base event from the chat engine."""
    event_type: str = ""


@dataclass
class AgentStatusChanged(ChatEvent):
    event_type: str = "agent_status_changed"
    agent_id: str = ""
    old_status: str = ""
    new_status: str = ""


@dataclass
class PartialOutputAppended(ChatEvent):
    event_type: str = "partial_output_appended"
    agent_id: str = ""
    text: str = ""


@dataclass
class MessageCreated(ChatEvent):
    """A message became visible in a conversation."""
    event_type: str = "message_created"
    conversation_id: str = ""
    message_id: str = ""
    from_id: str = ""
    text: str = ""


@dataclass
class MessageFinalized(ChatEvent):
    event_type: str = "message_finalized"
    conversation_id: str = ""
    message_id: str = ""
    from_id: str = ""
    text: str = ""


@dataclass
class MessageDeleted(ChatEvent):
    """A pending reply was rolled back."""
    event_type: str = "message_deleted"
    conversation_id: str = ""
    message_id: str = ""
    from_id: str = ""
    text: str = ""


@dataclass
class ConversationCreated(ChatEvent):
    event_type: str = "conversation_created"
    conversation_id: str = ""
    folder_id: str | None = None


@dataclass
class ConversationDeleted(ChatEvent):
    event_type: str = "conversation_deleted"
    conversation_id: str = ""


@dataclass
class ConversationMoved(ChatEvent):
    event_type: str = "conversation_moved"
    conversation_id: str = ""
    folder_id: str | None = None


@dataclass
class FolderCreated(ChatEvent):
    event_type: str = "folder_created"
    folder_id: str = ""
    parent_id: str | None = None
    name: str = ""


@dataclass
class FolderMoved(ChatEvent):
    event_type: str = "folder_moved"
    folder_id: str = ""
    parent_id: str | None = None


@dataclass
class FolderDeleted(ChatEvent):
    """A folder was removed; its contents moved to the root."""
    event_type: str = "folder_deleted"
    folder_id: str = ""
    parent_id: str | None = None
    promoted_folder_ids: list[str] = field(default_factory=list)
    promoted_conversation_ids: list[str] = field(default_factory=list)


@dataclass
class ModelLoading(ChatEvent):
    """Agent swap started (loading=True) or finished (loading=False)."""
    event_type: str = "model_loading"
    model_id: str = ""
    loading: bool = False


@dataclass
class AgentRebooted(ChatEvent):
    event_type: str = "agent_rebooted"
    agent_id: str = ""
    model_id: str = ""
    model_path: str | None = None


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[ChatEvent]] = {
    "agent_status_changed": AgentStatusChanged,
    "partial_output_appended": PartialOutputAppended,
    "message_created": MessageCreated,
    "message_finalized": MessageFinalized,
    "message_deleted": MessageDeleted,
    "conversation_created": ConversationCreated,
    "conversation_deleted": ConversationDeleted,
    "conversation_moved": ConversationMoved,
    "folder_created": FolderCreated,
    "folder_moved": FolderMoved,
    "folder_deleted": FolderDeleted,
    "model_loading": ModelLoading,
    "agent_rebooted": AgentRebooted,
}


def event_to_dict(event: ChatEvent) -> dict[str, Any]:
    """Convert a typed event back to the engine's callback dict shape."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is not None:
            d[f] = val
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> ChatEvent:
    """Convert an engine callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, ChatEvent)
    # Unknown keys are dropped
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
