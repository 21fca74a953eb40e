"""Store persistence — save and load the conversation tree to disk.

Storage layout:
    {data_dir}/store.json

One JSON document holds every folder, conversation and attached
message. Relationships are stored as ids and re-linked on load.
Writes go through a temp file + rename so a crash never leaves a
half-written store behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from freechat.engine.errors import StoreError
from freechat.shared.models.conversation import Conversation
from freechat.shared.models.folder import Folder
from freechat.shared.models.message import Message

logger = logging.getLogger(__name__)

STORE_VERSION = "1.0"


@dataclass
class StoreSnapshot:
    """Re-linked entities read from disk."""
    folders: list[Folder] = field(default_factory=list)
    conversations: list[Conversation] = field(default_factory=list)
    messages: list[Message] = field(default_factory=list)


def _fsync_dir(dir_path: Path) -> None:
    """Best-effort directory fsync so the rename itself is durable."""
    try:
        flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
        fd = os.open(str(dir_path), flags)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        # Not every platform supports fsync on a directory.
        pass


def atomic_write_json(path: Path, payload: dict) -> None:
    """Write ``payload`` to ``path`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


class StorePersistence:
    """Serialize the folder/conversation/message graph to one JSON file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def save(self, folders: list[Folder], conversations: list[Conversation]) -> Path:
        """Write every folder and conversation (with attached messages).

        Raises StoreError if the file cannot be written.
        """
        data = {
            "version": STORE_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "folders": [_folder_to_dict(f) for f in folders],
            "conversations": [_conversation_to_dict(c) for c in conversations],
        }
        try:
            atomic_write_json(self._path, data)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(str(self._path), str(exc)) from exc
        logger.debug(
            "Store saved to %s (%d folders, %d conversations)",
            self._path, len(folders), len(conversations),
        )
        return self._path

    def load(self) -> StoreSnapshot:
        """Read the store file. A missing file yields an empty snapshot."""
        if not self._path.exists():
            logger.info("No store at %s; starting empty", self._path)
            return StoreSnapshot()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(str(self._path), str(exc)) from exc

        try:
            snapshot = _link(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(str(self._path), f"corrupt store: {exc}") from exc
        logger.info(
            "Store loaded from %s (%d folders, %d conversations, %d messages)",
            self._path, len(snapshot.folders),
            len(snapshot.conversations), len(snapshot.messages),
        )
        return snapshot


def _link(data: dict) -> StoreSnapshot:
    snapshot = StoreSnapshot()
    folders: dict[str, Folder] = {}
    for raw in data.get("folders", []):
        folder = _dict_to_folder(raw)
        folders[folder.id] = folder
        snapshot.folders.append(folder)

    # Parents after all folders exist; assign directly so updated_at
    # keeps its stored value.
    for raw in data.get("folders", []):
        parent_id = raw.get("parent_id")
        if parent_id and parent_id in folders:
            child = folders[raw["id"]]
            child.parent = folders[parent_id]
            folders[parent_id].children.append(child)

    for raw in data.get("conversations", []):
        conversation = _dict_to_conversation(raw)
        folder_id = raw.get("folder_id")
        if folder_id and folder_id in folders:
            conversation.folder = folders[folder_id]
            folders[folder_id].conversations.append(conversation)
        last_message_at = conversation.last_message_at
        for raw_msg in raw.get("messages", []):
            message = _dict_to_message(raw_msg)
            if message.streaming:
                # A reply that was mid-stream when the app stopped.
                if not message.text:
                    continue
                message.streaming = False
            conversation.add_message(message)
            snapshot.messages.append(message)
        conversation.last_message_at = max(
            conversation.last_message_at, last_message_at,
        )
        snapshot.conversations.append(conversation)
    return snapshot


def _ensure_aware(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (assume UTC if naive)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return _ensure_aware(datetime.fromisoformat(value))


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _folder_to_dict(folder: Folder) -> dict:
    return {
        "id": folder.id,
        "name": folder.name,
        "system_prompt": folder.system_prompt,
        "parent_id": folder.parent.id if folder.parent else None,
        "created_at": _iso(folder.created_at),
        "updated_at": _iso(folder.updated_at),
    }


def _dict_to_folder(data: dict) -> Folder:
    return Folder(
        id=data["id"],
        name=data.get("name") or "",
        system_prompt=data.get("system_prompt"),
        created_at=_parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
        updated_at=_parse_timestamp(data.get("updated_at")),
    )


def _conversation_to_dict(conversation: Conversation) -> dict:
    return {
        "id": conversation.id,
        "title": conversation.title,
        "folder_id": conversation.folder.id if conversation.folder else None,
        "created_at": _iso(conversation.created_at),
        "last_message_at": _iso(conversation.last_message_at),
        "updated_at": _iso(conversation.updated_at),
        "messages": [_message_to_dict(m) for m in conversation.messages],
    }


def _dict_to_conversation(data: dict) -> Conversation:
    return Conversation(
        id=data["id"],
        title=data.get("title"),
        created_at=_parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
        last_message_at=_parse_timestamp(data.get("last_message_at")),
        updated_at=_parse_timestamp(data.get("updated_at")),
    )


def _message_to_dict(msg: Message) -> dict:
    return {
        "id": msg.id,
        "text": msg.text,
        "from_id": msg.from_id,
        "created_at": _iso(msg.created_at),
        "updated_at": _iso(msg.updated_at),
        "system_prompt": msg.system_prompt,
        "predicted_per_second": msg.predicted_per_second,
        "response_start_seconds": msg.response_start_seconds,
        "n_predicted": msg.n_predicted,
        "model_name": msg.model_name,
        "streaming": msg.streaming,
    }


def _dict_to_message(data: dict) -> Message:
    return Message(
        id=data["id"],
        text=data.get("text") or "",
        from_id=data["from_id"],
        created_at=_parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
        updated_at=_parse_timestamp(data.get("updated_at")),
        system_prompt=data.get("system_prompt"),
        predicted_per_second=data.get("predicted_per_second"),
        response_start_seconds=data.get("response_start_seconds"),
        n_predicted=data.get("n_predicted"),
        model_name=data.get("model_name"),
        streaming=data.get("streaming", False),
    )
