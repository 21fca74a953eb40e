"""Store persistence tests — JSON round trip through a temp directory."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from freechat.engine.errors import StoreError
from freechat.shared.services.persistence import StorePersistence
from freechat.shared.services.store import ChatStore


def _store(tmp_path) -> ChatStore:
    return ChatStore(StorePersistence(tmp_path / "store.json"))


def test_missing_file_loads_empty(tmp_path):
    store = _store(tmp_path)
    store.load()
    assert store.fetch_folders() == []
    assert store.fetch_conversations() == []


def test_round_trip_keeps_tree_and_messages(tmp_path):
    store = _store(tmp_path)
    work = store.create_folder("Work", system_prompt="Be terse.")
    sub = store.create_folder("Reports", parent=work)
    conv = store.create_conversation(folder=sub, title="Q3")
    store.create_message("hello", "user", conv, system_prompt="Be terse.")
    reply = store.new_message("hi there", "Llama")
    reply.predicted_per_second = 33.0
    reply.n_predicted = 3
    reply.model_name = "llama.gguf"
    store.attach_message(reply, conv)
    loose = store.create_conversation()
    assert store.save()

    reloaded = _store(tmp_path)
    reloaded.load()

    work2 = reloaded.get_folder(work.id)
    sub2 = reloaded.get_folder(sub.id)
    conv2 = reloaded.get_conversation(conv.id)
    assert work2.system_prompt == "Be terse."
    assert sub2.parent is work2
    assert sub2 in work2.children
    assert conv2.folder is sub2
    assert conv2 in sub2.conversations
    assert conv2.title == "Q3"
    assert reloaded.get_conversation(loose.id).folder is None

    messages = reloaded.ordered_messages(conv2)
    assert [m.text for m in messages] == ["hello", "hi there"]
    assert messages[0].system_prompt == "Be terse."
    assert messages[1].predicted_per_second == 33.0
    assert messages[1].n_predicted == 3
    assert messages[1].model_name == "llama.gguf"
    assert all(m.conversation is conv2 for m in messages)
    assert conv2.effective_system_prompt("default") == "Be terse."


def test_timestamps_survive_round_trip(tmp_path):
    store = _store(tmp_path)
    conv = store.create_conversation()
    message = store.create_message("hi", "user", conv)

    reloaded = _store(tmp_path)
    reloaded.load()
    conv2 = reloaded.get_conversation(conv.id)
    assert conv2.created_at == conv.created_at
    assert conv2.last_message_at == message.created_at
    assert reloaded.get_message(message.id).created_at.tzinfo is not None


def test_interrupted_placeholders_on_load(tmp_path):
    store = _store(tmp_path)
    conv = store.create_conversation()
    empty = store.new_message("", "Llama", streaming=True)
    partial = store.new_message("half a rep", "Llama", streaming=True)
    store.attach_message(empty, conv)
    store.attach_message(partial, conv)
    store.save()

    reloaded = _store(tmp_path)
    reloaded.load()
    conv2 = reloaded.get_conversation(conv.id)
    assert [m.text for m in conv2.messages] == ["half a rep"]
    assert conv2.messages[0].streaming is False
    assert reloaded.get_message(empty.id) is None


def test_naive_timestamps_are_treated_as_utc(tmp_path):
    path = tmp_path / "store.json"
    path.write_text(json.dumps({
        "version": "1.0",
        "folders": [],
        "conversations": [{
            "id": "c1",
            "title": None,
            "folder_id": None,
            "created_at": "2024-05-01T10:00:00",
            "messages": [],
        }],
    }))
    store = ChatStore(StorePersistence(path))
    store.load()
    conv = store.get_conversation("c1")
    assert conv.created_at == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    assert conv.last_message_at == conv.created_at


def test_corrupt_file_raises_store_error(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json")
    with pytest.raises(StoreError):
        ChatStore(StorePersistence(path)).load()


def test_missing_required_key_raises_store_error(tmp_path):
    path = tmp_path / "store.json"
    path.write_text(json.dumps({"folders": [{"name": "no id"}]}))
    with pytest.raises(StoreError):
        StorePersistence(path).load()


def test_save_failure_is_reported_not_raised(tmp_path):
    # A directory where the file should be makes the rename fail.
    target = tmp_path / "store.json"
    target.mkdir()
    store = ChatStore(StorePersistence(target))
    conv = store.create_conversation()
    assert store.save() is False
    # In-memory state is untouched
    assert store.contains(conv)


def test_no_temp_files_left_behind(tmp_path):
    store = _store(tmp_path)
    store.create_conversation()
    store.save()
    assert [p.name for p in tmp_path.iterdir()] == ["store.json"]
