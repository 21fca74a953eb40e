"""Event system tests — typed events and the event bus."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeChannel
from freechat.adapters.event_bus import EventBus
from freechat.adapters.events import (
    AgentStatusChanged,
    ChatEvent,
    FolderDeleted,
    MessageCreated,
    MessageFinalized,
    ModelLoading,
    PartialOutputAppended,
    dict_to_event,
    event_to_dict,
)
from freechat.engine.agent import Agent
from freechat.engine.config import ChatConfig
from freechat.engine.orchestrator import TurnOrchestrator


class TestDictToEvent:
    def test_partial_output(self):
        event = dict_to_event({
            "event": "partial_output_appended",
            "agent_id": "Llama",
            "text": "Hel",
        })
        assert isinstance(event, PartialOutputAppended)
        assert event.agent_id == "Llama"
        assert event.text == "Hel"
        assert event.event_type == "partial_output_appended"

    def test_status_change(self):
        event = dict_to_event({
            "event": "agent_status_changed",
            "agent_id": "Llama",
            "old_status": "ready",
            "new_status": "processing",
        })
        assert isinstance(event, AgentStatusChanged)
        assert event.new_status == "processing"

    def test_unknown_keys_are_dropped(self):
        event = dict_to_event({
            "event": "model_loading",
            "model_id": "m1",
            "loading": True,
            "extra": "ignored",
        })
        assert isinstance(event, ModelLoading)
        assert event.loading is True

    def test_folder_deleted(self):
        event = dict_to_event({
            "event": "folder_deleted",
            "folder_id": "f1",
            "parent_id": None,
            "promoted_folder_ids": ["f2"],
            "promoted_conversation_ids": ["c1", "c2"],
        })
        assert isinstance(event, FolderDeleted)
        assert event.promoted_folder_ids == ["f2"]
        assert event.promoted_conversation_ids == ["c1", "c2"]

    def test_unknown_event_type(self):
        event = dict_to_event({"event": "something_new", "x": 1})
        assert type(event) is ChatEvent
        assert event.event_type == "something_new"

    def test_event_to_dict_inverts(self):
        data = {
            "event": "message_created",
            "conversation_id": "c1",
            "message_id": "m1",
            "from_id": "user",
            "text": "hi",
        }
        assert event_to_dict(dict_to_event(data)) == data


class TestEventBus:
    @pytest.mark.asyncio
    async def test_callback_queues_typed_events(self):
        bus = EventBus()
        callback = bus.make_callback()
        await callback({"event": "partial_output_appended", "agent_id": "Llama", "text": "a"})
        await bus.emit(MessageCreated(conversation_id="c1"))

        events = bus.drain()
        assert [type(e) for e in events] == [PartialOutputAppended, MessageCreated]
        assert bus.drain() == []

    @pytest.mark.asyncio
    async def test_closed_bus_drops_events(self):
        bus = EventBus()
        bus.close()
        await bus.make_callback()({"event": "model_loading", "model_id": "m"})
        assert bus.drain() == []
        bus.reset()
        assert not bus.closed

    @pytest.mark.asyncio
    async def test_consume_stops_on_close(self):
        bus = EventBus()
        received = []

        async def consumer():
            async for event in bus.consume():
                received.append(event)

        task = asyncio.create_task(consumer())
        await bus.emit(MessageCreated(conversation_id="c1"))
        await asyncio.sleep(0.05)
        bus.close()
        await asyncio.wait_for(task, timeout=2.0)
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_full_turn_through_bus(self, store):
        bus = EventBus()
        config = ChatConfig(
            system_prompt="SYS",
            placeholder_delay_seconds=5.0,
            event_callback=bus.make_callback(),
        )
        agent = Agent(FakeChannel([["Hi", "!"]]), event_callback=config.event_callback)
        conversation = store.create_conversation()
        orch = TurnOrchestrator(agent, conversation, store, config=config)

        await orch.submit("hello")

        events = bus.drain()
        partials = [e.text for e in events if isinstance(e, PartialOutputAppended)]
        assert partials == ["Hi", "!"]
        assert isinstance(events[0], MessageCreated)
        assert isinstance(events[-1], MessageFinalized)
        assert events[-1].text == "Hi!"
