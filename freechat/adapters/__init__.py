"""Adapters package - Bridge between the chat engine and front ends.

Typed events and the event bus that carry agent status, partial
output and store changes to whatever presentation layer subscribes.
"""
from __future__ import annotations

__all__ = [
    "ChatEvent",
    "EventBus",
    "dict_to_event",
    "event_to_dict",
]

from freechat.adapters.event_bus import EventBus
from freechat.adapters.events import ChatEvent, dict_to_event, event_to_dict
