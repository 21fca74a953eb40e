"""Shared fixtures: a scripted completion channel and fast configs."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from freechat.engine.channels.base import CompletionChannel
from freechat.engine.config import ChatConfig
from freechat.engine.models import CompletionChunk, CompletionResult
from freechat.shared.services.store import ChatStore

# Script marker: stop yielding and wait until interrupt() is called.
HANG = object()


class FakeChannel(CompletionChannel):
    """Plays back one script per stream() call.

    A script is a list of text chunks. An exception instance in the
    list is raised at that point; HANG blocks until interrupted.
    With no script left, the channel replies "ok".
    """

    def __init__(self, scripts: list[list[Any]] | None = None, *, chunk_delay: float = 0.0):
        self.scripts = list(scripts or [])
        self.chunk_delay = chunk_delay
        self.prompts: list[str] = []
        self.options = []
        self.interrupt_calls = 0
        self.shutdown_calls = 0
        self._interrupted: asyncio.Event | None = None

    @property
    def name(self) -> str:
        return "fake"

    async def stream(self, prompt, options):
        self.prompts.append(prompt)
        self.options.append(options)
        self._interrupted = asyncio.Event()
        script = self.scripts.pop(0) if self.scripts else ["ok"]
        parts: list[str] = []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if item is HANG:
                await self._interrupted.wait()
                break
            if self._interrupted.is_set():
                break
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            parts.append(item)
            yield CompletionChunk(text=item)
        yield CompletionChunk(
            is_result=True,
            result=CompletionResult(
                text="".join(parts),
                predicted_per_second=12.5,
                response_start_seconds=0.01,
                n_predicted=len(parts),
                model_name="fake.gguf",
            ),
        )

    async def interrupt(self) -> None:
        self.interrupt_calls += 1
        if self._interrupted is not None:
            self._interrupted.set()

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


class EventRecorder:
    """Async event callback that keeps every event dict."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def __call__(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e["event"] for e in self.events]

    def of(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.events if e["event"] == event_type]


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def config(tmp_path, recorder):
    return ChatConfig(
        system_prompt="SYS",
        placeholder_delay_seconds=0.0,
        retry_backoff_seconds=0.01,
        max_submit_retries=5,
        data_dir=str(tmp_path),
        event_callback=recorder,
    )


@pytest.fixture
def store():
    return ChatStore()


@pytest.fixture
def channel():
    return FakeChannel()
