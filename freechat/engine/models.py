"""Core value types for the chat engine.

Enums and dataclasses shared by the agent, the completion channels
and the orchestrator. Kept free of imports from the rest of the
package to avoid circular imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant who speaks professionally without emoticons."
)
DEFAULT_CONTEXT_LENGTH = 4096
DEFAULT_AGENT_ID = "Llama"


class AgentStatus(str, Enum):
    """Agent states. See lifecycle.py for transition rules."""
    READY = "ready"
    WARMING_UP = "warming_up"
    PROCESSING = "processing"


@dataclass
class CompletionOptions:
    """Per-call knobs passed to a completion channel."""
    temperature: float | None = None
    context_length: int = DEFAULT_CONTEXT_LENGTH
    model_ref: str | None = None
    # None lets the server decide; 0 only evaluates the prompt.
    max_tokens: int | None = None


@dataclass
class CompletionResult:
    """Final output of one completion call."""
    text: str
    predicted_per_second: float | None = None
    response_start_seconds: float | None = None
    n_predicted: int | None = None
    model_name: str | None = None


@dataclass
class CompletionChunk:
    """A streaming increment from a completion channel.

    Partial chunks carry ``text``. The last chunk of a stream has
    ``is_result=True`` and the final ``result``.
    """
    text: str = ""
    is_result: bool = False
    result: CompletionResult | None = None


@dataclass
class ModelSpec:
    """A loadable model as handed over by the model catalogue."""
    id: str
    path: str | None = None
    name: str = ""
    error: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
