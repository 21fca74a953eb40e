"""FreeChat engine — agent, turn orchestration and conversation management."""
from .models import (
    AgentStatus,
    CompletionChunk,
    CompletionOptions,
    CompletionResult,
    ModelSpec,
)
from .config import ChatConfig
from .errors import (
    AgentBusyError,
    ChannelConnectionError,
    ChannelError,
    ChannelTimeoutError,
    ConfigError,
    FolderCycleError,
    FreeChatError,
    InvalidTransitionError,
    MalformedResponseError,
    StoreError,
)

__all__ = [
    # Core components (lazy import to avoid circular deps)
    "Agent",
    "TurnOrchestrator",
    "ConversationManager",
    # Models
    "AgentStatus",
    "CompletionChunk",
    "CompletionOptions",
    "CompletionResult",
    "ModelSpec",
    # Config
    "ChatConfig",
    "load_yaml_config",
    # Channels (lazy import)
    "CompletionChannel",
    "LlamaServerChannel",
    # Errors
    "AgentBusyError",
    "ChannelConnectionError",
    "ChannelError",
    "ChannelTimeoutError",
    "ConfigError",
    "FolderCycleError",
    "FreeChatError",
    "InvalidTransitionError",
    "MalformedResponseError",
    "StoreError",
]


def __getattr__(name: str):
    if name == "Agent":
        from .agent import Agent
        return Agent
    if name == "TurnOrchestrator":
        from .orchestrator import TurnOrchestrator
        return TurnOrchestrator
    if name == "ConversationManager":
        from .manager import ConversationManager
        return ConversationManager
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "CompletionChannel":
        from .channels.base import CompletionChannel
        return CompletionChannel
    if name == "LlamaServerChannel":
        from .channels.llama_server import LlamaServerChannel
        return LlamaServerChannel
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
