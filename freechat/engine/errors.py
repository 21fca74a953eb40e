"""Exception hierarchy for the chat engine.

One exception per failure mode. Channel errors carry a user-facing
message and a recovery suggestion so the front end can show them
verbatim.
"""
from __future__ import annotations


class FreeChatError(Exception):
    """Base exception for all engine errors."""


class ChannelError(FreeChatError):
    """The completion backend failed to produce a response."""

    recovery_suggestion = "Check that the inference server is running and try again."

    def __init__(self, user_message: str, recovery_suggestion: str | None = None):
        self.user_message = user_message
        if recovery_suggestion is not None:
            self.recovery_suggestion = recovery_suggestion
        super().__init__(user_message)


class ChannelConnectionError(ChannelError):
    """The inference server could not be reached."""
    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(
            f"Could not connect to the inference server at {endpoint}: {reason}",
            "Make sure the server is running and the host and port are correct.",
        )


class ChannelTimeoutError(ChannelError):
    """The inference server stopped responding."""
    def __init__(self, endpoint: str, timeout_seconds: float):
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"The inference server at {endpoint} did not respond "
            f"within {timeout_seconds}s",
            "The model may still be loading. Wait a moment and try again.",
        )


class MalformedResponseError(ChannelError):
    """The inference server sent something we could not parse."""
    def __init__(self, reason: str, payload: str = ""):
        self.reason = reason
        self.payload = payload
        super().__init__(
            f"The inference server sent an invalid response: {reason}",
            "Try restarting the server or choosing a different model.",
        )


class AgentBusyError(FreeChatError):
    """The agent is still running a turn."""
    def __init__(self, agent_id: str, attempts: int = 0):
        self.agent_id = agent_id
        self.attempts = attempts
        if attempts:
            msg = f"Agent {agent_id} is still busy after {attempts} interrupt attempts"
        else:
            msg = f"Agent {agent_id} is already processing a turn"
        super().__init__(msg)


class InvalidTransitionError(FreeChatError, ValueError):
    """Requested agent status change is not allowed."""
    def __init__(self, current: str, target: str, allowed: list[str]):
        self.current = current
        self.target = target
        self.allowed = allowed
        allowed_str = ", ".join(allowed) or "none"
        super().__init__(
            f"Invalid status transition: {current} -> {target}. "
            f"Allowed from {current}: {allowed_str}"
        )


class FolderCycleError(FreeChatError):
    """A folder move would make the folder its own ancestor."""
    def __init__(self, folder_id: str, target_id: str):
        self.folder_id = folder_id
        self.target_id = target_id
        super().__init__(
            f"Cannot move folder {folder_id} under {target_id}: "
            f"it would become its own ancestor"
        )


class StoreError(FreeChatError):
    """Reading or writing the conversation store failed."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Store operation on {path} failed: {reason}")


class ConfigError(FreeChatError):
    """A configuration file could not be loaded."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")
