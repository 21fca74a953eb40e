"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via FREECHAT_* env vars
or a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import DEFAULT_CONTEXT_LENGTH, DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        # Never let a subscriber break a turn
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes"}


def _default_data_dir() -> str:
    return str(Path.home() / ".freechat")


@dataclass
class ChatConfig:
    """Chat engine configuration."""

    # Agent
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    context_length: int = DEFAULT_CONTEXT_LENGTH
    # None leaves sampling temperature to the server.
    temperature: float | None = None

    # Backend (llama.cpp server). model_path is informational for a
    # server that was started with it.
    model_path: str | None = None
    server_host: str = "127.0.0.1"
    server_port: int = 8690
    server_tls: bool = False
    request_timeout_seconds: float = 300.0

    # Turn orchestration
    # Delay before an empty reply becomes visible.
    placeholder_delay_seconds: float = 0.6
    retry_backoff_seconds: float = 1.0
    # 0 disables the bound.
    max_submit_retries: int = 30

    # Storage
    data_dir: str = field(default_factory=_default_data_dir)

    # Logging
    log_level: str = "INFO"

    # Receives dicts like {"event": "partial_output_appended", "agent_id": ...}
    event_callback: EventCallback | None = field(default=None, repr=False)

    @property
    def store_path(self) -> Path:
        return Path(self.data_dir).expanduser() / "store.json"

    @classmethod
    def from_env(cls) -> ChatConfig:
        """Load configuration from FREECHAT_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("FREECHAT_")
        }
        if overrides:
            logger.info(
                "ChatConfig.from_env: FREECHAT_* env overrides: %s",
                ", ".join(sorted(overrides)),
            )
        else:
            logger.debug("ChatConfig.from_env: no FREECHAT_* env vars set, using defaults")

        temperature = os.getenv("FREECHAT_TEMPERATURE")
        config = cls(
            system_prompt=os.getenv("FREECHAT_SYSTEM_PROMPT", cls.system_prompt),
            context_length=int(os.getenv(
                "FREECHAT_CONTEXT_LENGTH", str(cls.context_length)
            )),
            temperature=float(temperature) if temperature else None,
            model_path=os.getenv("FREECHAT_MODEL_PATH") or None,
            server_host=os.getenv("FREECHAT_SERVER_HOST", cls.server_host),
            server_port=int(os.getenv(
                "FREECHAT_SERVER_PORT", str(cls.server_port)
            )),
            server_tls=_env_flag("FREECHAT_SERVER_TLS"),
            request_timeout_seconds=float(os.getenv(
                "FREECHAT_REQUEST_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            placeholder_delay_seconds=float(os.getenv(
                "FREECHAT_PLACEHOLDER_DELAY", str(cls.placeholder_delay_seconds)
            )),
            retry_backoff_seconds=float(os.getenv(
                "FREECHAT_RETRY_BACKOFF", str(cls.retry_backoff_seconds)
            )),
            max_submit_retries=int(os.getenv(
                "FREECHAT_MAX_SUBMIT_RETRIES", str(cls.max_submit_retries)
            )),
            data_dir=os.getenv("FREECHAT_DATA_DIR") or _default_data_dir(),
            log_level=os.getenv("FREECHAT_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "ChatConfig.from_env: server=%s:%d tls=%s context_length=%d data_dir=%s",
            config.server_host, config.server_port, config.server_tls,
            config.context_length, config.data_dir,
        )
        return config
