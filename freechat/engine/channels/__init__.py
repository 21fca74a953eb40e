"""Completion channel abstraction."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .base import CompletionChannel
from .llama_server import LlamaServerChannel

if TYPE_CHECKING:
    from ..config import ChatConfig
    from ..models import ModelSpec

logger = logging.getLogger(__name__)


def build_channel(config: ChatConfig, model: ModelSpec | None = None) -> CompletionChannel:
    """Default channel factory: the configured llama.cpp server."""
    channel = LlamaServerChannel(
        host=config.server_host,
        port=config.server_port,
        tls=config.server_tls,
        timeout_seconds=config.request_timeout_seconds,
    )
    logger.info(
        "Channel built: %s at %s (model=%s)",
        channel.name, channel.base_url,
        (model.path if model else config.model_path) or "server default",
    )
    return channel


__all__ = [
    "CompletionChannel",
    "LlamaServerChannel",
    "build_channel",
]
