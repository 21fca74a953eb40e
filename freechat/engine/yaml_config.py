"""YAML configuration loader.

Loads a single YAML file layered over the FREECHAT_* env config.
Missing sections and keys keep the env/default values. String values
may reference environment variables as ``${NAME}``.

Example YAML:
    agent:
      system_prompt: |
        You are a terse assistant.
      context_length: 8192
      temperature: 0.7

    backend:
      host: 127.0.0.1
      port: 8690
      tls: false
      model_path: ~/models/llama-3-8b-instruct.Q4_K_M.gguf
      request_timeout_seconds: 120

    orchestrator:
      placeholder_delay_seconds: 0.6
      retry_backoff_seconds: 1.0
      max_submit_retries: 30

    storage:
      data_dir: ${HOME}/.freechat

    log_level: DEBUG
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .config import ChatConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

_KNOWN_SECTIONS = ("agent", "backend", "orchestrator", "storage", "log_level")


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    return value


def _section(raw: dict, name: str, path: Path) -> dict:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(str(path), f"section '{name}' must be a mapping")
    return {k: _expand(v) for k, v in section.items()}


def load_yaml_config(path: str | Path, base: ChatConfig | None = None) -> ChatConfig:
    """Load a YAML config file on top of ``base`` (env config by default).

    Raises ConfigError when the file is unreadable, is not valid YAML,
    or has values of the wrong type.
    """
    path = Path(path).expanduser()
    logger.info(
        "load_yaml_config: loading %s (exists=%s)", path, path.exists()
    )
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as exc:
        logger.error("load_yaml_config: cannot read %s: %s", path, exc)
        raise ConfigError(str(path), str(exc)) from exc
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(str(path), f"YAML parse error: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(str(path), "top level must be a mapping")

    unknown = sorted(k for k in raw if k not in _KNOWN_SECTIONS)
    if unknown:
        logger.warning(
            "load_yaml_config: ignoring unknown sections in %s: %s",
            path.name, ", ".join(unknown),
        )

    config = base if base is not None else ChatConfig.from_env()
    agent = _section(raw, "agent", path)
    backend = _section(raw, "backend", path)
    orchestrator = _section(raw, "orchestrator", path)
    storage = _section(raw, "storage", path)

    try:
        if "system_prompt" in agent:
            config.system_prompt = str(agent["system_prompt"]).strip()
        if "context_length" in agent:
            config.context_length = int(agent["context_length"])
        if "temperature" in agent:
            temperature = agent["temperature"]
            config.temperature = float(temperature) if temperature is not None else None

        if "host" in backend:
            config.server_host = str(backend["host"])
        if "port" in backend:
            config.server_port = int(backend["port"])
        if "tls" in backend:
            config.server_tls = bool(backend["tls"])
        if "model_path" in backend:
            model_path = backend["model_path"]
            config.model_path = str(Path(model_path).expanduser()) if model_path else None
        if "request_timeout_seconds" in backend:
            config.request_timeout_seconds = float(backend["request_timeout_seconds"])

        if "placeholder_delay_seconds" in orchestrator:
            config.placeholder_delay_seconds = float(
                orchestrator["placeholder_delay_seconds"]
            )
        if "retry_backoff_seconds" in orchestrator:
            config.retry_backoff_seconds = float(orchestrator["retry_backoff_seconds"])
        if "max_submit_retries" in orchestrator:
            config.max_submit_retries = int(orchestrator["max_submit_retries"])

        if "data_dir" in storage:
            config.data_dir = str(storage["data_dir"])
    except (TypeError, ValueError) as exc:
        raise ConfigError(str(path), str(exc)) from exc

    if "log_level" in raw:
        config.log_level = str(raw["log_level"]).upper()

    logger.info(
        "Parsed YAML config %s — sections: %s",
        path.name, ", ".join(sorted(k for k in raw if k in _KNOWN_SECTIONS)) or "(empty)",
    )
    return config
