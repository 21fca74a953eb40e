"""llama.cpp server channel.

Talks to a running ``llama-server`` over HTTP. Each completion is a
POST to ``/completion`` with ``stream: true``; the server answers with
server-sent events, one JSON object per ``data:`` line:

    data: {"content": "Hel", "stop": false}
    data: {"content": "lo", "stop": false}
    data: {"content": "", "stop": true, "tokens_predicted": 2,
           "model": "/models/llama.gguf",
           "timings": {"predicted_per_second": 41.2, ...}}

Starting and stopping the server process is handled elsewhere; this
channel only needs a host and port.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import aiohttp

from ..errors import (
    ChannelConnectionError,
    ChannelTimeoutError,
    MalformedResponseError,
)
from ..models import CompletionChunk, CompletionOptions, CompletionResult
from .base import CompletionChannel

logger = logging.getLogger(__name__)

# Stop before the model starts writing the user's next line.
DEFAULT_STOP = ["</s>", "\nuser:"]


def parse_event_line(raw: bytes | str) -> dict[str, Any] | None:
    """Decode one line of the completion stream.

    Returns None for blank lines, comments and non-data SSE fields.
    Raises MalformedResponseError when a data line is not a JSON object
    or carries a server-side error.
    """
    line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    elif not line.startswith("{"):
        # event:, id:, retry: fields carry nothing we use
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(f"invalid JSON in stream: {exc.msg}", line[:500]) from exc
    if not isinstance(payload, dict):
        raise MalformedResponseError("stream event is not an object", line[:500])
    if "error" in payload:
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise MalformedResponseError(f"server error: {message}", line[:500])
    return payload


def build_result(
    parts: list[str],
    final: dict[str, Any] | None,
    response_start_seconds: float | None,
) -> CompletionResult:
    """Assemble the final result from streamed parts and the stop event."""
    final = final or {}
    timings = final.get("timings") or {}
    n_predicted = final.get("tokens_predicted", timings.get("predicted_n"))
    model = final.get("model") or (final.get("generation_settings") or {}).get("model")
    return CompletionResult(
        text="".join(parts),
        predicted_per_second=timings.get("predicted_per_second"),
        response_start_seconds=response_start_seconds,
        n_predicted=int(n_predicted) if n_predicted is not None else None,
        model_name=Path(model).name if model else None,
    )


class LlamaServerChannel(CompletionChannel):
    """Streaming completions from a llama.cpp HTTP server."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8690,
        tls: bool = False,
        *,
        timeout_seconds: float = 300.0,
        stop: list[str] | None = None,
    ) -> None:
        scheme = "https" if tls else "http"
        self._base_url = f"{scheme}://{host}:{port}"
        self._timeout_seconds = timeout_seconds
        self._stop = list(stop) if stop is not None else list(DEFAULT_STOP)
        self._interrupt_requested = False
        self._response: aiohttp.ClientResponse | None = None

    @property
    def name(self) -> str:
        return "llama-server"

    @property
    def base_url(self) -> str:
        return self._base_url

    def _build_payload(self, prompt: str, options: CompletionOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "prompt": prompt,
            "stream": True,
            "stop": self._stop,
            "cache_prompt": True,
        }
        if options.temperature is not None:
            payload["temperature"] = options.temperature
        if options.max_tokens is not None:
            payload["n_predict"] = options.max_tokens
        return payload

    async def stream(
        self,
        prompt: str,
        options: CompletionOptions,
    ) -> AsyncIterator[CompletionChunk]:
        self._interrupt_requested = False
        url = f"{self._base_url}/completion"
        payload = self._build_payload(prompt, options)
        timeout = aiohttp.ClientTimeout(total=None, sock_read=self._timeout_seconds)
        parts: list[str] = []
        final: dict[str, Any] | None = None
        started = time.monotonic()
        response_start: float | None = None

        logger.debug(
            "POST %s prompt_chars=%d temperature=%s n_predict=%s",
            url, len(prompt), options.temperature, options.max_tokens,
        )
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        body = await response.text()
                        raise MalformedResponseError(
                            f"HTTP {response.status}", body[:500],
                        )
                    self._response = response
                    async for raw_line in response.content:
                        if self._interrupt_requested:
                            break
                        event = parse_event_line(raw_line)
                        if event is None:
                            continue
                        content = event.get("content") or ""
                        if content:
                            if response_start is None:
                                response_start = time.monotonic() - started
                            parts.append(content)
                            yield CompletionChunk(text=content)
                        if event.get("stop"):
                            final = event
                            break
        except aiohttp.ClientConnectorError as exc:
            raise ChannelConnectionError(self._base_url, str(exc)) from exc
        except asyncio.TimeoutError as exc:
            if not self._interrupt_requested:
                raise ChannelTimeoutError(self._base_url, self._timeout_seconds) from exc
        except aiohttp.ClientError as exc:
            # Closing the response on interrupt surfaces here too.
            if not self._interrupt_requested:
                raise ChannelConnectionError(self._base_url, str(exc)) from exc
        finally:
            self._response = None

        if self._interrupt_requested:
            logger.info(
                "Completion interrupted after %d chunks (%s)",
                len(parts), self._base_url,
            )
        elif final is None:
            raise MalformedResponseError(
                "stream ended before stop event", "".join(parts)[-500:],
            )
        yield CompletionChunk(
            is_result=True,
            result=build_result(parts, final, response_start),
        )

    async def interrupt(self) -> None:
        self._interrupt_requested = True
        response = self._response
        if response is not None and not response.closed:
            response.close()
