"""llama.cpp server channel tests — SSE parsing and a live aiohttp test server."""

from __future__ import annotations

import asyncio
import json
import socket

import pytest
from aiohttp import web
from aiohttp import test_utils

from freechat.engine.channels import build_channel
from freechat.engine.channels.llama_server import (
    DEFAULT_STOP,
    LlamaServerChannel,
    build_result,
    parse_event_line,
)
from freechat.engine.config import ChatConfig
from freechat.engine.errors import (
    ChannelConnectionError,
    ChannelTimeoutError,
    MalformedResponseError,
)
from freechat.engine.models import CompletionOptions


# ── Parsing ──


class TestParseEventLine:
    def test_data_line(self):
        assert parse_event_line(b'data: {"content": "Hi", "stop": false}\n') == {
            "content": "Hi", "stop": False,
        }

    def test_bare_json_line(self):
        assert parse_event_line('{"content": "x"}') == {"content": "x"}

    def test_ignored_lines(self):
        assert parse_event_line(b"\n") is None
        assert parse_event_line(": keep-alive") is None
        assert parse_event_line("event: completion") is None

    def test_invalid_json(self):
        with pytest.raises(MalformedResponseError):
            parse_event_line("data: {broken")

    def test_non_object(self):
        with pytest.raises(MalformedResponseError):
            parse_event_line("data: [1, 2]")

    def test_server_error(self):
        with pytest.raises(MalformedResponseError, match="context too long"):
            parse_event_line('data: {"error": {"message": "context too long"}}')


class TestBuildResult:
    def test_stats_from_stop_event(self):
        result = build_result(
            ["Hel", "lo"],
            {
                "stop": True,
                "tokens_predicted": 2,
                "model": "/models/llama-3-8b.gguf",
                "timings": {"predicted_per_second": 41.5},
            },
            0.25,
        )
        assert result.text == "Hello"
        assert result.n_predicted == 2
        assert result.predicted_per_second == 41.5
        assert result.response_start_seconds == 0.25
        assert result.model_name == "llama-3-8b.gguf"

    def test_fallbacks(self):
        result = build_result(
            ["x"],
            {"timings": {"predicted_n": 7}, "generation_settings": {"model": "a/b.gguf"}},
            None,
        )
        assert result.n_predicted == 7
        assert result.model_name == "b.gguf"

    def test_no_stop_event(self):
        result = build_result(["partial"], None, None)
        assert result.text == "partial"
        assert result.predicted_per_second is None
        assert result.model_name is None


# ── Live server ──


def _sse(payload: dict) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


async def _start(handler) -> test_utils.TestServer:
    app = web.Application()
    app.router.add_post("/completion", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


def _channel(server: test_utils.TestServer, **kwargs) -> LlamaServerChannel:
    return LlamaServerChannel(server.host, server.port, **kwargs)


async def _collect(channel, prompt="hi", options=None):
    chunks = []
    async for chunk in channel.stream(prompt, options or CompletionOptions()):
        chunks.append(chunk)
    return chunks


@pytest.mark.asyncio
async def test_streams_partials_then_result():
    requests = []

    async def handler(request):
        requests.append(await request.json())
        resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        await resp.write(_sse({"content": "Hel", "stop": False}))
        await resp.write(_sse({"content": "lo", "stop": False}))
        await resp.write(_sse({
            "content": "",
            "stop": True,
            "tokens_predicted": 2,
            "model": "/m/tiny.gguf",
            "timings": {"predicted_per_second": 20.0},
        }))
        await resp.write_eof()
        return resp

    server = await _start(handler)
    try:
        chunks = await _collect(
            _channel(server),
            "SYS\nuser: hi\nLlama: ",
            CompletionOptions(temperature=0.5, max_tokens=64),
        )
    finally:
        await server.close()

    assert [c.text for c in chunks if not c.is_result] == ["Hel", "lo"]
    final = chunks[-1]
    assert final.is_result
    assert final.result.text == "Hello"
    assert final.result.n_predicted == 2
    assert final.result.predicted_per_second == 20.0
    assert final.result.model_name == "tiny.gguf"
    assert final.result.response_start_seconds is not None

    body = requests[0]
    assert body["prompt"] == "SYS\nuser: hi\nLlama: "
    assert body["stream"] is True
    assert body["stop"] == DEFAULT_STOP
    assert body["temperature"] == 0.5
    assert body["n_predict"] == 64


@pytest.mark.asyncio
async def test_complete_returns_final_result():
    async def handler(request):
        resp = web.StreamResponse()
        await resp.prepare(request)
        await resp.write(_sse({"content": "done", "stop": True, "tokens_predicted": 1}))
        await resp.write_eof()
        return resp

    server = await _start(handler)
    try:
        result = await _channel(server).complete("p", CompletionOptions(max_tokens=0))
    finally:
        await server.close()
    assert result.text == "done"
    assert result.n_predicted == 1


@pytest.mark.asyncio
async def test_interrupt_ends_stream_with_partial_result():
    release = asyncio.Event()

    async def handler(request):
        resp = web.StreamResponse()
        await resp.prepare(request)
        await resp.write(_sse({"content": "first", "stop": False}))
        try:
            await asyncio.wait_for(release.wait(), timeout=5.0)
            await resp.write(_sse({"content": "second", "stop": False}))
            await resp.write_eof()
        except (ConnectionError, asyncio.TimeoutError):
            pass
        return resp

    server = await _start(handler)
    channel = _channel(server)
    chunks = []
    try:
        async for chunk in channel.stream("p", CompletionOptions()):
            chunks.append(chunk)
            if chunk.text == "first":
                await channel.interrupt()
                release.set()
    finally:
        release.set()
        await server.close()

    assert chunks[0].text == "first"
    assert chunks[-1].is_result
    assert chunks[-1].result.text == "first"


@pytest.mark.asyncio
async def test_http_error_status():
    async def handler(request):
        return web.Response(status=500, text="model not loaded")

    server = await _start(handler)
    try:
        with pytest.raises(MalformedResponseError, match="HTTP 500"):
            await _collect(_channel(server))
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_error_event_in_stream():
    async def handler(request):
        resp = web.StreamResponse()
        await resp.prepare(request)
        await resp.write(_sse({"error": {"message": "out of memory"}}))
        await resp.write_eof()
        return resp

    server = await _start(handler)
    try:
        with pytest.raises(MalformedResponseError, match="out of memory"):
            await _collect(_channel(server))
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_stream_closed_before_stop_event():
    async def handler(request):
        resp = web.StreamResponse()
        await resp.prepare(request)
        await resp.write(_sse({"content": "Hel", "stop": False}))
        await resp.write_eof()
        return resp

    server = await _start(handler)
    try:
        with pytest.raises(MalformedResponseError, match="stop event") as exc_info:
            await _collect(_channel(server))
        assert exc_info.value.payload == "Hel"
    finally:
        await server.close()


@pytest.mark.asyncio
async def test_read_timeout():
    async def handler(request):
        resp = web.StreamResponse()
        await resp.prepare(request)
        await asyncio.sleep(0.5)
        return resp

    server = await _start(handler)
    try:
        with pytest.raises(ChannelTimeoutError) as exc_info:
            await _collect(_channel(server, timeout_seconds=0.1))
    finally:
        await server.close()
    assert exc_info.value.timeout_seconds == 0.1


@pytest.mark.asyncio
async def test_connection_refused():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]

    channel = LlamaServerChannel("127.0.0.1", port)
    with pytest.raises(ChannelConnectionError) as exc_info:
        await _collect(channel)
    assert exc_info.value.endpoint == f"http://127.0.0.1:{port}"
    assert exc_info.value.recovery_suggestion


def test_build_channel_from_config():
    channel = build_channel(ChatConfig(server_host="gpu-box", server_port=8443, server_tls=True))
    assert isinstance(channel, LlamaServerChannel)
    assert channel.base_url == "https://gpu-box:8443"
    assert channel.name == "llama-server"
