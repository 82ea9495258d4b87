from __future__ import annotations

import asyncio
import json
import time

import httpx

from autotransocr.config import TranslateConfig
from autotransocr.pipeline.translate import (
    LocalTranslator,
    TranslateResult,
    clean_output,
)


def _completion(content):
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "plamo-2-translate",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
    }


def _translate(handler, text="Hello World", **cfg_kwargs) -> TranslateResult:
    async def scenario():
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler))
        translator = LocalTranslator(
            TranslateConfig(**cfg_kwargs), http_client=http_client)
        try:
            return await translator.translate_result(text)
        finally:
            await translator.close()

    return asyncio.run(scenario())


def test_successful_translation_posts_chat_completion():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion("こんにちは世界"))

    result = _translate(handler)

    assert result == TranslateResult(text="こんにちは世界")
    assert len(seen) == 1
    req = seen[0]
    assert req.method == "POST"
    assert req.url.path == "/v1/chat/completions"
    assert req.url.host == "127.0.0.1"
    body = json.loads(req.content)
    assert body["model"] == "plamo-2-translate"
    assert body["max_tokens"] == 500
    assert body["temperature"] == 0.3
    assert [m["role"] for m in body["messages"]] == ["system", "user"]
    assert body["messages"][1]["content"] == "Hello World"
    assert "translation" in body["messages"][0]["content"].lower()


def test_server_error_returns_failure_sentinel():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "boom"}})

    result = _translate(handler)

    assert result.ok is False
    assert result.category == "http_status"
    assert result.text == "[translation failed] Hello World"


def test_connection_refused_is_categorized():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno 111] Connection refused",
                                 request=request)

    result = _translate(handler)

    assert result.ok is False
    assert result.category == "connection_refused"
    assert result.text == "[translation failed] Hello World"


def test_other_connection_errors_are_not_reported_as_refused():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Name or service not known",
                                 request=request)

    result = _translate(handler)

    assert result.category == "connection"
    assert "Hello World" in result.text


def test_timeout_returns_failure_sentinel():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    result = _translate(handler, timeout_sec=0.5)

    assert result.ok is False
    assert result.category == "timeout"
    assert result.text == "[translation failed] Hello World"


def test_slow_trickling_server_hits_overall_deadline():
    # 每 0.2s 发一行响应头：单次读不会超时，但整体必须在期限内放弃
    async def scenario():
        stop = asyncio.Event()

        async def handle(reader, writer):
            await reader.readline()
            try:
                writer.write(b"HTTP/1.1 200 OK\r\n")
                for i in range(50):
                    if stop.is_set():
                        break
                    writer.write(b"X-Slow-%d: 1\r\n" % i)
                    await writer.drain()
                    await asyncio.sleep(0.2)
            except ConnectionError:
                pass
            finally:
                writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        translator = LocalTranslator(TranslateConfig(
            base_url=f"http://127.0.0.1:{port}/v1", timeout_sec=1.0))
        try:
            started = time.monotonic()
            result = await translator.translate_result("Hello World")
            elapsed = time.monotonic() - started
        finally:
            stop.set()
            await translator.close()
            server.close()
            await server.wait_closed()
        return result, elapsed

    result, elapsed = asyncio.run(scenario())

    assert elapsed < 1.5
    assert result.category == "timeout"
    assert result.text == "[translation failed] Hello World"


def test_missing_choices_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"id": "x", "object": "chat.completion", "created": 0,
                  "model": "m", "choices": []},
        )

    result = _translate(handler)

    assert result.category == "malformed"
    assert result.text == "[translation failed] Hello World"


def test_null_content_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(None))

    result = _translate(handler)

    assert result.category == "malformed"


def test_translate_returns_plain_string():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion("  「こんにちは」 \n"))

    async def scenario():
        translator = LocalTranslator(
            TranslateConfig(),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(handler)),
        )
        try:
            return await translator.translate("Hello")
        finally:
            await translator.close()

    assert asyncio.run(scenario()) == "こんにちは"


def test_exactly_one_request_per_call_even_on_failure():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, json={"error": "busy"})

    _translate(handler)

    assert len(calls) == 1


def test_clean_output_strips_fences_and_quotes():
    assert clean_output("```\nこんにちは\n```") == "こんにちは"
    assert clean_output('"hola"') == "hola"
    assert clean_output("  plain  ") == "plain"
