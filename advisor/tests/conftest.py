import os

# Ensure config reads these during import in tests.
os.environ.setdefault("OPENAI_API_KEY", "sk-test-0123456789abcdef")
os.environ.setdefault("OPENAI_BASE_URL", "https://llm.test/v1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import asyncio
import json
from typing import Any, AsyncIterator, Callable

import httpx
import pytest
import pytest_asyncio

from advisor.src.config import ChatClientConfig
from advisor.src.engine.chat_client import ChatCompletionClient


def sse_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]}, ensure_ascii=False) + "\n\n"


def sse_body(*contents: str, done: bool = True) -> bytes:
    body = "".join(sse_line(c) for c in contents)
    if done:
        body += "data: [DONE]\n\n"
    return body.encode("utf-8")


async def chunked(*chunks: bytes, hold: asyncio.Event | None = None) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
        await asyncio.sleep(0)
    if hold is not None:
        await hold.wait()


class RecordingTransport:
    """Wraps a handler and keeps every request it was sent."""

    def __init__(self, handler: Callable[[httpx.Request], Any]):
        self.requests: list[httpx.Request] = []
        self._handler = handler

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self._handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


@pytest.fixture
def client_config() -> ChatClientConfig:
    return ChatClientConfig(
        api_key="sk-test-0123456789abcdef",
        base_url="https://llm.test/v1",
        model="test-model",
        temperature=0.7,
        max_tokens=1000,
        voice_max_tokens=500,
        timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def make_client(client_config):
    created: list[httpx.AsyncClient] = []

    def _make(handler: Callable[[httpx.Request], Any]) -> tuple[ChatCompletionClient, RecordingTransport]:
        recorder = RecordingTransport(handler)
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
        created.append(http_client)
        return ChatCompletionClient(client_config, http_client=http_client), recorder

    try:
        yield _make
    finally:
        for http_client in created:
            await http_client.aclose()
