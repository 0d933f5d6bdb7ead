"""Chat completions client: streaming deltas and one-shot completions."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Sequence

import httpx

from ..config import ChatClientConfig
from ..utils.redact import redact_secrets
from .conversation import Message
from .errors import (
    ChatClientError,
    MalformedResponseError,
    NetworkError,
    RequestConstructionError,
    ServerError,
)
from .events import Completed, Delta, Failed, StreamEvent, StreamState
from .sse import SSEReassembler

logger = logging.getLogger(__name__)

_END = object()


@dataclass
class CompletionResult:
    ok: bool
    content: Optional[str]
    error: Optional[ChatClientError]
    status_code: Optional[int]
    latency_ms: Optional[int]


def _error_message_from_body(status_code: int, body: bytes) -> str:
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return f"HTTP {status_code}"
    try:
        data = json.loads(text)
    except ValueError:
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return redact_secrets(error["message"])
    return redact_secrets(text[:500])


def _extract_message_content(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None


class CompletionStream:
    """One in-flight streaming request.

    The request runs in a producer task that owns the HTTP response and the
    line buffer. Events reach the consumer through a queue, so iterating the
    stream yields them one at a time, in arrival order, in the consumer's own
    task. ``cancel()`` aborts the request and ends iteration with no further
    events, including any already queued.
    """

    def __init__(self, http_client: httpx.AsyncClient, build_request):
        self.stream_id = str(uuid.uuid4())[:8]
        self._http = http_client
        self._build_request = build_request
        self._queue: asyncio.Queue = asyncio.Queue()
        self._state = StreamState.IDLE
        self._task: asyncio.Task | None = None
        self._iterated = False
        self._delivered_terminal = False
        self.status_code: int | None = None
        self._started_at: float | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def cancelled(self) -> bool:
        return self._state is StreamState.CANCELLED

    def start(self) -> "CompletionStream":
        if self._task is not None or self._state is not StreamState.IDLE:
            return self
        self._state = StreamState.REQUESTING
        self._started_at = time.monotonic()
        self._task = asyncio.create_task(self._produce())
        return self

    def cancel(self) -> None:
        if self._delivered_terminal or self._state is StreamState.CANCELLED:
            return
        self._state = StreamState.CANCELLED
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._queue.put_nowait(_END)
        logger.info("chat_stream_cancelled stream_id=%s", self.stream_id)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._iterated:
            raise RuntimeError("a completion stream can only be iterated once")
        self._iterated = True
        self.start()
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        try:
            while not self.cancelled:
                item = await self._queue.get()
                if item is _END or self.cancelled:
                    return
                if isinstance(item, (Completed, Failed)):
                    self._delivered_terminal = True
                yield item
                if self._delivered_terminal:
                    return
        finally:
            # Abandoned before the end: release the request.
            if not self._delivered_terminal:
                self.cancel()

    async def collect(self) -> CompletionResult:
        parts: list[str] = []
        error: ChatClientError | None = None
        async for event in self:
            if isinstance(event, Delta):
                parts.append(event.text)
            elif isinstance(event, Failed):
                error = event.error
        latency_ms = int((time.monotonic() - self._started_at) * 1000) if self._started_at else None
        if error is not None:
            return CompletionResult(False, None, error, self.status_code, latency_ms)
        if self.cancelled:
            return CompletionResult(False, "".join(parts), None, self.status_code, latency_ms)
        return CompletionResult(True, "".join(parts), None, self.status_code, latency_ms)

    def _emit(self, event: StreamEvent) -> None:
        if self.cancelled:
            return
        if isinstance(event, Completed):
            self._state = StreamState.COMPLETED
            logger.info("chat_stream_completed stream_id=%s", self.stream_id)
        self._queue.put_nowait(event)

    def _fail(self, error: ChatClientError) -> None:
        if self.cancelled:
            return
        self._state = StreamState.ERRORED
        logger.warning("chat_stream_failed stream_id=%s code=%s error=%s", self.stream_id, error.code, error.message)
        self._queue.put_nowait(Failed(error))

    async def _produce(self) -> None:
        response: httpx.Response | None = None
        try:
            try:
                request = self._build_request()
            except (TypeError, ValueError, httpx.InvalidURL) as e:
                self._fail(RequestConstructionError(str(e)))
                return

            response = await self._http.send(request, stream=True)
            self.status_code = response.status_code
            if not response.is_success:
                body = await response.aread()
                self._fail(ServerError(response.status_code, _error_message_from_body(response.status_code, body)))
                return

            reassembler = SSEReassembler()
            async for chunk in response.aiter_bytes():
                if not chunk:
                    continue
                if self._state is StreamState.REQUESTING:
                    self._state = StreamState.STREAMING
                for event in reassembler.feed(chunk):
                    self._emit(event)
                if reassembler.done:
                    break

            if not reassembler.done:
                for event in reassembler.flush():
                    self._emit(event)
            # A body that ends without [DONE] still completes normally.
            if not reassembler.done:
                self._emit(Completed())

        except httpx.UnsupportedProtocol as e:
            self._fail(RequestConstructionError(str(e)))
        except httpx.RequestError as e:
            self._fail(NetworkError(e))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("chat_stream_internal_error stream_id=%s", self.stream_id)
            self._fail(NetworkError(e))
        finally:
            if response is not None:
                await response.aclose()


class ChatCompletionClient:
    def __init__(self, config: ChatClientConfig, http_client: httpx.AsyncClient | None = None):
        self._config = config.validate()
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self._active: CompletionStream | None = None

    @property
    def config(self) -> ChatClientConfig:
        return self._config

    @property
    def active_stream(self) -> CompletionStream | None:
        return self._active

    async def __aenter__(self) -> "ChatCompletionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.cancel()
        if self._owns_client:
            await self._http.aclose()

    def build_payload(self, history: Sequence[Message], *, stream: bool, max_tokens: int) -> dict[str, Any]:
        if any(m.is_pending for m in history):
            raise ValueError("history must not contain pending messages")
        return {
            "model": self._config.model,
            "messages": [m.to_wire() for m in history],
            "stream": stream,
            "temperature": self._config.temperature,
            "max_tokens": max_tokens,
        }

    def _build_request(self, history: Sequence[Message], *, stream: bool, max_tokens: int) -> httpx.Request:
        payload = self.build_payload(history, stream=stream, max_tokens=max_tokens)
        body = json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
        headers = {
            "Authorization": f"Bearer {self._config.api_key}",
            "Content-Type": "application/json",
        }
        kwargs: dict[str, Any] = {}
        if self._config.timeout_seconds is not None:
            kwargs["timeout"] = self._config.timeout_seconds
        return self._http.build_request("POST", self._config.url, content=body, headers=headers, **kwargs)

    def stream_completion(self, history: Sequence[Message]) -> CompletionStream:
        """Start a streaming request for ``history``. Must be called from a running event loop."""
        previous = self._active
        if previous is not None and not previous.state.is_terminal:
            logger.warning("chat_stream_overlap previous_stream_id=%s", previous.stream_id)

        messages = list(history)
        stream = CompletionStream(
            self._http,
            lambda: self._build_request(messages, stream=True, max_tokens=self._config.max_tokens),
        )
        self._active = stream
        logger.info(
            "chat_stream_start stream_id=%s model=%s messages=%s",
            stream.stream_id,
            self._config.model,
            len(messages),
        )
        return stream.start()

    def cancel(self) -> None:
        """Cancel the most recently started stream, if it is still running."""
        if self._active is not None:
            self._active.cancel()

    async def get_completion(self, history: Sequence[Message]) -> CompletionResult:
        start = time.monotonic()

        def _failure(error: ChatClientError, status_code: int | None = None) -> CompletionResult:
            latency_ms = int((time.monotonic() - start) * 1000)
            logger.warning("chat_completion_failed code=%s error=%s", error.code, error.message)
            return CompletionResult(False, None, error, status_code, latency_ms)

        try:
            request = self._build_request(history, stream=False, max_tokens=self._config.voice_max_tokens)
        except (TypeError, ValueError, httpx.InvalidURL) as e:
            return _failure(RequestConstructionError(str(e)))

        try:
            resp = await self._http.send(request)
        except httpx.UnsupportedProtocol as e:
            return _failure(RequestConstructionError(str(e)))
        except httpx.RequestError as e:
            return _failure(NetworkError(e))

        status_code = resp.status_code
        try:
            data = resp.json()
        except ValueError:
            data = None

        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            message = data["error"].get("message")
            if isinstance(message, str) and message:
                return _failure(ServerError(status_code, redact_secrets(message)), status_code)

        if not resp.is_success:
            return _failure(ServerError(status_code, _error_message_from_body(status_code, resp.content)), status_code)

        if data is None:
            return _failure(MalformedResponseError("response body is not valid JSON"), status_code)

        content = _extract_message_content(data)
        if content is None:
            return _failure(MalformedResponseError("missing choices[0].message.content"), status_code)

        latency_ms = int((time.monotonic() - start) * 1000)
        return CompletionResult(True, content, None, status_code, latency_ms)
