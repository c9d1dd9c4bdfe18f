"""
流式响应 — 数据通道 + 错误通道。

后台 asyncio task 逐行读取响应体（每次阻塞读取通过 ``asyncio.to_thread``），
每一行推入数据通道；出错时错误推入错误通道一次。
响应体读完或出错后两个通道都只关闭一次，消费者应把两个通道都读完。
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import threading
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional

from llm_functions.core.errors import DecodeError, LLMFunctionsError, TransportError
from llm_functions.core.types import ChatReply

logger = logging.getLogger("llm_functions.transport")

STREAM_DONE = "[DONE]"

# Conduit close marker
_CLOSED = object()


def _data_payload(line: str) -> Optional[str]:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    return line[len("data:"):].strip()


def is_stream_done(line: str) -> bool:
    return _data_payload(line) == STREAM_DONE


def parse_stream_line(line: str) -> Optional[ChatReply]:
    """Decode one server-sent-events line into a partial reply.

    Blank lines, comments (``: keep-alive``), non-data fields and the
    ``data: [DONE]`` terminator yield ``None``.

    Raises:
        DecodeError: If the ``data:`` payload is not a JSON reply object.
    """
    payload = _data_payload(line)
    if not payload or payload == STREAM_DONE:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"decode: malformed stream chunk: {e}") from e
    return ChatReply.from_dict(data)


class ChatStream:
    """A lazy, finite, non-restartable sequence of response lines.

    The reader task starts on first use of :meth:`chunks`, :meth:`errors`
    or :meth:`wait`; those must be awaited inside a running event loop.

    Usage::

        stream = transport.stream(messages)
        async for line in stream.chunks():
            ...
        async for err in stream.errors():
            raise err
    """

    def __init__(self, open_response: Callable[[], Any]) -> None:
        self._open_response = open_response
        self._data: Optional[asyncio.Queue] = None
        self._errors: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._data_closed = False
        self._errors_closed = False

    def _ensure_started(self) -> None:
        if self._task is not None:
            return
        self._data = asyncio.Queue()
        self._errors = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._pump())

    async def _pump(self) -> None:
        assert self._data is not None and self._errors is not None
        resp = None
        try:
            resp = await asyncio.to_thread(self._open_response)
            while True:
                raw = await asyncio.to_thread(resp.readline)
                if not raw:
                    break
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                await self._data.put(raw.rstrip("\r\n"))
        except LLMFunctionsError as e:
            await self._errors.put(e)
        except (http.client.HTTPException, OSError, ValueError) as e:
            await self._errors.put(TransportError(f"transport: error reading streamed response: {e}"))
        except Exception as e:
            logger.exception("Stream reader failed")
            await self._errors.put(TransportError(f"transport: stream reader failed: {e!r}"))
        finally:
            if resp is not None and hasattr(resp, "close"):
                resp.close()
            await self._data.put(_CLOSED)
            await self._errors.put(_CLOSED)

    async def chunks(self) -> AsyncIterator[str]:
        """Yield each line of the response body as it arrives."""
        self._ensure_started()
        assert self._data is not None
        while not self._data_closed:
            item = await self._data.get()
            if item is _CLOSED:
                self._data_closed = True
                return
            yield item

    def __aiter__(self) -> AsyncIterator[str]:
        return self.chunks()

    async def errors(self) -> AsyncIterator[LLMFunctionsError]:
        """Yield the stream's terminal error, if any, then close."""
        self._ensure_started()
        assert self._errors is not None
        while not self._errors_closed:
            item = await self._errors.get()
            if item is _CLOSED:
                self._errors_closed = True
                return
            yield item

    async def error(self) -> Optional[LLMFunctionsError]:
        """Drain the error conduit and return its error, or ``None``."""
        found: Optional[LLMFunctionsError] = None
        async for err in self.errors():
            found = err
        return found

    async def wait(self) -> None:
        """Wait for the reader task to finish."""
        self._ensure_started()
        assert self._task is not None
        await self._task

    async def aclose(self) -> None:
        """Stop the reader task if it is still running and wait for it to exit.

        Safe to call on a stream that was never started or already finished.
        """
        task = self._task
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def deltas(self) -> AsyncIterator[str]:
        """Yield the content fragments of server-sent-events chunks.

        Lines after ``data: [DONE]`` are drained but ignored.
        """
        done = False
        async for line in self.chunks():
            if done:
                continue
            if is_stream_done(line):
                done = True
                continue
            reply = parse_stream_line(line)
            if reply is None:
                continue
            for choice in reply.choices:
                if choice.delta is not None and choice.delta.content:
                    yield choice.delta.content
                elif choice.message is not None and choice.message.content:
                    yield choice.message.content

    async def collect(self) -> List[str]:
        """Read every line; raise the stream error if there was one."""
        lines = [line async for line in self.chunks()]
        err = await self.error()
        if err is not None:
            raise err
        return lines


class LineReader:
    """File-like ``readline()`` over an iterable of text lines."""

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines = iter(lines)
        # readline runs in a worker thread; close may come from the loop thread
        self._lock = threading.Lock()

    def readline(self) -> bytes:
        with self._lock:
            for line in self._lines:
                return (line + "\n").encode("utf-8")
        return b""

    def close(self) -> None:
        with self._lock:
            close = getattr(self._lines, "close", None)
            if close is not None:
                close()
