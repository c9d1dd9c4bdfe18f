"""Chat Transport — one stateless request/response call per chat completion."""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, runtime_checkable

from llm_functions.core.config import ProviderConfig, get_default_config
from llm_functions.core.errors import DecodeError, RemoteStatusError, TransportError
from llm_functions.core.types import ChatReply, Message, Options
from llm_functions.tools.schema import ToolSpec
from llm_functions.transport.stream import ChatStream, LineReader
from llm_functions.utils.logger import diagnostic_level

logger = logging.getLogger("llm_functions.transport")

_MAX_ERROR_BODY = 128 * 1024  # 128KB


def build_request(
    model: str,
    messages: Sequence[Message],
    tools: Optional[Sequence[ToolSpec]] = None,
    stream: bool = False,
) -> Dict[str, Any]:
    """Build the ``/chat/completions`` request body."""
    payload: Dict[str, Any] = {
        "model": model,
        "messages": [m.to_dict() for m in messages],
    }
    if stream:
        payload["stream"] = True
    if tools:
        payload["tools"] = [t.to_openai_schema() for t in tools]
        payload["tool_choice"] = "auto"
    return payload


def _pretty(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _decode_reply(body: bytes, debug: bool) -> ChatReply:
    text = body.decode("utf-8", errors="replace").strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"decode: error decoding response: {e}") from e
    if logger.isEnabledFor(diagnostic_level(debug)):
        logger.log(diagnostic_level(debug), "Raw response: %s", _pretty(data))
    return ChatReply.from_dict(data)


# ──────────────────────────────────────────────
# Transport Protocol
# ──────────────────────────────────────────────


@runtime_checkable
class ChatTransport(Protocol):
    """Chat-completion transport interface."""

    def send(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]] = None,
        options: Optional[Options] = None,
    ) -> ChatReply:
        ...

    def stream(self, messages: Sequence[Message], options: Optional[Options] = None) -> ChatStream:
        ...


# ──────────────────────────────────────────────
# HTTPChatTransport
# ──────────────────────────────────────────────


class HTTPChatTransport:
    """ChatTransport over HTTP POST using ``urllib.request``.

    The provider (base URL, API key, default model) is fixed at construction.
    There are no retries and no timeout beyond the client default; wrap the
    call if you need either.

    Parameters:
        config: Provider settings (defaults to the process-wide config).
        opener: Callable with ``urllib.request.urlopen``'s signature; tests
            substitute a fake.
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        opener: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config or get_default_config()
        self._opener = opener or urllib.request.urlopen

    def _debug(self, options: Optional[Options]) -> bool:
        return self.config.debug or bool(options and options.debug)

    def _encode(self, payload: Dict[str, Any], debug: bool) -> bytes:
        try:
            body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise TransportError(f"transport: error marshaling request body: {e}") from e
        if logger.isEnabledFor(diagnostic_level(debug)):
            logger.log(diagnostic_level(debug), "Raw request: %s", _pretty(payload))
        return body

    def _request(self, body: bytes) -> urllib.request.Request:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
            **self.config.extra_headers,
        }
        return urllib.request.Request(
            self.config.completions_url,
            data=body,
            headers=headers,
            method="POST",
        )

    def _open(self, body: bytes) -> Any:
        """Issue the request and return the open response (status already checked)."""
        req = self._request(body)
        try:
            resp = self._opener(req)
        except urllib.error.HTTPError as e:
            body_preview = ""
            try:
                raw = e.read(_MAX_ERROR_BODY)
                body_preview = raw.decode("utf-8", errors="replace")
                if len(body_preview) > 512:
                    body_preview = body_preview[:512] + "..."
            except OSError:
                pass
            raise RemoteStatusError(e.code, body_preview) from e
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            raise TransportError(f"transport: error sending request: {e}") from e

        status = getattr(resp, "status", None) or 200
        if not 200 <= status < 300:
            try:
                preview = resp.read(512).decode("utf-8", errors="replace")
            except (http.client.HTTPException, OSError):
                preview = ""
            finally:
                resp.close()
            raise RemoteStatusError(status, preview)
        return resp

    def send(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]] = None,
        options: Optional[Options] = None,
    ) -> ChatReply:
        """Perform one blocking chat completion.

        Raises:
            TransportError: Serialization or network failure.
            RemoteStatusError: Non-2xx status.
            DecodeError: The body is not a chat reply.
        """
        debug = self._debug(options)
        payload = build_request(self.config.model, messages, tools)
        body = self._encode(payload, debug)

        resp = self._open(body)
        try:
            raw = resp.read()
        except (http.client.HTTPException, OSError) as e:
            raise TransportError(f"transport: error reading response body: {e}") from e
        finally:
            resp.close()

        return _decode_reply(raw, debug)

    async def asend(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]] = None,
        options: Optional[Options] = None,
    ) -> ChatReply:
        return await asyncio.to_thread(self.send, messages, tools, options)

    def stream(self, messages: Sequence[Message], options: Optional[Options] = None) -> ChatStream:
        """Open a streaming completion; nothing is sent until the stream is consumed."""
        payload = build_request(self.config.model, messages, stream=True)
        body = self._encode(payload, self._debug(options))
        return ChatStream(lambda: self._open(body))


# ──────────────────────────────────────────────
# InProcessChatTransport
# ──────────────────────────────────────────────


class InProcessChatTransport:
    """ChatTransport that delegates to Python callables instead of the network.

    ``handler(payload) -> dict | ChatReply`` answers :meth:`send`;
    ``stream_handler(payload) -> Iterable[str]`` supplies the lines of
    :meth:`stream`. Handlers may raise transport errors to simulate
    failures. Every request payload is recorded in :attr:`requests`.
    """

    def __init__(
        self,
        handler: Optional[Callable[[Dict[str, Any]], Any]] = None,
        stream_handler: Optional[Callable[[Dict[str, Any]], Iterable[str]]] = None,
        model: str = "in-process",
    ) -> None:
        self.handler = handler
        self.stream_handler = stream_handler
        self.model = model
        self.requests: List[Dict[str, Any]] = []

    def send(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]] = None,
        options: Optional[Options] = None,
    ) -> ChatReply:
        payload = build_request(self.model, messages, tools)
        self.requests.append(payload)
        if self.handler is None:
            raise TransportError("transport: in-process transport has no handler")
        result = self.handler(payload)
        if isinstance(result, ChatReply):
            return result
        return ChatReply.from_dict(result)

    async def asend(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]] = None,
        options: Optional[Options] = None,
    ) -> ChatReply:
        return await asyncio.to_thread(self.send, messages, tools, options)

    def stream(self, messages: Sequence[Message], options: Optional[Options] = None) -> ChatStream:
        payload = build_request(self.model, messages, stream=True)
        self.requests.append(payload)

        def open_response() -> LineReader:
            if self.stream_handler is None:
                raise TransportError("transport: in-process transport has no stream handler")
            return LineReader(self.stream_handler(payload))

        return ChatStream(open_response)


def default_transport() -> HTTPChatTransport:
    """HTTP transport bound to the process-wide default config."""
    return HTTPChatTransport(get_default_config())
