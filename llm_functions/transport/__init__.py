"""
Chat Transport — 调用远端 chat completion 接口（普通 / 流式）。

Usage::

    from llm_functions.core.config import ProviderConfig
    from llm_functions.core.types import user_message
    from llm_functions.transport import HTTPChatTransport

    transport = HTTPChatTransport(ProviderConfig.for_provider("groq", api_key="..."))
    reply = transport.send([user_message("hi")])
    print(reply.choices[0].text)
"""

from llm_functions.transport.client import (
    ChatTransport,
    HTTPChatTransport,
    InProcessChatTransport,
    build_request,
    default_transport,
)
from llm_functions.transport.stream import ChatStream, LineReader, is_stream_done, parse_stream_line

__all__ = [
    "ChatTransport",
    "HTTPChatTransport",
    "InProcessChatTransport",
    "ChatStream",
    "LineReader",
    "build_request",
    "default_transport",
    "is_stream_done",
    "parse_stream_line",
]
