"""
装饰器层 — 把「文本 → 文本」函数的输出交给 LLM 后处理。

- :func:`llm`: 先计算 ``f(input)``，再跑一次可调用工具的 Conversation；
  任一回退点失败都原样返回 ``f(input)``。
- :func:`chain`: 先计算 ``f(input)``，再作为单条 user 消息发送一次（无工具、无 system）；
  失败时记录 ERROR 日志并返回 ``f(input)``。
- :func:`llm_stream`: 流式版本，调用后得到逐段产出文本的异步迭代器。

同步函数得到同步包装，``async def`` 函数得到异步包装。
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, List, Optional, Union

from llm_functions.conversation.orchestrator import Conversation, ToolRef, flatten_tools
from llm_functions.core.errors import RECOVERABLE_TRANSPORT_ERRORS, EmptyReply
from llm_functions.core.types import Options, user_message
from llm_functions.tools.registry import ToolRegistry
from llm_functions.transport.client import ChatTransport, default_transport

logger = logging.getLogger("llm_functions")


@dataclass
class LLMConfig:
    """Explicit configuration for :func:`llm`.

    Attributes:
        system: System message ("" for none).
        tools: Tools offered to the model, as specs or registered names.
        options: Diagnostics toggles.
    """

    system: str = ""
    tools: List[ToolRef] = field(default_factory=list)
    options: Options = field(default_factory=Options)


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def llm(
    fn: Optional[Callable] = None,
    *,
    system: str = "",
    tools: Union[ToolRef, Iterable[ToolRef], None] = (),
    options: Optional[Options] = None,
    config: Optional[LLMConfig] = None,
    transport: Optional[ChatTransport] = None,
    registry: Optional[ToolRegistry] = None,
) -> Callable:
    """Augment a function's output with a tool-capable LLM call.

    Can be used with or without arguments::

        @llm
        def shout(prompt: str) -> str:
            return prompt

        @llm(system="You can look up the weather.", tools=[get_weather], options=Options(debug=True))
        def assistant(prompt: str) -> str:
            return prompt

    The wrapper exposes the underlying :class:`Conversation` as ``.conversation``.
    """
    if config is None:
        config = LLMConfig(system=system, tools=flatten_tools(tools), options=options or Options())

    def decorator(func: Callable) -> Callable:
        conversation = Conversation(
            transport=transport,
            registry=registry,
            system_message=config.system,
            tools=config.tools,
            options=config.options,
        )

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> str:
                original = _as_text(await func(*args, **kwargs))
                result = await conversation.arun(original)
                return result.final_output

            async_wrapper.conversation = conversation  # type: ignore[attr-defined]
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> str:
            original = _as_text(func(*args, **kwargs))
            return conversation.run(original).final_output

        wrapper.conversation = conversation  # type: ignore[attr-defined]
        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator


def chain(
    fn: Optional[Callable] = None,
    *,
    options: Optional[Options] = None,
    transport: Optional[ChatTransport] = None,
) -> Callable:
    """Pass a function's output through one single-turn LLM call.

    No system message and no tools are sent. Transport failures are logged
    at ERROR and the function's own output is returned.
    """
    opts = options or Options()

    def complete(original: str) -> str:
        target = transport if transport is not None else default_transport()
        try:
            reply = target.send([user_message(original)], None, opts)
            if not reply.choices:
                raise EmptyReply("chain: no choices in reply")
        except RECOVERABLE_TRANSPORT_ERRORS as e:
            logger.error("Chain LLM request failed, passing input through: %s", e)
            return original
        return reply.choices[0].text

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> str:
                original = _as_text(await func(*args, **kwargs))
                return await asyncio.to_thread(complete, original)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> str:
            return complete(_as_text(func(*args, **kwargs)))

        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator


def llm_stream(
    fn: Optional[Callable] = None,
    *,
    system: str = "",
    options: Optional[Options] = None,
    transport: Optional[ChatTransport] = None,
) -> Callable:
    """Stream the LLM's reply to a function's output.

    Calling the wrapped function returns an async iterator of text
    fragments::

        @llm_stream(system="Be brief.")
        def ask(prompt: str) -> str:
            return prompt

        async for fragment in ask("Why is the sky blue?"):
            print(fragment, end="")
    """

    def decorator(func: Callable) -> Callable:
        conversation = Conversation(transport=transport, system_message=system, options=options)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> AsyncIterator[str]:
            original = func(*args, **kwargs)
            if inspect.isawaitable(original):
                original = await original
            async for fragment in conversation.astream(_as_text(original)):
                yield fragment

        wrapper.conversation = conversation  # type: ignore[attr-defined]
        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator
