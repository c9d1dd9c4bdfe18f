"""
Conversation — 单轮工具解析的 LLM 对话编排。

核心流程:
    原始文本 → LLM → [tool_calls?] → 执行工具 → 追加结果 → LLM → 最终文本

与 ReAct 循环不同，工具调用只解析一轮：follow-up 回复里即使再次请求工具也不会执行。
需要多轮工具调用时由调用方自己再次调用 :meth:`Conversation.run`。

回退策略:
- 首次请求失败或没有任何 choice → 返回原始文本
- 单个工具执行失败 → 跳过该调用（不追加任何消息），继续处理下一个
- follow-up 请求失败或没有任何 choice → 返回原始文本

Usage::

    from llm_functions.conversation import Conversation

    conv = Conversation(system_message="You are a helpful assistant.", tools=[say_hi])
    result = conv.run("Say hi to John")
    print(result.final_output)       # "Hello there John"
    print(result.transport_calls)    # 2
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Iterable, List, Optional, Sequence, Union

from llm_functions.core.errors import (
    RECOVERABLE_TRANSPORT_ERRORS,
    DecodeError,
    EmptyReply,
    ToolError,
)
from llm_functions.core.types import (
    ROLE_ASSISTANT,
    ROLE_TOOL,
    ChatReply,
    Message,
    Options,
    system_message,
    user_message,
)
from llm_functions.tools.registry import ToolRegistry, default_registry
from llm_functions.tools.schema import ToolSpec
from llm_functions.transport.client import ChatTransport, default_transport

logger = logging.getLogger("llm_functions.conversation")

ToolRef = Union[ToolSpec, str]

STOPPED_COMPLETED = "completed"
STOPPED_FALLBACK = "fallback"


@dataclass
class ConversationResult:
    """Outcome of one orchestration run.

    Attributes:
        final_output: The resolved text (or the original text on fallback).
        messages: The conversation as sent, including tool turns.
        transport_calls: Number of chat requests issued (1 or 2).
        tool_calls_count: Tool calls that executed successfully.
        stopped_reason: ``"completed"`` or ``"fallback"``.
    """

    final_output: str = ""
    messages: List[Message] = field(default_factory=list)
    transport_calls: int = 0
    tool_calls_count: int = 0
    stopped_reason: str = STOPPED_COMPLETED

    @property
    def fell_back(self) -> bool:
        return self.stopped_reason == STOPPED_FALLBACK


def flatten_tools(tools: Union[ToolRef, Iterable[ToolRef], None]) -> List[ToolRef]:
    """Accept one tool, a tool name, or any nesting of sequences of them."""
    if tools is None:
        return []
    if isinstance(tools, (ToolSpec, str)):
        return [tools]
    flat: List[ToolRef] = []
    for t in tools:
        flat.extend(flatten_tools(t))
    return flat


class Conversation:
    """Drives one LLM augmentation with at most one round of tool calls.

    Parameters:
        transport: Chat transport (defaults to HTTP with the process-wide config,
            created on first use).
        registry: Registry that executes the requested tools.
        system_message: Optional system prompt.
        tools: Tools offered to the model, as specs or registered names.
        options: Diagnostics toggles.
    """

    def __init__(
        self,
        transport: Optional[ChatTransport] = None,
        registry: Optional[ToolRegistry] = None,
        system_message: str = "",
        tools: Union[ToolRef, Iterable[ToolRef], None] = (),
        options: Optional[Options] = None,
    ) -> None:
        self._transport = transport
        self.registry = registry if registry is not None else default_registry
        self.system_message = system_message
        self.tools = flatten_tools(tools)
        self.options = options or Options()

    @property
    def transport(self) -> ChatTransport:
        if self._transport is None:
            self._transport = default_transport()
        return self._transport

    def _tool_specs(self) -> List[ToolSpec]:
        specs: List[ToolSpec] = []
        for ref in self.tools:
            if isinstance(ref, ToolSpec):
                specs.append(ref)
                continue
            registration = self.registry.get(ref)
            if registration is None:
                logger.warning("Tool %r is not registered, not offering it", ref)
                continue
            specs.append(registration.spec)
        return specs

    def _initial_messages(self, text: str) -> List[Message]:
        messages: List[Message] = []
        if self.system_message:
            messages.append(system_message(self.system_message))
        messages.append(user_message(text))
        return messages

    def _send(
        self,
        messages: Sequence[Message],
        tools: Optional[Sequence[ToolSpec]],
        result: ConversationResult,
        stage: str,
    ) -> Optional[ChatReply]:
        """Send one request; ``None`` means "fall back to the original text"."""
        result.transport_calls += 1
        try:
            reply = self.transport.send(list(messages), tools or None, self.options)
            if not reply.choices:
                raise EmptyReply(f"conversation: no choices in {stage} reply")
        except RECOVERABLE_TRANSPORT_ERRORS as e:
            logger.warning("Error in %s LLM request, returning original text: %s", stage, e)
            return None
        return reply

    @staticmethod
    def _fallback(result: ConversationResult, original: str) -> ConversationResult:
        result.final_output = original
        result.stopped_reason = STOPPED_FALLBACK
        return result

    def run(self, text: str) -> ConversationResult:
        """Run the conversation over *text* (the host function's output)."""
        messages = self._initial_messages(text)
        result = ConversationResult(messages=messages)

        reply = self._send(messages, self._tool_specs(), result, "initial")
        if reply is None:
            return self._fallback(result, text)

        top = reply.choices[0]
        if not top.tool_calls:
            result.final_output = top.text
            return result

        for call in top.tool_calls:
            name = call.function.name
            try:
                output = self.registry.execute(name, call.function.arguments)
            except ToolError as e:
                # Dropped: no assistant/tool message is appended for this call
                logger.warning("Error executing tool %s: %s", name, e)
                continue

            messages.append(Message(role=ROLE_ASSISTANT, content="", tool_calls=[call]))
            messages.append(Message(role=ROLE_TOOL, content=output, tool_call_id=call.id))
            result.tool_calls_count += 1

        reply = self._send(messages, None, result, "follow-up")
        if reply is None:
            return self._fallback(result, text)

        result.final_output = reply.choices[0].text
        return result

    async def arun(self, text: str) -> ConversationResult:
        """:meth:`run` in a worker thread."""
        return await asyncio.to_thread(self.run, text)

    async def astream(self, text: str) -> AsyncIterator[str]:
        """Stream the model's reply to *text* fragment by fragment.

        Tools are not offered. If the stream fails or produces no content,
        *text* itself is yielded once.
        """
        messages = self._initial_messages(text)
        stream = self.transport.stream(messages, self.options)

        produced = False
        try:
            try:
                async for fragment in stream.deltas():
                    produced = True
                    yield fragment
            except DecodeError as e:
                logger.warning("Malformed stream chunk: %s", e)

            err = await stream.error()
            if err is not None:
                logger.warning("Error in streamed LLM request: %s", err)
            if not produced:
                yield text
        finally:
            # Also reached when the consumer stops iterating early
            await stream.aclose()
