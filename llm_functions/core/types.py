"""
Chat completion 数据类型 — 与 OpenAI 兼容的请求 / 响应结构。

每个类型都提供 ``to_dict()`` / ``from_dict()``，在 dataclass 与 JSON 之间转换。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from llm_functions.core.errors import DecodeError

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"


@dataclass
class Options:
    """Toggle-style options shared by transports and decorators.

    Attributes:
        debug: Log raw requests, responses and recovered errors at INFO.
        top: Reserved for ranking/selection of candidate choices. Unused.
    """

    debug: bool = False
    top: int = 0


def _text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"decode: {key!r} must be a string, got {type(value).__name__}")
    return value


# ──────────────────────────────────────────────
# Tool calls
# ──────────────────────────────────────────────


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = "{}"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FunctionCall:
        args = data.get("arguments")
        if args is None:
            args = "{}"
        elif not isinstance(args, str):
            # Some providers send the arguments already decoded.
            args = json.dumps(args, ensure_ascii=False)
        return cls(name=data.get("name") or "", arguments=args)


@dataclass
class ToolCall:
    """A model-issued request to invoke one tool."""

    id: str = ""
    function: FunctionCall = field(default_factory=FunctionCall)
    type: str = "function"
    index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": self.function.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ToolCall:
        return cls(
            id=data.get("id") or "",
            type=data.get("type") or "function",
            function=FunctionCall.from_dict(data.get("function") or {}),
            index=data.get("index") or 0,
        )


# ──────────────────────────────────────────────
# Messages
# ──────────────────────────────────────────────


@dataclass
class Message:
    """One conversation turn.

    ``tool_calls`` only appears on assistant messages and ``tool_call_id``
    only on tool-result messages.
    """

    role: str
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    tool_call_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Message:
        return cls(
            role=data.get("role") or ROLE_ASSISTANT,
            content=_text(data, "content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id") or "",
        )


def system_message(content: str) -> Message:
    return Message(role=ROLE_SYSTEM, content=content)


def user_message(content: str) -> Message:
    return Message(role=ROLE_USER, content=content)


# ──────────────────────────────────────────────
# Replies
# ──────────────────────────────────────────────


@dataclass
class Delta:
    """Incremental fragment of a streamed choice."""

    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Delta:
        return cls(
            content=_text(data, "content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
        )


@dataclass
class Choice:
    index: int = 0
    message: Optional[Message] = None
    delta: Optional[Delta] = None
    finish_reason: str = ""
    content: str = ""

    @property
    def tool_calls(self) -> List[ToolCall]:
        if self.message is None:
            return []
        return self.message.tool_calls

    @property
    def text(self) -> str:
        """Content of the message, falling back to the bare ``content`` field."""
        if self.message is not None and self.message.content:
            return self.message.content
        return self.content

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Choice:
        message = data.get("message")
        delta = data.get("delta")
        return cls(
            index=data.get("index") or 0,
            message=Message.from_dict(message) if isinstance(message, dict) else None,
            delta=Delta.from_dict(delta) if isinstance(delta, dict) else None,
            finish_reason=data.get("finish_reason") or "",
            content=_text(data, "content"),
        )


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Usage:
        return cls(
            prompt_tokens=data.get("prompt_tokens") or 0,
            completion_tokens=data.get("completion_tokens") or 0,
            total_tokens=data.get("total_tokens") or 0,
        )


@dataclass
class ChatReply:
    """A chat completion reply with its candidate choices."""

    id: str = ""
    model: str = ""
    choices: List[Choice] = field(default_factory=list)
    usage: Optional[Usage] = None

    @property
    def first(self) -> Optional[Choice]:
        return self.choices[0] if self.choices else None

    @classmethod
    def from_dict(cls, data: Any) -> ChatReply:
        """Build a reply from decoded JSON.

        Raises:
            DecodeError: If *data* is not a reply object.
        """
        if not isinstance(data, dict):
            raise DecodeError(f"decode: expected a JSON object, got {type(data).__name__}")
        choices = data.get("choices") or []
        if not isinstance(choices, list):
            raise DecodeError("decode: 'choices' is not a list")
        try:
            parsed = [Choice.from_dict(c) for c in choices]
        except (AttributeError, TypeError) as e:
            raise DecodeError(f"decode: malformed choice: {e}") from e

        usage = data.get("usage")
        # Groq nests usage under x_groq
        if usage is None and isinstance(data.get("x_groq"), dict):
            usage = data["x_groq"].get("usage")

        return cls(
            id=data.get("id") or "",
            model=data.get("model") or "",
            choices=parsed,
            usage=Usage.from_dict(usage) if isinstance(usage, dict) else None,
        )
