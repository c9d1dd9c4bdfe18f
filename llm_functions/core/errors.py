"""
错误类型 — Transport / Tool 两大类。

Transport 错误由 Conversation 在两个回退点就地恢复（返回原始文本），
Tool 错误则只丢弃该次 tool call 的结果，不会中断对话。
"""

from __future__ import annotations


class LLMFunctionsError(Exception):
    """Base class for every error raised by this package."""


# ──────────────────────────────────────────────
# Transport errors
# ──────────────────────────────────────────────


class TransportError(LLMFunctionsError):
    """Network or serialization failure before a response exists."""


class RemoteStatusError(LLMFunctionsError):
    """The remote service answered with a non-success status code."""

    def __init__(self, status_code: int, body_preview: str = "") -> None:
        self.status_code = status_code
        self.body_preview = body_preview
        super().__init__(f"transport: http {status_code}: {body_preview}")


class DecodeError(LLMFunctionsError):
    """The reply body could not be parsed into a chat reply."""


class EmptyReply(LLMFunctionsError):
    """The remote reply carried zero choices."""


# Errors the conversation recovers from by returning the original text.
RECOVERABLE_TRANSPORT_ERRORS = (TransportError, RemoteStatusError, DecodeError, EmptyReply)


# ──────────────────────────────────────────────
# Tool errors
# ──────────────────────────────────────────────


class ToolError(LLMFunctionsError):
    """Base class for tool dispatch failures."""


class ToolNotFound(ToolError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"tool not found: {name!r}")


class ArgumentParseError(ToolError):
    """Tool arguments were not a JSON object."""


class ArgumentConversionError(ToolError):
    """A required argument is missing or has the wrong type."""


class InvalidToolSignature(ToolError):
    """The tool returned something that is not a single text-like value."""


class ToolExecutionError(ToolError):
    """The tool handler itself raised."""
