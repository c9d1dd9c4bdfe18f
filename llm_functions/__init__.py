"""
llm-functions — 用装饰器把普通函数的输出交给 LLM 后处理，并支持工具调用。

Quick Start:
    from llm_functions import Options, create_tool, llm

    say_hi = create_tool(
        "sayHi",
        "Say hi to the user; only call this once you know their real first name.",
        lambda name: f"Hello there {name}",
    )

    @llm(system="You are a helpful assistant.", tools=[say_hi], options=Options(debug=True))
    def assistant(prompt: str) -> str:
        return prompt

    print(assistant("Say hi to the current user, John"))

Provider settings are read from the environment (``.env``) on first use;
call :func:`set_default_config` beforehand to configure them in code.
"""

__version__ = "0.1.0"

from llm_functions.core.config import (
    ProviderConfig,
    get_default_config,
    set_default_config,
)
from llm_functions.core.errors import (
    ArgumentConversionError,
    ArgumentParseError,
    DecodeError,
    EmptyReply,
    InvalidToolSignature,
    LLMFunctionsError,
    RemoteStatusError,
    ToolError,
    ToolExecutionError,
    ToolNotFound,
    TransportError,
)
from llm_functions.core.types import ChatReply, Choice, Message, Options, ToolCall
from llm_functions.tools.registry import ToolRegistry, create_tool, default_registry, tool
from llm_functions.tools.schema import ToolParam, ToolSpec
from llm_functions.transport.client import HTTPChatTransport, InProcessChatTransport
from llm_functions.transport.stream import ChatStream
from llm_functions.conversation.orchestrator import Conversation, ConversationResult
from llm_functions.decorators import LLMConfig, chain, llm, llm_stream
from llm_functions.utils.logger import setup_logging

__all__ = [
    "llm",
    "chain",
    "llm_stream",
    "LLMConfig",
    "Options",
    "Conversation",
    "ConversationResult",
    "ToolRegistry",
    "ToolSpec",
    "ToolParam",
    "create_tool",
    "default_registry",
    "tool",
    "HTTPChatTransport",
    "InProcessChatTransport",
    "ChatStream",
    "ChatReply",
    "Choice",
    "Message",
    "ToolCall",
    "ProviderConfig",
    "get_default_config",
    "set_default_config",
    "setup_logging",
    "LLMFunctionsError",
    "TransportError",
    "RemoteStatusError",
    "DecodeError",
    "EmptyReply",
    "ToolError",
    "ToolNotFound",
    "ArgumentParseError",
    "ArgumentConversionError",
    "InvalidToolSignature",
    "ToolExecutionError",
    "__version__",
]
