"""Conversation orchestration with single-round tool resolution."""

from llm_functions.conversation.orchestrator import Conversation, ConversationResult, flatten_tools

__all__ = [
    "Conversation",
    "ConversationResult",
    "flatten_tools",
]
