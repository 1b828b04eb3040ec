"""Conversation runtime (core orchestration).

This package implements a single-conversation runtime with:
- serialized message processing (one turn at a time, FIFO)
- deferred resolution of each caller's future
- cancellation of queued messages on close

Drivers are injected via the Driver port.
"""

from parley.core.conversation_runtime.api import (
    Conversation,
    ConversationInfo,
    ConversationStatus,
)
from parley.core.conversation_runtime.runtime import ConversationRuntime

__all__ = [
    "Conversation",
    "ConversationInfo",
    "ConversationRuntime",
    "ConversationStatus",
]
