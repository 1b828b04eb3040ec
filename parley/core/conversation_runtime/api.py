"""Public API for the conversation runtime.

This module is the stable boundary between:
- the HTTP gateway and the manager
- the concrete runtime implementation (runtime.py)

Code outside the runtime should depend on these types, not on
ConversationRuntime internals.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from parley.drivers.ports import SessionHandle

if TYPE_CHECKING:
    from parley.core.conversation_runtime.runtime import ConversationRuntime


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Conversation:
    id: str
    kind: str
    session: SessionHandle
    config_version: int
    runtime: "ConversationRuntime"
    status: ConversationStatus = ConversationStatus.OPEN


@dataclass(frozen=True)
class ConversationInfo:
    id: str
    kind: str
    status: str
    pending: int
    processing: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "conversationId": self.id,
            "kind": self.kind,
            "status": self.status,
            "pending": self.pending,
            "processing": self.processing,
        }
