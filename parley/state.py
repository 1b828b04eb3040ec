"""CLI-side record of the active conversation per kind.

Stored as a small JSON object ({kind: conversationId | null}). The service
never reads it.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from parley.kinds import known_kinds

log = logging.getLogger("state")


class ConversationState:
    def __init__(self, path: Path):
        self.path = path
        self._ids: dict[str, str | None] = {kind: None for kind in known_kinds()}

    @classmethod
    def load(cls, path: Path) -> "ConversationState":
        state = cls(path)
        if not path.exists():
            return state
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log.warning(f"Ignoring unreadable state file {path}: {e}")
            return state
        if isinstance(data, dict):
            for kind, value in data.items():
                if isinstance(kind, str) and (value is None or isinstance(value, str)):
                    state._ids[kind] = value or None
        return state

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._ids, indent=2), encoding="utf-8")

    def get(self, kind: str) -> str | None:
        return self._ids.get(kind)

    def set(self, kind: str, conversation_id: str | None) -> None:
        self._ids[kind] = conversation_id
        self.save()

    def clear(self, kind: str) -> None:
        self.set(kind, None)

    def clear_all(self) -> None:
        for kind in list(self._ids):
            self._ids[kind] = None
        self.save()
