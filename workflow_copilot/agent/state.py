"""Conversation state for refinement sessions.

A ConversationHistory is created empty the first time a workflow (or one of
its nested flows) is refined, grows by exactly two messages per accepted
round-trip (user + assistant) and is reset only by an explicit clear.

ConversationStore keeps one history per RefinementTarget in memory. It is the
API/CLI session memory; nothing here is written to disk.

Serialized form (matches the editor's workflow file contract):
    {
      "messages": [{"id": "...", "sender": "user", "content": "...",
                    "timestamp": "2026-01-01T00:00:00+00:00"}],
      "currentIteration": 1
    }
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

logger = logging.getLogger("workflow_copilot.agent.state")

Sender = Literal["user", "assistant"]

# Messages injected into the prompt (3 user/assistant rounds).
PROMPT_HISTORY_WINDOW = 6
# Iteration count at which the UI suggests starting a fresh conversation.
LONG_SESSION_WARNING_ITERATIONS = 20


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationMessage:
    sender: Sender
    content: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        sender = data.get("sender")
        if sender not in ("user", "assistant"):
            raise ValueError(f"Invalid message sender: {sender!r}")
        raw_ts = data.get("timestamp")
        timestamp = datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else _now()
        return cls(
            sender=sender,
            content=str(data.get("content", "")),
            id=str(data.get("id") or uuid.uuid4()),
            timestamp=timestamp,
        )


@dataclass
class ConversationHistory:
    """Ordered messages plus a round-trip counter.

    Mutated only by record_round_trip() (append 2, counter +1) and clear().
    """

    messages: list[ConversationMessage] = field(default_factory=list)
    current_iteration: int = 0

    def recent(self, limit: int = PROMPT_HISTORY_WINDOW) -> list[ConversationMessage]:
        """The last `limit` messages, oldest first."""
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def record_round_trip(self, user_content: str, assistant_content: str) -> None:
        """Append the user message and the assistant reply; count one iteration."""
        self.messages.append(ConversationMessage(sender="user", content=user_content))
        self.messages.append(ConversationMessage(sender="assistant", content=assistant_content))
        self.current_iteration += 1

    def clear(self) -> None:
        self.messages = []
        self.current_iteration = 0

    @property
    def last_user_message(self) -> str | None:
        for msg in reversed(self.messages):
            if msg.sender == "user":
                return msg.content
        return None

    @property
    def needs_reset_warning(self) -> bool:
        return self.current_iteration >= LONG_SESSION_WARNING_ITERATIONS

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self.messages],
            "currentIteration": self.current_iteration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ConversationHistory:
        if not data:
            return cls()
        return cls(
            messages=[ConversationMessage.from_dict(m) for m in data.get("messages") or []],
            current_iteration=int(data.get("currentIteration", 0)),
        )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RefinementTarget:
    """What a conversation is about: a workflow, or one nested flow inside it."""

    workflow_id: str
    nested_flow_id: str | None = None

    def __str__(self) -> str:
        if self.nested_flow_id:
            return f"{self.workflow_id}/{self.nested_flow_id}"
        return self.workflow_id


class ConversationStore:
    """ConversationHistory per RefinementTarget, created lazily."""

    def __init__(self) -> None:
        self._histories: dict[RefinementTarget, ConversationHistory] = {}

    def get_or_create(self, target: RefinementTarget) -> ConversationHistory:
        history = self._histories.get(target)
        if history is None:
            history = ConversationHistory()
            self._histories[target] = history
            logger.debug("Created conversation for %s", target)
        return history

    def get(self, target: RefinementTarget) -> ConversationHistory | None:
        return self._histories.get(target)

    def clear(self, target: RefinementTarget) -> ConversationHistory:
        """Reset the target's history to empty (counter 0). Creates it if absent."""
        history = self.get_or_create(target)
        history.clear()
        logger.info("Cleared conversation for %s", target)
        return history

    def drop(self, target: RefinementTarget) -> bool:
        return self._histories.pop(target, None) is not None

    def __len__(self) -> int:
        return len(self._histories)
