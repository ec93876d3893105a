"""Conversation state: active topic and a capped chat history.

States:
    NO_TOPIC  --set_topic-->  TOPIC_SET
    TOPIC_SET --set_topic-->  TOPIC_SET (history cleared)
    TOPIC_SET --reset-->      NO_TOPIC

Only one session per process. The functions mutate the state in place.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .config import log
from .errors import NoTopicError


class Phase(str, Enum):
    NO_TOPIC = "no_topic"
    TOPIC_SET = "topic_set"


@dataclass
class HistoryEntry:
    role: str  # "user" | "assistant"
    content: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class ConversationState:
    phase: Phase = Phase.NO_TOPIC
    topic_id: Optional[str] = None
    topic_name: Optional[str] = None
    history: list = field(default_factory=list)
    max_history: int = 20

    def __post_init__(self):
        if self.max_history < 1:
            raise ValueError(f"max_history must be at least 1 (got {self.max_history})")


def set_topic(state: ConversationState, backend, topic_id: str, topic_name: str = None) -> None:
    """Make ``topic_id`` active. History always starts empty.

    Raises:
        NoTopicError: the topic has no collection in the backend.
    """
    if not backend.collection_exists(topic_id):
        raise NoTopicError(f'Topic "{topic_id}" not found in knowledge base')
    state.phase = Phase.TOPIC_SET
    state.topic_id = topic_id
    state.topic_name = topic_name or topic_id
    state.history = []
    log.info("current topic set to: %s", topic_id)


def require_topic(state: ConversationState) -> str:
    if state.phase != Phase.TOPIC_SET or not state.topic_id:
        raise NoTopicError("No topic set. Research or select a topic first.")
    return state.topic_id


def add_to_history(state: ConversationState, role: str, content: str) -> None:
    if role not in ("user", "assistant"):
        raise ValueError(f"unknown history role: {role}")
    state.history.append(HistoryEntry(role=role, content=content))
    overflow = len(state.history) - max(1, state.max_history)
    if overflow > 0:
        del state.history[:overflow]


def record_turn(state: ConversationState, question: str, answer: str) -> None:
    add_to_history(state, "user", question)
    add_to_history(state, "assistant", answer)


def recent_context(state: ConversationState, n: int = 4) -> str:
    """Last ``n`` history entries as ``role: content`` lines ('' when empty)."""
    if not state.history or n <= 0:
        return ""
    return "\n".join(f"{e.role}: {e.content}" for e in state.history[-n:])


def clear_history(state: ConversationState) -> None:
    state.history = []


def reset(state: ConversationState) -> None:
    state.phase = Phase.NO_TOPIC
    state.topic_id = None
    state.topic_name = None
    state.history = []


def topic_info(state: ConversationState) -> dict:
    return {
        "phase": state.phase.value,
        "topic_id": state.topic_id,
        "topic_name": state.topic_name,
        "history_length": len(state.history),
    }
