"""Chat transcript and local incident timeline for one dashboard session."""

from datetime import UTC, datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]


def _now() -> str:
    return datetime.now(UTC).isoformat()


class ChatMessage(BaseModel):
    role: Role
    content: str
    timestamp: str = Field(default_factory=_now)


class TimelineEvent(BaseModel):
    id: str = Field(default_factory=lambda: uuid4().hex[:12])
    timestamp: str = Field(default_factory=_now)
    type: str  # detected | resolved | action
    message: str
    user: str


class ChatTranscript:
    """Append-only chat history."""

    def __init__(self) -> None:
        self.messages: list[ChatMessage] = []

    def add(self, role: Role, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        return message

    def user(self, content: str) -> ChatMessage:
        return self.add("user", content)

    def assistant(self, content: str) -> ChatMessage:
        return self.add("assistant", content)

    def __len__(self) -> int:
        return len(self.messages)


class Timeline:
    """Append-only incident timeline, deduplicated by event id."""

    def __init__(self) -> None:
        self.events: list[TimelineEvent] = []
        self._ids: set[str] = set()

    def record(self, event_type: str, message: str, user: str, event_id: str | None = None) -> TimelineEvent | None:
        """Append an event. Returns None if an event with this id was already recorded."""
        event = TimelineEvent(type=event_type, message=message, user=user)
        if event_id is not None:
            if event_id in self._ids:
                return None
            event.id = event_id
        self._ids.add(event.id)
        self.events.append(event)
        return event

    def __len__(self) -> int:
        return len(self.events)
