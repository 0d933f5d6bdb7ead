"""Message and Conversation records.

Both are treated as values: the helpers on ``Conversation`` return updated
copies and never mutate the instance they are called on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field, model_validator

Role = Literal["user", "assistant"]

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 30
TITLE_ELLIPSIS = "..."


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_title(text: str) -> str:
    if len(text) <= TITLE_MAX_CHARS:
        return text
    return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS


class Message(BaseModel):
    id: str = Field(default_factory=_new_id, frozen=True)
    content: str = ""
    role: Role
    created_at: datetime = Field(default_factory=_utcnow, frozen=True)
    is_pending: bool = False

    @model_validator(mode="after")
    def _pending_is_empty(self) -> "Message":
        if self.is_pending and self.content:
            raise ValueError("a pending message cannot have content")
        return self

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role="assistant", content=content)

    @classmethod
    def placeholder(cls) -> "Message":
        return cls(role="assistant", content="", is_pending=True)

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class Conversation(BaseModel):
    id: str = Field(default_factory=_new_id, frozen=True)
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow, frozen=True)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _single_placeholder(self) -> "Conversation":
        if sum(1 for m in self.messages if m.is_pending) > 1:
            raise ValueError("a conversation holds at most one pending message")
        return self

    @property
    def pending_message(self) -> Message | None:
        return next((m for m in self.messages if m.is_pending), None)

    def history(self) -> list[Message]:
        """Messages to send to the model: everything except the placeholder."""
        return [m for m in self.messages if not m.is_pending]

    def _with_messages(self, messages: list[Message], **changes) -> "Conversation":
        return self.model_copy(
            update={"messages": messages, "updated_at": _utcnow(), **changes},
            deep=True,
        )

    def with_message(self, message: Message) -> "Conversation":
        if message.is_pending and self.pending_message is not None:
            raise ValueError("conversation already has a pending message")
        return self._with_messages([*self.messages, message])

    def with_title(self, title: str) -> "Conversation":
        return self.model_copy(update={"title": title, "updated_at": _utcnow()}, deep=True)

    def without_pending(self) -> "Conversation":
        if self.pending_message is None:
            return self.model_copy(deep=True)
        return self._with_messages(self.history())

    def replace_pending(self, message: Message) -> "Conversation":
        return self._with_messages([*self.history(), message])

    def append_to_last_assistant(self, text: str) -> "Conversation":
        messages = [m.model_copy() for m in self.messages]
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if message.role == "assistant" and not message.is_pending:
                messages[index] = message.model_copy(update={"content": message.content + text})
                return self._with_messages(messages)
        raise ValueError("conversation has no assistant message to append to")

    def for_storage(self) -> "Conversation":
        """Copy suitable for persisting: placeholders are never written."""
        return self.model_copy(update={"messages": self.history()}, deep=True)

    def matches(self, query: str) -> bool:
        """Case-insensitive match on the title or any message's content. Blank queries match all."""
        needle = query.strip().casefold()
        if not needle:
            return True
        if needle in self.title.casefold():
            return True
        return any(needle in m.content.casefold() for m in self.messages)


def upsert_conversation(conversations: list[Conversation], conversation: Conversation) -> list[Conversation]:
    """Replace the entry with the same id, or put ``conversation`` first when it is new."""
    merged = list(conversations)
    for index, existing in enumerate(merged):
        if existing.id == conversation.id:
            merged[index] = conversation
            return merged
    merged.insert(0, conversation)
    return merged
