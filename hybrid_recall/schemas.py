"""
Core Pydantic schemas for the source documents the engine indexes.

Notes are indexed one document per note.  Chats are indexed per *turn group*:
a user message opens a group, the assistant reply closes it, and the group is
identified by the id of its last message.  All timestamps are epoch
milliseconds, matching what the host application stores.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# --- Enumerations ------------------------------------------------------------

class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# --- Notes -------------------------------------------------------------------

class Note(BaseModel):
    """A user note - the primary Document type."""

    id: str
    title: str = ""
    content: str = ""
    created_at: int = 0
    last_updated_at: int = 0
    content_last_updated_at: Optional[int] = None   # ignores metadata-only edits
    tags: list[str] = Field(default_factory=list)
    url: Optional[str] = None
    description: Optional[str] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tag_string(cls, value):
        # Older notes stored tags as one comma-separated string
        if value is None:
            return []
        if isinstance(value, str):
            return [t.strip() for t in value.split(",") if t.strip()]
        return value

    @property
    def freshness(self) -> int:
        """Stamp compared against chunk records to detect stale embeddings."""
        return self.content_last_updated_at or self.last_updated_at


# --- Chats -------------------------------------------------------------------

class Conversation(BaseModel):
    id: str
    title: str = ""
    created_at: int = 0
    last_updated_at: int = 0
    url: Optional[str] = None


class ChatMessage(BaseModel):
    id: str
    conversation_id: str
    role: MessageRole
    content: str = ""
    timestamp: int = 0
    last_updated_at: Optional[int] = None


@dataclass
class TurnGroup:
    """A run of chat messages embedded together as one Document."""

    conversation: Conversation
    messages: list[ChatMessage]
    index: int = 0                      # position of the group within its conversation

    @property
    def anchor(self) -> ChatMessage:
        return self.messages[-1]

    @property
    def parent_id(self) -> str:
        return self.anchor.id

    @property
    def content(self) -> str:
        return "\n\n".join(m.content.strip() for m in self.messages if m.content.strip())

    @property
    def title(self) -> str:
        return self.conversation.title


def group_messages_into_turns(
    conversation: Conversation, messages: list[ChatMessage]
) -> list[TurnGroup]:
    """
    Group messages (in timestamp order) into user/assistant turn groups.

    A user message starts a new group, an assistant message closes the
    current one; tool messages ride along with whatever group is open.
    A trailing group without an assistant reply is kept.
    """
    groups: list[list[ChatMessage]] = []
    current: list[ChatMessage] = []

    for message in sorted(messages, key=lambda m: m.timestamp):
        if message.role == MessageRole.USER and current:
            groups.append(current)
            current = []
        current.append(message)
        if message.role == MessageRole.ASSISTANT:
            groups.append(current)
            current = []

    if current:
        groups.append(current)

    return [
        TurnGroup(conversation=conversation, messages=group, index=i)
        for i, group in enumerate(groups)
    ]
