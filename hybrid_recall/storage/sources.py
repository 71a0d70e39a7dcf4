"""
Document sources
----------------
The engine never owns notes or chats; it reads them through the
`DocumentSource` protocol.  `StoreDocumentSource` is the default
implementation: notes, conversations and messages kept as JSON records in
the same key-value store, under `note_*`, `conversation_*` and `message_*`
keys.  Records that fail validation are logged and skipped, never fatal.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from loguru import logger
from pydantic import BaseModel, ValidationError

from hybrid_recall.schemas import (
    ChatMessage,
    Conversation,
    Note,
    TurnGroup,
    group_messages_into_turns,
)
from hybrid_recall.storage.keys import (
    CHUNK_RECORD_PREFIXES,
    CONVERSATION_PREFIX,
    MESSAGE_PREFIX,
    NOTE_PREFIX,
    record_key,
)
from hybrid_recall.storage.store import Store


@runtime_checkable
class DocumentSource(Protocol):
    async def list_notes(self) -> list[Note]: ...

    async def get_note(self, note_id: str) -> Optional[Note]: ...

    async def list_conversations(self) -> list[Conversation]: ...

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]: ...

    async def get_messages(self, conversation_id: str) -> list[ChatMessage]: ...

    async def get_message(self, message_id: str) -> Optional[ChatMessage]: ...


@runtime_checkable
class WritableDocumentSource(DocumentSource, Protocol):
    async def save_note(self, note: Note) -> None: ...

    async def delete_note(self, note_id: str) -> bool: ...


async def collect_turn_groups(source: DocumentSource) -> list[TurnGroup]:
    """All chat turn groups across every conversation."""
    groups: list[TurnGroup] = []
    for conversation in await source.list_conversations():
        messages = await source.get_messages(conversation.id)
        groups.extend(group_messages_into_turns(conversation, messages))
    return groups


class StoreDocumentSource:
    """Reads and writes source records in a key-value Store."""

    def __init__(self, store: Store) -> None:
        self.store = store

    # --- Notes ---------------------------------------------------------------

    async def list_notes(self) -> list[Note]:
        notes = await self._load_all(NOTE_PREFIX, Note)
        notes.sort(key=lambda n: n.last_updated_at, reverse=True)
        return notes

    async def get_note(self, note_id: str) -> Optional[Note]:
        return await self._load_one(record_key(NOTE_PREFIX, note_id), Note)

    async def save_note(self, note: Note) -> None:
        await self.store.set(record_key(NOTE_PREFIX, note.id), note.model_dump(mode="json"))

    async def delete_note(self, note_id: str) -> bool:
        key = record_key(NOTE_PREFIX, note_id)
        if await self.store.get(key) is None:
            return False
        await self.store.remove(key)
        return True

    # --- Chats ---------------------------------------------------------------

    async def list_conversations(self) -> list[Conversation]:
        return await self._load_all(CONVERSATION_PREFIX, Conversation)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return await self._load_one(record_key(CONVERSATION_PREFIX, conversation_id), Conversation)

    async def get_messages(self, conversation_id: str) -> list[ChatMessage]:
        messages = [
            m for m in await self._load_all(MESSAGE_PREFIX, ChatMessage)
            if m.conversation_id == conversation_id
        ]
        messages.sort(key=lambda m: m.timestamp)
        return messages

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        return await self._load_one(record_key(MESSAGE_PREFIX, message_id), ChatMessage)

    async def save_conversation(self, conversation: Conversation, messages: list[ChatMessage]) -> None:
        await self.store.set(
            record_key(CONVERSATION_PREFIX, conversation.id), conversation.model_dump(mode="json")
        )
        for message in messages:
            await self.store.set(
                record_key(MESSAGE_PREFIX, message.id), message.model_dump(mode="json")
            )

    # --- Internals -------------------------------------------------------------

    async def _load_one(self, key: str, model: type[BaseModel]):
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            logger.warning(f"[Store] Invalid {model.__name__} record {key}: {exc.error_count()} error(s)")
            return None

    async def _load_all(self, prefix: str, model: type[BaseModel]) -> list:
        records = []
        for key in await self.store.keys(prefix):
            if key.startswith(CHUNK_RECORD_PREFIXES):
                continue
            record = await self._load_one(key, model)
            if record is not None:
                records.append(record)
        return records
