"""Progress events emitted by the embedding lifecycle manager."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from loguru import logger


class EventType(str, Enum):
    EMBEDDING_START = "EMBEDDING_START"
    EMBEDDING_PROGRESS = "EMBEDDING_PROGRESS"
    EMBEDDING_END = "EMBEDDING_END"
    EMBEDDING_ERROR = "EMBEDDING_ERROR"
    SHOW_ERROR_TOAST = "SHOW_ERROR_TOAST"
    SHOW_SUCCESS_TOAST = "SHOW_SUCCESS_TOAST"


@dataclass(frozen=True)
class EmbeddingEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class EventSink(Protocol):
    """Receives events synchronously; implementations must not block."""

    def emit(self, event: EmbeddingEvent) -> None: ...


class LoggingEventSink:
    def emit(self, event: EmbeddingEvent) -> None:
        if event.type in (EventType.EMBEDDING_ERROR, EventType.SHOW_ERROR_TOAST):
            logger.warning(f"[Events] {event.type.value} {event.data}")
        elif event.type == EventType.EMBEDDING_PROGRESS:
            logger.debug(f"[Events] {event.type.value} {event.data}")
        else:
            logger.info(f"[Events] {event.type.value} {event.data}")


class CollectingEventSink:
    """Keeps every event in order."""

    def __init__(self) -> None:
        self.events: list[EmbeddingEvent] = []

    def emit(self, event: EmbeddingEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[EventType]:
        return [e.type for e in self.events]

    def of_type(self, event_type: EventType) -> list[EmbeddingEvent]:
        return [e for e in self.events if e.type == event_type]


class CallbackEventSink:
    """Forwards events to a callable; a failing callback is logged, not raised."""

    def __init__(self, callback: Callable[[EmbeddingEvent], None]) -> None:
        self.callback = callback

    def emit(self, event: EmbeddingEvent) -> None:
        try:
            self.callback(event)
        except Exception:
            logger.exception(f"[Events] Listener failed on {event.type.value}")
