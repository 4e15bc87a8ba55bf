"""
Lifecycle events and the async publish/subscribe notifier.

Every event is a frozen dataclass with a fixed name. Subscribers may be
plain functions or coroutine functions; emit() awaits all of them.
"""

import asyncio
import inspect
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, List, Optional, Type, Union

from common.logging_config import get_logger
from uploader.config import TransportConfig
from uploader.file_record import FileRecord
from uploader.transfer_unit import TransferUnit

if TYPE_CHECKING:
    from uploader.transfer_unit import ChunkTask

logger = get_logger(__name__)


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "event"


@dataclass(frozen=True)
class BeforeFileQueued(Event):
    """Vetoable: a handler returning False (or raising) keeps the file out of the queue."""
    name: ClassVar[str] = "before_file_queued"
    file: FileRecord


@dataclass(frozen=True)
class FileQueued(Event):
    name: ClassVar[str] = "file_queued"
    file: FileRecord


@dataclass(frozen=True)
class UploadStart(Event):
    name: ClassVar[str] = "upload_start"
    file: FileRecord
    shard_count: int
    config: TransportConfig


@dataclass(frozen=True)
class UploadBeforeSend(Event):
    name: ClassVar[str] = "upload_before_send"
    file: FileRecord
    shard: TransferUnit
    shard_count: int
    current_shard: int
    config: TransportConfig


@dataclass(frozen=True)
class UploadProgress(Event):
    name: ClassVar[str] = "upload_progress"
    file: FileRecord
    loaded: int
    total: int
    shard_loaded: int
    shard_total: int


@dataclass(frozen=True)
class UploadAccept(Event):
    name: ClassVar[str] = "upload_accept"
    file: FileRecord
    shard: TransferUnit
    shard_count: int
    current_shard: int
    is_upload_end: bool
    response_text: str


@dataclass(frozen=True)
class UploadSuccess(Event):
    name: ClassVar[str] = "upload_success"
    file: FileRecord
    shard: TransferUnit
    shard_count: int
    current_shard: int


@dataclass(frozen=True)
class UploadError(Event):
    name: ClassVar[str] = "upload_error"
    file: FileRecord
    error: BaseException


@dataclass(frozen=True)
class UploadEndSend(Event):
    name: ClassVar[str] = "upload_end_send"
    file: FileRecord
    shard: TransferUnit
    shard_count: int
    current_shard: int


@dataclass(frozen=True)
class ChunkProgress(Event):
    """Raw progress of one send attempt, reported by a transport."""
    name: ClassVar[str] = "chunk_progress"
    task: "ChunkTask"
    loaded: int
    total: int


EVENT_TYPES: Dict[str, Type[Event]] = {
    cls.name: cls
    for cls in (
        BeforeFileQueued,
        FileQueued,
        UploadStart,
        UploadBeforeSend,
        UploadProgress,
        UploadAccept,
        UploadSuccess,
        UploadError,
        UploadEndSend,
        ChunkProgress,
    )
}

Handler = Callable[[Any], Any]
EventKey = Union[str, Type[Event]]


def _event_name(event: EventKey) -> str:
    if isinstance(event, str):
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event: {event}")
        return event
    if isinstance(event, type) and issubclass(event, Event) and event.name in EVENT_TYPES:
        return event.name
    raise ValueError(f"Unknown event: {event!r}")


class Notifier:
    """Named-event publish/subscribe with awaited delivery."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def on(self, event: EventKey, handler: Handler) -> Handler:
        """
        Subscribe a handler.

        Args:
            event: Event class or its name (e.g. UploadStart or 'upload_start')
            handler: Callable receiving the event instance; may be async

        Returns:
            The handler, so on() can be used as a decorator helper

        Raises:
            ValueError: If the event is not one of the known lifecycle events
            TypeError: If the handler is not callable
        """
        if not callable(handler):
            raise TypeError("handler must be callable")
        self._handlers[_event_name(event)].append(handler)
        return handler

    def off(self, event: EventKey, handler: Optional[Handler] = None) -> None:
        """Unsubscribe one handler, or all handlers of the event when handler is None."""
        name = _event_name(event)
        if handler is None:
            self._handlers.pop(name, None)
            return
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: EventKey) -> int:
        return len(self._handlers.get(_event_name(event), []))

    async def _invoke(self, handler: Handler, event: Event) -> Any:
        result = handler(event)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def emit(self, event: Event) -> List[Any]:
        """
        Deliver an event to every subscriber and wait for all of them.

        Handler exceptions are logged and returned in place of a result.

        Args:
            event: Event instance

        Returns:
            Handler results in subscription order
        """
        handlers = list(self._handlers.get(event.name, ()))
        if not handlers:
            return []

        results = await asyncio.gather(
            *(self._invoke(handler, event) for handler in handlers),
            return_exceptions=True
        )

        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)!r} failed on {event.name}: {result}",
                    exc_info=result
                )
        return list(results)
