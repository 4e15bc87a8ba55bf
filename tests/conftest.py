"""Shared pytest fixtures for all tests."""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional

import pytest

from uploader.config import UploaderConfig
from uploader.events import EVENT_TYPES, ChunkProgress, Notifier
from uploader.exceptions import TransportAbortedError, TransportError
from uploader.file_record import FileRecord, next_file_id
from uploader.scheduler import ChunkQueueScheduler
from uploader.sources import MemorySource
from uploader.transfer_unit import ChunkTask
from uploader.types import FileStatus


class ScriptedTransport:
    """Fake transport whose outcome is driven by its ScriptedTransportFactory."""

    def __init__(self, factory: "ScriptedTransportFactory", task: ChunkTask, notifier: Notifier):
        self.factory = factory
        self.task = task
        self.notifier = notifier
        self._abort = asyncio.Event()

    def abort(self) -> None:
        self._abort.set()

    async def _report(self, loaded: int) -> None:
        await self.notifier.emit(ChunkProgress(task=self.task, loaded=loaded, total=self.task.unit.size))

    async def send(self) -> str:
        factory = self.factory
        label = self.task.label
        factory.attempts.append(label)
        factory.headers_seen[label] = dict(self.task.config.headers)
        factory.in_flight += 1
        factory.max_in_flight = max(factory.max_in_flight, factory.in_flight)
        try:
            await self._report(self.task.unit.size * factory.progress_factor // 2)

            if factory.failures[label] > 0:
                factory.failures[label] -= 1
                await asyncio.sleep(0)
                raise TransportError(f"scripted failure for {label}", status_code=500)

            if factory.gate is not None:
                waiters = [
                    asyncio.ensure_future(factory.gate.wait()),
                    asyncio.ensure_future(self._abort.wait()),
                ]
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                for waiter in waiters:
                    waiter.cancel()
            else:
                await asyncio.sleep(0)

            if self._abort.is_set():
                raise TransportAbortedError(f"{label} aborted")

            await self._report(self.task.unit.size * factory.progress_factor)
            return f"ok:{label}"
        finally:
            factory.in_flight -= 1


class ScriptedTransportFactory:
    """
    Transport factory for scheduler tests.

    Attributes:
        failures: Label -> number of attempts that fail before sends succeed
        gate: When set to an asyncio.Event, successful sends block until it is set or aborted
        progress_factor: Multiplier applied to reported progress (over-reporting)
    """

    def __init__(self):
        self.failures: Counter = Counter()
        self.gate: Optional[asyncio.Event] = None
        self.progress_factor = 1
        self.attempts: List[str] = []
        self.headers_seen: Dict[str, Dict[str, str]] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    def __call__(self, task: ChunkTask, notifier: Notifier) -> ScriptedTransport:
        return ScriptedTransport(self, task, notifier)

    def fail(self, label: str, times: int = 1000) -> None:
        self.failures[label] = times


class EventRecorder:
    """Collects every lifecycle event emitted on a notifier."""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def attach(self, notifier: Notifier) -> "EventRecorder":
        for name in EVENT_TYPES:
            if name != ChunkProgress.name:
                notifier.on(name, self)
        return self

    def names(self) -> List[str]:
        return [event.name for event in self.events]

    def of(self, event_type) -> list:
        return [event for event in self.events if isinstance(event, event_type)]


class RecordingHandler(logging.Handler):
    """Logging handler keeping formatted records in memory."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.format(record)
        self.records.append(record)

    def messages(self, level: int = logging.DEBUG) -> List[str]:
        return [record.getMessage() for record in self.records if record.levelno >= level]


@pytest.fixture
def transport_factory():
    """Scripted fake transport factory."""
    return ScriptedTransportFactory()


@pytest.fixture
def recorder():
    """Event recorder, attach it with recorder.attach(notifier)."""
    return EventRecorder()


@pytest.fixture
def log_handler():
    """
    In-memory log handler.

    Removed from the 'uploader' logger after the test so handlers do not pile up.
    """
    handler = RecordingHandler()
    yield handler
    logging.getLogger('uploader').removeHandler(handler)


@pytest.fixture
def make_config():
    """Build an UploaderConfig with small chunk sizes suitable for tests."""
    def _make(**overrides) -> UploaderConfig:
        values = {
            'server': 'http://test/upload',
            'chunk_size': 20,
            'concurrency': 3,
            'chunk_retry': 2,
        }
        values.update(overrides)
        return UploaderConfig(**values)
    return _make


@pytest.fixture
def make_scheduler(make_config, transport_factory, recorder):
    """
    Build a scheduler wired to the scripted transport and the event recorder.

    Returns:
        Function returning (scheduler, notifier)
    """
    def _make(**overrides):
        notifier = Notifier()
        recorder.attach(notifier)
        scheduler = ChunkQueueScheduler(make_config(**overrides), notifier, transport_factory)
        return scheduler, notifier
    return _make


@pytest.fixture
def make_file(make_config):
    """
    Build a queued in-memory FileRecord.

    Returns:
        Function taking (size, name) and returning the FileRecord
    """
    config = make_config()

    def _make(size: int = 45, name: str = 'sample.bin', status: FileStatus = FileStatus.QUEUED) -> FileRecord:
        record = FileRecord(
            next_file_id(config.set_name, config.file_id_prefix),
            MemorySource(b'x' * size, name=name)
        )
        if status is not FileStatus.NEW:
            record.transition_to(status)
        return record
    return _make


@pytest.fixture
def sample_file(tmp_path):
    """
    Create a sample file on disk.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to a 45 byte text file
    """
    file_path = tmp_path / 'test.txt'
    file_path.write_bytes(b'0123456789' * 4 + b'abcde')
    return file_path

