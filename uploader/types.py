"""Status enums for files and chunks, with their allowed transitions."""

from enum import Enum
from typing import Dict, FrozenSet


class FileStatus(str, Enum):
    NEW = "new"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"


class ChunkStatus(str, Enum):
    WAIT = "wait"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    INTERRUPTED = "interrupted"
    CANCELLED = "cancelled"


FILE_TRANSITIONS: Dict[FileStatus, FrozenSet[FileStatus]] = {
    FileStatus.NEW: frozenset({FileStatus.QUEUED, FileStatus.CANCELLED}),
    FileStatus.QUEUED: frozenset({
        FileStatus.IN_PROGRESS,
        FileStatus.INTERRUPTED,
        FileStatus.CANCELLED,
        FileStatus.ERROR,
    }),
    FileStatus.IN_PROGRESS: frozenset({
        FileStatus.COMPLETE,
        FileStatus.ERROR,
        FileStatus.INTERRUPTED,
        FileStatus.CANCELLED,
    }),
    FileStatus.ERROR: frozenset({FileStatus.QUEUED, FileStatus.INTERRUPTED, FileStatus.CANCELLED}),
    FileStatus.INTERRUPTED: frozenset({FileStatus.QUEUED, FileStatus.CANCELLED, FileStatus.ERROR}),
    FileStatus.CANCELLED: frozenset({FileStatus.QUEUED, FileStatus.INTERRUPTED}),
    FileStatus.COMPLETE: frozenset(),
}

CHUNK_TRANSITIONS: Dict[ChunkStatus, FrozenSet[ChunkStatus]] = {
    ChunkStatus.WAIT: frozenset({
        ChunkStatus.PENDING,
        ChunkStatus.ERROR,
        ChunkStatus.INTERRUPTED,
        ChunkStatus.CANCELLED,
    }),
    ChunkStatus.PENDING: frozenset({
        ChunkStatus.SUCCESS,
        ChunkStatus.ERROR,
        ChunkStatus.INTERRUPTED,
        ChunkStatus.CANCELLED,
    }),
    ChunkStatus.ERROR: frozenset({ChunkStatus.WAIT, ChunkStatus.INTERRUPTED, ChunkStatus.CANCELLED}),
    ChunkStatus.INTERRUPTED: frozenset({ChunkStatus.WAIT, ChunkStatus.ERROR, ChunkStatus.CANCELLED}),
    ChunkStatus.CANCELLED: frozenset({ChunkStatus.WAIT, ChunkStatus.INTERRUPTED}),
    # success is only left through bulk teardown
    ChunkStatus.SUCCESS: frozenset({ChunkStatus.INTERRUPTED, ChunkStatus.CANCELLED}),
}

# Chunk states that re_upload resets to WAIT
RETRYABLE_CHUNK_STATUSES: FrozenSet[ChunkStatus] = frozenset({
    ChunkStatus.ERROR,
    ChunkStatus.INTERRUPTED,
    ChunkStatus.CANCELLED,
})


def can_transition_file(current: FileStatus, target: FileStatus) -> bool:
    return current == target or target in FILE_TRANSITIONS[current]


def can_transition_chunk(current: ChunkStatus, target: ChunkStatus) -> bool:
    return current == target or target in CHUNK_TRANSITIONS[current]
