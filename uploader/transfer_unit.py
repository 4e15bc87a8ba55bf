"""Transfer units (immutable chunk ranges) and the chunk tasks wrapping them."""

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from uploader.config import TransportConfig
from uploader.exceptions import InvalidTransitionError
from uploader.file_record import FileRecord
from uploader.types import ChunkStatus, can_transition_chunk

if TYPE_CHECKING:
    from uploader.transport import Transport


@dataclass(frozen=True)
class TransferUnit:
    """
    One contiguous byte range [start, end) of a file.
    """
    file_id: str
    start: int
    end: int
    current_shard: int  # 1-based
    shard_count: int

    @property
    def size(self) -> int:
        return self.end - self.start


def split_file(record: FileRecord, chunk_size: int, chunked: bool = True) -> List[TransferUnit]:
    """
    Split a file into transfer units.

    Args:
        record: File to split
        chunk_size: Chunk size in bytes
        chunked: When False the whole file becomes a single unit

    Returns:
        Units in file order; always at least one, even for empty files
    """
    if not chunked:
        return [TransferUnit(record.id, 0, record.size, 1, 1)]

    shard_count = max(1, math.ceil(record.size / chunk_size))
    return [
        TransferUnit(
            file_id=record.id,
            start=i * chunk_size,
            end=min(record.size, (i + 1) * chunk_size),
            current_shard=i + 1,
            shard_count=shard_count,
        )
        for i in range(shard_count)
    ]


class ChunkTask:
    """
    Scheduler-owned state of one transfer unit.

    The transport handle is attached only while a send attempt is in flight.
    """

    def __init__(self, file: FileRecord, unit: TransferUnit, config: TransportConfig):
        self.file = file
        self.unit = unit
        self.config = config
        self.status = ChunkStatus.WAIT
        self.loaded = 0
        self.transport: Optional["Transport"] = None
        # bumped on every move to PENDING; workers of an older admission are stale
        self.admission = 0

    @property
    def label(self) -> str:
        return f"{self.file.id}#{self.unit.current_shard}/{self.unit.shard_count}"

    def transition_to(self, target: ChunkStatus) -> None:
        """
        Move to a new status.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current status
        """
        if not can_transition_chunk(self.status, target):
            raise InvalidTransitionError("chunk", self.status, target)
        self.status = target

    def abort_transport(self) -> None:
        if self.transport is not None:
            self.transport.abort()

    def __repr__(self) -> str:
        return f"ChunkTask({self.label}, status={self.status.value}, loaded={self.loaded})"
