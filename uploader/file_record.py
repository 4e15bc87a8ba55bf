"""File record: one logical file moving through the upload pipeline."""

import itertools
from pathlib import PurePath
from typing import Any, Callable, Dict, Optional

from uploader.exceptions import InvalidTransitionError
from uploader.sources import ByteSource
from uploader.types import FileStatus, can_transition_file

_sequence = itertools.count(1)


def next_file_id(set_name: Callable[[int], str], prefix: str) -> str:
    """
    Generate a unique file id from the caller's naming function.

    Args:
        set_name: Function turning a sequence number into a name component
        prefix: Id prefix (e.g. 'WU_FILE_')

    Returns:
        File id string, distinct for every call in this process
    """
    return f"{prefix}{set_name(next(_sequence))}"


class FileRecord:
    """
    Identity, size, byte source and aggregate status of a submitted file.

    Status changes go through transition_to(), which enforces the
    file transition table.
    """

    def __init__(
        self,
        file_id: str,
        source: ByteSource,
        group_info: Optional[Dict[str, Any]] = None
    ):
        self.id = file_id
        self.source = source
        self.name = source.name
        self.size = source.size
        self.mime_type = source.mime_type
        self.ext = PurePath(self.name).suffix.lstrip(".").lower()
        self.group_info: Dict[str, Any] = dict(group_info or {})
        self.status = FileStatus.NEW
        self.upload_started = False
        self._loaded = 0

    @property
    def loaded(self) -> int:
        """Cumulative bytes transferred across all chunks."""
        return self._loaded

    @loaded.setter
    def loaded(self, value: int) -> None:
        self._loaded = max(0, min(self.size, value))

    def can_transition_to(self, target: FileStatus) -> bool:
        return can_transition_file(self.status, target)

    def transition_to(self, target: FileStatus) -> None:
        """
        Move to a new status.

        Raises:
            InvalidTransitionError: If the move is not allowed from the current status
        """
        if not self.can_transition_to(target):
            raise InvalidTransitionError("file", self.status, target)
        self.status = target

    def __repr__(self) -> str:
        return f"FileRecord(id={self.id!r}, name={self.name!r}, size={self.size}, status={self.status.value})"
