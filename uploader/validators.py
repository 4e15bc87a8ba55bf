"""Built-in before_file_queued validators driven by UploaderConfig limits."""

import fnmatch
from typing import List

from common.logging_config import get_logger
from uploader.config import UploaderConfig
from uploader.events import BeforeFileQueued, FileQueued, Notifier

logger = get_logger(__name__)


def _matches_accept(name: str, mime_type: str, accept: List[str]) -> bool:
    """
    Check a file against an accept list.

    Entries are extensions ('.pdf' or 'pdf') or MIME patterns ('image/*').
    """
    lowered = name.lower()
    for entry in accept:
        entry = entry.strip().lower()
        if not entry:
            continue
        if "/" in entry:
            if fnmatch.fnmatch(mime_type.lower(), entry):
                return True
        elif lowered.endswith("." + entry.lstrip(".")):
            return True
    return False


class QueueLimits:
    """
    Enforces accept, file_single_size_limit, file_size_limit and file_num_limit.

    Counts and totals cover every file accepted in this session.
    """

    def __init__(self, config: UploaderConfig):
        self.config = config
        self.accepted_count = 0
        self.accepted_bytes = 0

    def check(self, event: BeforeFileQueued) -> bool:
        file = event.file
        config = self.config

        if config.accept and not _matches_accept(file.name, file.mime_type, config.accept):
            logger.info(f"Rejected {file.name}: type not in accept list {config.accept}")
            return False

        if config.file_single_size_limit is not None and file.size > config.file_single_size_limit:
            logger.info(
                f"Rejected {file.name}: size {file.size} exceeds single file limit {config.file_single_size_limit}"
            )
            return False

        if config.file_size_limit is not None and self.accepted_bytes + file.size > config.file_size_limit:
            logger.info(
                f"Rejected {file.name}: total size would exceed {config.file_size_limit}"
            )
            return False

        if config.file_num_limit is not None and self.accepted_count >= config.file_num_limit:
            logger.info(f"Rejected {file.name}: file count limit {config.file_num_limit} reached")
            return False

        return True

    def record(self, event: FileQueued) -> None:
        self.accepted_count += 1
        self.accepted_bytes += event.file.size


def install_queue_limits(config: UploaderConfig, notifier: Notifier) -> QueueLimits:
    """
    Subscribe the configured limits to the notifier.

    Returns:
        The subscribed QueueLimits instance
    """
    limits = QueueLimits(config)
    notifier.on(BeforeFileQueued, limits.check)
    notifier.on(FileQueued, limits.record)
    return limits
