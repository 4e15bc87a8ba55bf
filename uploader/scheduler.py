"""
Chunk queue scheduler.

Owns the queue of chunk tasks for every submitted file, admits them in
FIFO order under a global concurrency cap, retries failed sends, folds
chunk outcomes into file status, and emits lifecycle events.

Admission model:
- A task is flipped to PENDING synchronously, before any await, so two
  overlapping admission passes can never pick the same task.
- Every settled transfer re-runs admission; there is no worker pool.
- State read before an await is re-checked after it (a task may have been
  interrupted while event handlers ran).
- Each move to PENDING starts a new admission. A worker only acts while
  its own admission is current, so a worker outliving an interrupt never
  touches a chunk that re_upload has already handed to a new worker.

All public methods log failures instead of raising.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from common.logging_config import get_logger
from uploader.config import UploaderConfig
from uploader.events import (
    ChunkProgress,
    Notifier,
    UploadAccept,
    UploadBeforeSend,
    UploadEndSend,
    UploadError,
    UploadProgress,
    UploadStart,
    UploadSuccess,
)
from uploader.exceptions import (
    ConsistencyError,
    InitiativeInterrupt,
    InvalidTransitionError,
    TransportAbortedError,
    TransportError,
)
from uploader.file_record import FileRecord
from uploader.transfer_unit import ChunkTask, split_file
from uploader.transport import TransportFactory
from uploader.types import RETRYABLE_CHUNK_STATUSES, ChunkStatus, FileStatus

logger = get_logger(__name__)

_HANDLED_FAILURE_STATUSES = (ChunkStatus.CANCELLED, ChunkStatus.INTERRUPTED, ChunkStatus.ERROR)

# Status given to chunks appended after their file already stopped
_PARKED_CHUNK_STATUS = {
    FileStatus.ERROR: ChunkStatus.ERROR,
    FileStatus.INTERRUPTED: ChunkStatus.INTERRUPTED,
    FileStatus.CANCELLED: ChunkStatus.CANCELLED,
}


class ChunkQueueScheduler:
    """Concurrency-capped, retrying scheduler for chunk uploads."""

    def __init__(
        self,
        config: UploaderConfig,
        notifier: Notifier,
        transport_factory: TransportFactory
    ):
        """
        Initialize the scheduler.

        Args:
            config: Uploader configuration (concurrency, chunking, retries, transport defaults)
            notifier: Event bus used for lifecycle events and transport progress
            transport_factory: Builds one transport per send attempt
        """
        self.config = config
        self.notifier = notifier
        self.transport_factory = transport_factory
        self._queue: List[ChunkTask] = []
        self._files: Dict[str, FileRecord] = {}
        self._workers: Set[asyncio.Task] = set()
        self.notifier.on(ChunkProgress, self._on_chunk_progress)

    # Read-only views

    @property
    def tasks(self) -> Tuple[ChunkTask, ...]:
        return tuple(self._queue)

    @property
    def files(self) -> Dict[str, FileRecord]:
        return dict(self._files)

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        return self._files.get(file_id)

    def tasks_for(self, file_id: str) -> List[ChunkTask]:
        return [task for task in self._queue if task.file.id == file_id]

    def pending_count(self) -> int:
        return sum(1 for task in self._queue if task.status is ChunkStatus.PENDING)

    def is_file_complete(self, file_id: str) -> bool:
        """True when the file has chunks and every one of them succeeded."""
        tasks = self.tasks_for(file_id)
        return bool(tasks) and all(task.status is ChunkStatus.SUCCESS for task in tasks)

    # State helpers

    def _set_file_status(self, file: FileRecord, status: FileStatus) -> bool:
        try:
            file.transition_to(status)
            return True
        except InvalidTransitionError as e:
            logger.warning(f"Rejected status change for {file.id}: {e}")
            return False

    def _set_chunk_status(self, task: ChunkTask, status: ChunkStatus) -> bool:
        try:
            task.transition_to(status)
            return True
        except InvalidTransitionError as e:
            logger.warning(f"Rejected status change for {task.label}: {e}")
            return False

    def _refresh_file_loaded(self, file: FileRecord) -> None:
        file.loaded = sum(task.loaded for task in self.tasks_for(file.id))

    def _remove_file(self, file_id: str) -> None:
        self._queue = [task for task in self._queue if task.file.id != file_id]
        self._files.pop(file_id, None)

    # Queueing and admission

    async def enqueue(self, file: FileRecord) -> None:
        """
        Split a queued file into chunk tasks and start admitting them.

        Args:
            file: File record in QUEUED status
        """
        try:
            if file.id in self._files:
                logger.warning(f"File {file.id} is already scheduled, ignoring")
                return

            units = split_file(file, self.config.chunk_size, self.config.chunked)
            self._files[file.id] = file
            logger.info(
                f"Scheduling {file.name} ({file.id}): size={file.size} chunks={len(units)}"
            )

            for unit in units:
                if self._files.get(file.id) is not file:
                    logger.debug(f"{file.id} was torn down while being scheduled")
                    return
                task = ChunkTask(file, unit, self.config.transport_config(file.name))
                parked = _PARKED_CHUNK_STATUS.get(file.status)
                if parked is not None:
                    task.transition_to(parked)
                self._queue.append(task)
                await self.run_queue()
        except Exception as e:
            logger.error(f"Failed to schedule {file.id}: {e}", exc_info=True)

    async def run_queue(self) -> None:
        """Admit WAIT tasks, oldest first, until the concurrency cap is reached."""
        try:
            while self.pending_count() < self.config.concurrency:
                task = next((t for t in self._queue if t.status is ChunkStatus.WAIT), None)
                if task is None:
                    return
                task.transition_to(ChunkStatus.PENDING)
                task.admission += 1
                await self._admit(task, task.admission)
        except Exception as e:
            logger.error(f"Admission pass failed: {e}", exc_info=True)

    @staticmethod
    def _is_current(task: ChunkTask, admission: int) -> bool:
        """True while the task is still PENDING under the given admission."""
        return task.status is ChunkStatus.PENDING and task.admission == admission

    async def _admit(self, task: ChunkTask, admission: int) -> None:
        file = task.file
        unit = task.unit

        try:
            await self._check_file_upload_start(task)
        except ConsistencyError as e:
            logger.error(f"Consistency violation: {e}")

        await self.notifier.emit(UploadBeforeSend(
            file=file,
            shard=unit,
            shard_count=unit.shard_count,
            current_shard=unit.current_shard,
            config=task.config,
        ))

        if not self._is_current(task, admission):
            logger.debug(f"{task.label} left PENDING before sending ({task.status.value}), skipping")
            return

        if file.status is FileStatus.QUEUED:
            self._set_file_status(file, FileStatus.IN_PROGRESS)

        worker = asyncio.create_task(self._transfer(task, admission), name=f"upload:{task.label}")
        self._workers.add(worker)
        worker.add_done_callback(self._workers.discard)

    async def _check_file_upload_start(self, task: ChunkTask) -> None:
        """
        Announce upload_start for the first chunk of a file that goes out.

        Raises:
            ConsistencyError: If a never-started file is not QUEUED when its first chunk goes out
        """
        file = task.file
        siblings = self.tasks_for(file.id)
        pending = sum(1 for t in siblings if t.status is ChunkStatus.PENDING)
        succeeded = sum(1 for t in siblings if t.status is ChunkStatus.SUCCESS)

        if pending != 1 or succeeded != 0:
            return

        # retries never re-announce
        if file.upload_started:
            return

        if file.status is not FileStatus.QUEUED:
            raise ConsistencyError(
                f"First chunk of {file.id} admitted while file is {file.status.value}, expected queued"
            )

        self._set_file_status(file, FileStatus.IN_PROGRESS)
        file.upload_started = True
        await self.notifier.emit(UploadStart(
            file=file,
            shard_count=task.unit.shard_count,
            config=task.config,
        ))

    # Transfer

    async def _transfer(self, task: ChunkTask, admission: int) -> None:
        try:
            response = await self._send_with_retry(task, admission)
        except InitiativeInterrupt:
            logger.debug(f"Transfer of {task.label} stopped by interrupt")
        except TransportError as e:
            await self._handle_failure(task, e)
        except Exception as e:
            logger.error(f"Unexpected error sending {task.label}: {e}", exc_info=True)
            if self._is_current(task, admission):
                await self._handle_failure(task, e)
        else:
            await self._handle_success(task, response)

        await self.run_queue()

    async def _send_with_retry(self, task: ChunkTask, admission: int) -> str:
        """
        Send a chunk, retrying transport failures up to chunk_retry attempts.

        Args:
            task: Chunk task to send
            admission: Admission the calling worker was spawned for

        Raises:
            InitiativeInterrupt: If the task left this admission (interrupt/cancel/sibling
                failure, possibly followed by re_upload) or its transport was aborted
            TransportError: When every attempt failed
        """
        attempts = self.config.chunk_retry
        last_error: Optional[TransportError] = None

        for attempt in range(1, attempts + 1):
            if not self._is_current(task, admission):
                raise InitiativeInterrupt()

            transport = self.transport_factory(task, self.notifier)
            task.transport = transport
            try:
                response = await transport.send()
            except TransportAbortedError as e:
                raise InitiativeInterrupt() from e
            except TransportError as e:
                if not self._is_current(task, admission):
                    raise InitiativeInterrupt() from e
                last_error = e
                if attempt < attempts:
                    logger.warning(f"Chunk {task.label} failed (attempt {attempt}/{attempts}): {e}, retrying")
                continue
            finally:
                if task.transport is transport:
                    task.transport = None

            if not self._is_current(task, admission):
                raise InitiativeInterrupt()
            return response

        logger.error(f"Chunk {task.label} failed after {attempts} attempts: {last_error}")
        raise last_error

    async def _handle_success(self, task: ChunkTask, response: str) -> None:
        try:
            file = task.file
            unit = task.unit
            self._set_chunk_status(task, ChunkStatus.SUCCESS)
            task.loaded = unit.size

            is_upload_end = self.is_file_complete(file.id)
            if is_upload_end:
                self._set_file_status(file, FileStatus.COMPLETE)
                file.loaded = file.size
            else:
                self._refresh_file_loaded(file)

            await self.notifier.emit(UploadAccept(
                file=file,
                shard=unit,
                shard_count=unit.shard_count,
                current_shard=unit.current_shard,
                is_upload_end=is_upload_end,
                response_text=response,
            ))

            if is_upload_end:
                logger.info(f"Upload of {file.name} ({file.id}) complete")
                await self.notifier.emit(UploadSuccess(
                    file=file,
                    shard=unit,
                    shard_count=unit.shard_count,
                    current_shard=unit.current_shard,
                ))
                await self.notifier.emit(UploadEndSend(
                    file=file,
                    shard=unit,
                    shard_count=unit.shard_count,
                    current_shard=unit.current_shard,
                ))
                # only after completion, earlier removal breaks progress sums
                self._remove_file(file.id)
        except Exception as e:
            logger.error(f"Success handling failed for {task.label}: {e}", exc_info=True)

    async def _handle_failure(self, task: ChunkTask, error: BaseException) -> None:
        try:
            if task.status in _HANDLED_FAILURE_STATUSES:
                logger.debug(f"Failure of {task.label} already handled ({task.status.value})")
                return

            file = task.file
            unit = task.unit
            logger.error(f"Upload of {file.name} ({file.id}) failed: {error}")
            self._set_file_status(file, FileStatus.ERROR)

            for sibling in self.tasks_for(file.id):
                if sibling.status is ChunkStatus.SUCCESS:
                    continue
                sibling.abort_transport()
                self._set_chunk_status(sibling, ChunkStatus.ERROR)
                sibling.loaded = 0
            self._refresh_file_loaded(file)

            await self.notifier.emit(UploadError(file=file, error=error))
            await self.notifier.emit(UploadEndSend(
                file=file,
                shard=unit,
                shard_count=unit.shard_count,
                current_shard=unit.current_shard,
            ))
        except Exception as e:
            logger.error(f"Failure handling failed for {task.label}: {e}", exc_info=True)

    async def _on_chunk_progress(self, event: ChunkProgress) -> None:
        task = event.task
        # late reports from aborted sends
        if task.status is not ChunkStatus.PENDING:
            return

        task.loaded = event.loaded
        file = task.file
        self._refresh_file_loaded(file)

        await self.notifier.emit(UploadProgress(
            file=file,
            loaded=file.loaded,
            total=file.size,
            shard_loaded=event.loaded,
            shard_total=event.total,
        ))

    # Caller operations

    def interrupt_file(self, file_id: str) -> int:
        """
        Pause every unfinished chunk of a file.

        Args:
            file_id: File id

        Returns:
            Number of chunks interrupted
        """
        try:
            interrupted = 0
            for task in self.tasks_for(file_id):
                if task.status is ChunkStatus.SUCCESS:
                    continue
                self._set_file_status(task.file, FileStatus.INTERRUPTED)
                self._set_chunk_status(task, ChunkStatus.INTERRUPTED)
                task.abort_transport()
                interrupted += 1

            if interrupted:
                logger.info(f"Interrupted {interrupted} chunk(s) of {file_id}")
            else:
                logger.warning(f"Nothing to interrupt for {file_id}")
            return interrupted
        except Exception as e:
            logger.error(f"Failed to interrupt {file_id}: {e}", exc_info=True)
            return 0

    def interrupt_all(self) -> int:
        """
        Interrupt every tracked chunk regardless of status and cancel the files.

        Returns:
            Number of chunks interrupted
        """
        try:
            for task in self._queue:
                self._set_chunk_status(task, ChunkStatus.INTERRUPTED)
                self._set_file_status(task.file, FileStatus.CANCELLED)
                task.abort_transport()
            logger.info(f"Interrupted all {len(self._queue)} chunk(s)")
            return len(self._queue)
        except Exception as e:
            logger.error(f"Failed to interrupt all uploads: {e}", exc_info=True)
            return 0

    async def re_upload(self, file_id: str) -> int:
        """
        Requeue the failed, interrupted or cancelled chunks of a file.

        Successful chunks are kept. upload_start is not emitted again.

        Args:
            file_id: File id

        Returns:
            Number of chunks put back to WAIT
        """
        try:
            reset = 0
            for task in self.tasks_for(file_id):
                if task.status not in RETRYABLE_CHUNK_STATUSES:
                    continue
                if self._set_chunk_status(task, ChunkStatus.WAIT):
                    task.loaded = 0
                    self._set_file_status(task.file, FileStatus.QUEUED)
                    reset += 1

            if not reset:
                logger.warning(f"Nothing to retry for {file_id}")
                return 0

            file = self._files.get(file_id)
            if file is not None:
                self._refresh_file_loaded(file)
            logger.info(f"Retrying {reset} chunk(s) of {file_id}")
            await self.run_queue()
            return reset
        except Exception as e:
            logger.error(f"Failed to retry {file_id}: {e}", exc_info=True)
            return 0

    def teardown(self) -> None:
        """Abort every transfer, mark everything cancelled and drop the queue."""
        try:
            for task in self._queue:
                task.abort_transport()
                self._set_chunk_status(task, ChunkStatus.CANCELLED)
            for file in self._files.values():
                if file.status is not FileStatus.COMPLETE:
                    self._set_file_status(file, FileStatus.CANCELLED)
            logger.info(f"Torn down scheduler: {len(self._queue)} chunk(s), {len(self._files)} file(s) cancelled")
            self._queue = []
            self._files = {}
        except Exception as e:
            logger.error(f"Teardown failed: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait until no transfer is in flight."""
        while self._workers:
            await asyncio.gather(*list(self._workers), return_exceptions=True)
