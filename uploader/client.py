"""Uploader facade: the public entry point for submitting and controlling uploads."""

from typing import Any, Dict, Optional

import httpx

from common.logging_config import get_logger, setup_logging
from uploader.config import UploaderConfig
from uploader.events import BeforeFileQueued, EventKey, FileQueued, Handler, Notifier
from uploader.file_record import FileRecord, next_file_id
from uploader.scheduler import ChunkQueueScheduler
from uploader.sources import RawFile, as_source
from uploader.transport import TransportFactory, http_transport_factory
from uploader.types import FileStatus
from uploader.validators import install_queue_limits

logger = get_logger(__name__)


class Uploader:
    """Submit files for chunked upload, observe lifecycle events, pause and resume."""

    def __init__(
        self,
        config: Optional[UploaderConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
        client: Optional[httpx.AsyncClient] = None,
        **overrides: Any
    ):
        """
        Initialize the uploader.

        Args:
            config: Configuration; built from defaults/environment when omitted
            transport_factory: Custom transport per send attempt (HTTP by default)
            client: Shared httpx.AsyncClient for the default HTTP transport
            **overrides: Config fields overriding config/defaults
        """
        if config is None:
            config = UploaderConfig(**overrides)
        elif overrides:
            config = UploaderConfig(**{**dict(config), **overrides})
        self.config = config

        setup_logging('uploader', log_level=config.log_level, handler=config.log_handler)

        self.notifier = Notifier()
        self._owns_client = False
        if transport_factory is None:
            if client is None:
                client = httpx.AsyncClient()
                self._owns_client = True
            transport_factory = http_transport_factory(client)
        self.client = client

        self.scheduler = ChunkQueueScheduler(config, self.notifier, transport_factory)
        self.limits = install_queue_limits(config, self.notifier)
        self._held: Dict[str, FileRecord] = {}

        logger.info(
            f"Initialized Uploader [server={config.server or '-'}, concurrency={config.concurrency}, "
            f"chunked={config.chunked}, chunk_size={config.chunk_size}, chunk_retry={config.chunk_retry}]"
        )

    @property
    def files(self) -> Dict[str, FileRecord]:
        """Files that are scheduled or waiting for upload()."""
        files = dict(self._held)
        files.update(self.scheduler.files)
        return files

    def get_file(self, file_id: str) -> Optional[FileRecord]:
        return self.scheduler.get_file(file_id) or self._held.get(file_id)

    def on(self, event: EventKey, handler: Handler) -> Handler:
        """Subscribe to a lifecycle event by class or name (e.g. 'upload_progress')."""
        return self.notifier.on(event, handler)

    def off(self, event: EventKey, handler: Optional[Handler] = None) -> None:
        self.notifier.off(event, handler)

    async def submit(
        self,
        raw: RawFile,
        group_info: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None
    ) -> Optional[FileRecord]:
        """
        Accept a file into the pipeline.

        before_file_queued subscribers may veto: a handler returning False
        or raising keeps the file out and marks it cancelled.

        Args:
            raw: Local path, raw bytes, or a ByteSource
            group_info: Optional caller data attached to the record
            name: Optional display name override

        Returns:
            The file record (cancelled when vetoed), or None if the handle could not be used
        """
        try:
            source = as_source(raw, name=name)
            record = FileRecord(
                next_file_id(self.config.set_name, self.config.file_id_prefix),
                source,
                group_info=group_info
            )
        except (OSError, TypeError) as e:
            logger.error(f"Cannot accept file {raw!r}: {e}")
            return None

        try:
            results = await self.notifier.emit(BeforeFileQueued(file=record))
            if any(result is False or isinstance(result, Exception) for result in results):
                record.transition_to(FileStatus.CANCELLED)
                logger.info(f"{record.name} ({record.id}) vetoed before queueing")
                return record

            record.transition_to(FileStatus.QUEUED)
            await self.notifier.emit(FileQueued(file=record))
            logger.info(f"Queued {record.name} ({record.id}), size={record.size}")

            if self.config.auto:
                await self.scheduler.enqueue(record)
            else:
                self._held[record.id] = record
            return record
        except Exception as e:
            logger.error(f"Failed to submit {record.name}: {e}", exc_info=True)
            return record

    async def upload(self, file_id: str) -> bool:
        """
        Start a file that was queued while auto is off.

        Returns:
            True if the file was handed to the scheduler
        """
        record = self._held.pop(file_id, None)
        if record is None:
            logger.warning(f"No held file {file_id} to upload")
            return False
        await self.scheduler.enqueue(record)
        return True

    async def start(self) -> int:
        """Start every held file in submission order. Returns the number started."""
        started = 0
        for file_id in list(self._held):
            if await self.upload(file_id):
                started += 1
        return started

    def interrupt_file(self, file_id: str) -> int:
        return self.scheduler.interrupt_file(file_id)

    def interrupt_all(self) -> int:
        return self.scheduler.interrupt_all()

    async def re_upload(self, file_id: str) -> int:
        return await self.scheduler.re_upload(file_id)

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    async def destroy(self) -> None:
        """Cancel all transfers, mark every file cancelled and release the HTTP client."""
        self.scheduler.teardown()
        for record in self._held.values():
            if record.can_transition_to(FileStatus.CANCELLED):
                record.transition_to(FileStatus.CANCELLED)
        self._held.clear()

        try:
            await self.scheduler.wait_idle()
        except Exception as e:
            logger.error(f"Error while draining transfers: {e}", exc_info=True)

        if self._owns_client and self.client is not None:
            await self.client.aclose()
        logger.info("Uploader destroyed")

    async def __aenter__(self) -> 'Uploader':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.destroy()
