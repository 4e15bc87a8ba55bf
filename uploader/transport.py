"""Transport adapters that send one chunk to the remote endpoint."""

import asyncio
import io
from typing import AsyncIterator, Callable, Optional, Protocol, runtime_checkable

import httpx

from common.logging_config import get_logger
from uploader.events import ChunkProgress, Notifier
from uploader.exceptions import TransportAbortedError, TransportError
from uploader.transfer_unit import ChunkTask

logger = get_logger(__name__)


@runtime_checkable
class Transport(Protocol):
    """
    One send attempt for one chunk.

    send() resolves with the response text or raises TransportError;
    abort() cancels an in-flight send, which then raises TransportAbortedError.
    Progress is reported by emitting ChunkProgress with the owning task.
    """

    async def send(self) -> str:
        ...

    def abort(self) -> None:
        ...


TransportFactory = Callable[[ChunkTask, Notifier], Transport]


class HttpTransport:
    """Multipart HTTP upload of a single chunk over a shared httpx.AsyncClient."""

    def __init__(self, task: ChunkTask, notifier: Notifier, client: httpx.AsyncClient):
        self.task = task
        self.notifier = notifier
        self.client = client
        self._aborted = False
        self._inflight: Optional[asyncio.Future] = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Cancel the in-flight send; a later send() fails immediately."""
        self._aborted = True
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
            logger.debug(f"Aborted transfer of {self.task.label}")

    async def send(self) -> str:
        """
        Send the chunk.

        Returns:
            Response body text

        Raises:
            TransportAbortedError: If abort() was called
            TransportError: On network failure, timeout, non-2xx response or unreadable source
        """
        if self._aborted:
            raise TransportAbortedError(f"Transfer of {self.task.label} aborted before start")

        self._inflight = asyncio.ensure_future(self._perform())
        try:
            return await self._inflight
        except asyncio.CancelledError:
            if self._aborted:
                raise TransportAbortedError(f"Transfer of {self.task.label} aborted")
            raise
        finally:
            self._inflight = None

    def _form_fields(self) -> dict:
        unit = self.task.unit
        file = self.task.file
        fields = {key: str(value) for key, value in self.task.config.form_data.items()}
        fields.update({
            'file_id': file.id,
            'name': self.task.config.file_name or file.name,
            'size': str(file.size),
            'chunk': str(unit.current_shard - 1),
            'chunks': str(unit.shard_count),
            'start': str(unit.start),
            'end': str(unit.end),
        })
        return fields

    def _timeout(self) -> Optional[float]:
        timeout = self.task.config.timeout
        return timeout if timeout and timeout > 0 else None

    async def _read_payload(self) -> bytes:
        unit = self.task.unit
        try:
            return await self.task.file.source.read(unit.start, unit.end)
        except OSError as e:
            raise TransportError(f"Cannot read {self.task.file.name} [{unit.start}, {unit.end}): {e}")

    async def _tracked_body(self, stream: httpx.AsyncByteStream, total: int) -> AsyncIterator[bytes]:
        shard_total = self.task.unit.size
        sent = 0
        async for piece in stream:
            sent += len(piece)
            shard_loaded = shard_total if total <= 0 else min(shard_total, sent * shard_total // total)
            await self.notifier.emit(ChunkProgress(task=self.task, loaded=shard_loaded, total=shard_total))
            yield piece

    async def _perform(self) -> str:
        config = self.task.config
        payload = await self._read_payload()
        file_name = config.file_name or self.task.file.name

        try:
            request = self.client.build_request(
                config.method,
                config.server,
                data=self._form_fields(),
                files={config.file_val: (file_name, io.BytesIO(payload), self.task.file.mime_type)},
                headers=config.headers,
                timeout=self._timeout(),
            )
        except httpx.InvalidURL as e:
            raise TransportError(f"Invalid upload endpoint {config.server!r}: {e}")
        if not config.with_credentials:
            request.headers.pop('Cookie', None)

        total = int(request.headers.get('Content-Length', len(payload)))
        tracked = httpx.Request(
            request.method,
            request.url,
            headers=request.headers,
            content=self._tracked_body(request.stream, total),
            extensions=request.extensions,
        )

        logger.debug(
            f"Sending {self.task.label}: {config.method} {config.server} "
            f"bytes=[{self.task.unit.start}, {self.task.unit.end})"
        )

        try:
            response = await self.client.send(tracked)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out for {self.task.label}: {type(e).__name__}")
        except httpx.HTTPError as e:
            raise TransportError(f"Network error for {self.task.label}: {e}")

        if not response.is_success:
            logger.warning(f"Server rejected {self.task.label}: status={response.status_code}")
            raise TransportError(
                f"Server returned {response.status_code} for {self.task.label}",
                status_code=response.status_code
            )

        return response.text


def http_transport_factory(client: httpx.AsyncClient) -> TransportFactory:
    """Build a transport factory bound to a shared client."""
    def factory(task: ChunkTask, notifier: Notifier) -> Transport:
        return HttpTransport(task, notifier, client)
    return factory
