"""Byte sources the uploader slices chunks from."""

import asyncio
import mimetypes
import os
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class ByteSource(Protocol):
    """Anything that can hand out a byte range of a named file."""

    name: str
    size: int
    mime_type: str

    async def read(self, start: int, end: int) -> bytes:
        ...


def _guess_mime_type(name: str) -> str:
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type or "application/octet-stream"


class LocalFileSource:
    """File on local disk; ranges are read in the default executor."""

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        self.path = Path(path)
        if not self.path.is_file():
            raise FileNotFoundError(f"Not a file: {self.path}")
        self.name = name or self.path.name
        self.size = os.path.getsize(self.path)
        self.mime_type = _guess_mime_type(self.name)

    def _read_range(self, start: int, end: int) -> bytes:
        with open(self.path, "rb") as f:
            f.seek(start)
            return f.read(max(0, end - start))

    async def read(self, start: int, end: int) -> bytes:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._read_range, start, end)

    def __repr__(self) -> str:
        return f"LocalFileSource({str(self.path)!r}, size={self.size})"


class MemorySource:
    """In-memory payload."""

    def __init__(self, data: bytes, name: str = "blob", mime_type: Optional[str] = None):
        self.data = bytes(data)
        self.name = name
        self.size = len(self.data)
        self.mime_type = mime_type or _guess_mime_type(name)

    async def read(self, start: int, end: int) -> bytes:
        return self.data[start:end]

    def __repr__(self) -> str:
        return f"MemorySource({self.name!r}, size={self.size})"


RawFile = Union[str, Path, bytes, bytearray, ByteSource]


def as_source(raw: RawFile, name: Optional[str] = None) -> ByteSource:
    """
    Wrap a raw file handle into a ByteSource.

    Args:
        raw: Local path, raw bytes, or an object already implementing ByteSource
        name: Optional display name override

    Returns:
        ByteSource instance

    Raises:
        FileNotFoundError: If a path does not point to a regular file
        TypeError: If the handle type is not supported
    """
    if isinstance(raw, (str, Path)):
        return LocalFileSource(raw, name=name)
    if isinstance(raw, (bytes, bytearray)):
        return MemorySource(raw, name=name or "blob")
    if isinstance(raw, ByteSource):
        return raw
    raise TypeError(f"Unsupported file handle: {type(raw).__name__}")
