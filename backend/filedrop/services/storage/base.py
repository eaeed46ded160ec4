"""Storage backend contract.

Every variant persists opaque payloads under a name chosen by the caller and
hands back a backend-specific location. The upload pipeline and the retrieval
service only ever talk to this interface.
"""
from abc import ABC, abstractmethod
from typing import AsyncIterator

from filedrop.errors import RangeNotSatisfiable


def check_range(start: int, end: int, size: int) -> int:
    """Validate an inclusive byte range and return `end` clamped to the object."""
    if start < 0 or start > end or start > size - 1:
        raise RangeNotSatisfiable(size)
    return min(end, size - 1)


async def rechunk(chunks: AsyncIterator[bytes], chunk_size: int) -> AsyncIterator[bytes]:
    """Regroup an async byte stream into pieces of exactly `chunk_size` (last may be short)."""
    buffer = bytearray()
    async for chunk in chunks:
        buffer.extend(chunk)
        while len(buffer) >= chunk_size:
            yield bytes(buffer[:chunk_size])
            del buffer[:chunk_size]
    if buffer:
        yield bytes(buffer)


class StorageBackend(ABC):
    """Async persistence for uploaded payloads."""

    name = "base"

    def __init__(self, chunk_size: int = 64 * 1024):
        self.chunk_size = chunk_size

    async def open(self) -> None:
        """Acquire connections / prepare directories. Called once at startup."""

    async def close(self) -> None:
        """Release whatever open() acquired. Called once at shutdown."""

    @abstractmethod
    async def put(self, name: str, chunks: AsyncIterator[bytes], size_hint: int | None = None) -> str:
        """Store the stream under `name` and return its location.

        Nothing is visible until the whole payload is durable. Raises
        StorageConflict if `name` already exists; nothing is overwritten.
        """

    @abstractmethod
    async def size(self, location: str) -> int:
        """Byte length of a stored object. Raises NotFound if it is absent."""

    @abstractmethod
    async def get_full(self, location: str) -> AsyncIterator[bytes]:
        """Lazy chunked reader over the whole object."""

    @abstractmethod
    async def get_range(self, location: str, start: int, end: int) -> AsyncIterator[bytes]:
        """Lazy chunked reader over bytes `start..end` inclusive."""

    @abstractmethod
    async def delete(self, location: str) -> None:
        """Remove the object. Deleting an absent object is not an error."""
