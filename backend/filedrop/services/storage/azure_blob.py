"""Azure Blob Storage backend.

Uploads go through the SDK's block-blob path: blocks of ``chunk_size`` are
staged and only become visible when the block list is committed, so a failed
upload never leaves a partial blob behind.
"""
import logging
from typing import AsyncIterator

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import ContainerClient

from filedrop.errors import NotFound, StorageConflict, StorageIOError
from filedrop.services.storage.base import StorageBackend, check_range

logger = logging.getLogger(__name__)


class AzureBlobStorage(StorageBackend):
    name = "azure_blob"

    def __init__(self, container_client: ContainerClient, chunk_size: int = 4 * 1024 * 1024):
        super().__init__(chunk_size)
        self._container = container_client

    @classmethod
    def from_connection_string(cls, connection_string: str, container: str, chunk_size: int) -> "AzureBlobStorage":
        if not connection_string:
            raise RuntimeError("AZURE_STORAGE_CONNECTION_STRING required for Blob Storage")
        client = ContainerClient.from_connection_string(
            connection_string,
            container,
            max_block_size=chunk_size,
            max_single_put_size=chunk_size,
        )
        return cls(client, chunk_size)

    async def open(self) -> None:
        try:
            await self._container.create_container()
            logger.info(f"Created blob container {self._container.container_name}")
        except ResourceExistsError:
            pass
        except AzureError as e:
            raise StorageIOError(f"Failed to open blob container: {e}") from e

    async def close(self) -> None:
        await self._container.close()

    async def put(self, name: str, chunks: AsyncIterator[bytes], size_hint: int | None = None) -> str:
        blob = self._container.get_blob_client(name)
        try:
            await blob.upload_blob(chunks, length=size_hint, overwrite=False)
        except ResourceExistsError:
            raise StorageConflict(f"Blob already exists: {name}")
        except AzureError as e:
            logger.error(f"Failed to upload blob {name}: {e}")
            raise StorageIOError(f"Failed to upload blob {name}") from e
        return name

    async def size(self, location: str) -> int:
        blob = self._container.get_blob_client(location)
        try:
            props = await blob.get_blob_properties()
        except ResourceNotFoundError:
            raise NotFound(f"No blob at {location}")
        except AzureError as e:
            raise StorageIOError(f"Failed to read properties of blob {location}") from e
        return props.size

    async def get_full(self, location: str) -> AsyncIterator[bytes]:
        await self.size(location)
        return self._download(location)

    async def get_range(self, location: str, start: int, end: int) -> AsyncIterator[bytes]:
        size = await self.size(location)
        end = check_range(start, end, size)
        return self._download(location, start, end - start + 1)

    async def _download(self, location: str, offset: int | None = None, length: int | None = None) -> AsyncIterator[bytes]:
        blob = self._container.get_blob_client(location)
        try:
            downloader = await blob.download_blob(offset=offset, length=length)
            async for chunk in downloader.chunks():
                yield chunk
        except ResourceNotFoundError:
            raise NotFound(f"No blob at {location}")
        except AzureError as e:
            logger.error(f"Failed to download blob {location}: {e}")
            raise StorageIOError(f"Failed to download blob {location}") from e

    async def delete(self, location: str) -> None:
        blob = self._container.get_blob_client(location)
        try:
            await blob.delete_blob()
        except ResourceNotFoundError:
            return
        except AzureError as e:
            logger.error(f"Failed to delete blob {location}: {e}")
            raise StorageIOError(f"Failed to delete blob {location}") from e
