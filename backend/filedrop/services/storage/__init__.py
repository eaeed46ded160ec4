"""Storage backends. `build_storage` picks one from settings."""
from filedrop.services.storage.base import StorageBackend
from filedrop.services.storage.local import LocalFileStorage
from filedrop.services.storage.database import DatabaseBlobStorage


def build_storage(settings, session_factory) -> StorageBackend:
    """Instantiate the backend named by FILE_STORAGE_TYPE."""
    if settings.FILE_STORAGE_TYPE == "local":
        return LocalFileStorage(settings.FILE_STORAGE_PATH, chunk_size=settings.STREAM_CHUNK_SIZE)

    elif settings.FILE_STORAGE_TYPE == "database":
        return DatabaseBlobStorage(session_factory, chunk_size=settings.STORAGE_CHUNK_SIZE)

    elif settings.FILE_STORAGE_TYPE == "azure_blob":
        from filedrop.services.storage.azure_blob import AzureBlobStorage
        return AzureBlobStorage.from_connection_string(
            settings.AZURE_STORAGE_CONNECTION_STRING,
            settings.AZURE_STORAGE_CONTAINER,
            chunk_size=settings.STORAGE_CHUNK_SIZE,
        )

    raise ValueError(f"Unknown storage type: {settings.FILE_STORAGE_TYPE}")


__all__ = ["StorageBackend", "LocalFileStorage", "DatabaseBlobStorage", "build_storage"]
