import io

import pytest
from fastapi.testclient import TestClient
from starlette.datastructures import Headers, UploadFile

from filedrop.config import Settings
from filedrop.database import build_engine, build_session_factory
from filedrop.main import create_app
from filedrop.models import Base
from filedrop.services.file_catalog import FileCatalog
from filedrop.services.storage import DatabaseBlobStorage, LocalFileStorage


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'filedrop.db'}",
        FILE_STORAGE_TYPE="local",
        FILE_STORAGE_PATH=str(tmp_path / "uploads"),
        FILE_STAGING_PATH=str(tmp_path / "staging"),
        PUBLIC_BASE_URL="https://files.example.com",
        MAX_FILE_SIZE=1024,
        STREAM_CHUNK_SIZE=16,
        STORAGE_CHUNK_SIZE=16,
        RETENTION_DAYS=0,
        ADMIN_DELETE_ENABLED=True,
    )


@pytest.fixture
def client(test_settings):
    with TestClient(create_app(test_settings)) as test_client:
        yield test_client


@pytest.fixture
async def session_factory(anyio_backend, tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def local_storage(anyio_backend, tmp_path):
    storage = LocalFileStorage(tmp_path / "blobs", chunk_size=4)
    await storage.open()
    yield storage
    await storage.close()


@pytest.fixture
async def db_storage(anyio_backend, session_factory):
    storage = DatabaseBlobStorage(session_factory, chunk_size=4)
    await storage.open()
    yield storage
    await storage.close()


@pytest.fixture
def catalog(local_storage, session_factory):
    return FileCatalog(local_storage, session_factory)


def make_upload(data: bytes, filename: str | None = "a.png", content_type: str | None = "image/png") -> UploadFile:
    headers = Headers({"content-type": content_type}) if content_type else Headers({})
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=headers)


async def chunks_of(data: bytes, size: int = 3):
    for i in range(0, len(data), size):
        yield data[i:i + size]


async def collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])
