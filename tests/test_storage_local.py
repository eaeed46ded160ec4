import asyncio

import pytest

from filedrop.errors import NotFound, RangeNotSatisfiable, StorageConflict
from filedrop.services.storage import LocalFileStorage

from conftest import chunks_of, collect

pytestmark = pytest.mark.anyio

DATA = b"0123456789"


async def test_put_and_read_back(local_storage):
    location = await local_storage.put("abcde.png", chunks_of(DATA), len(DATA))
    assert location == "ab/abcde.png"
    assert await local_storage.size(location) == 10
    assert await collect(await local_storage.get_full(location)) == DATA


async def test_range_reads(local_storage):
    location = await local_storage.put("rng", chunks_of(DATA), len(DATA))
    assert await collect(await local_storage.get_range(location, 2, 5)) == b"2345"
    assert await collect(await local_storage.get_range(location, 7, 100)) == b"789"
    assert await collect(await local_storage.get_range(location, 9, 9)) == b"9"
    with pytest.raises(RangeNotSatisfiable):
        await local_storage.get_range(location, 10, 12)
    with pytest.raises(RangeNotSatisfiable):
        await local_storage.get_range(location, 5, 4)


async def test_put_never_overwrites(local_storage):
    location = await local_storage.put("dup", chunks_of(b"first"), 5)
    with pytest.raises(StorageConflict):
        await local_storage.put("dup", chunks_of(b"second"), 6)
    assert await collect(await local_storage.get_full(location)) == b"first"


async def test_failed_write_leaves_nothing(local_storage):
    async def broken():
        yield b"partial"
        raise RuntimeError("client went away")

    with pytest.raises(RuntimeError):
        await local_storage.put("gone", broken(), 100)
    with pytest.raises(NotFound):
        await local_storage.size("go/gone")
    assert list(local_storage.temp_path.iterdir()) == []


async def test_delete_is_idempotent(local_storage):
    location = await local_storage.put("del", chunks_of(DATA), len(DATA))
    await local_storage.delete(location)
    await local_storage.delete(location)
    with pytest.raises(NotFound):
        await local_storage.get_full(location)


async def test_open_clears_stale_temp_files(tmp_path):
    storage = LocalFileStorage(tmp_path / "store")
    storage.temp_path.mkdir(parents=True)
    (storage.temp_path / "leftover.part").write_bytes(b"x")
    await storage.open()
    assert list(storage.temp_path.iterdir()) == []


async def test_rejects_traversal_locations(local_storage):
    from filedrop.errors import StorageIOError

    with pytest.raises(StorageIOError):
        await local_storage.size("../outside")


async def test_cancelled_write_leaves_no_temp_file(local_storage):
    first_chunk_written = asyncio.Event()

    async def stalled():
        yield b"partial"
        first_chunk_written.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(local_storage.put("stall", stalled(), 100))
    await first_chunk_written.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert list(local_storage.temp_path.iterdir()) == []
    with pytest.raises(NotFound):
        await local_storage.size("st/stall")
