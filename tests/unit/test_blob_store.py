"""Tests for blob store implementations."""

import pytest

from crypto_market_data.data.blob_store import MemoryBlobStore, SQLiteBlobStore


@pytest.fixture
async def sqlite_store(temp_dir):
    """Create a SQLite blob store in a temporary directory."""
    store = SQLiteBlobStore(temp_dir / "nested" / "cache.db")
    await store.start()

    yield store

    await store.close()


@pytest.fixture(params=["memory", "sqlite"])
async def any_store(request, temp_dir):
    if request.param == "memory":
        yield MemoryBlobStore()
    else:
        store = SQLiteBlobStore(temp_dir / "cache.db")
        await store.start()
        yield store
        await store.close()


class TestBlobStoreContract:
    """Behaviour shared by every blob store."""

    async def test_set_and_get(self, any_store):
        await any_store.set("key", b"\x00\x01payload")

        assert await any_store.get("key") == b"\x00\x01payload"
        assert await any_store.get("missing") is None

    async def test_overwrite(self, any_store):
        await any_store.set("key", b"one")
        await any_store.set("key", b"two")

        assert await any_store.get("key") == b"two"

    async def test_timestamps_are_independent(self, any_store):
        await any_store.set("key", b"value")
        assert await any_store.get_timestamp("key") is None

        await any_store.set_timestamp("key", 1234.5)
        await any_store.set("key", b"newer")

        assert await any_store.get_timestamp("key") == 1234.5

    async def test_delete_removes_blob_and_timestamp(self, any_store):
        await any_store.set("key", b"value")
        await any_store.set_timestamp("key", 1.0)

        await any_store.delete("key")
        await any_store.delete("never-set")

        assert await any_store.get("key") is None
        assert await any_store.get_timestamp("key") is None

    async def test_stats(self, any_store):
        await any_store.set("a", b"12")
        await any_store.set("b", b"345")

        assert await any_store.get_stats() == {'blobs': 2, 'bytes': 5}


@pytest.mark.slow
class TestSQLiteBlobStore:
    """SQLite specific behaviour."""

    async def test_creates_parent_directory(self, sqlite_store, temp_dir):
        assert (temp_dir / "nested" / "cache.db").exists()

    async def test_data_survives_reopen(self, sqlite_store):
        await sqlite_store.set("key", b"persisted")
        await sqlite_store.set_timestamp("key", 99.0)

        reopened = SQLiteBlobStore(sqlite_store.db_path)

        assert await reopened.get("key") == b"persisted"
        assert await reopened.get_timestamp("key") == 99.0

    async def test_timestamp_without_blob(self, sqlite_store):
        await sqlite_store.set_timestamp("orphan", 5.0)

        assert await sqlite_store.get("orphan") is None
        assert await sqlite_store.get_timestamp("orphan") == 5.0
