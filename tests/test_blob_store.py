from __future__ import annotations

import asyncio

import pytest

from catalog_desk.domain.models import ProductKey
from catalog_desk.errors import KeyCollisionError, StorageFullError
from catalog_desk.store.blobs import BlobStore, ConnectionState


def test_put_get_round_trip(blobs: BlobStore) -> None:
    key = ProductKey("A1", "S1")

    async def _run():
        await blobs.put(key, b"\x00\x01payload")
        return await blobs.get(key), await blobs.get(ProductKey("A1", "S2"))

    blob, missing = asyncio.run(_run())
    assert blob is not None
    assert blob.payload == b"\x00\x01payload"
    assert blob.key == key
    assert blob.format == "jpeg"
    assert missing is None


def test_same_code_different_suppliers_coexist(blobs: BlobStore) -> None:
    async def _run():
        await blobs.put(ProductKey("A1", "S1"), b"one")
        await blobs.put(ProductKey("A1", "S2"), b"two")
        await blobs.put(ProductKey("B7", "S1"), b"three")
        return await blobs.keys_for_code("A1"), await blobs.count()

    keys, count = asyncio.run(_run())
    assert keys == [ProductKey("A1", "S1"), ProductKey("A1", "S2")]
    assert count == 3


def test_put_overwrites_existing_key(blobs: BlobStore) -> None:
    key = ProductKey("A1", "S1")

    async def _run():
        await blobs.put(key, b"old")
        await blobs.put(key, b"new")
        return await blobs.get(key), await blobs.count()

    blob, count = asyncio.run(_run())
    assert blob.payload == b"new"
    assert count == 1


def test_colliding_storage_ids_are_rejected(blobs: BlobStore) -> None:
    first = ProductKey("A_B", "C")
    second = ProductKey("A", "B_C")
    assert first.storage_id == second.storage_id

    async def _run():
        await blobs.put(first, b"first")
        with pytest.raises(KeyCollisionError):
            await blobs.put(second, b"second")
        return await blobs.get(first), await blobs.get(second)

    kept, other = asyncio.run(_run())
    assert kept.payload == b"first"
    assert other is None


def test_quota_raises_storage_full(data_dir: str) -> None:
    store = BlobStore(data_dir, max_bytes=10)

    async def _run():
        await store.put(ProductKey("A1", "S1"), b"12345")
        with pytest.raises(StorageFullError):
            await store.put(ProductKey("A2", "S1"), b"123456")
        # replacing an existing payload only counts the new size
        await store.put(ProductKey("A1", "S1"), b"1234567890")
        return await store.count()

    assert asyncio.run(_run()) == 1


def test_reopens_after_close_and_broken_handle(blobs: BlobStore) -> None:
    key = ProductKey("A1", "S1")

    async def _run():
        await blobs.put(key, b"v1")
        await blobs.close()
        assert blobs.state == ConnectionState.CLOSED
        first = await blobs.get(key)

        # simulate a handle that died underneath the store
        blobs._conn.close()
        second = await blobs.get(key)
        return first, second

    first, second = asyncio.run(_run())
    assert first.payload == b"v1"
    assert second.payload == b"v1"
    assert blobs.state == ConnectionState.OPEN


def test_data_survives_new_store_instance(data_dir: str) -> None:
    key = ProductKey("A1", "S1")
    asyncio.run(BlobStore(data_dir).put(key, b"persisted"))

    blob = asyncio.run(BlobStore(data_dir).get(key))
    assert blob.payload == b"persisted"


def test_delete_and_delete_all(blobs: BlobStore) -> None:
    async def _run():
        await blobs.put(ProductKey("A1", "S1"), b"1")
        await blobs.put(ProductKey("A2", "S1"), b"2")
        await blobs.put(ProductKey("A3", "S1"), b"3")
        await blobs.delete(ProductKey("A2", "S1"))
        await blobs.delete(ProductKey("missing", ""))
        listed = [b.key.code for b in await blobs.list_all()]
        await blobs.delete_all()
        return listed, await blobs.count()

    listed, remaining = asyncio.run(_run())
    assert listed == ["A1", "A3"]
    assert remaining == 0
