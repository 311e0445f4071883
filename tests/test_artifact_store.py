"""Tests for the in-memory and JSON file artifact stores."""

import json

import pytest

from bookdigest.core.errors import StoreError
from bookdigest.db.artifact_store import InMemoryArtifactStore, JsonFileArtifactStore


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryArtifactStore()
    return JsonFileArtifactStore(tmp_path / "cache.json")


class TestStoreContract:
    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, any_store):
        assert await any_store.get("book:x:connections") is None

    @pytest.mark.asyncio
    async def test_set_get_remove(self, any_store):
        await any_store.set("k", {"nodeData": {"topic": "t"}})
        assert await any_store.get("k") == {"nodeData": {"topic": "t"}}

        await any_store.remove("k")
        assert await any_store.get("k") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key_is_noop(self, any_store):
        await any_store.remove("nothing")
        assert await any_store.keys() == []

    @pytest.mark.asyncio
    async def test_keys_and_clear(self, any_store):
        await any_store.set("a", "1")
        await any_store.set("b", False)

        assert sorted(await any_store.keys()) == ["a", "b"]
        assert await any_store.get("b") is False

        await any_store.clear()
        assert await any_store.keys() == []

    @pytest.mark.asyncio
    async def test_returned_values_are_copies(self, any_store):
        await any_store.set("k", ["c1"])
        value = await any_store.get("k")
        value.append("c2")
        assert await any_store.get("k") == ["c1"]


class TestJsonFileArtifactStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "cache.json"
        await JsonFileArtifactStore(path).set("book:x:connections", "text")

        assert await JsonFileArtifactStore(path).get("book:x:connections") == "text"
        assert json.loads(path.read_text(encoding="utf-8")) == {"book:x:connections": "text"}

    @pytest.mark.asyncio
    async def test_creates_parent_directories(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "cache.json"
        await JsonFileArtifactStore(path).set("k", "v")
        assert path.exists()

    @pytest.mark.asyncio
    async def test_leaves_no_temp_files(self, tmp_path):
        store = JsonFileArtifactStore(tmp_path / "cache.json")
        await store.set("a", "1")
        await store.set("b", "2")
        assert [p.name for p in tmp_path.iterdir()] == ["cache.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file_raises_store_error(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StoreError):
            await JsonFileArtifactStore(path).get("k")

    @pytest.mark.asyncio
    async def test_non_object_document_raises_store_error(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(StoreError):
            await JsonFileArtifactStore(path).keys()

    @pytest.mark.asyncio
    async def test_unserializable_value_raises_store_error(self, tmp_path):
        store = JsonFileArtifactStore(tmp_path / "cache.json")
        with pytest.raises(StoreError):
            await store.set("k", object())
