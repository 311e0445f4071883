"""Tests for the typed artifact cache and its bulk deletion operations."""

import pytest
from pydantic import ValidationError

from bookdigest.core.key_scheme import encode_key
from bookdigest.core.schemas_artifacts import ArtifactKind, MindMapData, ProcessingMode
from bookdigest.db.artifact_cache import ArtifactCache
from tests.fakes.failing_store import FailingStore
from tests.fakes.fake_generator import SAMPLE_MIND_MAP

BOOK = "My Book.epub"
TOKEN = "My_Book"


async def _populate(cache: ArtifactCache) -> None:
    """A book with artifacts of every mode plus a second book."""
    mind_map = MindMapData.model_validate(SAMPLE_MIND_MAP)
    await cache.set(BOOK, ArtifactKind.SUMMARY, "summary 1", "c1")
    await cache.set(BOOK, ArtifactKind.SUMMARY, "summary 2", "c2")
    await cache.set(BOOK, ArtifactKind.MINDMAP, mind_map, "c1")
    await cache.set(BOOK, ArtifactKind.CONNECTIONS, "connections")
    await cache.set(BOOK, ArtifactKind.OVERALL_SUMMARY, "overall")
    await cache.set(BOOK, ArtifactKind.MERGED_MINDMAP, mind_map)
    await cache.set(BOOK, ArtifactKind.COMBINED_MINDMAP, mind_map)
    await cache.set_selected_chapters(BOOK, ["c1", "c2"])
    await cache.set_chapter_tags(BOOK, {"c1": "Act1"})
    await cache.set_custom_prompt(BOOK, "Be brief")
    await cache.set("Other.pdf", ArtifactKind.SUMMARY, "other summary", "c1")


class TestTypedAccess:
    @pytest.mark.asyncio
    async def test_text_round_trip(self, cache):
        assert await cache.set(BOOK, ArtifactKind.CONNECTIONS, "links") is True
        assert await cache.get(BOOK, ArtifactKind.CONNECTIONS) == "links"

    @pytest.mark.asyncio
    async def test_mind_map_is_stored_as_json_and_read_typed(self, cache, store):
        mind_map = MindMapData.model_validate(SAMPLE_MIND_MAP)
        await cache.set(BOOK, ArtifactKind.MINDMAP, mind_map, "c1")

        raw = await store.get(encode_key(TOKEN, ArtifactKind.MINDMAP, "c1"))
        assert raw["nodeData"]["topic"] == "Chapter topic"
        assert await cache.get(BOOK, ArtifactKind.MINDMAP, "c1") == mind_map

    @pytest.mark.asyncio
    async def test_wrong_shape_reads_as_miss(self, cache, store):
        await store.set(encode_key(TOKEN, ArtifactKind.USE_CUSTOM_ONLY), "true")
        await store.set(encode_key(TOKEN, ArtifactKind.MINDMAP, "c1"), {"arrows": []})

        assert await cache.get(BOOK, ArtifactKind.USE_CUSTOM_ONLY) is None
        assert await cache.get(BOOK, ArtifactKind.MINDMAP, "c1") is None

    @pytest.mark.asyncio
    async def test_writing_wrong_shape_is_rejected(self, cache):
        with pytest.raises(ValidationError):
            await cache.set(BOOK, ArtifactKind.SELECTED_CHAPTERS, "c1,c2")

    @pytest.mark.asyncio
    async def test_run_input_helpers(self, cache):
        await cache.set_selected_chapters(BOOK, ("c1", "c3"))
        await cache.set_chapter_tags(BOOK, {"c1": "Act1"})
        await cache.set_custom_prompt(BOOK, "Focus on economics")

        assert await cache.get_selected_chapters(BOOK) == ["c1", "c3"]
        assert await cache.get_chapter_tags(BOOK) == {"c1": "Act1"}
        assert await cache.get_custom_prompt(BOOK) == "Focus on economics"
        assert await cache.get_use_custom_only(BOOK) is False

        await cache.set_use_custom_only(BOOK, True)
        assert await cache.get_use_custom_only(BOOK) is True


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_failed_read_is_a_miss(self):
        cache = ArtifactCache(FailingStore(fail_reads=True))
        assert await cache.get(BOOK, ArtifactKind.CONNECTIONS) is None

    @pytest.mark.asyncio
    async def test_failed_write_reports_false(self):
        cache = ArtifactCache(FailingStore(fail_writes=True))
        assert await cache.set(BOOK, ArtifactKind.CONNECTIONS, "links") is False

    @pytest.mark.asyncio
    async def test_delete_works_while_reads_fail(self):
        store = FailingStore()
        cache = ArtifactCache(store)
        await cache.set(BOOK, ArtifactKind.SUMMARY, "Intro summary", "Intro")
        store.fail_reads = True

        assert await cache.clear_chapter_cache(BOOK, "Intro", ArtifactKind.SUMMARY) is True
        assert await store.keys() == []
        assert await cache.clear_chapter_cache(BOOK, "Intro", ArtifactKind.SUMMARY) is False


class TestGranularDeletion:
    @pytest.mark.asyncio
    async def test_clear_chapter_cache_removes_exactly_one_entry(self, cache, store):
        await _populate(cache)
        before = set(await store.keys())

        assert await cache.clear_chapter_cache(BOOK, "c1", ArtifactKind.SUMMARY) is True

        after = set(await store.keys())
        assert before - after == {encode_key(TOKEN, ArtifactKind.SUMMARY, "c1")}
        assert await cache.get(BOOK, ArtifactKind.SUMMARY, "c2") == "summary 2"
        assert await cache.get(BOOK, ArtifactKind.MINDMAP, "c1") is not None

    @pytest.mark.asyncio
    async def test_clear_missing_chapter_returns_false(self, cache):
        assert await cache.clear_chapter_cache(BOOK, "nope", ArtifactKind.SUMMARY) is False

    @pytest.mark.asyncio
    async def test_clear_chapter_cache_rejects_book_scoped_kind(self, cache):
        with pytest.raises(ValueError):
            await cache.clear_chapter_cache(BOOK, "c1", ArtifactKind.CONNECTIONS)

    @pytest.mark.asyncio
    async def test_clear_by_kind_entity_scoped(self, cache):
        await _populate(cache)

        assert await cache.clear_by_kind(BOOK, ArtifactKind.SUMMARY) == 2
        assert await cache.get(BOOK, ArtifactKind.SUMMARY, "c1") is None
        assert await cache.get("Other.pdf", ArtifactKind.SUMMARY, "c1") == "other summary"

    @pytest.mark.asyncio
    async def test_clear_by_kind_book_scoped(self, cache):
        await _populate(cache)

        assert await cache.clear_by_kind(BOOK, ArtifactKind.CONNECTIONS) == 1
        assert await cache.clear_by_kind(BOOK, ArtifactKind.CONNECTIONS) == 0

    @pytest.mark.asyncio
    async def test_clear_by_summary_mode(self, cache):
        await _populate(cache)

        # 2 summaries, connections, overall summary, selected chapters, chapter tags
        assert await cache.clear_by_book_and_mode(BOOK, ProcessingMode.SUMMARY) == 6

        assert await cache.get(BOOK, ArtifactKind.MINDMAP, "c1") is not None
        assert await cache.get(BOOK, ArtifactKind.MERGED_MINDMAP) is not None
        assert await cache.get_custom_prompt(BOOK) == "Be brief"

    @pytest.mark.asyncio
    async def test_clear_by_mindmap_mode(self, cache):
        await _populate(cache)

        # 1 chapter mind map, merged mind map, selected chapters, chapter tags
        assert await cache.clear_by_book_and_mode(BOOK, ProcessingMode.MINDMAP) == 4
        assert await cache.get(BOOK, ArtifactKind.SUMMARY, "c1") == "summary 1"
        assert await cache.get(BOOK, ArtifactKind.COMBINED_MINDMAP) is not None

    @pytest.mark.asyncio
    async def test_clear_by_combined_mode(self, cache):
        await _populate(cache)

        assert await cache.clear_by_book_and_mode(BOOK, ProcessingMode.COMBINED_MINDMAP) == 3
        assert await cache.get(BOOK, ArtifactKind.COMBINED_MINDMAP) is None

    @pytest.mark.asyncio
    async def test_clear_all_for_book(self, cache, store):
        await _populate(cache)

        assert await cache.clear_all_for_book(BOOK) == 10
        assert await store.keys() == [encode_key("Other", ArtifactKind.SUMMARY, "c1")]


class TestInspection:
    @pytest.mark.asyncio
    async def test_list_cache_by_book_groups_entries(self, cache, store):
        await _populate(cache)
        await store.set("foreign-key", "ignored")

        by_book = await cache.list_cache_by_book()

        assert set(by_book) == {TOKEN, "Other"}
        assert len(by_book[TOKEN]) == 10
        kinds = {(e.kind, e.entity_id) for e in by_book[TOKEN]}
        assert (ArtifactKind.SUMMARY, "c2") in kinds
        assert await cache.cache_size() == 12

    @pytest.mark.asyncio
    async def test_get_and_delete_by_key(self, cache):
        await cache.set(BOOK, ArtifactKind.CONNECTIONS, "links")
        key = encode_key(TOKEN, ArtifactKind.CONNECTIONS)

        assert await cache.get_value_by_key(key) == "links"
        assert await cache.delete_by_key(key) is True
        assert await cache.delete_by_key(key) is False

    @pytest.mark.asyncio
    async def test_clear_all(self, cache):
        await _populate(cache)
        await cache.clear_all()
        assert await cache.cache_size() == 0
