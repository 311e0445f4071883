"""Typed artifact cache over an untyped ArtifactStore.

Reads validate the stored value against the payload shape of its kind; a
value of the wrong shape is a cache miss. Store failures never abort a run:
failed reads degrade to misses and failed writes are logged and reported
through the return value.

Bulk operations (by kind, by processing mode, by book) decode every key in
the store and filter, since stores offer no prefix query.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from functools import lru_cache
from typing import Any

from pydantic import ValidationError

from bookdigest.core.errors import StoreError
from bookdigest.core.key_scheme import ArtifactKey, decode_key, sanitize_book_token
from bookdigest.core.logging import get_logger
from bookdigest.core.schemas_artifacts import (
    ArtifactKind,
    CacheEntry,
    ProcessingMode,
    to_store_value,
    validate_payload,
)
from bookdigest.db.artifact_store import ArtifactStore, get_artifact_store

logger = get_logger(__name__)

# Book-scoped kinds swept by clear_by_book_and_mode, per mode
MODE_BOOK_KINDS: dict[ProcessingMode, tuple[ArtifactKind, ...]] = {
    ProcessingMode.SUMMARY: (
        ArtifactKind.CONNECTIONS,
        ArtifactKind.CHARACTER_RELATIONSHIP,
        ArtifactKind.OVERALL_SUMMARY,
    ),
    ProcessingMode.MINDMAP: (
        ArtifactKind.MINDMAP_ARROWS,
        ArtifactKind.MERGED_MINDMAP,
    ),
    ProcessingMode.COMBINED_MINDMAP: (ArtifactKind.COMBINED_MINDMAP,),
}

# Chapter-scoped kind swept by clear_by_book_and_mode, per mode
MODE_ENTITY_KIND: dict[ProcessingMode, ArtifactKind | None] = {
    ProcessingMode.SUMMARY: ArtifactKind.SUMMARY,
    ProcessingMode.MINDMAP: ArtifactKind.MINDMAP,
    ProcessingMode.COMBINED_MINDMAP: None,
}

# Run inputs are cleared together with any mode's artifacts
RUN_INPUT_KINDS = (ArtifactKind.SELECTED_CHAPTERS, ArtifactKind.CHAPTER_TAGS)


class ArtifactCache:
    """Typed reads/writes and bulk deletion of cached artifacts."""

    def __init__(self, store: ArtifactStore | None = None):
        self.store = store if store is not None else get_artifact_store()

    # =========================================================================
    # Single entries
    # =========================================================================

    async def get(
        self, book: str, kind: ArtifactKind, entity_id: str | None = None
    ) -> Any | None:
        """
        Read an artifact.

        Args:
            book: Book filename or token
            kind: Artifact kind
            entity_id: Chapter/group id for chapter-scoped kinds

        Returns:
            The typed value, or None on miss, wrong shape or store failure
        """
        key = ArtifactKey.for_book(book, kind, entity_id).encode()
        try:
            raw = await self.store.get(key)
        except StoreError as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None

        if raw is None:
            return None

        try:
            return validate_payload(kind, raw)
        except ValidationError:
            logger.warning(f"Cached value under {key} has the wrong shape for {kind.value}")
            return None

    async def set(
        self, book: str, kind: ArtifactKind, value: Any, entity_id: str | None = None
    ) -> bool:
        """
        Write an artifact as a single store write.

        Returns:
            True if persisted, False if the store failed

        Raises:
            pydantic.ValidationError: If ``value`` is not the payload shape of ``kind``
        """
        key = ArtifactKey.for_book(book, kind, entity_id).encode()
        value = validate_payload(kind, value)
        try:
            await self.store.set(key, to_store_value(kind, value))
        except StoreError as e:
            logger.error(f"Cache write failed for {key}: {e}")
            return False
        return True

    async def delete(self, book: str, kind: ArtifactKind, entity_id: str | None = None) -> bool:
        return await self.delete_by_key(ArtifactKey.for_book(book, kind, entity_id).encode())

    async def get_value_by_key(self, key: str) -> Any | None:
        try:
            return await self.store.get(key)
        except StoreError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None

    async def delete_by_key(self, key: str) -> bool:
        """
        Delete one store entry.

        Returns:
            True if the entry existed and was removed
        """
        try:
            if key not in await self.store.keys():
                return False
            await self.store.remove(key)
        except StoreError as e:
            logger.warning(f"Cache delete failed for {key}: {e}")
            return False
        return True

    # =========================================================================
    # Run inputs
    # =========================================================================

    async def get_selected_chapters(self, book: str) -> list[str] | None:
        return await self.get(book, ArtifactKind.SELECTED_CHAPTERS)

    async def set_selected_chapters(self, book: str, chapter_ids: Iterable[str]) -> bool:
        return await self.set(book, ArtifactKind.SELECTED_CHAPTERS, list(chapter_ids))

    async def get_chapter_tags(self, book: str) -> dict[str, str] | None:
        return await self.get(book, ArtifactKind.CHAPTER_TAGS)

    async def set_chapter_tags(self, book: str, tags: Mapping[str, str]) -> bool:
        return await self.set(book, ArtifactKind.CHAPTER_TAGS, dict(tags))

    async def get_custom_prompt(self, book: str) -> str | None:
        return await self.get(book, ArtifactKind.CUSTOM_PROMPT)

    async def set_custom_prompt(self, book: str, custom_prompt: str) -> bool:
        return await self.set(book, ArtifactKind.CUSTOM_PROMPT, custom_prompt)

    async def get_use_custom_only(self, book: str) -> bool:
        value = await self.get(book, ArtifactKind.USE_CUSTOM_ONLY)
        return bool(value)

    async def set_use_custom_only(self, book: str, use_custom_only: bool) -> bool:
        return await self.set(book, ArtifactKind.USE_CUSTOM_ONLY, use_custom_only)

    # =========================================================================
    # Enumeration
    # =========================================================================

    async def list_entries(self) -> list[CacheEntry]:
        """
        Decode every key in the store; foreign keys are skipped.

        Raises:
            StoreError: If the store cannot enumerate its keys
        """
        entries = []
        for key in await self.store.keys():
            decoded = decode_key(key)
            if decoded is None:
                continue
            entries.append(
                CacheEntry(
                    key=key,
                    book_token=decoded.book_token,
                    kind=decoded.kind,
                    entity_id=decoded.entity_id,
                )
            )
        return entries

    async def list_cache_by_book(self) -> dict[str, list[CacheEntry]]:
        grouped: dict[str, list[CacheEntry]] = defaultdict(list)
        for entry in await self.list_entries():
            grouped[entry.book_token].append(entry)
        return dict(grouped)

    async def cache_size(self) -> int:
        return len(await self.store.keys())

    # =========================================================================
    # Bulk deletion
    # =========================================================================

    async def _delete_entries(self, entries: Iterable[CacheEntry]) -> int:
        deleted = 0
        for entry in entries:
            if await self.delete_by_key(entry.key):
                deleted += 1
        return deleted

    async def clear_chapter_cache(self, book: str, entity_id: str, kind: ArtifactKind) -> bool:
        """Delete one chapter/group-scoped artifact, leaving siblings untouched."""
        if not kind.is_entity_scoped:
            raise ValueError(f"Artifact kind {kind.value} is not chapter-scoped")
        deleted = await self.delete(book, kind, entity_id)
        logger.info(f"Cleared {kind.value} for {entity_id} in {book}: {deleted}")
        return deleted

    async def clear_by_kind(self, book: str, kind: ArtifactKind) -> int:
        """Delete every artifact of ``kind`` for a book. Returns the number deleted."""
        if not kind.is_entity_scoped:
            return int(await self.delete(book, kind))

        token = sanitize_book_token(book)
        entries = [
            e for e in await self.list_entries() if e.book_token == token and e.kind == kind
        ]
        return await self._delete_entries(entries)

    async def clear_by_book_and_mode(self, book: str, mode: ProcessingMode) -> int:
        """
        Delete what a processing mode produced for a book, plus its run inputs.

        Returns:
            Number of entries deleted
        """
        deleted = 0
        for kind in RUN_INPUT_KINDS + MODE_BOOK_KINDS[mode]:
            if await self.delete(book, kind):
                deleted += 1

        entity_kind = MODE_ENTITY_KIND[mode]
        if entity_kind is not None:
            deleted += await self.clear_by_kind(book, entity_kind)

        logger.info(f"Cleared {deleted} {mode.value} cache entries for {book}")
        return deleted

    async def clear_all_for_book(self, book: str) -> int:
        token = sanitize_book_token(book)
        entries = [e for e in await self.list_entries() if e.book_token == token]
        deleted = await self._delete_entries(entries)
        logger.info(f"Cleared all {deleted} cache entries for {token}")
        return deleted

    async def clear_all(self) -> None:
        await self.store.clear()


@lru_cache
def get_artifact_cache() -> ArtifactCache:
    """Process-wide cache over the configured artifact store."""
    return ArtifactCache(get_artifact_store())
