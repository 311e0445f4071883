"""API endpoints for inspecting and clearing cached artifacts."""

from fastapi import APIRouter, HTTPException

from bookdigest.core.logging import get_logger
from bookdigest.core.schemas_artifacts import ArtifactKind, ProcessingMode
from bookdigest.db.artifact_cache import get_artifact_cache

logger = get_logger(__name__)

router = APIRouter()


@router.get("")
async def list_cache() -> dict:
    """
    List cached artifacts grouped by book token.

    Returns:
        Dict with books (token -> entries) and the total store size
    """
    try:
        cache = get_artifact_cache()
        by_book = await cache.list_cache_by_book()
        return {
            "books": {
                token: [entry.model_dump(mode="json") for entry in entries]
                for token, entries in by_book.items()
            },
            "total": await cache.cache_size(),
        }

    except Exception:
        logger.exception("Failed to list cache entries")
        raise HTTPException(status_code=500, detail="Failed to list cache entries")


@router.delete("/{book}")
async def clear_book(book: str) -> dict:
    """Delete every cached artifact of a book."""
    try:
        deleted = await get_artifact_cache().clear_all_for_book(book)
        return {"book": book, "deleted": deleted}

    except Exception:
        logger.exception(f"Failed to clear cache for {book}")
        raise HTTPException(status_code=500, detail="Failed to clear cache")


@router.delete("/{book}/modes/{mode}")
async def clear_book_mode(book: str, mode: ProcessingMode) -> dict:
    """Delete what one processing mode produced for a book, plus its run inputs."""
    try:
        deleted = await get_artifact_cache().clear_by_book_and_mode(book, mode)
        return {"book": book, "mode": mode.value, "deleted": deleted}

    except Exception:
        logger.exception(f"Failed to clear {mode.value} cache for {book}")
        raise HTTPException(status_code=500, detail="Failed to clear cache")


@router.delete("/{book}/kinds/{kind}")
async def clear_book_kind(book: str, kind: ArtifactKind) -> dict:
    try:
        deleted = await get_artifact_cache().clear_by_kind(book, kind)
        return {"book": book, "kind": kind.value, "deleted": deleted}

    except Exception:
        logger.exception(f"Failed to clear {kind.value} cache for {book}")
        raise HTTPException(status_code=500, detail="Failed to clear cache")


@router.delete("/{book}/entities/{kind}/{entity_id}")
async def clear_entity(book: str, kind: ArtifactKind, entity_id: str) -> dict:
    """
    Delete one chapter/group-scoped artifact.

    Raises:
        HTTPException 422: If the kind is not chapter-scoped
    """
    if not kind.is_entity_scoped:
        raise HTTPException(
            status_code=422, detail=f"Artifact kind {kind.value} is not chapter-scoped"
        )

    try:
        deleted = await get_artifact_cache().clear_chapter_cache(book, entity_id, kind)
        return {"book": book, "kind": kind.value, "entity_id": entity_id, "deleted": deleted}

    except Exception:
        logger.exception(f"Failed to clear {kind.value}/{entity_id} for {book}")
        raise HTTPException(status_code=500, detail="Failed to clear cache")
