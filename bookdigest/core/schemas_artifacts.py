"""Pydantic models for chapters, chapter groups and cached artifacts.

Artifacts are stored untyped in the artifact store; the mapping in
KIND_PAYLOADS fixes, per artifact kind, which payload shape a reader may
expect and a writer must supply.
"""

from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


# =============================================================================
# Enums
# =============================================================================


class ArtifactKind(str, Enum):
    """Kinds of cached artifacts. Values are part of the storage key."""

    # Chapter/group scoped
    SUMMARY = "summary"
    MINDMAP = "mindmap"
    # Book scoped
    CONNECTIONS = "connections"
    OVERALL_SUMMARY = "overall_summary"
    CHARACTER_RELATIONSHIP = "character_relationship"
    MERGED_MINDMAP = "merged_mindmap"
    COMBINED_MINDMAP = "combined_mindmap"
    MINDMAP_ARROWS = "mindmap_arrows"
    SELECTED_CHAPTERS = "selected_chapters"
    CHAPTER_TAGS = "chapter_tags"
    CUSTOM_PROMPT = "custom_prompt"
    USE_CUSTOM_ONLY = "use_custom_only"

    @property
    def is_entity_scoped(self) -> bool:
        return self in ENTITY_SCOPED_KINDS


ENTITY_SCOPED_KINDS = frozenset({ArtifactKind.SUMMARY, ArtifactKind.MINDMAP})


class ProcessingMode(str, Enum):
    """What a pipeline run produces."""

    SUMMARY = "summary"
    MINDMAP = "mindmap"
    COMBINED_MINDMAP = "combined_mindmap"


class BookCategory(str, Enum):
    FICTION = "fiction"
    NON_FICTION = "non-fiction"


# =============================================================================
# Chapters and groups
# =============================================================================


class Chapter(BaseModel):
    """A chapter as produced by the document parser."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: str = ""
    tag: str | None = None


class ChapterGroup(BaseModel):
    """One or more chapters processed as a single generation unit.

    Never persisted; recomputed from the current tags on every run.
    """

    group_id: str
    tag: str | None = None
    chapters: list[Chapter]

    @property
    def chapter_ids(self) -> list[str]:
        return [chapter.id for chapter in self.chapters]

    @property
    def chapter_titles(self) -> list[str]:
        return [chapter.title for chapter in self.chapters]

    @property
    def title(self) -> str:
        """Display title: the tag with member titles, or the lone chapter's title."""
        if self.tag:
            return f"{self.tag} ({', '.join(self.chapter_titles)})"
        return self.chapters[0].title

    @property
    def combined_content(self) -> str:
        return "\n\n".join(f"## {ch.title}\n\n{ch.content}" for ch in self.chapters)


# =============================================================================
# Mind maps
# =============================================================================


class MindMapNode(BaseModel):
    """A mind-map node. Unknown renderer attributes are preserved."""

    model_config = ConfigDict(extra="allow")

    id: str = ""
    topic: str
    children: list["MindMapNode"] = Field(default_factory=list)
    tags: list[str] | None = None

    @field_validator("id", "topic", mode="before")
    @classmethod
    def _coerce_scalar(cls, value: Any) -> Any:
        # Generators frequently emit numeric ids and topics (years, counts)
        if isinstance(value, int | float):
            return str(value)
        return value


class MindMapData(BaseModel):
    """Mind-map graph: root node plus cross-links (arrows) and summaries."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    node_data: MindMapNode = Field(alias="nodeData")
    arrows: list[dict[str, Any]] = Field(default_factory=list)
    summaries: list[dict[str, Any]] = Field(default_factory=list)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# Payload shapes per kind
# =============================================================================

ArtifactValue = str | MindMapData | list[str] | list[dict[str, Any]] | dict[str, str] | bool

KIND_PAYLOADS: dict[ArtifactKind, Any] = {
    ArtifactKind.SUMMARY: str,
    ArtifactKind.MINDMAP: MindMapData,
    ArtifactKind.CONNECTIONS: str,
    ArtifactKind.OVERALL_SUMMARY: str,
    ArtifactKind.CHARACTER_RELATIONSHIP: str,
    ArtifactKind.MERGED_MINDMAP: MindMapData,
    ArtifactKind.COMBINED_MINDMAP: MindMapData,
    ArtifactKind.MINDMAP_ARROWS: list[dict[str, Any]],
    ArtifactKind.SELECTED_CHAPTERS: list[str],
    ArtifactKind.CHAPTER_TAGS: dict[str, str],
    ArtifactKind.CUSTOM_PROMPT: str,
    ArtifactKind.USE_CUSTOM_ONLY: bool,
}

TEXT_KINDS = frozenset(kind for kind, payload in KIND_PAYLOADS.items() if payload is str)
MINDMAP_KINDS = frozenset(
    kind for kind, payload in KIND_PAYLOADS.items() if payload is MindMapData
)


@lru_cache
def payload_adapter(kind: ArtifactKind) -> TypeAdapter:
    return TypeAdapter(KIND_PAYLOADS[kind])


def validate_payload(kind: ArtifactKind, value: Any) -> Any:
    """
    Validate a raw or typed value against the payload shape of ``kind``.

    Mind maps are validated leniently (node ids may arrive as numbers); every
    other kind is validated strictly so that, e.g., the string "true" is never
    read back as a boolean.

    Raises:
        pydantic.ValidationError: If the value does not have the expected shape
    """
    if kind in MINDMAP_KINDS:
        if isinstance(value, MindMapData):
            return value
        return MindMapData.model_validate(value)
    return payload_adapter(kind).validate_python(value, strict=True)


def to_store_value(kind: ArtifactKind, value: Any) -> Any:
    """Convert a typed artifact into the JSON-compatible form kept in the store."""
    if isinstance(value, MindMapData):
        return value.to_store()
    if kind == ArtifactKind.SELECTED_CHAPTERS:
        return list(value)
    if kind == ArtifactKind.CHAPTER_TAGS:
        return dict(value)
    return value


# =============================================================================
# Cache inspection
# =============================================================================


class CacheEntry(BaseModel):
    """A decoded store key."""

    key: str
    book_token: str
    kind: ArtifactKind
    entity_id: str | None = None
