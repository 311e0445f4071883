"""Pydantic models for pipeline requests, progress events and results."""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from bookdigest.core.schemas_artifacts import (
    BookCategory,
    Chapter,
    MindMapData,
    ProcessingMode,
)


class PipelineState(str, Enum):
    """States of a pipeline run.

    summary:          grouping -> per_group -> connections
                      -> character_relationship (fiction only) -> overall_summary -> done
    mindmap:          grouping -> per_group -> merge -> done
    combined_mindmap: grouping -> combined_mindmap -> done
    aborted/failed are reachable from every non-terminal state.
    """

    PENDING = "pending"
    GROUPING = "grouping"
    PER_GROUP = "per_group"
    CONNECTIONS = "connections"
    CHARACTER_RELATIONSHIP = "character_relationship"
    OVERALL_SUMMARY = "overall_summary"
    MERGE = "merge"
    COMBINED_MINDMAP = "combined_mindmap"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.ABORTED, PipelineState.FAILED)


class StreamUpdate(BaseModel):
    """Snapshot of a streaming stage handed to observers."""

    content: str
    reasoning: str = ""
    final: bool = False
    from_cache: bool = False
    # Final artifact value; set on the final update only
    value: Any = None


class PipelineRequest(BaseModel):
    """Everything a run needs; kept verbatim so a retry reuses it."""

    book: str = Field(..., description="Source filename; sanitized into the book token")
    book_title: str
    chapters: list[Chapter]
    tags: dict[str, str] | None = Field(
        default=None, description="chapter id -> tag; None falls back to Chapter.tag"
    )
    selected_chapter_ids: list[str] | None = Field(
        default=None, description="Process only these chapters; None processes all"
    )
    mode: ProcessingMode = ProcessingMode.SUMMARY
    book_category: BookCategory | None = None
    output_language: str | None = None
    custom_prompt: str = ""
    use_custom_only: bool = False

    def selected_chapters(self) -> list[Chapter]:
        if self.selected_chapter_ids is None:
            return list(self.chapters)
        selected = set(self.selected_chapter_ids)
        return [chapter for chapter in self.chapters if chapter.id in selected]


class PipelineProgress(BaseModel):
    state: PipelineState
    percent: float = 0.0
    message: str = ""
    group_index: int | None = None
    total_groups: int = 0


class PartialResult(BaseModel):
    """Per-stage observable transition: pending, streaming snapshots, done."""

    state: PipelineState
    status: Literal["pending", "streaming", "done"]
    group_id: str | None = None
    content: str = ""
    reasoning: str = ""
    value: Any = None


class GroupResult(BaseModel):
    """Outcome of one per-group stage."""

    group_id: str
    title: str
    tag: str | None = None
    chapter_ids: list[str]
    chapter_titles: list[str]
    summary: str | None = None
    reasoning: str | None = None
    mind_map: MindMapData | None = None


class PipelineResult(BaseModel):
    book: str
    book_title: str
    mode: ProcessingMode
    groups: list[GroupResult] = Field(default_factory=list)
    # Group artifacts attributed back to every member chapter
    chapter_summaries: dict[str, str] = Field(default_factory=dict)
    chapter_mind_maps: dict[str, MindMapData] = Field(default_factory=dict)
    connections: str | None = None
    character_relationship: str | None = None
    overall_summary: str | None = None
    mind_map: MindMapData | None = None


class RunStatus(BaseModel):
    """Observable state of a pipeline run."""

    run_id: str
    book: str
    mode: ProcessingMode
    state: PipelineState
    progress: PipelineProgress
    partials: list[PartialResult] = Field(default_factory=list)
    result: PipelineResult | None = None
    error: str | None = None
    retried_from: str | None = None
