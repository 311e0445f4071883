"""Book processing pipeline.

Sequences the generation stages for one book according to the processing
mode, reading every artifact through the cache:

    summary:          groups (sequential) -> connections
                      -> character relationship (fiction only) -> overall summary
    mindmap:          groups (sequential) -> merge
    combined_mindmap: one stage over all selected chapters

Groups are processed one at a time and in order. Cross-cutting stages only
start once every group has a result.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

from bookdigest.core.cancellation import CancellationToken
from bookdigest.core.config import Settings, get_settings
from bookdigest.core.errors import (
    DigestError,
    MalformedOutputError,
    RunStateError,
    StageCancelled,
)
from bookdigest.core.grouping import group_chapters
from bookdigest.core.llm import extract_mermaid_block, parse_llm_json
from bookdigest.core.logging import get_logger, log_with_context
from bookdigest.core.prompts import (
    chapter_mindmap_prompt,
    chapter_summary_prompt,
    character_relationship_prompt,
    combined_mindmap_prompt,
    connections_prompt,
    language_instruction,
    mindmap_arrows_prompt,
    overall_summary_prompt,
)
from bookdigest.core.schemas_artifacts import (
    ArtifactKind,
    BookCategory,
    Chapter,
    ChapterGroup,
    MindMapData,
    MindMapNode,
    ProcessingMode,
)
from bookdigest.core.schemas_pipeline import (
    GroupResult,
    PartialResult,
    PipelineProgress,
    PipelineRequest,
    PipelineResult,
    PipelineState,
    RunStatus,
    StreamUpdate,
)
from bookdigest.db.artifact_cache import ArtifactCache
from bookdigest.services.generation import GenerationProvider
from bookdigest.services.stage_runner import StageRunner, notify_observer

logger = get_logger(__name__)

ProgressCallback = Callable[[PipelineProgress], Awaitable[None] | None]
PartialCallback = Callable[[PartialResult], Awaitable[None] | None]

MERGED_ROOT_ID = "0"
MERGED_ROOT_TAG = "Whole book"
COMBINED_CONTENT_SEPARATOR = "\n\n ------------- \n\n"

# Progress checkpoints, in percent
GROUPS_START = 20.0
GROUPS_SPAN = 60.0
AFTER_CONNECTIONS = 80.0
AFTER_CHARACTER_RELATIONSHIP = 90.0
AFTER_MERGE = 85.0
DONE = 100.0


def group_progress(completed: int, total: int) -> float:
    if total == 0:
        return GROUPS_START + GROUPS_SPAN
    return GROUPS_START + completed / total * GROUPS_SPAN


def build_merged_mindmap(book_title: str, groups: list[GroupResult]) -> MindMapData:
    """Root node labelled with the book title, one child subtree per group."""
    children = []
    summaries: list[dict[str, Any]] = []
    for index, group in enumerate(groups):
        mind_map = group.mind_map
        children.append(
            MindMapNode(
                id=f"group_{index + 1}",
                topic=group.title,
                children=list(mind_map.node_data.children) if mind_map else [],
            )
        )
        if mind_map:
            summaries.extend(mind_map.summaries)

    root = MindMapNode(
        id=MERGED_ROOT_ID, topic=book_title, tags=[MERGED_ROOT_TAG], children=children
    )
    return MindMapData(node_data=root, arrows=[], summaries=summaries)


def parse_arrows(raw: str) -> list[dict[str, Any]]:
    """Accept either ``{"arrows": [...]}`` or a bare list."""
    data = parse_llm_json(raw, "mind map arrows")
    if isinstance(data, dict):
        data = data.get("arrows")
    if not isinstance(data, list):
        raise MalformedOutputError("Mind map arrows payload has no arrow list")
    return data


def _summaries_block(groups: list[GroupResult]) -> str:
    return "\n\n".join(f"{group.title}:\n{group.summary or ''}" for group in groups)


def _chapter_info(groups: list[GroupResult]) -> str:
    return "\n".join(
        f"Chapter {index + 1}: {group.title}, content: {group.summary or ''}"
        for index, group in enumerate(groups)
    )


def _group_result(group: ChapterGroup, **fields: Any) -> GroupResult:
    return GroupResult(
        group_id=group.group_id,
        title=group.title,
        tag=group.tag,
        chapter_ids=group.chapter_ids,
        chapter_titles=group.chapter_titles,
        **fields,
    )


class BookPipeline:
    """Runs the stages of a book against an ArtifactCache and a generation provider."""

    def __init__(
        self,
        generator: GenerationProvider,
        cache: ArtifactCache | None = None,
        settings_provider: Callable[[], Settings] = get_settings,
        runner: StageRunner | None = None,
    ):
        self.generator = generator
        self.cache = cache if cache is not None else ArtifactCache()
        self.settings_provider = settings_provider
        self.runner = runner or StageRunner(
            self.cache,
            flush_interval=lambda: self.settings_provider().STREAM_FLUSH_INTERVAL_SECONDS,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _category(self, request: PipelineRequest) -> BookCategory:
        if request.book_category is not None:
            return request.book_category
        return BookCategory(self.settings_provider().BOOK_CATEGORY)

    def _localize(self, prompt: str, request: PipelineRequest | None = None) -> str:
        language = (request.output_language if request else None) or (
            self.settings_provider().OUTPUT_LANGUAGE
        )
        return f"{prompt}\n\n{language_instruction(language)}"

    def _observer(
        self,
        state: PipelineState,
        on_partial: PartialCallback | None,
        group_id: str | None = None,
        captured: dict[str, str] | None = None,
    ) -> Callable[[StreamUpdate], Awaitable[None]]:
        async def observe(update: StreamUpdate) -> None:
            if captured is not None:
                captured["reasoning"] = update.reasoning
            value = update.value
            if isinstance(value, MindMapData):
                value = value.to_store()
            await notify_observer(
                on_partial,
                PartialResult(
                    state=state,
                    status="done" if update.final else "streaming",
                    group_id=group_id,
                    content=update.content,
                    reasoning=update.reasoning,
                    value=value,
                ),
            )

        return observe

    async def _record_inputs(self, request: PipelineRequest, chapters: list[Chapter]) -> None:
        """Persist the run's selection and tagging so a later session can resume them."""
        book = request.book
        tags = request.tags
        if tags is None:
            tags = {chapter.id: chapter.tag for chapter in chapters if chapter.tag}
        await self.cache.set_selected_chapters(book, [chapter.id for chapter in chapters])
        await self.cache.set_chapter_tags(book, tags)
        await self.cache.set_custom_prompt(book, request.custom_prompt)
        await self.cache.set_use_custom_only(book, request.use_custom_only)

    # =========================================================================
    # Per-group stages
    # =========================================================================

    async def process_summary_group(
        self,
        request: PipelineRequest,
        group: ChapterGroup,
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> GroupResult:
        """
        Summarize one chapter group (streaming).

        Args:
            request: Run request (category, language, custom prompt)
            group: Group to summarize; its group_id is the cache entity id
            token: Cancellation token for the run
            on_partial: Observer for streaming snapshots

        Returns:
            GroupResult carrying the summary and, on a fresh run, the reasoning
        """
        prompt = self._localize(
            chapter_summary_prompt(
                group.title,
                group.combined_content,
                self._category(request),
                request.custom_prompt,
                request.use_custom_only,
            ),
            request,
        )
        captured = {"reasoning": ""}
        summary = await self.runner.run(
            request.book,
            ArtifactKind.SUMMARY,
            lambda: self.generator.stream(prompt),
            entity_id=group.group_id,
            on_stream=self._observer(PipelineState.PER_GROUP, on_partial, group.group_id, captured),
            token=token,
        )
        return _group_result(group, summary=summary, reasoning=captured["reasoning"] or None)

    async def process_mindmap_group(
        self,
        request: PipelineRequest,
        group: ChapterGroup,
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> GroupResult:
        """Build the mind map of one chapter group (JSON mode, non-streaming)."""
        prompt = self._localize(
            chapter_mindmap_prompt(group.combined_content, request.custom_prompt), request
        )
        mind_map = await self.runner.run(
            request.book,
            ArtifactKind.MINDMAP,
            lambda: self.generator.generate(prompt, json_mode=True),
            entity_id=group.group_id,
            on_stream=self._observer(PipelineState.PER_GROUP, on_partial, group.group_id),
            token=token,
        )
        return _group_result(group, mind_map=mind_map)

    # =========================================================================
    # Cross-cutting stages
    # =========================================================================

    async def generate_connections(
        self,
        request: PipelineRequest,
        groups: list[GroupResult],
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> str:
        prompt = self._localize(
            connections_prompt(_summaries_block(groups), self._category(request)), request
        )
        return await self.runner.run(
            request.book,
            ArtifactKind.CONNECTIONS,
            lambda: self.generator.stream(prompt),
            on_stream=self._observer(PipelineState.CONNECTIONS, on_partial),
            token=token,
        )

    async def generate_character_relationship(
        self,
        request: PipelineRequest,
        groups: list[GroupResult],
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> str:
        """Mermaid relationship graph; only the body of a ```mermaid block is kept."""
        prompt = self._localize(
            character_relationship_prompt(_summaries_block(groups), self._category(request)),
            request,
        )
        return await self.runner.run(
            request.book,
            ArtifactKind.CHARACTER_RELATIONSHIP,
            lambda: self.generator.generate(prompt),
            on_stream=self._observer(PipelineState.CHARACTER_RELATIONSHIP, on_partial),
            token=token,
            postprocess=extract_mermaid_block,
        )

    async def generate_overall_summary(
        self,
        request: PipelineRequest,
        groups: list[GroupResult],
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> str:
        prompt = self._localize(
            overall_summary_prompt(
                request.book_title, _chapter_info(groups), self._category(request)
            ),
            request,
        )
        return await self.runner.run(
            request.book,
            ArtifactKind.OVERALL_SUMMARY,
            lambda: self.generator.stream(prompt),
            on_stream=self._observer(PipelineState.OVERALL_SUMMARY, on_partial),
            token=token,
        )

    async def merge_mindmaps(
        self,
        request: PipelineRequest,
        groups: list[GroupResult],
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> MindMapData:
        """Merge per-group mind maps under one root; cached so re-entry skips the merge."""

        async def merge() -> MindMapData:
            return build_merged_mindmap(request.book_title, groups)

        return await self.runner.run(
            request.book,
            ArtifactKind.MERGED_MINDMAP,
            merge,
            on_stream=self._observer(PipelineState.MERGE, on_partial),
            token=token,
        )

    async def generate_combined_mindmap(
        self,
        request: PipelineRequest,
        chapters: list[Chapter],
        token: CancellationToken | None = None,
        on_partial: PartialCallback | None = None,
    ) -> MindMapData:
        """One mind map over the raw content of every selected chapter."""
        content = COMBINED_CONTENT_SEPARATOR.join(chapter.content for chapter in chapters)
        prompt = self._localize(
            combined_mindmap_prompt(request.book_title, content, request.custom_prompt), request
        )
        return await self.runner.run(
            request.book,
            ArtifactKind.COMBINED_MINDMAP,
            lambda: self.generator.generate(prompt, json_mode=True),
            on_stream=self._observer(PipelineState.COMBINED_MINDMAP, on_partial),
            token=token,
        )

    async def generate_mindmap_arrows(
        self,
        book: str,
        mind_map: MindMapData | None = None,
        token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """
        Ask the provider for cross-links over a merged mind map.

        Args:
            book: Book filename or token
            mind_map: Mind map to link; defaults to the cached merged mind map
            token: Optional cancellation token

        Returns:
            List of arrow objects (id, label, from, to)

        Raises:
            ValueError: If no mind map was given and none is cached
        """
        if mind_map is None:
            mind_map = await self.cache.get(book, ArtifactKind.MERGED_MINDMAP)
        if mind_map is None:
            raise ValueError(f"No merged mind map cached for {book}")

        prompt = self._localize(
            mindmap_arrows_prompt(json.dumps(mind_map.to_store(), ensure_ascii=False))
        )
        return await self.runner.run(
            book,
            ArtifactKind.MINDMAP_ARROWS,
            lambda: self.generator.generate(prompt, json_mode=True),
            token=token,
            postprocess=parse_arrows,
        )

    # =========================================================================
    # Full run
    # =========================================================================

    async def run_pipeline(
        self,
        request: PipelineRequest,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        on_partial: PartialCallback | None = None,
    ) -> PipelineResult:
        """
        Run every stage of the request's processing mode.

        Args:
            request: Book, chapters, tags, mode and options
            token: Cancellation token; a fresh one is used if omitted
            on_progress: Observer for state/percent transitions
            on_partial: Observer for pending/streaming/done stage results

        Returns:
            PipelineResult with group artifacts attributed back to chapters

        Raises:
            ValueError: If no chapters are selected
            StageCancelled: If the token fires
            TransportError, MalformedOutputError: If a stage fails
        """
        token = token or CancellationToken()
        book = request.book

        async def progress(
            state: PipelineState, percent: float, message: str, **extra: Any
        ) -> None:
            log_with_context(logger, logging.INFO, message, book=book, stage=state.value)
            await notify_observer(
                on_progress,
                PipelineProgress(state=state, percent=percent, message=message, **extra),
            )

        chapters = request.selected_chapters()
        if not chapters:
            raise ValueError("No chapters selected for processing")

        await progress(PipelineState.GROUPING, 0.0, f"Grouping {len(chapters)} chapters")
        await self._record_inputs(request, chapters)
        groups = group_chapters(chapters, request.tags)
        total = len(groups)

        result = PipelineResult(book=book, book_title=request.book_title, mode=request.mode)

        if request.mode == ProcessingMode.COMBINED_MINDMAP:
            result.groups = [_group_result(group) for group in groups]
            await progress(
                PipelineState.COMBINED_MINDMAP,
                group_progress(total, total),
                "Generating whole-book mind map",
                total_groups=total,
            )
            result.mind_map = await self.generate_combined_mindmap(
                request, chapters, token, on_partial
            )
            await progress(PipelineState.DONE, DONE, "Processing complete", total_groups=total)
            return result

        for index, group in enumerate(groups):
            token.raise_if_cancelled()
            label = f'tag group "{group.tag}"' if group.tag else group.title
            await progress(
                PipelineState.PER_GROUP,
                group_progress(index, total),
                f"Processing {index + 1}/{total}: {label}",
                group_index=index,
                total_groups=total,
            )
            await notify_observer(
                on_partial,
                PartialResult(
                    state=PipelineState.PER_GROUP, status="pending", group_id=group.group_id
                ),
            )

            if request.mode == ProcessingMode.SUMMARY:
                group_result = await self.process_summary_group(request, group, token, on_partial)
            else:
                group_result = await self.process_mindmap_group(request, group, token, on_partial)

            result.groups.append(group_result)
            for chapter_id in group_result.chapter_ids:
                if group_result.summary is not None:
                    result.chapter_summaries[chapter_id] = group_result.summary
                if group_result.mind_map is not None:
                    result.chapter_mind_maps[chapter_id] = group_result.mind_map

            await progress(
                PipelineState.PER_GROUP,
                group_progress(index + 1, total),
                f"Finished {index + 1}/{total}: {label}",
                group_index=index,
                total_groups=total,
            )

        if request.mode == ProcessingMode.SUMMARY:
            await progress(
                PipelineState.CONNECTIONS,
                group_progress(total, total),
                "Analyzing chapter connections",
            )
            result.connections = await self.generate_connections(
                request, result.groups, token, on_partial
            )

            if self._category(request) == BookCategory.FICTION:
                await progress(
                    PipelineState.CHARACTER_RELATIONSHIP,
                    AFTER_CONNECTIONS,
                    "Generating character relationships",
                )
                result.character_relationship = await self.generate_character_relationship(
                    request, result.groups, token, on_partial
                )

            await progress(
                PipelineState.OVERALL_SUMMARY,
                AFTER_CHARACTER_RELATIONSHIP,
                "Generating overall summary",
            )
            result.overall_summary = await self.generate_overall_summary(
                request, result.groups, token, on_partial
            )
        else:
            await progress(
                PipelineState.MERGE, group_progress(total, total), "Merging chapter mind maps"
            )
            result.mind_map = await self.merge_mindmaps(request, result.groups, token, on_partial)
            await progress(PipelineState.MERGE, AFTER_MERGE, "Merged chapter mind maps")

        await progress(PipelineState.DONE, DONE, "Processing complete", total_groups=total)
        return result


class PipelineRun:
    """
    One execution of a PipelineRequest, with its own cancellation token.

    Tracks state, progress and the latest partial result per stage. A failed
    or aborted run keeps its request so retry() can start an identical run;
    stages that completed before are cache hits on the retry.
    """

    def __init__(
        self,
        pipeline: BookPipeline,
        request: PipelineRequest,
        on_progress: ProgressCallback | None = None,
        on_partial: PartialCallback | None = None,
        run_id: str | None = None,
    ):
        self.run_id = run_id or uuid4().hex
        self.pipeline = pipeline
        self.request = request
        self.on_progress = on_progress
        self.on_partial = on_partial
        self.token = CancellationToken()
        self.state = PipelineState.PENDING
        self.progress = PipelineProgress(state=PipelineState.PENDING)
        self.partials: dict[str, PartialResult] = {}
        self.result: PipelineResult | None = None
        self.error: str | None = None
        self.retried_from: str | None = None

    async def _track_progress(self, progress: PipelineProgress) -> None:
        self.state = progress.state
        self.progress = progress
        await notify_observer(self.on_progress, progress)

    async def _track_partial(self, partial: PartialResult) -> None:
        key = f"{partial.state.value}:{partial.group_id or ''}"
        self.partials[key] = partial
        await notify_observer(self.on_partial, partial)

    def _context(self) -> dict[str, str]:
        return {"run_id": self.run_id, "book": self.request.book}

    async def execute(self) -> PipelineResult | None:
        """
        Run the pipeline to a terminal state.

        Returns:
            The result when done, None when aborted or failed

        Raises:
            RunStateError: If the run was already started
        """
        if self.state != PipelineState.PENDING:
            raise RunStateError(f"Run {self.run_id} already started (state={self.state.value})")
        if self.token.cancelled:
            self.state = PipelineState.ABORTED
            return None

        log_with_context(logger, logging.INFO, "Pipeline run started", **self._context())
        try:
            self.result = await self.pipeline.run_pipeline(
                self.request,
                token=self.token,
                on_progress=self._track_progress,
                on_partial=self._track_partial,
            )
        except StageCancelled as e:
            self.state = PipelineState.ABORTED
            log_with_context(logger, logging.INFO, f"Pipeline run aborted: {e}", **self._context())
            return None
        except asyncio.CancelledError:
            self.state = PipelineState.ABORTED
            log_with_context(logger, logging.INFO, "Pipeline run task cancelled", **self._context())
            raise
        except (DigestError, ValueError) as e:
            self.state = PipelineState.FAILED
            self.error = str(e)
            log_with_context(logger, logging.ERROR, f"Pipeline run failed: {e}", **self._context())
            return None
        except Exception as e:
            self.state = PipelineState.FAILED
            self.error = str(e)
            logger.exception(f"Unexpected error in pipeline run {self.run_id}")
            raise

        self.state = PipelineState.DONE
        log_with_context(logger, logging.INFO, "Pipeline run finished", **self._context())
        return self.result

    def cancel(self, reason: str = "Cancelled by user") -> bool:
        """Fire the run's cancellation token. Returns False if the run already ended."""
        if self.state.is_terminal:
            return False
        self.token.cancel(reason)
        log_with_context(
            logger, logging.INFO, f"Cancellation requested: {reason}", **self._context()
        )
        return True

    def retry(self) -> "PipelineRun":
        """
        Create a new run with the identical request.

        Raises:
            RunStateError: If this run did not fail or abort
        """
        if self.state not in (PipelineState.FAILED, PipelineState.ABORTED):
            raise RunStateError(
                f"Only failed or aborted runs can be retried (state={self.state.value})"
            )
        retry_run = PipelineRun(
            self.pipeline,
            self.request,
            on_progress=self.on_progress,
            on_partial=self.on_partial,
        )
        retry_run.retried_from = self.run_id
        return retry_run

    def status(self) -> RunStatus:
        return RunStatus(
            run_id=self.run_id,
            book=self.request.book,
            mode=self.request.mode,
            state=self.state,
            progress=self.progress,
            partials=list(self.partials.values()),
            result=self.result,
            error=self.error,
            retried_from=self.retried_from,
        )
