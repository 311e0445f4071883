"""Read-through cache primitive for one generation stage.

A stage either finds its artifact in the cache or computes it, validates it
and persists it with a single store write. Streaming output is coalesced
before it reaches observers. A cancelled stage never writes.
"""

import inspect
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from bookdigest.core.cancellation import CancellationToken, run_cancellable
from bookdigest.core.errors import MalformedOutputError, StageCancelled
from bookdigest.core.llm import parse_mindmap_payload
from bookdigest.core.logging import get_logger, log_with_context
from bookdigest.core.schemas_artifacts import (
    MINDMAP_KINDS,
    TEXT_KINDS,
    ArtifactKind,
    MindMapData,
    to_store_value,
    validate_payload,
)
from bookdigest.core.schemas_pipeline import StreamUpdate
from bookdigest.core.stream_coalescer import StreamCoalescer
from bookdigest.db.artifact_cache import ArtifactCache

logger = get_logger(__name__)

# A compute function returns either an awaitable result or an async iterator
# of chunks exposing ``content_delta`` and ``reasoning_delta``
ComputeFn = Callable[[], Awaitable[Any] | AsyncIterator[Any]]
StreamCallback = Callable[[StreamUpdate], Awaitable[None] | None]


def finalize_artifact(kind: ArtifactKind, raw: Any) -> Any:
    """
    Turn raw stage output into the typed artifact for ``kind``.

    Raises:
        MalformedOutputError: Empty text, an invalid mind map, or
            any other value not matching the kind's payload shape
    """
    if kind in MINDMAP_KINDS:
        return parse_mindmap_payload(raw)

    if kind in TEXT_KINDS:
        if not isinstance(raw, str) or not raw.strip():
            raise MalformedOutputError(f"Generator returned empty {kind.value} output")
        return raw

    try:
        return validate_payload(kind, raw)
    except ValidationError as e:
        raise MalformedOutputError(f"Invalid {kind.value} payload: {e}") from e


async def notify_observer(callback: Callable[[Any], Any] | None, payload: Any) -> None:
    """Invoke a sync or async observer; None is a no-op."""
    if callback is None:
        return
    result = callback(payload)
    if inspect.isawaitable(result):
        await result


def _display_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, MindMapData):
        return json.dumps(value.to_store(), ensure_ascii=False)
    return json.dumps(value, ensure_ascii=False)


class StageRunner:
    """Runs stages against an ArtifactCache."""

    def __init__(
        self,
        cache: ArtifactCache,
        flush_interval: float | Callable[[], float] = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cache = cache
        self.flush_interval = flush_interval
        self.clock = clock

    def _current_flush_interval(self) -> float:
        # A callable is re-read at the start of every stage
        if callable(self.flush_interval):
            return self.flush_interval()
        return self.flush_interval

    async def _consume_stream(
        self,
        chunks: AsyncIterator[Any],
        on_stream: StreamCallback | None,
        token: CancellationToken | None,
    ) -> StreamCoalescer:
        coalescer = StreamCoalescer(self._current_flush_interval())
        iterator = chunks.__aiter__()
        try:
            while True:
                try:
                    chunk = await run_cancellable(iterator.__anext__(), token)
                except StopAsyncIteration:
                    break
                update = coalescer.push(
                    getattr(chunk, "content_delta", ""),
                    getattr(chunk, "reasoning_delta", ""),
                    self.clock(),
                )
                if update is not None:
                    await notify_observer(on_stream, update)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        return coalescer

    async def run(
        self,
        book: str,
        kind: ArtifactKind,
        compute: ComputeFn,
        *,
        entity_id: str | None = None,
        on_stream: StreamCallback | None = None,
        token: CancellationToken | None = None,
        postprocess: Callable[[Any], Any] | None = None,
    ) -> Any:
        """
        Return the cached artifact, or compute, validate and persist it.

        Args:
            book: Book filename or token
            kind: Artifact kind produced by this stage
            compute: Called only on a cache miss
            entity_id: Chapter/group id for chapter-scoped kinds
            on_stream: Observer for partial and final snapshots
            token: Cancellation token for the run
            postprocess: Applied to the raw output before validation

        Returns:
            The typed artifact value

        Raises:
            StageCancelled: If the token fires before the artifact is persisted
            TransportError: If the generator fails
            MalformedOutputError: If the output is empty or malformed
        """
        context = {"book": book, "kind": kind.value, "entity_id": entity_id}
        if token is not None:
            token.raise_if_cancelled()

        cached = await self.cache.get(book, kind, entity_id)
        if cached is not None:
            try:
                cached = finalize_artifact(kind, cached)
            except MalformedOutputError:
                # Empty generated text counts as a miss
                log_with_context(
                    logger, logging.WARNING, "Cached artifact unusable, recomputing", **context
                )
                cached = None

        if cached is not None:
            log_with_context(logger, logging.DEBUG, "Stage cache hit", **context)
            await notify_observer(
                on_stream,
                StreamUpdate(
                    content=_display_text(cached), final=True, from_cache=True, value=cached
                ),
            )
            return cached

        log_with_context(logger, logging.INFO, "Stage cache miss, computing", **context)
        result = compute()

        reasoning = ""
        if inspect.isawaitable(result):
            raw = await run_cancellable(result, token)
        else:
            coalescer = await self._consume_stream(result, on_stream, token)
            raw = coalescer.content
            reasoning = coalescer.reasoning

        if token is not None and token.cancelled:
            log_with_context(logger, logging.INFO, "Stage cancelled, discarding output", **context)
            raise StageCancelled(token.reason or "Stage was cancelled")

        if postprocess is not None:
            raw = postprocess(raw)
        value = finalize_artifact(kind, raw)

        persisted = await self.cache.set(book, kind, value, entity_id)
        # Return what a later cache hit returns (e.g. mind maps drop null fields)
        value = validate_payload(kind, to_store_value(kind, value))
        if persisted:
            log_with_context(logger, logging.INFO, "Stage completed and cached", **context)
        else:
            log_with_context(logger, logging.WARNING, "Stage output not persisted", **context)

        await notify_observer(
            on_stream,
            StreamUpdate(
                content=_display_text(value), reasoning=reasoning, final=True, value=value
            ),
        )
        return value
