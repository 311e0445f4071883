"""Coalescing policy for streamed generation output.

Deltas are accumulated in memory. Observers are notified on the very first
chunk, then at most once per interval, and always once more on completion
with the exact final text. The policy is a pure function of the timestamped
chunk sequence, so it is tested without a clock.
"""

from collections.abc import Iterable
from typing import Any

from bookdigest.core.schemas_pipeline import StreamUpdate


class StreamCoalescer:
    """Accumulates content/reasoning deltas and decides when to flush."""

    def __init__(self, interval: float = 1.0):
        self.interval = interval
        self.content = ""
        self.reasoning = ""
        self._last_flush: float | None = None

    def push(self, content_delta: str, reasoning_delta: str, now: float) -> StreamUpdate | None:
        """
        Add a chunk received at time ``now``.

        Returns:
            A snapshot to forward to observers, or None if throttled
        """
        self.content += content_delta or ""
        self.reasoning += reasoning_delta or ""

        if self._last_flush is None or now - self._last_flush >= self.interval:
            self._last_flush = now
            return StreamUpdate(content=self.content, reasoning=self.reasoning)
        return None

    def finish(self, final_content: str | None = None, value: Any = None) -> StreamUpdate:
        """Final, unconditional snapshot. ``final_content`` replaces the raw buffer."""
        content = self.content if final_content is None else final_content
        return StreamUpdate(content=content, reasoning=self.reasoning, final=True, value=value)


def coalesce(
    chunks: Iterable[tuple[float, str, str]],
    interval: float = 1.0,
) -> list[StreamUpdate]:
    """
    Apply the flush policy to a timestamped chunk sequence.

    Args:
        chunks: (timestamp, content_delta, reasoning_delta) triples in order
        interval: Minimum seconds between intermediate flushes

    Returns:
        Every update an observer would receive, ending with the final one
    """
    coalescer = StreamCoalescer(interval)
    updates = []
    for now, content_delta, reasoning_delta in chunks:
        update = coalescer.push(content_delta, reasoning_delta, now)
        if update is not None:
            updates.append(update)
    updates.append(coalescer.finish())
    return updates
