"""Scripted in-memory generation provider for pipeline tests."""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from typing import Any

from bookdigest.services.generation import GenerationChunk

SAMPLE_MIND_MAP: dict[str, Any] = {
    "nodeData": {
        "id": "root",
        "topic": "Chapter topic",
        "children": [
            {"id": "1", "topic": "First idea", "children": [{"id": "1-1", "topic": "Detail"}]},
            {"id": "2", "topic": "Second idea"},
        ],
    },
    "arrows": [],
    "summaries": [{"id": "s1", "label": "Key point", "parent": "root", "start": 0, "end": 1}],
}


class FakeGenerator:
    """
    Generation provider that answers from a script and records every call.

    Args:
        text: Reply for text prompts, or a callable prompt -> reply
        json_reply: Reply for JSON-mode prompts (dict is serialized)
        chunk_size: Characters per streamed chunk
        reasoning: Reasoning text streamed alongside the first chunk
        error: Raised instead of answering
        hang_after_first_chunk: Stream one chunk, then wait until cancelled
    """

    def __init__(
        self,
        text: str | Callable[[str], str] = "Generated text",
        json_reply: dict | str | None = None,
        chunk_size: int = 4,
        reasoning: str = "",
        error: Exception | None = None,
        hang_after_first_chunk: bool = False,
    ):
        self.text = text
        self.json_reply = SAMPLE_MIND_MAP if json_reply is None else json_reply
        self.chunk_size = chunk_size
        self.reasoning = reasoning
        self.error = error
        self.hang_after_first_chunk = hang_after_first_chunk
        self.calls: list[dict[str, Any]] = []
        self.first_chunk_sent = asyncio.Event()
        self.stream_closed = False

    def _reply(self, prompt: str) -> str:
        return self.text(prompt) if callable(self.text) else self.text

    async def generate(self, prompt: str, *, json_mode: bool = False) -> str:
        self.calls.append({"prompt": prompt, "json_mode": json_mode, "stream": False})
        if self.error is not None:
            raise self.error
        if json_mode:
            reply = self.json_reply
            return reply if isinstance(reply, str) else json.dumps(reply)
        return self._reply(prompt)

    async def stream(self, prompt: str) -> AsyncIterator[GenerationChunk]:
        self.calls.append({"prompt": prompt, "json_mode": False, "stream": True})
        if self.error is not None:
            raise self.error

        text = self._reply(prompt)
        try:
            for index in range(0, len(text), self.chunk_size):
                yield GenerationChunk(
                    content_delta=text[index:index + self.chunk_size],
                    reasoning_delta=self.reasoning if index == 0 else "",
                )
                self.first_chunk_sent.set()
                if self.hang_after_first_chunk:
                    await asyncio.sleep(3600)
        finally:
            self.stream_closed = True

    def prompts(self) -> list[str]:
        return [call["prompt"] for call in self.calls]
