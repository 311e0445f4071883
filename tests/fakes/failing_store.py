"""Artifact store whose operations can be made to fail."""

from typing import Any

from bookdigest.core.errors import StoreError
from bookdigest.db.artifact_store import InMemoryArtifactStore


class FailingStore(InMemoryArtifactStore):
    """In-memory store raising StoreError on the operations switched on."""

    def __init__(self, fail_reads: bool = False, fail_writes: bool = False):
        super().__init__()
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.writes: list[str] = []

    async def get(self, key: str) -> Any | None:
        if self.fail_reads:
            raise StoreError(f"read failed for {key}")
        return await super().get(key)

    async def set(self, key: str, value: Any) -> None:
        if self.fail_writes:
            raise StoreError(f"write failed for {key}")
        self.writes.append(key)
        await super().set(key, value)
