"""In-process registry of pipeline runs started through the API or CLI."""

from collections.abc import Callable
from functools import lru_cache

from bookdigest.core.errors import RunStateError
from bookdigest.core.logging import get_logger
from bookdigest.core.schemas_pipeline import PipelineRequest
from bookdigest.db.artifact_cache import get_artifact_cache
from bookdigest.services.book_pipeline import BookPipeline, PipelineRun
from bookdigest.services.generation import OpenAICompatibleGenerator

logger = get_logger(__name__)

# Finished runs beyond this count are forgotten, oldest first
MAX_TRACKED_RUNS = 200


@lru_cache
def get_book_pipeline() -> BookPipeline:
    """Process-wide pipeline over the configured store and provider."""
    return BookPipeline(OpenAICompatibleGenerator(), get_artifact_cache())


class RunRegistry:
    """Creates, tracks, cancels and retries runs by id."""

    def __init__(self, pipeline_factory: Callable[[], BookPipeline] = get_book_pipeline):
        self.pipeline_factory = pipeline_factory
        self._runs: dict[str, PipelineRun] = {}

    def _track(self, run: PipelineRun) -> PipelineRun:
        self._runs[run.run_id] = run
        self._evict()
        return run

    def _evict(self) -> None:
        excess = len(self._runs) - MAX_TRACKED_RUNS
        if excess <= 0:
            return
        finished = [run_id for run_id, run in self._runs.items() if run.state.is_terminal]
        for run_id in finished[:excess]:
            del self._runs[run_id]

    def create(self, request: PipelineRequest) -> PipelineRun:
        run = PipelineRun(self.pipeline_factory(), request)
        logger.info(f"Created run {run.run_id} for {request.book} ({request.mode.value})")
        return self._track(run)

    def get(self, run_id: str) -> PipelineRun | None:
        return self._runs.get(run_id)

    def list_runs(self) -> list[PipelineRun]:
        return list(self._runs.values())

    def cancel(self, run_id: str) -> bool:
        """
        Cancel a run.

        Raises:
            KeyError: If the run is unknown
        """
        run = self._runs[run_id]
        return run.cancel()

    def retry(self, run_id: str) -> PipelineRun:
        """
        Start tracking a retry of a failed or aborted run.

        Raises:
            KeyError: If the run is unknown
            RunStateError: If the run cannot be retried
        """
        run = self._runs[run_id]
        retry_run = run.retry()
        logger.info(f"Retrying run {run_id} as {retry_run.run_id}")
        return self._track(retry_run)

    async def execute(self, run: PipelineRun) -> None:
        """Drive a run to completion; used as a background task."""
        try:
            await run.execute()
        except RunStateError as e:
            logger.warning(f"Run {run.run_id} not executed: {e}")
        except Exception:
            logger.exception(f"Background run {run.run_id} crashed")


@lru_cache
def get_run_registry() -> RunRegistry:
    return RunRegistry()
