"""API endpoints for starting and controlling pipeline runs."""

from fastapi import APIRouter, BackgroundTasks, HTTPException

from bookdigest.core.errors import RunStateError
from bookdigest.core.logging import get_logger
from bookdigest.core.schemas_pipeline import PipelineRequest, RunStatus
from bookdigest.services.run_registry import get_run_registry

logger = get_logger(__name__)

router = APIRouter()


@router.post("/runs", response_model=RunStatus, status_code=202)
async def start_run(request: PipelineRequest, background_tasks: BackgroundTasks) -> RunStatus:
    """
    Start a pipeline run in the background.

    Args:
        request: Book, chapters, tags, mode and options

    Returns:
        Status of the new run (state pending)

    Raises:
        HTTPException 422: If no chapters are selected
    """
    if not request.selected_chapters():
        raise HTTPException(status_code=422, detail="No chapters selected for processing")

    registry = get_run_registry()
    run = registry.create(request)
    background_tasks.add_task(registry.execute, run)
    return run.status()


@router.get("/runs/{run_id}", response_model=RunStatus)
async def get_run(run_id: str) -> RunStatus:
    """
    Get state, progress, partial results and the result or error of a run.

    Raises:
        HTTPException 404: If the run is unknown
    """
    run = get_run_registry().get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run.status()


@router.post("/runs/{run_id}/cancel", response_model=RunStatus)
async def cancel_run(run_id: str) -> RunStatus:
    """
    Cancel a run. Cached stages stay; the in-flight stage writes nothing.

    Raises:
        HTTPException 404: If the run is unknown
        HTTPException 409: If the run already finished
    """
    registry = get_run_registry()
    run = registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")

    if not registry.cancel(run_id):
        raise HTTPException(
            status_code=409, detail=f"Run already finished (state={run.state.value})"
        )
    return run.status()


@router.post("/runs/{run_id}/retry", response_model=RunStatus, status_code=202)
async def retry_run(run_id: str, background_tasks: BackgroundTasks) -> RunStatus:
    """
    Retry a failed or aborted run with its original parameters.

    Raises:
        HTTPException 404: If the run is unknown
        HTTPException 409: If the run is neither failed nor aborted
    """
    registry = get_run_registry()
    if registry.get(run_id) is None:
        raise HTTPException(status_code=404, detail="Run not found")

    try:
        retry = registry.retry(run_id)
    except RunStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    background_tasks.add_task(registry.execute, retry)
    return retry.status()
