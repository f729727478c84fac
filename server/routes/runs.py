"""Run API endpoints — start, monitor, cancel and fetch video analysis runs."""

import asyncio
import logging
from functools import lru_cache
from typing import Dict

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

from agents import default_registry
from agents.pipeline import PipelineRun, create_run
from lib.config import load_config
from lib.errors import PipelineError
from lib.state import RunStatus
from lib.view import build_view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runs", tags=["runs"])
stages_router = APIRouter(prefix="/api/stages", tags=["stages"])

# Runs known to this process, and their executing tasks
_runs: Dict[str, PipelineRun] = {}
_tasks: Dict[str, asyncio.Task] = {}
_runs_lock = asyncio.Lock()


class StartRunRequest(BaseModel):
    video_url: str = Field(min_length=1)


@lru_cache(maxsize=1)
def _project_config() -> dict:
    """config/config.toml, read once per process."""
    return load_config()


def _get_run(run_id: str) -> PipelineRun:
    run = _runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


async def _execute(run: PipelineRun) -> None:
    try:
        await run.execute()
    except PipelineError as e:
        # Outcome is recorded on the run itself
        logger.info("Run %s ended: %s", run.run_id, e)
    except Exception:
        logger.exception("Run %s crashed", run.run_id)
    finally:
        _tasks.pop(run.run_id, None)


@stages_router.get("")
async def list_stages() -> list:
    """The stage graph: id, name, service label and dependencies of every stage."""
    registry = default_registry(_project_config())
    return [
        {
            "id": stage.id,
            "name": stage.name,
            "agent": stage.agent_kind.value,
            "service": stage.service_label,
            "depends_on": sorted(stage.depends_on),
        }
        for stage in registry.all()
    ]


@router.post("", status_code=202)
async def start_run(req: StartRunRequest) -> dict:
    """Start an analysis run in the background."""
    logger.info("POST /api/runs %s", req.video_url)
    config = _project_config()
    async with _runs_lock:
        run = create_run(req.video_url.strip(), config)
        _runs[run.run_id] = run
        _tasks[run.run_id] = asyncio.create_task(_execute(run))

    logger.info("Run %s started", run.run_id)
    return {"status": "started", "run_id": run.run_id}


@router.get("")
async def list_runs() -> list:
    return [
        {
            "run_id": run.run_id,
            "video_url": run.reference,
            "status": run.status.value,
            "created_at": run.created_at.isoformat(),
        }
        for run in sorted(_runs.values(), key=lambda r: r.created_at, reverse=True)
    ]


@router.get("/{run_id}")
async def run_status(run_id: str) -> dict:
    """Current run status with every stage's state."""
    logger.info("GET /api/runs/%s", run_id)
    return _get_run(run_id).to_dict()


@router.get("/{run_id}/result")
async def run_result(run_id: str) -> dict:
    logger.info("GET /api/runs/%s/result", run_id)
    run = _get_run(run_id)
    if run.status != RunStatus.COMPLETED or run.result is None:
        raise HTTPException(
            status_code=409,
            detail=f"Run {run_id} is {run.status.value}" + (f": {run.error}" if run.error else ""),
        )
    return run.result.model_dump(mode="json", by_alias=True)


@router.get("/{run_id}/view")
async def run_view(run_id: str) -> dict:
    """View model for the web UI; rebuilt from the result when UI rendering did not complete."""
    logger.info("GET /api/runs/%s/view", run_id)
    run = _get_run(run_id)
    if run.result is None:
        raise HTTPException(status_code=409, detail=f"Run {run_id} is {run.status.value}")
    for output in run.outputs.values():
        if output.get("_agent") == "ui_render" and "view" in output:
            return output["view"]
    return build_view(run.result)


@router.post("/{run_id}/cancel")
async def cancel_run(run_id: str) -> dict:
    """Request cancellation of a run. Terminal runs are left as they are."""
    logger.info("POST /api/runs/%s/cancel", run_id)
    run = _get_run(run_id)
    async with _runs_lock:
        was_terminal = run.is_terminal
        run.cancel()

    task = _tasks.get(run_id)
    if task is not None and not was_terminal:
        # Let the scheduler settle cancelled stages before reporting
        await asyncio.wait({task}, timeout=5.0)
    return {
        "run_id": run_id,
        "status": run.status.value,
        "cancelled": not was_terminal,
    }


@router.delete("/{run_id}")
async def delete_run(run_id: str) -> dict:
    logger.info("DELETE /api/runs/%s", run_id)
    async with _runs_lock:
        run = _get_run(run_id)
        if not run.is_terminal:
            raise HTTPException(status_code=409, detail=f"Run {run_id} is still {run.status.value}")
        del _runs[run_id]
    return {"status": "deleted", "run_id": run_id}


@router.websocket("/{run_id}/events")
async def run_events(websocket: WebSocket, run_id: str) -> None:
    """Stream every state change of a run, then a final run-status message."""
    run = _runs.get(run_id)
    if run is None:
        await websocket.close(code=4404)
        return

    await websocket.accept()
    try:
        async for event in run.subscribe():
            await websocket.send_json(event.to_dict())
        await websocket.send_json({
            "type": "run",
            "run_id": run_id,
            "status": run.status.value,
            "error": str(run.error) if run.error else None,
        })
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("Event subscriber for %s disconnected", run_id)
