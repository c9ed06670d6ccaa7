"""Runs router - create, inspect and resume plan executions."""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from actionpilot.api.dependencies import (
    RunRegistry,
    get_history_service,
    get_plan_executor,
    get_run_registry,
)
from actionpilot.domain.errors import ActionPilotError, DuplicateStepError
from actionpilot.domain.run import Run
from actionpilot.runtime.plan_executor import PlanExecutor
from actionpilot.runtime.run_manager import PlannedStep, create_run
from actionpilot.services.history_service import HistoryService

logger = structlog.get_logger()

router = APIRouter(prefix="/runs", tags=["runs"])


class PlannedStepModel(BaseModel):
    """One step of a generated plan."""

    step_id: str = Field(..., min_length=1)
    tool_name: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)
    description: Optional[str] = None


class CreateRunRequest(BaseModel):
    """Request to execute a generated plan."""

    session_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    user_input: str
    steps: List[PlannedStepModel] = Field(..., min_length=1)
    plan_id: Optional[str] = None
    plan_title: Optional[str] = None


async def _execute_in_background(run: Run, executor: PlanExecutor, registry: RunRegistry) -> None:
    try:
        await executor.execute_plan(run)
    except ActionPilotError as exc:
        logger.error("run_execution_rejected", run_id=run.id, error=str(exc))
    except Exception as exc:
        logger.error("run_execution_crashed", run_id=run.id, error=str(exc))
    finally:
        registry.finish(run.id)


def _require_run(run_id: str, registry: RunRegistry) -> Run:
    run = registry.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.post("", status_code=202)
async def create_and_execute_run(
    request: CreateRunRequest,
    background_tasks: BackgroundTasks,
    registry: RunRegistry = Depends(get_run_registry),
    executor: PlanExecutor = Depends(get_plan_executor),
    history: HistoryService = Depends(get_history_service),
) -> Dict[str, Any]:
    """Create a run from planned steps and execute it in the background."""
    try:
        run = create_run(
            session_id=request.session_id,
            user_id=request.user_id,
            user_input=request.user_input,
            plan=[PlannedStep(**step.model_dump()) for step in request.steps],
            plan_id=request.plan_id,
        )
    except DuplicateStepError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        history.record_user_message(run.user_id, run.session_id, run.user_input)
    except Exception as exc:
        logger.warning("user_message_record_failed", run_id=run.id, error=str(exc))

    try:
        run.history_id = history.record_plan_creation(
            run.user_id,
            run.session_id,
            run.plan_id,
            request.plan_title or request.user_input,
            [{"tool_name": s.tool_name, "description": s.description or ""} for s in run.steps],
        )
    except Exception as exc:
        logger.warning("plan_history_record_failed", run_id=run.id, error=str(exc))

    registry.add(run)
    registry.try_begin(run.id)
    snapshot = run.snapshot()
    background_tasks.add_task(_execute_in_background, run, executor, registry)
    logger.info("run_scheduled", run_id=run.id, steps=len(run.steps))
    return snapshot


@router.get("/{run_id}")
async def get_run(run_id: str, registry: RunRegistry = Depends(get_run_registry)) -> Dict[str, Any]:
    return _require_run(run_id, registry).snapshot()


@router.post("/{run_id}/resume", status_code=202)
async def resume_run(
    run_id: str,
    background_tasks: BackgroundTasks,
    registry: RunRegistry = Depends(get_run_registry),
    executor: PlanExecutor = Depends(get_plan_executor),
) -> Dict[str, Any]:
    """Re-execute a run that stopped before reaching a terminal status."""
    run = _require_run(run_id, registry)
    if run.status.is_terminal:
        raise HTTPException(status_code=409, detail=f"Run is already {run.status.value}")
    if not registry.try_begin(run.id):
        raise HTTPException(status_code=409, detail="Run is already executing")

    snapshot = run.snapshot()
    background_tasks.add_task(_execute_in_background, run, executor, registry)
    logger.info("run_resume_scheduled", run_id=run.id)
    return snapshot
