"""FastAPI dependencies and process-wide singletons."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from actionpilot.bootstrap import build_tool_registry
from actionpilot.config import settings
from actionpilot.domain.run import Run
from actionpilot.kernel.llm.llm_runtime import get_llm_runtime
from actionpilot.kernel.llm.model_assist import ModelAssistClient
from actionpilot.kernel.tools.dispatcher import GatewayToolDispatcher
from actionpilot.kernel.tools.schema_validator import SchemaValidator
from actionpilot.kernel.tools.tool_registry import ToolRegistry
from actionpilot.runtime.follow_up import FollowUpBridge
from actionpilot.runtime.narrator import StepNarrator
from actionpilot.runtime.plan_executor import PlanExecutor
from actionpilot.runtime.repair import ArgumentRepairCoordinator
from actionpilot.services.history_service import HistoryService
from actionpilot.services.stream_manager import StreamManager


class RunRegistry:
    """In-memory runs with at most one active execution per run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: Dict[str, Run] = {}
        self._active: set = set()

    def add(self, run: Run) -> None:
        with self._lock:
            self._runs[run.id] = run

    def get(self, run_id: str) -> Optional[Run]:
        with self._lock:
            return self._runs.get(run_id)

    def try_begin(self, run_id: str) -> bool:
        """Claim the run for execution; False when it is already executing."""
        with self._lock:
            if run_id in self._active:
                return False
            self._active.add(run_id)
            return True

    def finish(self, run_id: str) -> None:
        with self._lock:
            self._active.discard(run_id)

    def is_active(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._active


_run_registry: Optional[RunRegistry] = None
_tool_registry: Optional[ToolRegistry] = None
_history_service: Optional[HistoryService] = None
_stream_manager: Optional[StreamManager] = None
_plan_executor: Optional[PlanExecutor] = None


def get_run_registry() -> RunRegistry:
    global _run_registry
    if _run_registry is None:
        _run_registry = RunRegistry()
    return _run_registry


def get_tool_registry() -> ToolRegistry:
    global _tool_registry
    if _tool_registry is None:
        _tool_registry = build_tool_registry()
    return _tool_registry


def get_history_service() -> HistoryService:
    global _history_service
    if _history_service is None:
        _history_service = HistoryService()
    return _history_service


def get_stream_manager() -> StreamManager:
    global _stream_manager
    if _stream_manager is None:
        _stream_manager = StreamManager()
    return _stream_manager


def build_plan_executor(
    registry: ToolRegistry,
    history: HistoryService,
    stream: StreamManager,
) -> PlanExecutor:
    """Wire the executor against the tool gateway and the configured LLM."""
    model_assist = ModelAssistClient(
        get_llm_runtime(),
        timeout_seconds=settings.completion_timeout_seconds,
    )
    return PlanExecutor(
        dispatcher=GatewayToolDispatcher(
            settings.tool_gateway_url,
            registry=registry,
            timeout_seconds=settings.tool_gateway_timeout_seconds,
        ),
        sink=stream,
        validator=SchemaValidator(registry),
        repairer=ArgumentRepairCoordinator(
            model_assist,
            registry,
            temperature=settings.repair_temperature,
            max_tokens=settings.repair_max_tokens,
        ),
        narrator=StepNarrator(
            stream,
            registry,
            model_assist=model_assist,
            temperature=settings.narration_temperature,
            announce_max_tokens=settings.narration_announce_max_tokens,
            complete_max_tokens=settings.narration_complete_max_tokens,
        ),
        follow_up=FollowUpBridge(
            model_assist,
            registry,
            temperature=settings.follow_up_temperature,
            max_tokens=settings.follow_up_max_tokens,
        ),
        history=history,
    )


def get_plan_executor() -> PlanExecutor:
    global _plan_executor
    if _plan_executor is None:
        _plan_executor = build_plan_executor(
            get_tool_registry(), get_history_service(), get_stream_manager()
        )
    return _plan_executor


def reset_dependencies() -> None:
    """Drop every singleton so the next request rebuilds from settings."""
    global _run_registry, _tool_registry, _history_service, _stream_manager, _plan_executor
    _run_registry = None
    _tool_registry = None
    _history_service = None
    _stream_manager = None
    _plan_executor = None
