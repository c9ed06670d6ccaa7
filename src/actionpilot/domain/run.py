"""Run and step structures mutated by the plan executor."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import RunStateError


def utc_now_iso() -> str:
    """Return current timezone-aware UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat()


class RunStatus(Enum):
    """Lifecycle of a run."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class StepStatus(Enum):
    """Lifecycle of a single planned tool call."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolResultStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


_RUN_TRANSITIONS = {
    RunStatus.CREATED: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


@dataclass
class ToolCall:
    """A tool name plus its argument tree and correlation ids."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    session_id: str = ""
    user_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": copy.deepcopy(self.arguments),
            "session_id": self.session_id,
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolCall":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            arguments=dict(data.get("arguments") or {}),
            session_id=str(data.get("session_id") or ""),
            user_id=str(data.get("user_id") or ""),
        )


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a dispatched call. Produced once per step."""

    status: ToolResultStatus
    tool_name: str
    payload: Any = None
    error: Optional[str] = None
    error_details: Optional[Any] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ToolResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "tool_name": self.tool_name,
            "payload": copy.deepcopy(self.payload),
            "error": self.error,
            "error_details": copy.deepcopy(self.error_details),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolResult":
        return cls(
            status=ToolResultStatus(data["status"]),
            tool_name=str(data.get("tool_name") or ""),
            payload=data.get("payload"),
            error=data.get("error"),
            error_details=data.get("error_details"),
        )


@dataclass
class ToolExecutionStep:
    """One planned invocation inside a run."""

    step_id: str
    tool_call: ToolCall
    status: StepStatus = StepStatus.PENDING
    result: Optional[ToolResult] = None
    description: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @property
    def tool_name(self) -> str:
        return self.tool_call.name

    def mark_running(self) -> None:
        if self.status in (StepStatus.COMPLETED, StepStatus.FAILED):
            raise RunStateError(
                f"step {self.step_id} cannot run again from status {self.status.value}"
            )
        self.status = StepStatus.RUNNING
        self.started_at = utc_now_iso()

    def settle(self, result: ToolResult) -> None:
        """Attach the single result of this step and advance its status."""
        if self.result is not None:
            raise RunStateError(f"step {self.step_id} already has a result")
        self.result = result
        self.status = StepStatus.COMPLETED if result.succeeded else StepStatus.FAILED
        self.finished_at = utc_now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "tool_call": self.tool_call.to_dict(),
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "description": self.description,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolExecutionStep":
        result = data.get("result")
        return cls(
            step_id=str(data["step_id"]),
            tool_call=ToolCall.from_dict(data["tool_call"]),
            status=StepStatus(data.get("status") or StepStatus.PENDING.value),
            result=ToolResult.from_dict(result) if result else None,
            description=data.get("description"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
        )


@dataclass
class Run:
    """One user-initiated execution of a multi-step plan.

    The executor owns the instance for the whole execution; observers only
    ever receive ``snapshot()`` copies.
    """

    id: str
    session_id: str
    user_id: str
    user_input: str
    plan_id: str
    steps: List[ToolExecutionStep] = field(default_factory=list)
    status: RunStatus = RunStatus.CREATED
    created_at: str = field(default_factory=utc_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    history_id: Optional[str] = None

    def get_step(self, step_id: str) -> Optional[ToolExecutionStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.step_id == step_id:
                return index
        return -1

    def _transition(self, target: RunStatus) -> None:
        if target not in _RUN_TRANSITIONS[self.status]:
            raise RunStateError(
                f"run {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_running(self) -> None:
        self._transition(RunStatus.RUNNING)
        self.started_at = utc_now_iso()

    def mark_completed(self) -> None:
        self._transition(RunStatus.COMPLETED)
        self.completed_at = utc_now_iso()

    def mark_failed(self) -> None:
        self._transition(RunStatus.FAILED)
        self.completed_at = utc_now_iso()

    def snapshot(self) -> Dict[str, Any]:
        """Deep, JSON-ready copy safe to hand to other flows."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "user_input": self.user_input,
            "plan_id": self.plan_id,
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "history_id": self.history_id,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Run":
        return cls(
            id=str(data["id"]),
            session_id=str(data["session_id"]),
            user_id=str(data["user_id"]),
            user_input=str(data.get("user_input") or ""),
            plan_id=str(data.get("plan_id") or ""),
            steps=[ToolExecutionStep.from_dict(item) for item in data.get("steps") or []],
            status=RunStatus(data.get("status") or RunStatus.CREATED.value),
            created_at=str(data.get("created_at") or utc_now_iso()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            history_id=data.get("history_id"),
        )
