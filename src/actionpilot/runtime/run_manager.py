"""Turn planner output into a fresh run."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from actionpilot.domain.errors import DuplicateStepError
from actionpilot.domain.run import Run, ToolCall, ToolExecutionStep


@dataclass
class PlannedStep:
    """One step as produced by a plan generator."""

    step_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    description: Optional[str] = None


class PlanGenerator(Protocol):
    """Turns free-form user text into an ordered list of planned steps."""

    async def generate_plan(self, user_input: str, session_id: str, user_id: str) -> List[PlannedStep]:
        ...


def create_run(
    session_id: str,
    user_id: str,
    user_input: str,
    plan: Sequence[PlannedStep],
    plan_id: Optional[str] = None,
) -> Run:
    """Build a ``created`` run whose steps are all ``pending``.

    Raises:
        DuplicateStepError: two planned steps share a step id
    """
    seen = set()
    steps: List[ToolExecutionStep] = []
    for planned in plan:
        if planned.step_id in seen:
            raise DuplicateStepError(f"duplicate step id in plan: {planned.step_id}")
        seen.add(planned.step_id)
        steps.append(
            ToolExecutionStep(
                step_id=planned.step_id,
                tool_call=ToolCall(
                    id=f"call_{uuid.uuid4().hex}",
                    name=planned.tool_name,
                    arguments=dict(planned.arguments or {}),
                    session_id=session_id,
                    user_id=user_id,
                ),
                description=planned.description,
            )
        )

    return Run(
        id=f"run_{uuid.uuid4().hex}",
        session_id=session_id,
        user_id=user_id,
        user_input=user_input,
        plan_id=plan_id or f"plan_{uuid.uuid4().hex}",
        steps=steps,
    )
