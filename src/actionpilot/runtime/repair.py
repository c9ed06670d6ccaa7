"""One-shot model-assisted repair of tool arguments that failed validation."""

from __future__ import annotations

import json
from typing import Any, Dict

from actionpilot.domain.errors import ArgumentRepairError, CompletionError
from actionpilot.domain.run import Run, StepStatus, ToolExecutionStep
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.llm.model_assist import ModelAssistClient
from actionpilot.kernel.tools.tool_registry import ToolRegistry

NO_PREVIOUS_RESULT = "No previous step result available."

REPAIR_SYSTEM_PROMPT = (
    "You are an expert AI agent data resolver. Fix these invalid tool arguments.\n"
    "Output ONLY valid JSON with corrected arguments. No explanation."
)


def _previous_result_json(run: Run, step: ToolExecutionStep) -> str:
    index = run.index_of(step.step_id)
    if index <= 0:
        return NO_PREVIOUS_RESULT
    previous = run.steps[index - 1]
    if previous.status is not StepStatus.COMPLETED or previous.result is None:
        return NO_PREVIOUS_RESULT
    return json.dumps(previous.result.payload, indent=2, default=str)


class ArgumentRepairCoordinator:
    """Ask the model once for corrected arguments.

    The caller re-validates the returned object; this class never retries.
    """

    def __init__(
        self,
        model_assist: ModelAssistClient,
        registry: ToolRegistry,
        *,
        temperature: float = 0.1,
        max_tokens: int = 2048,
        logger: Any = None,
    ):
        self.model_assist = model_assist
        self.registry = registry
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._logger = logger or get_logger("argument_repair")

    def build_prompt(
        self,
        step: ToolExecutionStep,
        run: Run,
        invalid_args: Dict[str, Any],
        error_message: str,
    ) -> str:
        schema = self.registry.get_tool_input_schema(step.tool_name)
        missing = self.registry.find_missing_required_params(step.tool_name, invalid_args)
        return "\n".join(
            [
                f"User's Request: {run.user_input}",
                f"Tool: {step.tool_name}",
                self.registry.render_tool_contract_for_prompt([step.tool_name]),
                f"Schema: {json.dumps(schema, indent=2)}",
                f"Missing Required Parameters: {', '.join(missing) if missing else 'none'}",
                f"Previous Result: {_previous_result_json(run, step)}",
                f"Invalid Arguments: {json.dumps(invalid_args, indent=2, default=str)}",
                f"Error: {error_message}",
            ]
        )

    async def repair(
        self,
        step: ToolExecutionStep,
        run: Run,
        invalid_args: Dict[str, Any],
        error_message: str,
    ) -> Dict[str, Any]:
        tool_name = step.tool_name
        self._logger.info("argument_repair_started", run_id=run.id, step_id=step.step_id, tool=tool_name)

        if self.registry.get_tool_input_schema(tool_name) is None:
            raise ArgumentRepairError(f"Cannot fix arguments: No schema found for tool {tool_name}")

        try:
            corrected = await self.model_assist.complete_json(
                REPAIR_SYSTEM_PROMPT,
                self.build_prompt(step, run, invalid_args, error_message),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except CompletionError as exc:
            self._logger.error("argument_repair_failed", step_id=step.step_id, tool=tool_name, error=str(exc))
            raise ArgumentRepairError(f"Argument validation failed: {error_message}") from exc

        if not isinstance(corrected, dict):
            self._logger.error(
                "argument_repair_failed",
                step_id=step.step_id,
                tool=tool_name,
                error=f"expected object, got {type(corrected).__name__}",
            )
            raise ArgumentRepairError(f"Argument validation failed: {error_message}")

        self._logger.info("argument_repair_succeeded", step_id=step.step_id, tool=tool_name)
        return corrected
