"""Summaries between steps and argument pre-fill for the next step."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from actionpilot.domain.run import Run, StepStatus, ToolExecutionStep
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.llm.model_assist import ModelAssistClient
from actionpilot.kernel.tools.tool_registry import ToolRegistry

FOLLOW_UP_SYSTEM_PROMPT = """You bridge consecutive steps of a multi-step plan.
Read the result of the tool that just ran, write a short conversational
summary for the user (1-2 sentences, no markdown), and prepare arguments for
the next tool using the data from that result.

Respond with a single JSON object with exactly two keys:
{"summary": "<text>", "nextToolCallArgs": {<arguments>} or null}"""


@dataclass
class FollowUp:
    summary: Optional[str] = None
    next_arguments: Optional[Dict[str, Any]] = None


def fallback_summary(tool_name: str, payload: Any) -> str:
    """Deterministic summary used when no model answer is available."""
    if tool_name == "fetch_emails" and isinstance(payload, dict) and isinstance(payload.get("emails"), list):
        emails = payload["emails"]
        first = emails[0].get("subject", "N/A") if emails and isinstance(emails[0], dict) else "N/A"
        return f"I found {len(emails)} emails. The most recent one is titled \"{first}\"."

    if tool_name == "fetch_entity" and isinstance(payload, dict):
        container = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        records = container.get("records")
        if isinstance(records, list):
            first = "N/A"
            if records and isinstance(records[0], dict):
                first = records[0].get("name") or records[0].get("Name") or "N/A"
            return f"I found {len(records)} records. The first one is \"{first}\"."

    return f"The action '{tool_name}' completed successfully."


def _latest_completed_before(run: Run, next_step: ToolExecutionStep) -> Optional[ToolExecutionStep]:
    index = run.index_of(next_step.step_id)
    candidates = run.steps[:index] if index >= 0 else run.steps
    for step in reversed(candidates):
        if step.status is StepStatus.COMPLETED and step.result is not None:
            return step
    return None


class FollowUpBridge:
    """Produce a summary of the last completed step and next-step arguments.

    Never raises: any model problem degrades to ``fallback_summary``.
    """

    def __init__(
        self,
        model_assist: Optional[ModelAssistClient],
        registry: ToolRegistry,
        *,
        temperature: float = 0.3,
        max_tokens: int = 512,
        logger: Any = None,
    ):
        self.model_assist = model_assist
        self.registry = registry
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._logger = logger or get_logger("follow_up")

    def build_prompt(self, run: Run, completed: ToolExecutionStep, next_step: ToolExecutionStep) -> str:
        definition = self.registry.get_tool_definition(next_step.tool_name) or {}
        payload = completed.result.payload if completed.result else None
        return "\n".join(
            [
                "USER'S ORIGINAL GOAL:",
                run.user_input,
                "",
                "PREVIOUS TOOL RESULT (JSON):",
                json.dumps(payload, indent=2, default=str),
                "",
                "NEXT TOOL DEFINITION:",
                f"Tool Name: {next_step.tool_name}",
                f"Description: {definition.get('description') or next_step.description or ''}",
                "Parameters Schema:",
                json.dumps(definition.get("parameters"), indent=2),
            ]
        )

    async def bridge(self, run: Run, next_step: ToolExecutionStep) -> FollowUp:
        completed = _latest_completed_before(run, next_step)
        if completed is None:
            return FollowUp()

        fallback = fallback_summary(completed.tool_name, completed.result.payload)
        if self.model_assist is None:
            return FollowUp(summary=fallback)

        try:
            answer = await self.model_assist.try_complete_json(
                FOLLOW_UP_SYSTEM_PROMPT,
                self.build_prompt(run, completed, next_step),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except Exception as exc:
            self._logger.warning("follow_up_failed", run_id=run.id, step_id=completed.step_id, error=str(exc))
            return FollowUp(summary=fallback)

        if answer is None:
            return FollowUp(summary=fallback)

        summary = answer.get("summary") if isinstance(answer, dict) else None
        next_arguments = answer.get("nextToolCallArgs") if isinstance(answer, dict) else None
        if (
            not isinstance(summary, str)
            or not summary.strip()
            or not (next_arguments is None or isinstance(next_arguments, dict))
        ):
            self._logger.warning("follow_up_bad_shape", run_id=run.id, step_id=completed.step_id)
            return FollowUp(summary=fallback)

        self._logger.info(
            "follow_up_ready",
            run_id=run.id,
            step_id=completed.step_id,
            next_step_id=next_step.step_id,
            has_next_arguments=next_arguments is not None,
        )
        return FollowUp(summary=summary.strip(), next_arguments=next_arguments)
