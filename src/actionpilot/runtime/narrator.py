"""User-facing narration of step progress."""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional

from actionpilot.domain.events import MessageType, SegmentStatus, StreamChunk
from actionpilot.domain.run import ToolExecutionStep
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.llm.model_assist import ModelAssistClient
from actionpilot.kernel.tools.tool_registry import ToolRegistry

NARRATION_SYSTEM_PROMPT = (
    "You narrate an assistant's actions to the user while they happen.\n"
    "Reply with one short plain sentence. No quotes, no markdown."
)

ARGUMENTS_PREVIEW_CHARS = 200
RESULT_PREVIEW_CHARS = 300


def new_message_id() -> str:
    return f"msg_{uuid.uuid4().hex}"


def _error_text(result_or_error: Any) -> str:
    if isinstance(result_or_error, dict) and result_or_error.get("error"):
        return str(result_or_error["error"])
    if isinstance(result_or_error, str):
        return result_or_error
    return "unknown error"


def _preview(value: Any, limit: int, indent: Optional[int] = None) -> str:
    try:
        text = json.dumps(value, ensure_ascii=False, indent=indent, default=str)
    except (TypeError, ValueError):
        text = str(value)
    return text[:limit]


def _step_prefix(step_number: Optional[int], total_steps: Optional[int]) -> str:
    if step_number is not None and total_steps is not None and total_steps > 1:
        return f"Step {step_number} of {total_steps}: "
    return ""


class StepNarrator:
    """Streams short START/STREAMING/END text messages about each step.

    With a ``model_assist`` client the sentence is written by the model;
    without one, or when the completion fails, a fixed description is used.
    Every message gets a fresh ``msg_`` id. Narration never raises and never
    touches run state.
    """

    def __init__(
        self,
        sink: Any,
        registry: ToolRegistry,
        *,
        model_assist: Optional[ModelAssistClient] = None,
        temperature: float = 0.5,
        announce_max_tokens: int = 80,
        complete_max_tokens: int = 60,
        logger: Any = None,
    ):
        self.sink = sink
        self.registry = registry
        self.model_assist = model_assist
        self.temperature = temperature
        self.announce_max_tokens = announce_max_tokens
        self.complete_max_tokens = complete_max_tokens
        self._logger = logger or get_logger("step_narrator")

    def _send(self, session_id: str, chunk: StreamChunk) -> None:
        try:
            self.sink.send_chunk(session_id, chunk)
        except Exception as exc:
            self._logger.warning(
                "narration_send_failed",
                session_id=session_id,
                message_id=chunk.message_id,
                error=str(exc),
            )

    def stream_text(
        self,
        session_id: str,
        message_id: str,
        text: str,
        message_type: Optional[MessageType] = None,
    ) -> None:
        self._send(
            session_id,
            StreamChunk.text_segment(SegmentStatus.START, message_id, message_type=message_type),
        )
        self._send(
            session_id,
            StreamChunk.text_segment(
                SegmentStatus.STREAMING, message_id, text=text, message_type=message_type
            ),
        )
        self._send(
            session_id,
            StreamChunk.text_segment(SegmentStatus.END, message_id, message_type=message_type),
        )

    def describe_announcement(
        self,
        step: ToolExecutionStep,
        used_prior_data: bool,
        step_number: Optional[int] = None,
        total_steps: Optional[int] = None,
    ) -> str:
        prefix = _step_prefix(step_number, total_steps)
        source = "using data from a previous step" if used_prior_data else "as planned"
        return f"{prefix}Executing {self.registry.get_display_name(step.tool_name)} {source}..."

    def describe_completion(self, step: ToolExecutionStep, result_or_error: Any, succeeded: bool) -> str:
        friendly = self.registry.get_display_name(step.tool_name)
        if succeeded:
            return f"✓ {friendly} completed"
        return f"✗ {friendly} failed: {_error_text(result_or_error)}"

    def build_announcement_prompt(
        self,
        step: ToolExecutionStep,
        used_prior_data: bool,
        step_number: Optional[int] = None,
        total_steps: Optional[int] = None,
    ) -> str:
        return "\n".join(
            [
                "Generate a brief, specific action announcement (max 25 words).",
                f"{_step_prefix(step_number, total_steps)}Executing: {step.tool_name}",
                f"Intent: {step.description or step.tool_name}",
                f"Key parameters: {_preview(step.tool_call.arguments, ARGUMENTS_PREVIEW_CHARS, indent=2)}",
                f"Uses data from a previous step: {'yes' if used_prior_data else 'no'}",
                "",
                "Be specific about what's being done.",
            ]
        )

    def build_completion_prompt(self, step: ToolExecutionStep, result_or_error: Any, succeeded: bool) -> str:
        if succeeded:
            return "\n".join(
                [
                    "Generate a brief success confirmation (max 20 words) for this completed action:",
                    f"Tool: {step.tool_name}",
                    f"Original intent: {step.description or step.tool_name}",
                    f"Result summary: {_preview(result_or_error, RESULT_PREVIEW_CHARS)}",
                ]
            )
        return "\n".join(
            [
                "Generate a brief failure notice (max 20 words) for this action. Mention the error.",
                f"Tool: {step.tool_name}",
                f"Original intent: {step.description or step.tool_name}",
                f"Error: {_error_text(result_or_error)[:RESULT_PREVIEW_CHARS]}",
            ]
        )

    async def _model_text(self, prompt: str, max_tokens: int, step: ToolExecutionStep) -> Optional[str]:
        if self.model_assist is None:
            return None
        try:
            return await self.model_assist.try_complete_text(
                NARRATION_SYSTEM_PROMPT,
                prompt,
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
        except Exception as exc:
            self._logger.warning("narration_completion_failed", step_id=step.step_id, error=str(exc))
            return None

    async def announce(
        self,
        step: ToolExecutionStep,
        session_id: str,
        used_prior_data: bool,
        step_number: Optional[int] = None,
        total_steps: Optional[int] = None,
    ) -> str:
        message_id = new_message_id()
        text = await self._model_text(
            self.build_announcement_prompt(step, used_prior_data, step_number, total_steps),
            self.announce_max_tokens,
            step,
        )
        if not text:
            text = self.describe_announcement(step, used_prior_data, step_number, total_steps)
        self.stream_text(session_id, message_id, text, MessageType.STEP_ANNOUNCEMENT)
        return message_id

    async def complete(
        self,
        step: ToolExecutionStep,
        result_or_error: Any,
        session_id: str,
        succeeded: bool,
    ) -> str:
        message_id = new_message_id()
        text = await self._model_text(
            self.build_completion_prompt(step, result_or_error, succeeded),
            self.complete_max_tokens,
            step,
        )
        if not text:
            text = self.describe_completion(step, result_or_error, succeeded)
        message_type = MessageType.STEP_COMPLETE if succeeded else MessageType.STEP_FAILED
        self.stream_text(session_id, message_id, text, message_type)
        return message_id
