"""Plan Execution Engine.

Walks the steps of a run in order: resolve placeholders, validate (repair
once), dispatch, narrate, record history, and bridge to the next step. The
run is mutated in place by the single flow calling ``execute_plan``; the sink
only ever receives snapshots.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from actionpilot.domain.errors import RunStateError, ToolValidationError
from actionpilot.domain.events import MessageType, StreamChunk
from actionpilot.domain.run import (
    Run,
    RunStatus,
    StepStatus,
    ToolExecutionStep,
    ToolResult,
    ToolResultStatus,
)
from actionpilot.infrastructure.logging_setup import get_logger
from actionpilot.kernel.tools.dispatcher import DispatchRequest, ToolDispatcher
from actionpilot.kernel.tools.schema_validator import SchemaValidator
from actionpilot.runtime.follow_up import FollowUpBridge
from actionpilot.runtime.narrator import StepNarrator
from actionpilot.runtime.placeholders import PlaceholderResolver
from actionpilot.runtime.repair import ArgumentRepairCoordinator


def follow_up_message_id(step: ToolExecutionStep) -> str:
    return f"{step.step_id}_followup"


class PlanExecutor:
    """Sequential, fail-fast executor for a run's steps."""

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        sink: Any,
        validator: SchemaValidator,
        repairer: Optional[ArgumentRepairCoordinator],
        narrator: StepNarrator,
        follow_up: FollowUpBridge,
        *,
        history: Any = None,
        resolver: Optional[PlaceholderResolver] = None,
        logger: Any = None,
    ):
        self.dispatcher = dispatcher
        self.sink = sink
        self.validator = validator
        self.repairer = repairer
        self.narrator = narrator
        self.follow_up = follow_up
        self.history = history
        self._logger = logger or get_logger("plan_executor")
        self.resolver = resolver or PlaceholderResolver(logger=self._logger)

    # ------------------------------------------------------------------ #
    # Emission helpers
    # ------------------------------------------------------------------ #

    def _send(self, run: Run, chunk: StreamChunk) -> None:
        try:
            self.sink.send_chunk(run.session_id, chunk)
        except Exception as exc:
            self._logger.warning("stream_send_failed", run_id=run.id, chunk_type=chunk.type.value, error=str(exc))

    def _emit_snapshot(self, run: Run) -> None:
        self._send(run, StreamChunk.run_updated(run.snapshot()))

    def _record_tool_call(
        self,
        run: Run,
        user_id: str,
        step: ToolExecutionStep,
        summary: str,
        result: Any,
        status: str,
    ) -> None:
        if self.history is None:
            return
        try:
            self.history.record_tool_call(
                user_id,
                run.session_id,
                step.tool_name,
                summary,
                step.tool_call.arguments,
                result,
                status,
                step_id=step.step_id,
                plan_id=run.plan_id,
            )
        except Exception as exc:
            self._logger.warning("history_record_failed", run_id=run.id, step_id=step.step_id, error=str(exc))

    def _record_summary(self, run: Run, user_id: str, step: ToolExecutionStep, text: str) -> None:
        if self.history is None:
            return
        try:
            self.history.record_assistant_message(user_id, run.session_id, text)
        except Exception as exc:
            self._logger.warning("history_record_failed", run_id=run.id, step_id=step.step_id, error=str(exc))

    def _update_plan_record(self, run: Run, user_id: str, status: str) -> None:
        if self.history is None or not run.history_id:
            return
        try:
            self.history.update_item(user_id, run.history_id, {"status": status})
        except Exception as exc:
            self._logger.warning(
                "history_update_failed", run_id=run.id, history_id=run.history_id, error=str(exc)
            )

    # ------------------------------------------------------------------ #
    # Step phases
    # ------------------------------------------------------------------ #

    async def _validated_arguments(
        self, run: Run, step: ToolExecutionStep, arguments: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            self.validator.validate(step.tool_name, arguments)
            return arguments
        except ToolValidationError as exc:
            if self.repairer is None:
                raise
            self._logger.warning(
                "validation_failed_attempting_repair", run_id=run.id, step_id=step.step_id, error=exc.message
            )
            fixed = await self.repairer.repair(step, run, arguments, exc.message)

        # a second validation failure is terminal for the step
        self.validator.validate(step.tool_name, fixed)
        return fixed

    async def _run_step(
        self, run: Run, step: ToolExecutionStep, user_id: str, step_number: int, total_steps: int
    ) -> ToolResult:
        resolution = self.resolver.resolve(step.tool_call.arguments, run)
        step.tool_call.arguments = resolution.arguments
        await self.narrator.announce(step, run.session_id, resolution.any_resolved, step_number, total_steps)
        self._emit_snapshot(run)

        arguments = await self._validated_arguments(run, step, resolution.arguments)
        step.tool_call.arguments = arguments

        self._logger.info("executing_tool", run_id=run.id, step_id=step.step_id, tool=step.tool_name)
        outcome = await self.dispatcher.execute(
            run.session_id,
            user_id,
            DispatchRequest(tool_id=step.tool_call.id, tool_name=step.tool_name, arguments=arguments),
            plan_id=run.plan_id,
            step_id=step.step_id,
        )
        return outcome.to_tool_result()

    async def _halt(self, run: Run, step: ToolExecutionStep, result: ToolResult, user_id: str) -> None:
        error = result.error or "Unknown error"
        self._logger.error("step_failed", run_id=run.id, step_id=step.step_id, tool=step.tool_name, error=error)
        run.mark_failed()

        self._record_tool_call(run, user_id, step, f"Failed: {error}", None, "failed")
        self._update_plan_record(run, user_id, "failed")
        await self.narrator.complete(step, {"error": error}, run.session_id, False)
        self._send(
            run,
            StreamChunk.error(f"Action '{step.tool_name}' failed: {error}", message_id=step.tool_call.id),
        )
        self._emit_snapshot(run)

    async def _bridge(
        self, run: Run, step: ToolExecutionStep, next_step: ToolExecutionStep, user_id: str
    ) -> None:
        self._logger.info("generating_follow_up", run_id=run.id, step_id=step.step_id, next_step_id=next_step.step_id)
        try:
            follow_up = await self.follow_up.bridge(run, next_step)
        except Exception as exc:
            self._logger.warning("follow_up_failed", run_id=run.id, step_id=step.step_id, error=str(exc))
            return

        if follow_up.summary:
            self.narrator.stream_text(
                run.session_id, follow_up_message_id(step), follow_up.summary, MessageType.FOLLOW_UP
            )
            self._record_summary(run, user_id, step, follow_up.summary)

        if follow_up.next_arguments is not None and next_step.status is not StepStatus.COMPLETED:
            next_step.tool_call.arguments = dict(follow_up.next_arguments)
            self._logger.info("next_step_arguments_prefilled", run_id=run.id, next_step_id=next_step.step_id)
            self._emit_snapshot(run)

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    async def execute_plan(self, run: Run, user_id: Optional[str] = None) -> Run:
        """Execute every non-completed step of ``run``; returns the same run.

        Completed steps are not dispatched again but are still narrated and
        bridged, so calling this again on an interrupted run resumes it.
        """
        if run.status.is_terminal:
            raise RunStateError(f"run {run.id} is already {run.status.value}")

        user_id = user_id or run.user_id
        if run.status is RunStatus.CREATED:
            run.mark_running()

        self._logger.info(
            "plan_execution_started",
            run_id=run.id,
            total_steps=len(run.steps),
            steps=[{"id": s.step_id, "tool": s.tool_name, "status": s.status.value} for s in run.steps],
        )
        self._emit_snapshot(run)

        index = 0
        while index < len(run.steps):
            step = run.steps[index]
            total_steps = len(run.steps)
            self._logger.info(
                "processing_step",
                run_id=run.id,
                step_id=step.step_id,
                position=f"{index + 1}/{total_steps}",
                tool=step.tool_name,
                status=step.status.value,
            )

            if step.status is StepStatus.COMPLETED:
                payload = step.result.payload if step.result else None
                await self.narrator.complete(step, payload, run.session_id, True)
            else:
                step.mark_running()
                self._emit_snapshot(run)
                try:
                    result = await self._run_step(run, step, user_id, index + 1, total_steps)
                except Exception as exc:
                    self._logger.error(
                        "step_execution_error", run_id=run.id, step_id=step.step_id, error=str(exc)
                    )
                    result = ToolResult(
                        status=ToolResultStatus.FAILED,
                        tool_name=step.tool_name,
                        error=str(exc) or type(exc).__name__,
                        error_details={"exception": type(exc).__name__},
                    )

                step.settle(result)
                self._emit_snapshot(run)

                if not result.succeeded:
                    await self._halt(run, step, result, user_id)
                    return run

                self._record_tool_call(run, user_id, step, f"Executed {step.tool_name}", result.payload, "success")
                await self.narrator.complete(step, result.payload, run.session_id, True)

            if index < len(run.steps) - 1:
                await self._bridge(run, step, run.steps[index + 1], user_id)
            index += 1

        run.mark_completed()
        self._logger.info("plan_execution_completed", run_id=run.id)
        self._update_plan_record(run, user_id, "completed")
        self._emit_snapshot(run)
        return run
