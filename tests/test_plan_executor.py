"""Tests for the plan execution engine."""

import pytest

from actionpilot.domain.errors import RunStateError
from actionpilot.domain.events import ChunkType, MessageType
from actionpilot.domain.history import HistoryItemType
from actionpilot.domain.run import RunStatus, StepStatus, ToolResult, ToolResultStatus
from actionpilot.kernel.tools.dispatcher import DispatchOutcome
from actionpilot.runtime.run_manager import PlannedStep, create_run

from conftest import RecordingLogger, ScriptedDispatcher, ScriptedProvider, make_executor


def _pipeline_run(second_args=None):
    return create_run(
        session_id="s1",
        user_id="u1",
        user_input="update the record I just fetched",
        plan=[
            PlannedStep("step1", "fetch_records", {"query": "acme"}),
            PlannedStep("step2", "send_update", second_args or {"targetId": "{{step1.result.id}}"}),
        ],
    )


@pytest.mark.asyncio
async def test_two_step_plan_resolves_placeholder_and_completes(pipeline_registry, sink, history):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, history=history)
    run = _pipeline_run()

    result = await executor.execute_plan(run, "u1")

    assert result is run
    assert run.status is RunStatus.COMPLETED
    assert run.completed_at is not None
    assert dispatcher.tool_order == ["fetch_records", "send_update"]
    assert dispatcher.requests[1]["arguments"] == {"targetId": "42"}
    assert dispatcher.requests[1]["plan_id"] == run.plan_id
    assert [step.status for step in run.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED]
    assert sink.snapshots()[-1]["status"] == "completed"
    assert sink.of_type(ChunkType.ERROR) == []


@pytest.mark.asyncio
async def test_announcement_reports_use_of_prior_data(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink)

    await executor.execute_plan(_pipeline_run())

    announcements = [
        chunk.content["segment"]["segment"]
        for chunk in sink.of_type(ChunkType.CONVERSATIONAL_TEXT_SEGMENT)
        if chunk.message_type is MessageType.STEP_ANNOUNCEMENT and "segment" in chunk.content
    ]
    assert announcements == [
        "Step 1 of 2: Executing record fetching as planned...",
        "Step 2 of 2: Executing update sending using data from a previous step...",
    ]


@pytest.mark.asyncio
async def test_follow_up_summary_streams_with_followup_message_id(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink)
    run = _pipeline_run()

    await executor.execute_plan(run)

    follow_ups = [
        chunk for chunk in sink.of_type(ChunkType.CONVERSATIONAL_TEXT_SEGMENT) if chunk.message_id == "step1_followup"
    ]
    assert [chunk.content["status"] for chunk in follow_ups] == ["START_STREAM", "STREAMING", "END_STREAM"]
    assert follow_ups[1].content["segment"]["segment"] == "The action 'fetch_records' completed successfully."
    assert not any(chunk.message_id == "step2_followup" for _, chunk in sink.chunks)


@pytest.mark.asyncio
async def test_follow_up_arguments_overwrite_next_step(pipeline_registry, sink):
    provider = ScriptedProvider(['{"summary": "Got it.", "nextToolCallArgs": {"targetId": "99", "note": "hi"}}'])
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, provider=provider)

    await executor.execute_plan(_pipeline_run())

    assert dispatcher.requests[1]["arguments"] == {"targetId": "99", "note": "hi"}


@pytest.mark.asyncio
async def test_dispatch_failure_halts_run_with_one_terminal_error(pipeline_registry, sink, history):
    failed = DispatchOutcome(
        status="failed",
        tool_name="fetch_records",
        error="CRM unavailable",
        error_details={"status_code": 503},
    )
    dispatcher = ScriptedDispatcher({"fetch_records": failed, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, history=history)
    run = _pipeline_run()

    await executor.execute_plan(run)

    assert run.status is RunStatus.FAILED
    assert dispatcher.tool_order == ["fetch_records"]
    assert run.steps[0].status is StepStatus.FAILED
    assert run.steps[0].result.error == "CRM unavailable"
    assert run.steps[0].result.error_details == {"status_code": 503}
    assert run.steps[1].status is StepStatus.PENDING

    errors = sink.of_type(ChunkType.ERROR)
    assert len(errors) == 1
    assert errors[0].content == "Action 'fetch_records' failed: CRM unavailable"
    assert errors[0].message_id == run.steps[0].tool_call.id
    assert errors[0].is_final is True
    assert sink.chunks[-1][1].type is ChunkType.RUN_UPDATED
    assert sink.snapshots()[-1]["status"] == "failed"

    items = history.get_user_history("u1")
    assert items[0].item_type is HistoryItemType.TOOL_CALL
    assert items[0].data["summary"] == "Failed: CRM unavailable"
    assert items[0].data["status"] == "failed"


@pytest.mark.asyncio
async def test_dispatcher_exception_is_treated_as_step_failure(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": ConnectionError("socket closed")})
    executor = make_executor(pipeline_registry, dispatcher, sink)
    run = _pipeline_run()

    await executor.execute_plan(run)

    assert run.status is RunStatus.FAILED
    assert run.steps[0].status is StepStatus.FAILED
    assert run.steps[0].result.error_details == {"exception": "ConnectionError"}
    errors = sink.of_type(ChunkType.ERROR)
    assert [chunk.content for chunk in errors] == ["Action 'fetch_records' failed: socket closed"]


@pytest.mark.asyncio
async def test_invalid_arguments_are_repaired_once(pipeline_registry, sink):
    provider = ScriptedProvider(['{"targetId": "42"}'])
    dispatcher = ScriptedDispatcher({"send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, provider=provider)
    run = create_run("s1", "u1", "update it", [PlannedStep("step1", "send_update", {"note": "x"})])

    await executor.execute_plan(run)

    assert run.status is RunStatus.COMPLETED
    assert dispatcher.requests[0]["arguments"] == {"targetId": "42"}
    assert run.steps[0].tool_call.arguments == {"targetId": "42"}
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_second_validation_failure_is_terminal(pipeline_registry, sink):
    provider = ScriptedProvider(['{"note": "still missing"}', '{"targetId": "42"}'])
    dispatcher = ScriptedDispatcher({"send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, provider=provider)
    run = create_run("s1", "u1", "update it", [PlannedStep("step1", "send_update", {})])

    await executor.execute_plan(run)

    assert run.status is RunStatus.FAILED
    assert dispatcher.requests == []
    assert len(provider.calls) == 1
    errors = sink.of_type(ChunkType.ERROR)
    assert len(errors) == 1
    assert "targetId" in errors[0].content


@pytest.mark.asyncio
async def test_failed_repair_reports_original_validation_error(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher()
    executor = make_executor(pipeline_registry, dispatcher, sink, provider=ScriptedProvider(["not json"]))
    run = create_run("s1", "u1", "update it", [PlannedStep("step1", "send_update", {})])

    await executor.execute_plan(run)

    assert run.status is RunStatus.FAILED
    assert run.steps[0].result.error.startswith("Argument validation failed: ")


@pytest.mark.asyncio
async def test_resume_skips_completed_steps_but_still_narrates_them(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink)
    run = _pipeline_run()
    run.mark_running()
    run.steps[0].mark_running()
    run.steps[0].settle(ToolResult(status=ToolResultStatus.SUCCESS, tool_name="fetch_records", payload={"id": "42"}))

    await executor.execute_plan(run)

    assert dispatcher.tool_order == ["send_update"]
    assert dispatcher.requests[0]["arguments"] == {"targetId": "42"}
    assert run.status is RunStatus.COMPLETED
    completions = [
        chunk
        for chunk in sink.of_type(ChunkType.CONVERSATIONAL_TEXT_SEGMENT)
        if chunk.message_type is MessageType.STEP_COMPLETE and "segment" in chunk.content
    ]
    assert [chunk.content["segment"]["segment"] for chunk in completions] == [
        "✓ record fetching completed",
        "✓ update sending completed",
    ]
    assert any(chunk.message_id == "step1_followup" for _, chunk in sink.chunks)


@pytest.mark.asyncio
async def test_interrupted_running_step_is_executed_again(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "7"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink)
    run = _pipeline_run()
    run.mark_running()
    run.steps[0].mark_running()

    await executor.execute_plan(run)

    assert dispatcher.tool_order == ["fetch_records", "send_update"]
    assert run.status is RunStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", ["completed", "failed"])
async def test_terminal_runs_are_refused(pipeline_registry, sink, terminal):
    executor = make_executor(pipeline_registry, ScriptedDispatcher(), sink)
    run = _pipeline_run()
    run.mark_running()
    getattr(run, f"mark_{terminal}")()

    with pytest.raises(RunStateError):
        await executor.execute_plan(run)


@pytest.mark.asyncio
async def test_unresolved_placeholder_is_sent_verbatim(pipeline_registry, sink):
    logger = RecordingLogger()
    dispatcher = ScriptedDispatcher({"fetch_records": {"other": 1}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, logger=logger)

    run = await executor.execute_plan(_pipeline_run())

    assert run.status is RunStatus.COMPLETED
    assert dispatcher.requests[1]["arguments"] == {"targetId": "{{step1.result.id}}"}
    assert "placeholder_unresolved" in logger.events("warning")


@pytest.mark.asyncio
async def test_completion_updates_linked_history_record(pipeline_registry, sink, history):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, history=history)
    run = _pipeline_run()
    run.history_id = history.record_plan_creation("u1", "s1", run.plan_id, "Update record", [])

    await executor.execute_plan(run, "u1")

    plan_item = history.get_item("u1", run.history_id)
    assert plan_item.data["status"] == "completed"
    summaries = [item.data.get("summary") for item in history.get_user_history("u1")]
    assert "Executed send_update" in summaries
    assert "Executed fetch_records" in summaries


@pytest.mark.asyncio
async def test_history_errors_do_not_fail_the_run(pipeline_registry, sink):
    class BrokenHistory:
        def record_tool_call(self, *args, **kwargs):
            raise RuntimeError("disk full")

        def update_item(self, *args, **kwargs):
            raise RuntimeError("disk full")

    logger = RecordingLogger()
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink, history=BrokenHistory(), logger=logger)
    run = _pipeline_run()
    run.history_id = "hist_1"

    await executor.execute_plan(run)

    assert run.status is RunStatus.COMPLETED
    assert "history_record_failed" in logger.events("warning")
    assert "history_update_failed" in logger.events("warning")


@pytest.mark.asyncio
async def test_snapshots_are_isolated_from_later_mutation(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    executor = make_executor(pipeline_registry, dispatcher, sink)

    await executor.execute_plan(_pipeline_run())

    assert sink.snapshots()[0]["status"] == "running"
    assert sink.snapshots()[0]["steps"][0]["status"] == "pending"


@pytest.mark.asyncio
async def test_model_narrates_each_step_transition(pipeline_registry, sink):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    narration = ScriptedProvider(
        [
            "Looking up the Acme record.",
            "Found the Acme record.",
            RuntimeError("narration model down"),
            "Update sent for record 42.",
        ]
    )
    executor = make_executor(pipeline_registry, dispatcher, sink, narration_provider=narration)
    run = _pipeline_run()

    await executor.execute_plan(run)

    assert run.status is RunStatus.COMPLETED
    assert len(narration.calls) == 4
    narrated = [
        (chunk.message_type, chunk.content["segment"]["segment"])
        for chunk in sink.of_type(ChunkType.CONVERSATIONAL_TEXT_SEGMENT)
        if chunk.message_type in (MessageType.STEP_ANNOUNCEMENT, MessageType.STEP_COMPLETE)
        and "segment" in chunk.content
    ]
    assert narrated == [
        (MessageType.STEP_ANNOUNCEMENT, "Looking up the Acme record."),
        (MessageType.STEP_COMPLETE, "Found the Acme record."),
        (MessageType.STEP_ANNOUNCEMENT, "Step 2 of 2: Executing update sending using data from a previous step..."),
        (MessageType.STEP_COMPLETE, "Update sent for record 42."),
    ]
    assert '"targetId": "42"' in narration.calls[2]["messages"][-1].content


@pytest.mark.asyncio
async def test_follow_up_summary_is_kept_as_assistant_message(pipeline_registry, sink, history):
    dispatcher = ScriptedDispatcher({"fetch_records": {"id": "42"}, "send_update": {"ok": True}})
    provider = ScriptedProvider(['{"summary": "Record 42 is ready.", "nextToolCallArgs": null}'])
    executor = make_executor(pipeline_registry, dispatcher, sink, provider=provider, history=history)

    await executor.execute_plan(_pipeline_run(), "u1")

    messages = [item.data for item in history.get_user_history("u1") if item.item_type is HistoryItemType.MESSAGE]
    assert messages == [{"text": "Record 42 is ready.", "role": "assistant"}]
