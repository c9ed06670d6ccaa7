"""Tests for the follow-up bridge and step narration."""

import pytest

from actionpilot.domain.events import ChunkType, MessageType, SegmentStatus
from actionpilot.domain.run import Run, StepStatus, ToolCall, ToolExecutionStep, ToolResult, ToolResultStatus
from actionpilot.kernel.tools.tool_registry import ToolRegistry
from actionpilot.runtime.follow_up import FollowUp, FollowUpBridge, fallback_summary
from actionpilot.runtime.narrator import StepNarrator

from conftest import RecordingLogger, RecordingSink, ScriptedProvider, make_model_assist


def _step(step_id, name, payload=None, status=StepStatus.PENDING):
    step = ToolExecutionStep(step_id=step_id, tool_call=ToolCall(id=f"call_{step_id}", name=name))
    step.status = status
    if payload is not None:
        step.result = ToolResult(status=ToolResultStatus.SUCCESS, tool_name=name, payload=payload)
    return step


def _run(*steps):
    return Run(id="run_1", session_id="s1", user_id="u1", user_input="mail the latest", plan_id="p1", steps=list(steps))


def test_fallback_summary_digests_emails_and_records():
    emails = {"emails": [{"subject": "Q3 renewal"}, {"subject": "older"}]}
    records = {"data": {"records": [{"name": "Acme"}]}}

    assert fallback_summary("fetch_emails", emails) == 'I found 2 emails. The most recent one is titled "Q3 renewal".'
    assert fallback_summary("fetch_entity", records) == 'I found 1 records. The first one is "Acme".'
    assert fallback_summary("send_email", {"ok": True}) == "The action 'send_email' completed successfully."


@pytest.mark.asyncio
async def test_bridge_returns_model_summary_and_arguments():
    provider = ScriptedProvider(['{"summary": "Found Acme.", "nextToolCallArgs": {"to": "x@acme.com"}}'])
    bridge = FollowUpBridge(make_model_assist(provider), ToolRegistry(), logger=RecordingLogger())
    first = _step("step1", "fetch_entity", {"records": [{"name": "Acme"}]}, StepStatus.COMPLETED)
    second = _step("step2", "send_email")

    follow_up = await bridge.bridge(_run(first, second), second)

    assert follow_up == FollowUp(summary="Found Acme.", next_arguments={"to": "x@acme.com"})
    prompt = provider.calls[0]["messages"][-1].content
    assert "mail the latest" in prompt
    assert "Tool Name: send_email" in prompt
    assert '"name": "Acme"' in prompt


@pytest.mark.asyncio
async def test_bridge_without_completed_step_returns_empty_follow_up():
    provider = ScriptedProvider()
    bridge = FollowUpBridge(make_model_assist(provider), ToolRegistry(), logger=RecordingLogger())
    first = _step("step1", "fetch_entity")
    second = _step("step2", "send_email")

    assert await bridge.bridge(_run(first, second), second) == FollowUp(None, None)
    assert provider.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "answer",
    [
        RuntimeError("network down"),
        "not json",
        '["summary"]',
        '{"summary": 3}',
        '{"summary": "ok", "nextToolCallArgs": "to=x"}',
    ],
)
async def test_bridge_degrades_to_fallback_and_never_raises(answer):
    bridge = FollowUpBridge(
        make_model_assist(ScriptedProvider([answer])), ToolRegistry(), logger=RecordingLogger()
    )
    first = _step("step1", "fetch_emails", {"emails": [{"subject": "Hello"}]}, StepStatus.COMPLETED)
    second = _step("step2", "send_email")

    follow_up = await bridge.bridge(_run(first, second), second)

    assert follow_up.summary == 'I found 1 emails. The most recent one is titled "Hello".'
    assert follow_up.next_arguments is None


@pytest.mark.asyncio
async def test_bridge_without_client_uses_fallback():
    bridge = FollowUpBridge(None, ToolRegistry(), logger=RecordingLogger())
    first = _step("step1", "send_email", {"sent": True}, StepStatus.COMPLETED)
    second = _step("step2", "create_calendar_event")

    follow_up = await bridge.bridge(_run(first, second), second)

    assert follow_up == FollowUp(summary="The action 'send_email' completed successfully.")


@pytest.mark.asyncio
async def test_narrator_streams_start_streaming_end_with_fresh_message_id():
    sink = RecordingSink()
    narrator = StepNarrator(sink, ToolRegistry(), logger=RecordingLogger())
    step = _step("step1", "fetch_emails")

    message_id = await narrator.announce(step, "s1", used_prior_data=True, step_number=1, total_steps=2)

    chunks = [chunk for _, chunk in sink.chunks]
    assert [chunk.content["status"] for chunk in chunks] == ["START_STREAM", "STREAMING", "END_STREAM"]
    assert all(chunk.type is ChunkType.CONVERSATIONAL_TEXT_SEGMENT for chunk in chunks)
    assert all(chunk.message_id == message_id for chunk in chunks)
    assert message_id.startswith("msg_") and message_id != step.step_id
    assert chunks[1].content["segment"] == {
        "segment": "Step 1 of 2: Executing email fetching using data from a previous step...",
        "styles": [],
        "type": "text",
    }
    assert chunks[-1].is_final is True
    assert chunks[0].message_type is MessageType.STEP_ANNOUNCEMENT


def test_narrator_single_step_has_no_prefix():
    narrator = StepNarrator(RecordingSink(), ToolRegistry(), logger=RecordingLogger())

    text = narrator.describe_announcement(_step("s", "send_email"), False, 1, 1)

    assert text == "Executing email sending as planned..."


@pytest.mark.asyncio
async def test_narrator_failure_message():
    sink = RecordingSink()
    narrator = StepNarrator(sink, ToolRegistry(), logger=RecordingLogger())

    await narrator.complete(_step("s", "send_email"), {"error": "quota exceeded"}, "s1", succeeded=False)

    streaming = sink.chunks[1][1]
    assert streaming.message_type is MessageType.STEP_FAILED
    assert streaming.content["segment"]["segment"] == "✗ email sending failed: quota exceeded"


@pytest.mark.asyncio
async def test_narrator_announcement_written_by_model():
    provider = ScriptedProvider(["<think>short</think>\"Pulling your five newest emails now.\""])
    sink = RecordingSink()
    narrator = StepNarrator(sink, ToolRegistry(), model_assist=make_model_assist(provider), logger=RecordingLogger())
    step = _step("step1", "fetch_emails")
    step.description = "Read the inbox"
    step.tool_call.arguments = {"filters": {"limit": 5}}

    message_id = await narrator.announce(step, "s1", used_prior_data=False, step_number=1, total_steps=2)

    assert message_id.startswith("msg_")
    assert sink.chunks[1][1].content["segment"]["segment"] == "Pulling your five newest emails now."
    config = provider.calls[0]["config"]
    assert (config.temperature, config.max_tokens, config.json_mode) == (0.5, 80, False)
    prompt = provider.calls[0]["messages"][-1].content
    assert "Step 1 of 2: Executing: fetch_emails" in prompt
    assert "Intent: Read the inbox" in prompt
    assert '"limit": 5' in prompt


@pytest.mark.asyncio
async def test_narrator_completion_written_by_model_with_result_preview():
    provider = ScriptedProvider(["Found 3 emails from Acme."])
    sink = RecordingSink()
    narrator = StepNarrator(sink, ToolRegistry(), model_assist=make_model_assist(provider), logger=RecordingLogger())
    payload = {"emails": ["x" * 500]}

    await narrator.complete(_step("step1", "fetch_emails"), payload, "s1", succeeded=True)

    streaming = sink.chunks[1][1]
    assert streaming.message_type is MessageType.STEP_COMPLETE
    assert streaming.content["segment"]["segment"] == "Found 3 emails from Acme."
    assert provider.calls[0]["config"].max_tokens == 60
    prompt = provider.calls[0]["messages"][-1].content
    summary_line = next(line for line in prompt.splitlines() if line.startswith("Result summary: "))
    assert len(summary_line) == len("Result summary: ") + 300


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", [RuntimeError("model down"), "   ", "<think>only thoughts</think>"])
async def test_narrator_falls_back_when_model_fails(answer):
    provider = ScriptedProvider([answer, answer])
    sink = RecordingSink()
    logger = RecordingLogger()
    narrator = StepNarrator(sink, ToolRegistry(), model_assist=make_model_assist(provider, logger), logger=logger)
    step = _step("step1", "send_email")

    announce_id = await narrator.announce(step, "s1", used_prior_data=False)
    complete_id = await narrator.complete(step, {"sent": True}, "s1", succeeded=True)

    texts = [chunk.content["segment"]["segment"] for _, chunk in sink.chunks if "segment" in chunk.content]
    assert texts == ["Executing email sending as planned...", "✓ email sending completed"]
    assert announce_id != complete_id
    assert "completion_unavailable" in logger.events("warning")


@pytest.mark.asyncio
async def test_narrator_never_raises_when_client_itself_breaks():
    class BrokenClient:
        async def try_complete_text(self, *args, **kwargs):
            raise RuntimeError("unexpected")

    sink = RecordingSink()
    logger = RecordingLogger()
    narrator = StepNarrator(sink, ToolRegistry(), model_assist=BrokenClient(), logger=logger)

    await narrator.complete(_step("s", "send_email"), {"error": "bounced"}, "s1", succeeded=False)

    assert sink.chunks[1][1].content["segment"]["segment"] == "✗ email sending failed: bounced"
    assert "narration_completion_failed" in logger.events("warning")


def test_narrator_swallows_sink_errors():
    class BrokenSink:
        def send_chunk(self, session_id, chunk):
            raise ConnectionError("gone")

    logger = RecordingLogger()
    narrator = StepNarrator(BrokenSink(), ToolRegistry(), logger=logger)

    narrator.stream_text("s1", "msg_1", "hello")

    assert logger.events("warning").count("narration_send_failed") == 3


def test_text_segment_status_values():
    assert SegmentStatus.START.value == "START_STREAM"
    assert SegmentStatus.END.value == "END_STREAM"
