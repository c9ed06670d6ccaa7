"""Shared fakes and fixtures."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from actionpilot.domain.events import ChunkType, StreamChunk
from actionpilot.kernel.llm.llm_runtime import BaseLLMProvider, LLMResponse, LLMRuntime, LLMUsage
from actionpilot.kernel.llm.model_assist import ModelAssistClient
from actionpilot.kernel.tools.dispatcher import DispatchOutcome, DispatchRequest
from actionpilot.kernel.tools.schema_validator import SchemaValidator
from actionpilot.kernel.tools.tool_registry import ToolRegistry
from actionpilot.runtime.follow_up import FollowUpBridge
from actionpilot.runtime.narrator import StepNarrator
from actionpilot.runtime.plan_executor import PlanExecutor
from actionpilot.runtime.repair import ArgumentRepairCoordinator
from actionpilot.services.history_service import HistoryService


class RecordingLogger:
    """Structlog-shaped logger that keeps every event."""

    def __init__(self, records: Optional[List[Tuple[str, str, Dict[str, Any]]]] = None, **context: Any):
        self.records = records if records is not None else []
        self.context = context

    def bind(self, **context: Any) -> "RecordingLogger":
        return RecordingLogger(self.records, **{**self.context, **context})

    def _log(self, level: str, event: str, **kwargs: Any) -> None:
        self.records.append((level, event, {**self.context, **kwargs}))

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log("debug", event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log("info", event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log("warning", event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log("error", event, **kwargs)

    def events(self, level: Optional[str] = None) -> List[str]:
        return [event for lvl, event, _ in self.records if level is None or lvl == level]


class RecordingSink:
    def __init__(self) -> None:
        self.chunks: List[Tuple[str, StreamChunk]] = []

    def send_chunk(self, session_id: str, chunk: StreamChunk) -> None:
        self.chunks.append((session_id, chunk))

    def of_type(self, chunk_type: ChunkType) -> List[StreamChunk]:
        return [chunk for _, chunk in self.chunks if chunk.type is chunk_type]

    def snapshots(self) -> List[Dict[str, Any]]:
        return [chunk.content for chunk in self.of_type(ChunkType.RUN_UPDATED)]


class ScriptedDispatcher:
    """Returns canned outcomes per tool name and records every request."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = dict(responses or {})
        self.requests: List[Dict[str, Any]] = []

    async def execute(self, session_id, user_id, request: DispatchRequest, *, plan_id, step_id):
        self.requests.append(
            {
                "session_id": session_id,
                "user_id": user_id,
                "tool_name": request.tool_name,
                "arguments": request.arguments,
                "plan_id": plan_id,
                "step_id": step_id,
            }
        )
        response = self.responses.get(request.tool_name)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, DispatchOutcome):
            return response
        return DispatchOutcome(status="completed", tool_name=request.tool_name, result=response)

    @property
    def tool_order(self) -> List[str]:
        return [item["tool_name"] for item in self.requests]


class ScriptedProvider(BaseLLMProvider):
    """LLM provider answering from a queue of strings or exceptions."""

    def __init__(self, answers: Optional[List[Any]] = None):
        self.answers = list(answers or [])
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, messages, config, provider_config):
        self.calls.append({"messages": messages, "config": config})
        if not self.answers:
            raise RuntimeError("no scripted answer left")
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return LLMResponse(content=answer, usage=LLMUsage(total_tokens=1), model="scripted")


PIPELINE_TOOLS = {
    "fetch_records": {
        "category": "CRM",
        "display_name": "record fetching",
        "description": "Fetch records.",
        "parameters": {
            "type": "object",
            "properties": {"query": {"type": "string"}},
        },
    },
    "send_update": {
        "category": "CRM",
        "display_name": "update sending",
        "description": "Send an update about a record.",
        "parameters": {
            "type": "object",
            "properties": {
                "targetId": {"type": "string", "minLength": 1},
                "note": {"type": "string"},
            },
            "required": ["targetId"],
        },
    },
}


@pytest.fixture
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def pipeline_registry() -> ToolRegistry:
    return ToolRegistry(specs=PIPELINE_TOOLS)


@pytest.fixture
def history(tmp_path) -> HistoryService:
    return HistoryService(tmp_path / "history.db", max_items=100, logger=RecordingLogger())


def make_model_assist(provider: ScriptedProvider, logger: Any = None) -> ModelAssistClient:
    return ModelAssistClient(LLMRuntime(provider=provider), timeout_seconds=5.0, logger=logger or RecordingLogger())


def make_executor(
    registry: ToolRegistry,
    dispatcher: Any,
    sink: RecordingSink,
    *,
    provider: Optional[ScriptedProvider] = None,
    narration_provider: Optional[ScriptedProvider] = None,
    history: Optional[HistoryService] = None,
    logger: Optional[RecordingLogger] = None,
) -> PlanExecutor:
    logger = logger or RecordingLogger()
    model_assist = make_model_assist(provider or ScriptedProvider(), logger)
    return PlanExecutor(
        dispatcher=dispatcher,
        sink=sink,
        validator=SchemaValidator(registry, logger=logger),
        repairer=ArgumentRepairCoordinator(model_assist, registry, logger=logger),
        narrator=StepNarrator(
            sink,
            registry,
            model_assist=make_model_assist(narration_provider, logger) if narration_provider is not None else None,
            logger=logger,
        ),
        follow_up=FollowUpBridge(model_assist, registry, logger=logger),
        history=history,
        logger=logger,
    )
