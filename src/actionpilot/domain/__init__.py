"""Domain models for ActionPilot."""

from .errors import (
    ActionPilotError,
    ArgumentRepairError,
    CompletionError,
    DuplicateStepError,
    RunStateError,
    ToolNotFoundError,
    ToolValidationError,
)
from .events import ChunkType, MessageType, SegmentStatus, StreamChunk
from .history import HistoryItem, HistoryItemType
from .run import (
    Run,
    RunStatus,
    StepStatus,
    ToolCall,
    ToolExecutionStep,
    ToolResult,
    ToolResultStatus,
    utc_now_iso,
)

__all__ = [
    # Errors
    "ActionPilotError",
    "ArgumentRepairError",
    "CompletionError",
    "DuplicateStepError",
    "RunStateError",
    "ToolNotFoundError",
    "ToolValidationError",
    # Stream
    "ChunkType",
    "MessageType",
    "SegmentStatus",
    "StreamChunk",
    # History
    "HistoryItem",
    "HistoryItemType",
    # Run
    "Run",
    "RunStatus",
    "StepStatus",
    "ToolCall",
    "ToolExecutionStep",
    "ToolResult",
    "ToolResultStatus",
    "utc_now_iso",
]
