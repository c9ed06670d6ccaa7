"""Stream chunk structure for everything pushed to a live client."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional
import json


class ChunkType(Enum):
    """Types of chunks emitted to the stream sink."""

    RUN_UPDATED = "run_updated"
    CONVERSATIONAL_TEXT_SEGMENT = "conversational_text_segment"
    ERROR = "error"


class SegmentStatus(Enum):
    START = "START_STREAM"
    STREAMING = "STREAMING"
    END = "END_STREAM"


class MessageType(Enum):
    """What a narration message is about."""

    STEP_ANNOUNCEMENT = "step_announcement"
    STEP_COMPLETE = "step_complete"
    STEP_FAILED = "step_failed"
    FOLLOW_UP = "follow_up"


@dataclass(frozen=True)
class StreamChunk:
    """One discrete event for a session."""

    type: ChunkType
    content: Any
    message_id: Optional[str] = None
    is_final: bool = False
    message_type: Optional[MessageType] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            "content": self.content,
        }
        if self.message_id is not None:
            data["message_id"] = self.message_id
        if self.is_final:
            data["is_final"] = True
        if self.message_type is not None:
            data["message_type"] = self.message_type.value
        return data

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def run_updated(cls, snapshot: Dict[str, Any]) -> "StreamChunk":
        return cls(type=ChunkType.RUN_UPDATED, content=snapshot)

    @classmethod
    def error(cls, content: str, *, message_id: Optional[str] = None) -> "StreamChunk":
        return cls(type=ChunkType.ERROR, content=content, message_id=message_id, is_final=True)

    @classmethod
    def text_segment(
        cls,
        status: SegmentStatus,
        message_id: str,
        *,
        text: Optional[str] = None,
        styles: Optional[List[str]] = None,
        message_type: Optional[MessageType] = None,
    ) -> "StreamChunk":
        content: Dict[str, Any] = {"status": status.value}
        if text is not None:
            content["segment"] = {"segment": text, "styles": list(styles or []), "type": "text"}
        return cls(
            type=ChunkType.CONVERSATIONAL_TEXT_SEGMENT,
            content=content,
            message_id=message_id,
            is_final=status is SegmentStatus.END,
            message_type=message_type,
        )
