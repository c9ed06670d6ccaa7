"""Services layer - history persistence and live streaming."""

from .history_service import HistoryService
from .stream_manager import StreamManager, StreamSink

__all__ = [
    "HistoryService",
    "StreamManager",
    "StreamSink",
]
