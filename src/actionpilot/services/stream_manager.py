"""Push-only delivery of stream chunks to connected websocket clients."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Protocol

from fastapi import WebSocket, WebSocketDisconnect

from actionpilot.domain.events import StreamChunk
from actionpilot.infrastructure.logging_setup import get_logger


class StreamSink(Protocol):
    """Fire-and-forget destination for chunks of a session."""

    def send_chunk(self, session_id: str, chunk: StreamChunk) -> None:
        ...


class StreamManager:
    """One outbound queue per connected session.

    ``send_chunk`` never blocks; chunks for sessions without a connection are
    dropped with a warning.
    """

    def __init__(self, *, max_queue_size: int = 0, logger: Any = None):
        self._queues: Dict[str, "asyncio.Queue[Optional[StreamChunk]]"] = {}
        self._max_queue_size = max_queue_size
        self._logger = logger or get_logger("stream_manager")

    def _close_queue(self, session_id: str, queue: "asyncio.Queue[Optional[StreamChunk]]") -> None:
        # a replaced connection loses its pending chunks
        discarded = 0
        while not queue.empty():
            queue.get_nowait()
            discarded += 1
        queue.put_nowait(None)
        self._logger.warning("duplicate_stream_connection", session_id=session_id, discarded=discarded)

    def connect(self, session_id: str) -> "asyncio.Queue[Optional[StreamChunk]]":
        previous = self._queues.get(session_id)
        if previous is not None:
            self._close_queue(session_id, previous)
        queue: "asyncio.Queue[Optional[StreamChunk]]" = asyncio.Queue(maxsize=self._max_queue_size)
        self._queues[session_id] = queue
        self._logger.info("stream_connection_added", session_id=session_id)
        return queue

    def disconnect(self, session_id: str, queue: Optional[asyncio.Queue] = None) -> bool:
        current = self._queues.get(session_id)
        if current is None or (queue is not None and current is not queue):
            return False
        del self._queues[session_id]
        self._logger.info("stream_connection_removed", session_id=session_id)
        return True

    def has_connection(self, session_id: str) -> bool:
        return session_id in self._queues

    def send_chunk(self, session_id: str, chunk: StreamChunk) -> None:
        queue = self._queues.get(session_id)
        if queue is None:
            self._logger.warning("stream_chunk_dropped", session_id=session_id, chunk_type=chunk.type.value)
            return
        try:
            queue.put_nowait(chunk)
        except asyncio.QueueFull:
            self._logger.warning("stream_queue_full", session_id=session_id, chunk_type=chunk.type.value)

    async def pump(
        self,
        session_id: str,
        websocket: WebSocket,
        queue: Optional["asyncio.Queue[Optional[StreamChunk]]"] = None,
    ) -> None:
        """Drain the session queue into ``websocket`` until it closes."""
        if queue is None:
            queue = self.connect(session_id)
        try:
            while True:
                chunk = await queue.get()
                if chunk is None:
                    break
                await websocket.send_json(chunk.to_dict())
        except WebSocketDisconnect:
            self._logger.info("stream_client_disconnected", session_id=session_id)
        finally:
            self.disconnect(session_id, queue)
