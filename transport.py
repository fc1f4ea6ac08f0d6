import asyncio
import json
from typing import Any, Coroutine, Dict, Optional, Protocol

from fastapi import WebSocket

from logging_config import get_logger

logger = get_logger(__name__)


class Transport(Protocol):
    """What the chat core needs from the connection layer."""

    def send(self, connection_id: str, event: str, payload: Any = None) -> bool:
        ...

    def broadcast(self, event: str, payload: Any = None) -> int:
        ...


def encode_frame(event: str, payload: Any = None) -> str:
    return json.dumps({"event": event, "data": payload})


class WebSocketTransport:
    """Per-connection outbound queues over FastAPI websockets.

    ``send`` and ``broadcast`` never await: frames are queued and each
    connection's ``writer`` task drains its own queue. Sending to a
    connection that is not (or no longer) attached is a no-op.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._sockets: Dict[str, WebSocket] = {}
        self._queues: Dict[str, asyncio.Queue] = {}

    def attach(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket
        self._queues[connection_id] = asyncio.Queue(maxsize=self.max_queue_size)
        logger.debug(f"Attached connection {connection_id} (local connections: {len(self._sockets)})")

    def detach(self, connection_id: str) -> None:
        self._sockets.pop(connection_id, None)
        queue = self._queues.pop(connection_id, None)
        if queue is not None:
            # Wake the writer so it can exit; a full queue gives up its oldest frame for the sentinel
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)
        logger.debug(f"Detached connection {connection_id} (local connections: {len(self._sockets)})")

    def send(self, connection_id: str, event: str, payload: Any = None) -> bool:
        queue = self._queues.get(connection_id)
        if queue is None:
            logger.debug(f"Dropping '{event}' for unknown connection {connection_id}")
            return False
        try:
            queue.put_nowait(encode_frame(event, payload))
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {connection_id}, dropping '{event}'")
            return False
        return True

    def broadcast(self, event: str, payload: Any = None) -> int:
        sent = 0
        for connection_id in list(self._queues):
            if self.send(connection_id, event, payload):
                sent += 1
        return sent

    def writer(self, connection_id: str) -> Coroutine[Any, Any, None]:
        """Return the coroutine that drains a connection's queue into its websocket.

        The queue and socket are bound here, when the task is created, so a
        detach before the task first runs still flushes what was queued.
        """
        queue: Optional[asyncio.Queue] = self._queues.get(connection_id)
        websocket = self._sockets.get(connection_id)
        return self._drain(connection_id, queue, websocket)

    async def _drain(self, connection_id: str, queue: Optional[asyncio.Queue], websocket: Optional[WebSocket]) -> None:
        if queue is None or websocket is None:
            return
        while True:
            frame = await queue.get()
            if frame is None:
                break
            try:
                await websocket.send_text(frame)
            except Exception as e:
                logger.warning(f"Error sending to connection {connection_id}: {e}")
                break
        logger.debug(f"Writer for connection {connection_id} stopped")

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._sockets

    def __len__(self) -> int:
        return len(self._sockets)
