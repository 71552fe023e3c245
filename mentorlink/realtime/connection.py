"""
Live connection state

A Connection wraps one authenticated transport (a Starlette WebSocket in
production). Outbound frames go through a bounded queue drained by a
sender task; when the queue is full the oldest frame is dropped.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Set

from mentorlink.realtime.protocol import encode_ack, encode_event
from mentorlink.security.identity import AuthenticatedUser

logger = logging.getLogger(__name__)


class Connection:
    """
    One live, authenticated connection.

    session_id is the single active room slot; only RoomRouter writes it.
    """

    def __init__(self, transport, identity: AuthenticatedUser, max_queue_size: int = 100):
        self.id = uuid.uuid4().hex
        self.transport = transport
        self.identity = identity
        self.session_id: Optional[str] = None
        self.closed = False
        self.dropped = 0
        self.tasks: Set[asyncio.Task] = set()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._sender: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.identity.id

    def start(self) -> None:
        if self._sender is None:
            self._sender = asyncio.create_task(self._send_loop())

    def send(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Queue an event frame. Never blocks."""
        self._enqueue(encode_event(event, data))

    def send_ack(self, ack: Any, ok: bool, message: Optional[str] = None) -> None:
        self._enqueue(encode_ack(ack, ok, message))

    def _enqueue(self, frame: str) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            # Backpressure: drop oldest
            try:
                self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
            except asyncio.QueueEmpty:
                pass
            self._queue.put_nowait(frame)

    async def _send_loop(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self.transport.send_text(frame)
            except Exception as e:
                logger.info(f"Connection {self.id} send failed ({type(e).__name__}); stopping sender")
                self.closed = True
                self._discard_pending()
                return
            finally:
                self._queue.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        if self._sender is not None and not self._sender.done():
            await self._queue.join()

    def track(self, task: asyncio.Task) -> None:
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)

    async def close(self) -> None:
        """Cancel in-flight handlers and the sender task."""
        self.closed = True
        pending = [task for task in self.tasks if not task.done()]
        if self._sender is not None:
            pending.append(self._sender)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.tasks.clear()
