"""Session registry — the live WebSocket sessions and how to reach them.

Learn: A Session never writes to its socket from the caller's task. send
and broadcast only put an encoded frame on the session's bounded outbox;
a per-session writer task drains it. That keeps three promises:

* frames to one client are never interleaved and keep their enqueue order,
* a slow or dead client cannot stall the command that produced the frame,
  nor delivery to anyone else,
* one client's send failure is contained in its own writer task.

A new session starts *unprimed*: frames produced before its catalog snapshot
is ready are held back and released right after the snapshot, so the
snapshot is always the first frame a client sees.
"""

import asyncio
import uuid
from typing import Any, Optional

import structlog
from starlette.websockets import WebSocket, WebSocketState

from marketsync.realtime.protocol import encode

logger = structlog.get_logger()

# Close code for a client that could not keep up with its outbox.
CLOSE_TRY_AGAIN_LATER = 1013

_STOP = None  # outbox sentinel


class Session:
    """One connected client: its socket, outbox and writer task."""

    def __init__(self, websocket: WebSocket, queue_size: int = 1000):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self._queue_size = queue_size
        self._outbox: asyncio.Queue[Optional[str]] = asyncio.Queue(maxsize=queue_size)
        self._held: Optional[list[str]] = []  # None once primed
        self._closed = False
        self._overflowed = False
        self._writer: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def start(self) -> None:
        self._writer = asyncio.create_task(self._write_loop())

    def deliver(self, message: dict[str, Any] | str) -> bool:
        """Queue one frame for this client. Returns False if it was dropped."""
        if not self.is_open:
            return False
        text = message if isinstance(message, str) else encode(message)
        if self._held is not None:
            if len(self._held) >= self._queue_size:
                self._overflow()
                return False
            self._held.append(text)
            return True
        try:
            self._outbox.put_nowait(text)
        except asyncio.QueueFull:
            self._overflow()
            return False
        return True

    def prime(self, first: dict[str, Any]) -> None:
        """Send `first` (the snapshot), then everything held back until now."""
        held, self._held = self._held or [], None
        if not self.is_open:
            return
        for text in [encode(first), *held]:
            try:
                self._outbox.put_nowait(text)
            except asyncio.QueueFull:
                self._overflow()
                return

    def _overflow(self) -> None:
        logger.warning("session.outbox_overflow", session_id=self.id, limit=self._queue_size)
        self._overflowed = True
        self._closed = True
        if self._writer is not None and self._outbox.empty():
            # Wake the writer so it can close the socket
            self._outbox.put_nowait(_STOP)

    async def _write_loop(self) -> None:
        try:
            while True:
                text = await self._outbox.get()
                if text is _STOP or self._overflowed:
                    break
                await self.websocket.send_text(text)
        except Exception as e:
            # The peer went away mid-send; the receive loop will deregister us.
            self._closed = True
            logger.debug("session.send_failed", session_id=self.id, error=str(e))
            return

        if self._overflowed:
            try:
                await self.websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Client too slow")
            except Exception as e:
                logger.debug("session.close_failed", session_id=self.id, error=str(e))

    async def aclose(self) -> None:
        """Stop the writer. Frames still queued for a closing client are dropped."""
        self._closed = True
        if self._writer is None:
            return
        self._writer.cancel()
        try:
            await self._writer
        except asyncio.CancelledError:
            pass
        self._writer = None


class SessionRegistry:
    """The set of live sessions plus send/broadcast primitives.

    Learn: Membership changes and the recipient snapshot taken by a
    broadcast happen under one asyncio.Lock, so a broadcast racing a
    disconnect sees the session either fully present or fully gone.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def register(self, session: Session) -> None:
        async with self._lock:
            self._sessions.setdefault(session.id, session)

    async def deregister(self, session: Session) -> None:
        async with self._lock:
            self._sessions.pop(session.id, None)

    async def send_to(self, session: Session, message: dict[str, Any]) -> bool:
        """Deliver to one session; silently dropped if its socket is not open."""
        try:
            return session.deliver(message)
        except Exception:
            logger.exception("session.deliver_failed", session_id=session.id)
            return False

    async def broadcast_except(
        self, message: dict[str, Any], excluded: Optional[Session] = None
    ) -> int:
        """Deliver to every session but `excluded`. Returns how many accepted it."""
        async with self._lock:
            recipients = [
                s for s in self._sessions.values()
                if excluded is None or s.id != excluded.id
            ]

        text = encode(message)
        delivered = 0
        for session in recipients:
            try:
                if session.deliver(text):
                    delivered += 1
            except Exception:
                logger.exception("session.deliver_failed", session_id=session.id)
        return delivered
