"""WebSocket endpoint — the synchronization gateway.

Learn: Each client connects to /ws (legacy clients connect to / instead).
The handler:
1. Accepts the socket and registers a Session
2. Pushes the full catalog snapshot as the session's first frame
3. Decodes every inbound frame and hands it to the command processor
4. Deregisters the session when the client goes away

Frames from one client are processed strictly one after another; every
connection runs in its own coroutine, so clients never wait on each other.
The gateway never looks inside a command, it only routes it.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from marketsync.realtime.commands import ListingCommandProcessor
from marketsync.realtime.protocol import ProtocolError, decode_envelope, error_message
from marketsync.realtime.registry import Session, SessionRegistry
from marketsync.services.listing_service import ListingError

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
@router.websocket("/")
async def listings_websocket(websocket: WebSocket):
    """Realtime listing channel for one client."""
    registry: SessionRegistry = websocket.app.state.registry
    processor: ListingCommandProcessor = websocket.app.state.processor

    await websocket.accept()
    session = Session(websocket, queue_size=websocket.app.state.settings.outbound_queue_size)
    structlog.contextvars.bind_contextvars(session_id=session.id)
    session.start()
    await registry.register(session)
    logger.info("session.connected", sessions=len(registry))

    try:
        # Registered first, so nothing committed after the snapshot query is missed.
        try:
            snapshot = await processor.snapshot_message()
        except ListingError as e:
            logger.warning("session.snapshot_failed", error=str(e))
            snapshot = error_message(str(e))
        session.prime(snapshot)

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""

            try:
                envelope = decode_envelope(raw)
            except ProtocolError as e:
                logger.info("session.invalid_frame", reason=str(e))
                await registry.send_to(session, error_message("Invalid message format"))
                continue

            await processor.handle(envelope, session)
    except WebSocketDisconnect:
        pass
    finally:
        await registry.deregister(session)
        await session.aclose()
        logger.info("session.disconnected", sessions=len(registry))
        structlog.contextvars.unbind_contextvars("session_id")
