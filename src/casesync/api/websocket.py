"""WebSocket endpoint delivering broadcast events to connected observers.

Each connection registers one observer on the broadcaster. Outcomes that
no observer received yet are redelivered when a connection opens.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from casesync.events import BroadcastEvent

logger = logging.getLogger(__name__)

ws_router = APIRouter(tags=["websocket"])


@ws_router.websocket("/ws")
async def events_socket(websocket: WebSocket) -> None:
    """Push outcome and cache events to one client."""
    services = getattr(websocket.app.state, "services", None)
    if services is None:
        await websocket.close(code=1011)
        return

    await websocket.accept()

    async def send(event: BroadcastEvent) -> None:
        await websocket.send_text(event.to_json())

    services.broadcaster.subscribe(send)
    logger.info("Observer connected (%d total)", services.broadcaster.observer_count)
    try:
        await services.relay.redeliver_pending()
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await websocket.send_text("pong")
            else:
                logger.debug("Ignoring client message: %s", message)
    except WebSocketDisconnect:
        logger.info("Observer disconnected")
    finally:
        services.broadcaster.unsubscribe(send)
