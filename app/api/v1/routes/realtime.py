import logging

from fastapi import APIRouter, WebSocket

router = APIRouter()
logger = logging.getLogger(__name__)


@router.websocket("/ws")
async def help_chat_ws(websocket: WebSocket) -> None:
    hub = getattr(websocket.app.state, "connection_hub", None)
    dispatcher = getattr(websocket.app.state, "help_chat_dispatcher", None)
    if hub is None or dispatcher is None:
        await websocket.close(code=1011, reason="Realtime hub not initialized")
        return

    await websocket.accept()
    connection = hub.register(websocket)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug(
                    "Connection %s disconnected with code %s",
                    connection.id,
                    message.get("code"),
                )
                break

            raw_message = message.get("text")
            if raw_message is None:
                # The protocol is JSON text only.
                logger.warning("Dropping binary frame from connection %s", connection.id)
                continue
            await dispatcher.handle_raw(connection, raw_message)
    finally:
        await dispatcher.handle_disconnect(connection)
