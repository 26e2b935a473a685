from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from typing import Any
from uuid import uuid4
import logging

from callroom.deps import get_relay
from callroom.models import Envelope
from callroom.services.relay import RoomRelay

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketConnection:
    """Relay member backed by one accepted websocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = uuid4().hex[:12]

    async def send(self, event: str, payload: Any = None) -> None:
        await self.websocket.send_text(Envelope(event=event, payload=payload).model_dump_json())


@router.websocket("/ws")
async def signaling_endpoint(websocket: WebSocket, relay: RoomRelay = Depends(get_relay)):
    await websocket.accept()
    connection = WebSocketConnection(websocket)
    logger.info(f"🔌 Connection {connection.id} opened")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                envelope = Envelope.model_validate_json(raw)
            except ValidationError:
                await connection.send("error", {"code": "bad-request", "detail": "frame is not an event envelope"})
                continue

            logger.info(f"📨 Received {envelope.event} from {connection.id}")
            await relay.handle(connection, envelope.event, envelope.payload)

    except WebSocketDisconnect:
        logger.info(f"🔌 Connection {connection.id} closed")
    except Exception as e:
        logger.exception(f"❌ Error in websocket {connection.id}: {e}")
    finally:
        await relay.disconnect(connection)
