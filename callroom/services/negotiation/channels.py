import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple
from uuid import uuid4

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from callroom.models import Envelope
from callroom.services.relay import RoomRelay
from .base import SignalingChannel

logger = logging.getLogger(__name__)


class WebSocketSignalingChannel(SignalingChannel):
    """Relay connection over the ``/ws`` websocket endpoint."""

    def __init__(self, url: str, open_timeout: float = 10.0):
        self.url = url
        self.open_timeout = open_timeout
        self._ws: Optional[Any] = None

    async def connect(self) -> None:
        self._ws = await websockets.connect(self.url, open_timeout=self.open_timeout)
        logger.info("Connected to signaling relay at %s", self.url)

    async def emit(self, event: str, payload: Any = None) -> None:
        if self._ws is None:
            raise ConnectionError("not connected to the signaling relay")
        await self._ws.send(Envelope(event=event, payload=payload).model_dump_json())

    async def messages(self) -> AsyncIterator[Tuple[str, Any]]:
        ws = self._ws
        if ws is None:
            return
        try:
            async for raw in ws:
                try:
                    envelope = Envelope.model_validate_json(raw)
                except ValidationError:
                    logger.warning("Ignoring malformed frame from relay")
                    continue
                yield envelope.event, envelope.payload
        except ConnectionClosed as e:
            logger.info("Signaling connection closed: %s", e)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


_CLOSED = object()


class _RelayEndpoint:
    def __init__(self, inbox: asyncio.Queue):
        self.id = f"local-{uuid4().hex[:8]}"
        self._inbox = inbox

    async def send(self, event: str, payload: Any = None) -> None:
        self._inbox.put_nowait((event, payload))


class InProcessSignalingChannel(SignalingChannel):
    """Binds an agent straight to a RoomRelay running in the same event loop.

    Behaves like the websocket route: routing errors come back as ``error``
    events and closing the channel counts as a disconnect.
    """

    def __init__(self, relay: RoomRelay):
        self.relay = relay
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._endpoint = _RelayEndpoint(self._inbox)
        self._open = False

    @property
    def id(self) -> str:
        return self._endpoint.id

    @property
    def is_open(self) -> bool:
        return self._open

    async def connect(self) -> None:
        self._open = True

    async def emit(self, event: str, payload: Any = None) -> None:
        if not self._open:
            raise ConnectionError("signaling channel is closed")
        await self.relay.handle(self._endpoint, event, payload)

    async def messages(self) -> AsyncIterator[Tuple[str, Any]]:
        while True:
            event, payload = await self._inbox.get()
            if event is _CLOSED:
                return
            yield event, payload

    async def close(self) -> None:
        was_open, self._open = self._open, False
        # a join can still land after an earlier close
        await self.relay.disconnect(self._endpoint)
        if was_open:
            self._inbox.put_nowait((_CLOSED, None))
