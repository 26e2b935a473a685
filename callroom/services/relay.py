"""Room-scoped signaling relay.

The relay keeps room membership and fans messages out to the other members of
a room. It never looks inside signaling payloads; the room id is the only
routing metadata it reads.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Set

from pydantic import ValidationError

from callroom.models import ChatRequest, SignalRequest

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A transport-level member handle the relay can push events to."""

    id: str

    async def send(self, event: str, payload: Any = None) -> None:
        ...


class ProtocolError(ValueError):
    """Inbound event the relay cannot route."""


class RoomFullError(Exception):
    def __init__(self, room_id: str, capacity: int):
        super().__init__(f"Room {room_id} is full ({capacity} members max)")
        self.room_id = room_id
        self.capacity = capacity


@dataclass(eq=False)
class Room:
    id: str
    # Insertion ordered: fan-out follows join order
    members: Dict[str, Connection] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False


class RoomRelay:
    def __init__(self, capacity: Optional[int] = 2):
        self.capacity = capacity
        self._rooms: Dict[str, Room] = {}
        # connection id -> ids of the rooms it joined
        self._memberships: Dict[str, Set[str]] = {}

    @asynccontextmanager
    async def _room(self, room_id: str, create: bool = False) -> AsyncIterator[Optional[Room]]:
        """Hold the room lock for the duration of the block.

        Yields None when the room does not exist and ``create`` is false. A
        room left empty by the block is discarded before the lock is released.
        """
        while True:
            room = self._rooms.get(room_id)
            if room is None:
                if not create:
                    yield None
                    return
                room = self._rooms[room_id] = Room(room_id)
            async with room.lock:
                if room.closed:
                    # Discarded while we waited for the lock
                    continue
                try:
                    yield room
                finally:
                    if not room.members:
                        room.closed = True
                        if self._rooms.get(room_id) is room:
                            del self._rooms[room_id]
                        logger.info(f"🗑️  Room {room_id} is now empty")
                return

    async def _deliver(self, member: Connection, event: str, payload: Any, room_id: str) -> None:
        try:
            await member.send(event, payload)
        except Exception as e:
            logger.error(f"❌ Error sending {event} to {member.id} in room {room_id}: {e}")

    async def _broadcast(self, room: Room, event: str, payload: Any = None, exclude: Optional[str] = None) -> int:
        recipients = [m for cid, m in room.members.items() if cid != exclude]
        if recipients:
            await asyncio.gather(*(self._deliver(m, event, payload, room.id) for m in recipients))
        return len(recipients)

    async def join(self, connection: Connection, room_id: str) -> int:
        """Add ``connection`` to the room and notify the others.

        Returns the member count after joining. Raises RoomFullError when the
        room is at capacity and the connection is not already a member.
        """
        async with self._room(room_id, create=True) as room:
            if (
                self.capacity is not None
                and connection.id not in room.members
                and len(room.members) >= self.capacity
            ):
                logger.warning(f"⛔ Client {connection.id} rejected, room {room_id} is full")
                raise RoomFullError(room_id, self.capacity)
            room.members[connection.id] = connection
            self._memberships.setdefault(connection.id, set()).add(room_id)
            logger.info(f"✅ Client {connection.id} joined room {room_id}")
            await self._broadcast(room, "peer-joined", None, exclude=connection.id)
            return len(room.members)

    async def relay(self, connection: Connection, room_id: str, data: Dict[str, Any]) -> int:
        """Forward a signaling payload to the other members, unmodified."""
        async with self._room(room_id) as room:
            if room is None:
                logger.debug(f"Dropped signal from {connection.id}: room {room_id} does not exist")
                return 0
            delivered = await self._broadcast(room, "signal", data, exclude=connection.id)
            if not delivered:
                logger.debug(f"Dropped signal from {connection.id}: no peer in room {room_id}")
            return delivered

    async def relay_chat(self, connection: Connection, room_id: str, message: str, sender: str) -> int:
        async with self._room(room_id) as room:
            if room is None:
                return 0
            return await self._broadcast(
                room, "chat-message", {"message": message, "sender": sender}, exclude=connection.id
            )

    async def disconnect(self, connection: Connection) -> None:
        """Drop the connection from every room it joined, telling the rest."""
        room_ids = self._memberships.pop(connection.id, set())
        for room_id in sorted(room_ids):
            async with self._room(room_id) as room:
                if room is None or connection.id not in room.members:
                    continue
                del room.members[connection.id]
                await self._broadcast(room, "peer-left", None)
                logger.info(f"❌ Client {connection.id} left room {room_id}")

    async def dispatch(self, connection: Connection, event: str, payload: Any) -> None:
        """Route one inbound wire event from ``connection``."""
        if event == "join":
            if not isinstance(payload, str) or not payload:
                raise ProtocolError("join expects a non-empty room id")
            members = await self.join(connection, payload)
            await connection.send("joined", {"roomId": payload, "members": members})
        elif event == "signal":
            try:
                request = SignalRequest.model_validate(payload)
            except ValidationError as e:
                raise ProtocolError(f"invalid signal: {e.error_count()} error(s)") from e
            await self.relay(connection, request.room_id, request.data)
        elif event == "chat-message":
            try:
                chat = ChatRequest.model_validate(payload)
            except ValidationError as e:
                raise ProtocolError(f"invalid chat-message: {e.error_count()} error(s)") from e
            await self.relay_chat(connection, chat.room_id, chat.message, chat.sender)
        else:
            raise ProtocolError(f"unknown event {event!r}")

    async def handle(self, connection: Connection, event: str, payload: Any) -> None:
        """Like dispatch, but routing errors go back to the sender as ``error`` events."""
        try:
            await self.dispatch(connection, event, payload)
        except RoomFullError as e:
            await connection.send("error", {"code": "room-full", "detail": str(e), "roomId": e.room_id})
        except ProtocolError as e:
            await connection.send("error", {"code": "bad-request", "detail": str(e)})

    def members(self, room_id: str) -> List[str]:
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return list(room.members.keys())

    def rooms_of(self, connection_id: str) -> Set[str]:
        return set(self._memberships.get(connection_id, set()))

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    @property
    def room_count(self) -> int:
        return len(self._rooms)
