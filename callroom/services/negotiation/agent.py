"""Per-participant offer/answer/candidate negotiation.

A ``NegotiationAgent`` owns one side of a call. Inbound relay messages, local
ICE candidates and peer transport state changes are all pushed onto a single
queue and handled one at a time by a consumer task, so two negotiation steps
never run concurrently for the same agent.

The creator is the only side that offers:

    creator: idle -> awaiting-peer -> offer-sent -> connected
    joiner:  idle -> awaiting-peer -> answer-sent -> connected

Leaving, a ``peer-left`` notice or losing the relay connection always ends in
``ended`` with media released and every connection closed.
"""

import asyncio
import logging
import secrets
import string
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from callroom.models import (
    AnswerSignal,
    CandidateSignal,
    ChatMessage,
    IceCandidate,
    OfferSignal,
    SessionDescription,
    dump_signal,
    signal_adapter,
)
from .base import MediaAcquisitionError, MediaCapture, MediaStream, PeerTransport, SignalingChannel

logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_room_id(length: int = 8) -> str:
    """Random short room id; it doubles as the call's shared secret."""
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(length))


class NegotiationState(str, Enum):
    IDLE = "idle"
    AWAITING_PEER = "awaiting-peer"
    OFFER_SENT = "offer-sent"
    ANSWER_SENT = "answer-sent"
    CONNECTED = "connected"
    ENDED = "ended"


class Role(str, Enum):
    CREATOR = "creator"
    JOINER = "joiner"


@dataclass(frozen=True)
class ChatEntry:
    sender: str
    message: str


# Queue item kinds
_RELAY_EVENT = "relay-event"
_RELAY_CLOSED = "relay-closed"
_LOCAL_CANDIDATE = "local-candidate"
_TRANSPORT_STATE = "transport-state"


class NegotiationAgent:
    def __init__(
        self,
        channel: SignalingChannel,
        transport: PeerTransport,
        media: MediaCapture,
        *,
        username: str = "",
        video: bool = True,
        audio: bool = True,
    ):
        self.channel = channel
        self.transport = transport
        self.media = media
        self.username = username
        self.video = video
        self.audio = audio

        self.state = NegotiationState.IDLE
        self.state_history: List[NegotiationState] = [NegotiationState.IDLE]
        self.status = ""
        self.role: Optional[Role] = None
        self.room_id: Optional[str] = None
        self.transcript: List[ChatEntry] = []
        self.remote_tracks: List[Any] = []

        # UI hooks
        self.on_state_change: Optional[Callable[[NegotiationState], None]] = None
        self.on_status: Optional[Callable[[str], None]] = None
        self.on_chat: Optional[Callable[[ChatEntry], None]] = None
        self.on_track: Optional[Callable[[Any], None]] = None

        self._stream: Optional[MediaStream] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._reader: Optional[asyncio.Task] = None
        self._consumer: Optional[asyncio.Task] = None
        self._relay_open = False
        self._remote_description_set = False
        self._pending_candidates: List[IceCandidate] = []
        self._closing = False
        self._closed = asyncio.Event()
        self._changed = asyncio.Event()

    @property
    def media_active(self) -> bool:
        return self._stream is not None

    @property
    def relay_open(self) -> bool:
        return self._relay_open

    # -- local actions -----------------------------------------------------

    async def create_call(self, room_id: Optional[str] = None) -> str:
        """Start a call as its creator; returns the room id to share."""
        room_id = room_id or generate_room_id()
        await self._start(room_id, Role.CREATOR)
        return room_id

    async def join_call(self, room_id: str) -> None:
        if not room_id:
            raise ValueError("room id is required to join a call")
        await self._start(room_id, Role.JOINER)

    async def send_chat(self, message: str, sender: Optional[str] = None) -> Optional[ChatEntry]:
        """Relay a chat line and echo it locally without waiting for delivery."""
        if not message.strip() or not self._relay_open or self._closing:
            return None
        name = sender if sender is not None else self.username
        if not name.strip():
            name = "Anonymous"
        entry = self._append_chat(ChatEntry(sender=name, message=message))
        try:
            await self.channel.emit("chat-message", {"roomId": self.room_id, "message": message, "sender": name})
        except Exception as e:
            logger.warning("Failed to send chat message: %s", e)
        return entry

    async def leave(self) -> None:
        await self._teardown("Left the call.")

    async def wait_for(self, *states: NegotiationState, timeout: Optional[float] = None) -> NegotiationState:
        async def _wait() -> NegotiationState:
            while self.state not in states:
                await self._changed.wait()
            return self.state

        return await asyncio.wait_for(_wait(), timeout)

    # -- setup and teardown ------------------------------------------------

    async def _start(self, room_id: str, role: Role) -> None:
        if self.state is not NegotiationState.IDLE or self._closing:
            raise RuntimeError(f"agent is {self.state.value}; a new call needs a new agent")
        self.room_id, self.role = room_id, role

        try:
            stream = await self.media.acquire(video=self.video, audio=self.audio)
        except Exception as e:
            if self._closing:
                return
            self.room_id = self.role = None
            logger.error("Media capture failed: %s", e)
            self._set_status("Could not access camera/microphone.")
            if isinstance(e, MediaAcquisitionError):
                raise
            raise MediaAcquisitionError(str(e)) from e
        if self._closing:
            # left while the devices were opening
            stream.stop()
            return
        self._stream = stream

        self.transport.on_ice_candidate = self._on_local_candidate
        self.transport.on_track = self._on_remote_track
        self.transport.on_connection_state = self._on_transport_state
        try:
            for track in self._stream.tracks:
                self.transport.add_track(track)
            await self.channel.connect()
            if self._closing:
                await self._drop_channel()
                return
            self._relay_open = True
            self._set_state(NegotiationState.AWAITING_PEER)
            self._set_status("Waiting for peer..." if role is Role.CREATOR else "Joining call...")
            await self.channel.emit("join", room_id)
            if self._closing:
                await self._drop_channel()
                return
        except BaseException as e:
            left = self._closing
            await self._teardown("Could not reach the signaling relay.")
            if left and isinstance(e, Exception):
                await self._drop_channel()
                return
            raise

        self._reader = asyncio.create_task(self._read_relay())
        self._consumer = asyncio.create_task(self._consume())

    async def _drop_channel(self) -> None:
        """Close a relay channel that finished opening after the call ended."""
        try:
            await self.channel.close()
        except Exception as e:
            logger.warning("Failed to close signaling channel: %s", e)

    async def _teardown(self, status: str) -> None:
        if self._closing:
            await self._closed.wait()
            return
        self._closing = True

        current = asyncio.current_task()
        tasks = [t for t in (self._consumer, self._reader) if t is not None and t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        try:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            if self._stream is not None:
                self._stream.stop()
                self._stream = None
            try:
                await self.transport.close()
            except Exception as e:
                logger.warning("Failed to close peer transport: %s", e)
            try:
                await self.channel.close()
            except Exception as e:
                logger.warning("Failed to close signaling channel: %s", e)
            self._relay_open = False
            self._pending_candidates.clear()
            self.remote_tracks.clear()
            self._set_status(status)
            self._set_state(NegotiationState.ENDED)
            self._closed.set()

    # -- event queue -------------------------------------------------------

    async def _read_relay(self) -> None:
        try:
            async for event, payload in self.channel.messages():
                self._queue.put_nowait((_RELAY_EVENT, (event, payload)))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Signaling connection failed: %s", e)
        self._queue.put_nowait((_RELAY_CLOSED, None))

    async def _consume(self) -> None:
        while not self._closing:
            kind, data = await self._queue.get()
            try:
                await self._handle(kind, data)
            except Exception:
                logger.exception("Negotiation step failed in state %s", self.state.value)

    async def _handle(self, kind: str, data: Any) -> None:
        if kind == _RELAY_CLOSED:
            await self._teardown("Connection to the signaling relay was lost.")
        elif kind == _LOCAL_CANDIDATE:
            await self._send_signal(CandidateSignal(candidate=data))
        elif kind == _TRANSPORT_STATE:
            self._transport_state_changed(data)
        else:
            event, payload = data
            if event == "peer-joined":
                await self._on_peer_joined()
            elif event == "signal":
                await self._on_signal(payload)
            elif event == "chat-message":
                self._on_chat_message(payload)
            elif event == "peer-left":
                await self._teardown("Peer left the call.")
            elif event == "joined":
                members = payload.get("members") if isinstance(payload, dict) else None
                logger.info("Joined room %s (%s member(s))", self.room_id, members)
            elif event == "error":
                await self._on_relay_error(payload)
            else:
                logger.debug("Ignoring relay event %r", event)

    # -- transport callbacks -----------------------------------------------

    def _on_local_candidate(self, candidate: IceCandidate) -> None:
        if not self._closing:
            self._queue.put_nowait((_LOCAL_CANDIDATE, candidate))

    def _on_transport_state(self, state: str) -> None:
        if not self._closing:
            self._queue.put_nowait((_TRANSPORT_STATE, state))

    def _on_remote_track(self, track: Any) -> None:
        self.remote_tracks.append(track)
        self._notify(self.on_track, track)

    # -- handlers ------------------------------------------------------------

    async def _on_peer_joined(self) -> None:
        if self.role is not Role.CREATOR:
            self._set_status("Peer joined. Waiting for offer...")
            return
        if self.state is not NegotiationState.AWAITING_PEER:
            logger.warning("Ignoring peer-joined while %s", self.state.value)
            return

        self._set_status("Peer joined! Creating offer...")
        try:
            offer = await self.transport.create_offer()
            offer = await self.transport.set_local_description(offer)
        except Exception as e:
            logger.warning("Could not create offer: %s", e)
            return
        await self._send_signal(OfferSignal(offer=offer))
        self._set_state(NegotiationState.OFFER_SENT)

    async def _on_signal(self, payload: Any) -> None:
        try:
            signal = signal_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning("Dropping malformed signal (%d error(s))", e.error_count())
            return

        if isinstance(signal, OfferSignal):
            await self._on_offer(signal.offer)
        elif isinstance(signal, AnswerSignal):
            await self._on_answer(signal.answer)
        else:
            await self._apply_candidate(signal.candidate)

    async def _on_offer(self, offer: SessionDescription) -> None:
        if self.role is not Role.JOINER:
            logger.warning("Creator ignoring inbound offer")
            return
        if self.state not in (NegotiationState.AWAITING_PEER, NegotiationState.OFFER_SENT):
            logger.warning("Ignoring offer while %s", self.state.value)
            return

        self._set_status("Received offer. Sending answer...")
        try:
            await self._set_remote_description(offer)
            answer = await self.transport.create_answer()
            answer = await self.transport.set_local_description(answer)
        except Exception as e:
            logger.warning("Could not answer offer: %s", e)
            return
        await self._send_signal(AnswerSignal(answer=answer))
        self._set_state(NegotiationState.ANSWER_SENT)

    async def _on_answer(self, answer: SessionDescription) -> None:
        if self.state is not NegotiationState.OFFER_SENT:
            logger.warning("Ignoring answer while %s", self.state.value)
            return

        self._set_status("Received answer. Connecting...")
        try:
            await self._set_remote_description(answer)
        except Exception as e:
            logger.warning("Could not apply answer: %s", e)
            return
        self._set_state(NegotiationState.CONNECTED)

    async def _set_remote_description(self, description: SessionDescription) -> None:
        await self.transport.set_remote_description(description)
        self._remote_description_set = True
        pending, self._pending_candidates = self._pending_candidates, []
        for candidate in pending:
            await self._apply_candidate(candidate)

    async def _apply_candidate(self, candidate: IceCandidate) -> None:
        try:
            await self.transport.add_ice_candidate(candidate)
        except Exception as e:
            if not self._remote_description_set:
                # Arrived ahead of the description; retried once it is set
                logger.debug("Deferring ICE candidate: %s", e)
                self._pending_candidates.append(candidate)
            else:
                logger.warning("Error adding ICE candidate: %s", e)

    def _on_chat_message(self, payload: Any) -> None:
        try:
            chat = ChatMessage.model_validate(payload)
        except ValidationError:
            logger.warning("Dropping malformed chat message")
            return
        self._append_chat(ChatEntry(sender=chat.sender, message=chat.message))

    async def _on_relay_error(self, payload: Any) -> None:
        code = payload.get("code") if isinstance(payload, dict) else None
        if code == "room-full":
            logger.error("Room %s is full", self.room_id)
            await self._teardown("Room is full.")
        else:
            logger.warning("Relay reported an error: %s", payload)

    def _transport_state_changed(self, state: str) -> None:
        if state == "connected" and self.state is NegotiationState.ANSWER_SENT:
            self._set_status("Connected!")
            self._set_state(NegotiationState.CONNECTED)
        elif state == "failed":
            logger.warning("Peer transport failed in room %s", self.room_id)

    # -- helpers -------------------------------------------------------------

    async def _send_signal(self, signal: Any) -> bool:
        try:
            await self.channel.emit("signal", {"roomId": self.room_id, "data": dump_signal(signal)})
        except Exception as e:
            logger.warning("Failed to send %s: %s", signal.type, e)
            return False
        return True

    def _append_chat(self, entry: ChatEntry) -> ChatEntry:
        self.transcript.append(entry)
        self._notify(self.on_chat, entry)
        return entry

    def _set_status(self, status: str) -> None:
        self.status = status
        self._notify(self.on_status, status)

    def _set_state(self, state: NegotiationState) -> None:
        if state is self.state or self.state is NegotiationState.ENDED:
            return
        logger.info("Negotiation %s -> %s (room %s)", self.state.value, state.value, self.room_id)
        self.state = state
        self.state_history.append(state)
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
        self._notify(self.on_state_change, state)

    @staticmethod
    def _notify(callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("UI callback failed")
