from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional, Tuple
import logging

from callroom.models import IceCandidate, SessionDescription

logger = logging.getLogger(__name__)


class MediaAcquisitionError(RuntimeError):
    """Local camera/microphone could not be captured."""


@dataclass
class MediaStream:
    tracks: List[Any] = field(default_factory=list)

    def stop(self) -> None:
        for track in self.tracks:
            try:
                track.stop()
            except Exception as e:
                logger.warning("Failed to stop %s track: %s", getattr(track, "kind", "media"), e)


class MediaCapture(ABC):
    @abstractmethod
    async def acquire(self, video: bool = True, audio: bool = True) -> MediaStream:
        """Capture local media or raise MediaAcquisitionError."""
        raise NotImplementedError


class PeerTransport(ABC):
    """Peer connection capability the negotiation agent drives.

    Implementations report discoveries through the callback slots; the agent
    assigns them before negotiation starts.
    """

    def __init__(self):
        self.on_ice_candidate: Optional[Callable[[IceCandidate], None]] = None
        self.on_track: Optional[Callable[[Any], None]] = None
        self.on_connection_state: Optional[Callable[[str], None]] = None

    def _emit_candidate(self, candidate: IceCandidate) -> None:
        if self.on_ice_candidate:
            self.on_ice_candidate(candidate)

    def _emit_track(self, track: Any) -> None:
        if self.on_track:
            self.on_track(track)

    def _emit_connection_state(self, state: str) -> None:
        if self.on_connection_state:
            self.on_connection_state(state)

    @abstractmethod
    def add_track(self, track: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_offer(self) -> SessionDescription:
        raise NotImplementedError

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        raise NotImplementedError

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        """Apply ``description`` and return it as it should be sent to the peer."""
        raise NotImplementedError

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        raise NotImplementedError

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class SignalingChannel(ABC):
    """Agent side of the relay connection."""

    @abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def emit(self, event: str, payload: Any = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def messages(self) -> AsyncIterator[Tuple[str, Any]]:
        """Yield ``(event, payload)`` pairs until the connection closes."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError
