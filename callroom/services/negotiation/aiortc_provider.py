from typing import Any, Dict, List, Optional
import logging

from callroom.models import IceCandidate, SessionDescription
from .base import MediaAcquisitionError, MediaCapture, MediaStream, PeerTransport

logger = logging.getLogger(__name__)


class AiortcPeerTransport(PeerTransport):
    """PeerTransport backed by an aiortc RTCPeerConnection.

    aiortc gathers candidates while setting the local description and embeds
    them in the SDP instead of trickling them, so ``set_local_description``
    returns the gathered description and the candidate callback rarely fires.
    """

    def __init__(self, ice_servers: Optional[List[Dict[str, Any]]] = None):
        super().__init__()
        from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection  # lazy import

        servers = [
            RTCIceServer(urls=s["urls"], username=s.get("username"), credential=s.get("credential"))
            for s in (ice_servers or [])
        ]
        self.pc = RTCPeerConnection(configuration=RTCConfiguration(iceServers=servers))

        @self.pc.on("icecandidate")
        def on_icecandidate(candidate) -> None:
            if candidate is None:
                return
            from aiortc.sdp import candidate_to_sdp
            self._emit_candidate(IceCandidate(
                candidate="candidate:" + candidate_to_sdp(candidate),
                sdp_mid=candidate.sdpMid,
                sdp_mline_index=candidate.sdpMLineIndex,
            ))

        @self.pc.on("track")
        def on_track(track) -> None:
            logger.info("Remote %s track received", track.kind)
            self._emit_track(track)

        @self.pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.info("Peer connection state: %s", self.pc.connectionState)
            self._emit_connection_state(self.pc.connectionState)

    def add_track(self, track: Any) -> None:
        self.pc.addTrack(track)

    async def create_offer(self) -> SessionDescription:
        offer = await self.pc.createOffer()
        return SessionDescription(type=offer.type, sdp=offer.sdp)

    async def create_answer(self) -> SessionDescription:
        answer = await self.pc.createAnswer()
        return SessionDescription(type=answer.type, sdp=answer.sdp)

    async def set_local_description(self, description: SessionDescription) -> SessionDescription:
        from aiortc import RTCSessionDescription
        await self.pc.setLocalDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))
        local = self.pc.localDescription
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        from aiortc import RTCSessionDescription
        await self.pc.setRemoteDescription(RTCSessionDescription(sdp=description.sdp, type=description.type))

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        from aiortc.sdp import candidate_from_sdp

        sdp = candidate.candidate
        if sdp.startswith("candidate:"):
            sdp = sdp[len("candidate:"):]
        if not sdp:
            # End-of-candidates marker
            return
        parsed = candidate_from_sdp(sdp)
        parsed.sdpMid = candidate.sdp_mid
        parsed.sdpMLineIndex = candidate.sdp_mline_index
        await self.pc.addIceCandidate(parsed)

    async def close(self) -> None:
        await self.pc.close()


class PlayerMediaCapture(MediaCapture):
    """Capture through aiortc's MediaPlayer (a device, a file or a URL).

    Examples: ``/dev/video0`` with format ``v4l2``, ``default:none`` with
    ``avfoundation`` on macOS, or any media file for a scripted participant.
    """

    def __init__(self, source: str, format: Optional[str] = None, options: Optional[Dict[str, str]] = None):
        self.source = source
        self.format = format
        self.options = options or {}

    async def acquire(self, video: bool = True, audio: bool = True) -> MediaStream:
        from aiortc.contrib.media import MediaPlayer  # lazy import
        try:
            player = MediaPlayer(self.source, format=self.format, options=self.options)
        except Exception as e:
            raise MediaAcquisitionError(f"Cannot open media source {self.source!r}: {e}") from e

        tracks = []
        if audio and player.audio is not None:
            tracks.append(player.audio)
        if video and player.video is not None:
            tracks.append(player.video)
        if not tracks:
            for track in (player.audio, player.video):
                if track is not None:
                    track.stop()
            raise MediaAcquisitionError(f"Media source {self.source!r} has no requested tracks")
        logger.info("Captured %s from %s", ", ".join(t.kind for t in tracks), self.source)
        return MediaStream(tracks=tracks)


class SilentMediaCapture(MediaCapture):
    """Receive-only participant: placeholder tracks, no device access."""

    async def acquire(self, video: bool = True, audio: bool = True) -> MediaStream:
        from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack

        tracks = []
        if audio:
            tracks.append(AudioStreamTrack())
        if video:
            tracks.append(VideoStreamTrack())
        return MediaStream(tracks=tracks)
