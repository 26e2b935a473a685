from typing import Optional

from callroom.config import Settings, settings as default_settings
from .agent import NegotiationAgent
from .base import MediaCapture
from .channels import WebSocketSignalingChannel


def get_media_capture(source: Optional[str] = None, format: Optional[str] = None) -> MediaCapture:
    from .aiortc_provider import PlayerMediaCapture, SilentMediaCapture
    if source:
        return PlayerMediaCapture(source, format=format)
    return SilentMediaCapture()


def build_agent(
    settings: Optional[Settings] = None,
    *,
    username: str = "",
    media_source: Optional[str] = None,
    media_format: Optional[str] = None,
    signaling_url: Optional[str] = None,
    video: bool = True,
    audio: bool = True,
) -> NegotiationAgent:
    """Agent wired to the websocket relay and an aiortc peer connection."""
    from .aiortc_provider import AiortcPeerTransport

    settings = settings or default_settings
    return NegotiationAgent(
        WebSocketSignalingChannel(signaling_url or settings.SIGNALING_URL),
        AiortcPeerTransport(ice_servers=settings.ice_servers()),
        get_media_capture(media_source, media_format),
        username=username,
        video=video,
        audio=audio,
    )
