"""
Tests for the concrete capabilities: websocket channel guards and the aiortc
peer transport / media capture.
"""

import pytest

from callroom.models import IceCandidate
from callroom.services.negotiation.aiortc_provider import AiortcPeerTransport, PlayerMediaCapture, SilentMediaCapture
from callroom.services.negotiation.base import MediaAcquisitionError, MediaStream
from callroom.services.negotiation.channels import WebSocketSignalingChannel

from fakes import FakeTrack


class TestWebSocketChannel:

    @pytest.mark.asyncio
    async def test_emit_before_connect_fails(self):
        channel = WebSocketSignalingChannel("ws://127.0.0.1:9/ws")
        with pytest.raises(ConnectionError):
            await channel.emit("join", "r1")

    @pytest.mark.asyncio
    async def test_unconnected_channel_yields_nothing(self):
        channel = WebSocketSignalingChannel("ws://127.0.0.1:9/ws")
        assert [m async for m in channel.messages()] == []
        await channel.close()


def test_media_stream_stop_survives_broken_track():
    class Stuck(FakeTrack):
        def stop(self):
            raise RuntimeError("device busy")

    ok = FakeTrack("audio")
    MediaStream(tracks=[Stuck("video"), ok]).stop()

    assert ok.stopped


class TestAiortc:

    @pytest.mark.asyncio
    async def test_offer_answer_between_two_connections(self):
        stream = await SilentMediaCapture().acquire(video=False, audio=True)
        caller, callee = AiortcPeerTransport(), AiortcPeerTransport()
        try:
            for track in stream.tracks:
                caller.add_track(track)

            offer = await caller.set_local_description(await caller.create_offer())
            assert offer.type == "offer"
            assert "a=candidate" in offer.sdp

            await callee.set_remote_description(offer)
            answer = await callee.set_local_description(await callee.create_answer())
            assert answer.type == "answer"
            await caller.set_remote_description(answer)

            # End-of-candidates marker is accepted and ignored
            await caller.add_ice_candidate(IceCandidate(candidate="", sdp_mid="0", sdp_mline_index=0))
        finally:
            stream.stop()
            await caller.close()
            await callee.close()

    @pytest.mark.asyncio
    async def test_missing_media_source(self, tmp_path):
        with pytest.raises(MediaAcquisitionError):
            await PlayerMediaCapture(str(tmp_path / "missing.mp4")).acquire()

    @pytest.mark.asyncio
    async def test_source_without_requested_tracks_is_released(self, monkeypatch):
        audio = FakeTrack("audio")

        class AudioOnlyPlayer:
            def __init__(self, source, format=None, options=None):
                self.audio, self.video = audio, None

        monkeypatch.setattr("aiortc.contrib.media.MediaPlayer", AudioOnlyPlayer)

        with pytest.raises(MediaAcquisitionError, match="no requested tracks"):
            await PlayerMediaCapture("song.mp3").acquire(video=True, audio=False)
        assert audio.stopped
