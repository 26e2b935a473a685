"""Terminal participant for a callroom call.

    callroom-agent create --name Alice
    callroom-agent join k3j9x0ab --name Bob --media /dev/video0 --media-format v4l2

Lines typed on stdin are sent as chat; ``/leave`` ends the call.
"""

import argparse
import asyncio
import logging
import sys

from websockets.exceptions import WebSocketException

from callroom.config import settings
from callroom.services.negotiation.agent import NegotiationAgent, NegotiationState
from callroom.services.negotiation.base import MediaAcquisitionError
from callroom.services.negotiation.factory import build_agent


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="callroom-agent", description="Join a callroom call from a terminal")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("create", help="create a new call and print its id")
    join = sub.add_parser("join", help="join an existing call")
    join.add_argument("room_id")

    for p in sub.choices.values():
        p.add_argument("--name", required=True, help="display name for chat")
        p.add_argument("--signaling-url", default=settings.SIGNALING_URL)
        p.add_argument("--media", help="device, file or URL to capture (default: placeholder tracks)")
        p.add_argument("--media-format", help="ffmpeg input format, e.g. v4l2 or avfoundation")
        p.add_argument("--no-video", action="store_true")
        p.add_argument("--no-audio", action="store_true")
    return parser.parse_args(argv)


async def _pump_stdin(agent: NegotiationAgent) -> None:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    while agent.state is not NegotiationState.ENDED:
        line = (await reader.readline()).decode()
        if not line or line.strip() == "/leave":
            await agent.leave()
            return
        await agent.send_chat(line.rstrip("\n"))


async def run(args: argparse.Namespace) -> int:
    agent = build_agent(
        username=args.name.strip(),
        media_source=args.media,
        media_format=args.media_format,
        signaling_url=args.signaling_url,
        video=not args.no_video,
        audio=not args.no_audio,
    )
    agent.on_status = lambda status: print(f"* {status}", flush=True)
    agent.on_chat = lambda entry: print(f"{entry.sender}: {entry.message}", flush=True)
    agent.on_track = lambda track: print(f"* Receiving remote {track.kind}", flush=True)

    try:
        if args.command == "create":
            room_id = await agent.create_call()
            print(f"Call ID: {room_id}", flush=True)
        else:
            await agent.join_call(args.room_id)
    except MediaAcquisitionError as e:
        print(f"Cannot start call: {e}", file=sys.stderr)
        return 1
    except (OSError, WebSocketException) as e:
        print(f"Cannot reach signaling relay: {e}", file=sys.stderr)
        return 1

    stdin_task = asyncio.create_task(_pump_stdin(agent))
    try:
        await agent.wait_for(NegotiationState.ENDED)
    finally:
        stdin_task.cancel()
        await agent.leave()
    return 0


def main(argv=None) -> None:
    args = parse_args(argv)
    if not args.name.strip():
        sys.exit("Please enter your name before creating or joining a call.")
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
