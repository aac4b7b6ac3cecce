"""Client entry point."""

import argparse
import asyncio
import logging
import sys

from ..common.constants import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_VOLUME
from .audio_capture import CaptureError
from .coordinator import MeshCoordinator

HELP = "Commands: m = toggle mute, v <0-100> = volume, p = peers, q = leave"


def setup_logging(log_file: str) -> None:
    """Configure logging to file only (console is used for status output)."""
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(log_file),
        ],
    )
    # Suppress noisy aiortc debug logs (RTP packet spam)
    logging.getLogger("aiortc").setLevel(logging.WARNING)
    logging.getLogger("aioice").setLevel(logging.WARNING)


def handle_command(mesh: MeshCoordinator, line: str) -> bool:
    """Apply one console command. Returns False when the user wants to leave."""
    parts = line.split()
    if not parts:
        return True
    cmd = parts[0].lower()

    if cmd == "q":
        return False
    if cmd == "m":
        muted = mesh.toggle_mute()
        print("Microphone muted" if muted else "Microphone live")
    elif cmd == "v" and len(parts) == 2 and parts[1].isdigit():
        mesh.set_volume(int(parts[1]))
        print(f"Volume {mesh.volume}")
    elif cmd == "p":
        for peer_id in mesh.connected_peers:
            link = mesh.links.get(peer_id)
            state = link.state.value if link else "no link"
            print(f"  {peer_id} ({state})")
    else:
        print(HELP)
    return True


async def run_client(args: argparse.Namespace) -> None:
    mesh = MeshCoordinator(args.host, args.port, args.room, volume=args.volume)
    if args.muted:
        mesh.set_microphone_enabled(False)

    @mesh.on_membership
    async def membership(peers: list[str]) -> None:
        print(f"In room {args.room!r} with {len(peers)} other participant(s)")

    @mesh.on_peer_joined
    async def peer_joined(peer_id: str) -> None:
        print(f"{peer_id} joined")

    @mesh.on_peer_left
    async def peer_left(peer_id: str) -> None:
        print(f"{peer_id} left")

    try:
        await mesh.start()
    except CaptureError as e:
        print(f"Could not start voice chat: {e}")
        return
    except ConnectionError as e:
        print(f"Failed to connect to server: {e}")
        return

    print(f"Connected as {mesh.participant_id}. {HELP}")

    loop = asyncio.get_running_loop()

    def on_stdin() -> None:
        line = sys.stdin.readline()
        if not line or not handle_command(mesh, line):
            loop.remove_reader(sys.stdin)
            asyncio.ensure_future(mesh.leave())

    loop.add_reader(sys.stdin, on_stdin)
    try:
        await mesh.run()
    finally:
        loop.remove_reader(sys.stdin)
        await mesh.leave()


def main() -> None:
    parser = argparse.ArgumentParser(description="Voice Mesh client")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Server host")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
    parser.add_argument("--room", required=True, help="Room to join")
    parser.add_argument(
        "--volume",
        type=int,
        default=DEFAULT_VOLUME,
        help=f"Playback volume 0-100 (default: {DEFAULT_VOLUME})",
    )
    parser.add_argument(
        "--muted", action="store_true", help="Join with the microphone muted"
    )
    parser.add_argument(
        "--log", help="Log file path (logging disabled if not specified)"
    )
    args = parser.parse_args()

    if args.log:
        setup_logging(args.log)
    else:
        logging.getLogger().addHandler(logging.NullHandler())

    try:
        asyncio.run(run_client(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
