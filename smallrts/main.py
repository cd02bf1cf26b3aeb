"""SmallRTS entry point.

Usage:
    Run the relay:  python -m smallrts.main --relay 8443 --cert cert.pem --key key.pem
    Host a game:    python -m smallrts.main --host wss://relay.example:8443/signal
    Join a game:    python -m smallrts.main --join wss://relay.example:8443/signal ab12
    Local test:     python -m smallrts.main --local
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import ssl
import sys

from smallrts.config import DEFAULT_RELAY_PORT, SCREEN_HEIGHT, SCREEN_WIDTH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SmallRTS - browserless P2P RTS")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument(
        "--relay", type=int, metavar="PORT", nargs="?", const=DEFAULT_RELAY_PORT,
        help=f"Run the rendezvous relay on PORT (default {DEFAULT_RELAY_PORT})",
    )
    group.add_argument(
        "--host", type=str, metavar="URL",
        help="Create a room on the relay at URL and host the game",
    )
    group.add_argument(
        "--join", nargs=2, metavar=("URL", "ROOM"),
        help="Join ROOM on the relay at URL",
    )
    group.add_argument(
        "--local", action="store_true",
        help="Run locally with mock networking (single player test)",
    )
    parser.add_argument("--cert", help="TLS certificate for the relay")
    parser.add_argument("--key", help="TLS private key for the relay")
    parser.add_argument("--document", help="HTML file served to plain HTTP requests")
    parser.add_argument(
        "--insecure", action="store_true",
        help="Accept self-signed relay certificates",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging",
    )
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if args.relay is not None:
        if bool(args.cert) != bool(args.key):
            parser.error("--cert and --key must be given together")
        _run_relay(args.relay, args.document, args.cert, args.key)
        return

    import pygame

    pygame.init()
    screen = pygame.display.set_mode((SCREEN_WIDTH, SCREEN_HEIGHT))
    pygame.display.set_caption("SmallRTS")
    try:
        if args.local:
            asyncio.run(_run_local(screen))
        elif args.host is not None:
            asyncio.run(_run_online(screen, args.host, None, args.insecure))
        else:
            url, room = args.join
            asyncio.run(_run_online(screen, url, room, args.insecure))
    finally:
        pygame.quit()


def _run_relay(port: int, document: str | None, cert: str | None, key: str | None) -> None:
    from smallrts.relay.server import run_relay

    try:
        asyncio.run(run_relay(port, document, cert, key))
    except KeyboardInterrupt:
        pass


async def _run_local(screen) -> None:
    """Run a host engine against MockGameLink for local testing."""
    from smallrts.game import Game
    from smallrts.networking.peer import MockGameLink
    from smallrts.simulation.sync import HostEngine

    engine = HostEngine(MockGameLink())
    engine.start("local")
    await Game(screen, engine).run()


async def _run_online(screen, url: str, room: str | None, insecure: bool) -> None:
    """Connect to the relay, then create or join a room and play."""
    from smallrts.game import Game
    from smallrts.networking.rendezvous_client import RendezvousError
    from smallrts.networking.rtc_peer import RtcPeerTransport
    from smallrts.networking.session import Session

    ssl_context = None
    if insecure and url.startswith("wss://"):
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE

    session = Session(is_host=room is None, transport_factory=RtcPeerTransport)
    print(f"Connecting to {url}...")
    try:
        await session.open(url, room_id=room, ssl_context=ssl_context)
    except RendezvousError as e:
        print(e)
        sys.exit(1)

    await Game(screen, session.engine, session).run()


if __name__ == "__main__":
    main()
