"""Websocket front-end for the rendezvous relay.

Connections on SIGNAL_PATH speak the relay control protocol, one JSON
object per text frame. Any other request path gets a single static HTML
document. TLS is enabled when a certificate and key are supplied.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from pathlib import Path

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from smallrts.config import SIGNAL_PATH
from smallrts.networking.serialization import decode_client_message
from smallrts.relay.rooms import RelayClient, RelayConnection, RelayHub

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>SmallRTS relay</title></head>
<body>
<h1>SmallRTS relay</h1>
<p>Run <code>python -m smallrts.main --host wss://&lt;this-host&gt;:PORT</code>
to create a room, or <code>--join URL ROOM</code> to join one.</p>
</body>
</html>
"""


def make_ssl_context(certfile: str, keyfile: str) -> ssl.SSLContext:
    """Server-side TLS context from PEM certificate and key files."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(certfile, keyfile)
    return context


class _WebsocketConnection(RelayConnection):
    """Adapts a websocket connection to the hub's send interface."""

    def __init__(self, websocket: ServerConnection) -> None:
        self._websocket = websocket

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except ConnectionClosed:
            logger.debug("Send to closed connection %s dropped", self._websocket.remote_address)


class RelayServer:
    """Serves the relay control protocol and the static document."""

    def __init__(
        self,
        hub: RelayHub | None = None,
        document: str = DEFAULT_DOCUMENT,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self.hub = hub or RelayHub()
        self._document = document.encode("utf-8")
        self._ssl_context = ssl_context
        self._server: Server | None = None

    @classmethod
    def from_files(
        cls,
        document_path: str | None = None,
        certfile: str | None = None,
        keyfile: str | None = None,
    ) -> RelayServer:
        document = DEFAULT_DOCUMENT
        if document_path is not None:
            document = Path(document_path).read_text(encoding="utf-8")
        context = None
        if certfile and keyfile:
            context = make_ssl_context(certfile, keyfile)
        return cls(document=document, ssl_context=context)

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Relay server is not running")
        return self._server.sockets[0].getsockname()[1]

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        if request.path.split("?", 1)[0] == SIGNAL_PATH:
            return None
        headers = Headers([
            ("Content-Type", "text/html; charset=utf-8"),
            ("Content-Length", str(len(self._document))),
        ])
        return Response(200, "OK", headers, self._document)

    async def handler(self, websocket: ServerConnection) -> None:
        """Run one participant's control session until its connection closes."""
        client = RelayClient(_WebsocketConnection(websocket))
        logger.debug("Connection from %s", websocket.remote_address)
        try:
            async for raw in websocket:
                try:
                    msg = decode_client_message(raw)
                except ValueError as e:
                    logger.debug("Dropping malformed message from %s: %s",
                                 websocket.remote_address, e)
                    continue
                await self.hub.handle(client, msg)
        except ConnectionClosed:
            pass
        finally:
            await self.hub.leave(client)

    async def start(self, host: str = "0.0.0.0", port: int = 0) -> None:
        """Bind and start serving. Use port=0 to pick a free port."""
        self._server = await serve(
            self.handler, host, port,
            ssl=self._ssl_context,
            process_request=self._process_request,
        )
        scheme = "wss" if self._ssl_context else "ws"
        logger.info("Relay listening on %s://%s:%d%s", scheme, host, self.port, SIGNAL_PATH)

    async def serve_forever(self, host: str = "0.0.0.0", port: int = 0) -> None:
        await self.start(host, port)
        assert self._server is not None
        await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None


async def run_relay(
    port: int,
    document_path: str | None = None,
    certfile: str | None = None,
    keyfile: str | None = None,
) -> None:
    server = RelayServer.from_files(document_path, certfile, keyfile)
    try:
        await server.serve_forever(port=port)
    except asyncio.CancelledError:
        await server.close()
        raise
