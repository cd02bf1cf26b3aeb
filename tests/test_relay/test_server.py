"""Tests for the relay over real localhost websockets."""

import asyncio
import json

import pytest
import pytest_asyncio
from websockets.asyncio.client import connect

from smallrts.relay.rooms import RelayHub
from smallrts.relay.server import DEFAULT_DOCUMENT, RelayServer


async def _recv(ws) -> dict:
    return json.loads(await asyncio.wait_for(ws.recv(), timeout=2))


async def _http_get(port: int, path: str) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    await writer.drain()
    data = b""
    while b"</html>" not in data:
        chunk = await asyncio.wait_for(reader.read(4096), timeout=2)
        if not chunk:
            break
        data += chunk
    writer.close()
    return data


@pytest_asyncio.fixture
async def relay():
    ids = iter(f"p{i}" for i in range(1, 100))
    server = RelayServer(hub=RelayHub(room_id_factory=lambda: "ab12",
                                      peer_id_factory=lambda: next(ids)))
    await server.start("127.0.0.1", 0)
    yield server
    await server.close()


@pytest.mark.asyncio
class TestRelayServer:
    async def test_create_join_and_signal(self, relay):
        url = f"ws://127.0.0.1:{relay.port}/signal"
        async with connect(url) as a, connect(url) as b:
            await a.send('{"type":"create"}')
            assert await _recv(a) == {"type": "created", "room": "ab12", "self": "p1"}

            await b.send('{"type":"join","room":"ab12"}')
            assert await _recv(b) == {"type": "joined", "room": "ab12", "self": "p2"}
            assert await _recv(b) == {"type": "peers", "room": "ab12", "peers": ["p1", "p2"]}
            assert await _recv(a) == {"type": "peers", "room": "ab12", "peers": ["p1", "p2"]}

            await b.send(json.dumps({"type": "signal", "room": "ab12", "to": "host",
                                     "payload": {"type": "offer", "sdp": "x"}}))
            assert await _recv(a) == {"type": "signal", "from": "p2",
                                      "payload": {"type": "offer", "sdp": "x"}}

    async def test_disconnect_notifies_and_removes_room(self, relay):
        url = f"ws://127.0.0.1:{relay.port}/signal"
        async with connect(url) as a:
            await a.send('{"type":"create"}')
            await _recv(a)
            async with connect(url) as b:
                await b.send('{"type":"join","room":"ab12"}')
                await _recv(b)
                await _recv(b)
                await _recv(a)
            assert await _recv(a) == {"type": "left", "peer": "p2"}

        for _ in range(50):
            if not relay.hub.room_ids:
                break
            await asyncio.sleep(0.02)
        assert relay.hub.room_ids == []

    async def test_malformed_frames_ignored(self, relay):
        url = f"ws://127.0.0.1:{relay.port}/signal"
        async with connect(url) as a:
            await a.send("not json")
            await a.send('{"type":"teleport"}')
            await a.send('{"type":"join","room":"zzzz"}')
            assert await _recv(a) == {"type": "error", "code": "not_found"}

    async def test_other_paths_get_document(self, relay):
        response = await _http_get(relay.port, "/")
        head, _, body = response.partition(b"\r\n\r\n")
        assert head.startswith(b"HTTP/1.1 200")
        assert b"text/html" in head
        assert body == DEFAULT_DOCUMENT.encode()


class TestFromFiles:
    def test_custom_document(self, tmp_path):
        page = tmp_path / "index.html"
        page.write_text("<html><body>hi</body></html>", encoding="utf-8")
        server = RelayServer.from_files(str(page))
        assert server._document == b"<html><body>hi</body></html>"

    def test_port_requires_running_server(self):
        with pytest.raises(RuntimeError):
            _ = RelayServer().port
