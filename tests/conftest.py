"""pytest fixtures: an in-process fake Home Assistant websocket hub."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from hassbridge.ha_ws import HASession

TOKEN = "secret-token"
HA_VERSION = "2024.10.1"


class FakeHub:
    """
    Speaks just enough of the HA websocket API for the session tests.

    handshake: "ok" | "invalid" | "wrong_first"
    auto_pong: answer every ping with a pong
    auto_result: answer every other command with a successful empty result
    """

    def __init__(self) -> None:
        self.handshake = "ok"
        self.auto_pong = True
        self.auto_result = False
        self.auth: Optional[Dict[str, Any]] = None
        self.received: List[Dict[str, Any]] = []
        self.commands: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self.ws: Optional[web.WebSocketResponse] = None
        self.connected = asyncio.Event()

        self.app = web.Application()
        self.app.router.add_get("/api/websocket", self._handler)

    async def _handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.ws = ws

        if self.handshake == "wrong_first":
            await ws.send_json({"id": 1, "type": "result", "success": True, "result": None})
            async for _ in ws:
                pass
            return ws

        await ws.send_json({"type": "auth_required", "ha_version": HA_VERSION})
        self.auth = await ws.receive_json()
        if self.handshake == "invalid" or self.auth.get("access_token") != TOKEN:
            await ws.send_json({"type": "auth_invalid", "message": "Invalid access token or password"})
            await ws.close()
            return ws
        await ws.send_json({"type": "auth_ok", "ha_version": HA_VERSION})
        self.connected.set()

        async for msg in ws:
            if msg.type != WSMsgType.TEXT:
                continue
            data = json.loads(msg.data)
            self.received.append(data)
            if data.get("type") == "ping":
                if self.auto_pong:
                    await ws.send_json({"id": data["id"], "type": "pong"})
                continue
            if self.auto_result:
                await self.reply(data["id"])
                continue
            await self.commands.put(data)
        return ws

    async def send(self, payload: Dict[str, Any]) -> None:
        assert self.ws is not None
        await self.ws.send_json(payload)

    async def reply(self, msg_id: int, result: Any = None) -> None:
        await self.send({"id": msg_id, "type": "result", "success": True, "result": result})

    async def fail(self, msg_id: int, code: str, message: str) -> None:
        await self.send({"id": msg_id, "type": "result", "success": False,
                         "error": {"code": code, "message": message}})

    async def next_command(self, timeout: float = 2.0) -> Dict[str, Any]:
        return await asyncio.wait_for(self.commands.get(), timeout)

    async def state_changed(self, sub_id: int, new_state: Optional[Dict[str, Any]]) -> None:
        entity_id = (new_state or {}).get("entity_id", "media_player.gone")
        await self.send({
            "id": sub_id,
            "type": "event",
            "event": {
                "event_type": "state_changed",
                "data": {"entity_id": entity_id, "old_state": None, "new_state": new_state},
            },
        })


@pytest_asyncio.fixture
async def hub():
    """Running fake hub; yields (hub, websocket url)."""
    fake = FakeHub()
    server = TestServer(fake.app)
    await server.start_server()
    try:
        yield fake, str(server.make_url("/api/websocket"))
    finally:
        await server.close()


@pytest_asyncio.fixture
async def session(hub):  # pylint: disable=redefined-outer-name
    """Connected HASession against the fake hub (long heartbeat interval)."""
    fake, url = hub
    sess = HASession(url=url, token=TOKEN, heartbeat_interval=3600)
    await sess.connect()
    try:
        yield fake, sess
    finally:
        await sess.close()


def music_state(entity_id: str = "media_player.living_room", state: str = "playing", **attrs: Any) -> Dict[str, Any]:
    """A media_player state object as HA serializes it; attrs set to None are left out."""
    attributes = {
        "media_content_type": "music",
        "media_title": "Teardrop",
        "media_artist": "Massive Attack",
        "media_album_name": "Mezzanine",
        "media_duration": 330,
        "media_position": 12.5,
        "volume_level": 0.35,
        "shuffle": False,
        "repeat": "off",
        "entity_picture": "/api/media_player_proxy/media_player.living_room?token=abc&cache=1",
    }
    attributes.update(attrs)
    return {
        "entity_id": entity_id,
        "state": state,
        "attributes": {k: v for k, v in attributes.items() if v is not None},
    }


@pytest.fixture
def state_factory():
    return music_state
