"""Shared fixtures for rtcstats-push tests."""

from __future__ import annotations

import json

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer


class RtcstatsServer:
    """In-process rtcstats endpoint recording handshakes and frames."""

    def __init__(self) -> None:
        self.frames: list[dict] = []
        self.handshakes: list[dict] = []
        self.sockets: list[web.WebSocketResponse] = []
        app = web.Application()
        app.router.add_get("/", self._handle)
        self.server = TestServer(app)

    async def _handle(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(protocols=("1.0_JICOFO",))
        await ws.prepare(request)
        self.handshakes.append({
            "protocol": ws.ws_protocol,
            "origin": request.headers.get("Origin"),
            "user_agent": request.headers.get("User-Agent"),
        })
        self.sockets.append(ws)
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self.frames.append(json.loads(msg.data))
        return ws

    @property
    def url(self) -> str:
        return str(self.server.make_url("/"))


@pytest.fixture
async def rtcstats_server():
    server = RtcstatsServer()
    await server.server.start_server()
    yield server
    await server.server.close()
