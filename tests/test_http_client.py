from __future__ import annotations

import asyncio

import pytest
from bridge_fakes import free_port


async def _fake_airnavx(port: int, *, slow_s: float = 0.0):
    from aiohttp import web

    async def _search(request: web.Request) -> web.Response:
        return web.json_response({"results": [{"q": request.query.get("q")}], "page": request.query.get("page")})

    async def _content(request: web.Request) -> web.Response:
        dm = request.match_info.get("dm")
        if dm is None:
            return web.Response(status=404, reason="Not Found")
        return web.json_response({"id": dm})

    async def _slow(request: web.Request) -> web.Response:
        await asyncio.sleep(slow_s)
        return web.json_response({})

    async def _echo(request: web.Request) -> web.Response:
        return web.json_response({"method": request.method, "body": await request.json()})

    app = web.Application()
    app.router.add_get("/airnavx/api/viewer/search", _search)
    app.router.add_get("/airnavx/api/dataModule/{dm}/content", _content)
    app.router.add_get("/airnavx/api/dataModule/content", _content)
    app.router.add_get("/airnavx/slow", _slow)
    app.router.add_post("/airnavx/echo", _echo)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    return runner


def test_transport_against_real_http_server(config_factory) -> None:
    pytest.importorskip("aiohttp")
    from bridges.airnavx.http_client import AiohttpTransport

    port = free_port()
    cfg = config_factory(ports=[port])

    async def _main():
        runner = await _fake_airnavx(port)
        transport = AiohttpTransport(cfg)
        try:
            search = await transport.request(
                "GET", f"http://127.0.0.1:{port}/airnavx/api/viewer/search?q=abc&page=2", timeout=2
            )
            echo = await transport.request("POST", f"http://127.0.0.1:{port}/airnavx/echo", timeout=2, json_body={"a": 1})
            missing = await transport.request("GET", f"http://127.0.0.1:{port}/nowhere", timeout=2)
        finally:
            await transport.close()
            await runner.cleanup()
        return search, echo, missing

    search, echo, missing = asyncio.run(_main())
    assert search.ok and search.is_json()
    assert search.json() == {"results": [{"q": "abc"}], "page": "2"}
    assert echo.payload() == {"method": "POST", "body": {"a": 1}}
    assert missing.status == 404 and not missing.ok


def test_transport_refused_and_timeout(config_factory) -> None:
    pytest.importorskip("aiohttp")
    from bridges.airnavx.errors import BridgeTimeout, HttpClientError
    from bridges.airnavx.http_client import AiohttpTransport

    port = free_port()
    closed_port = free_port()
    cfg = config_factory(ports=[port])

    async def _main():
        runner = await _fake_airnavx(port, slow_s=1.0)
        transport = AiohttpTransport(cfg)
        try:
            with pytest.raises(HttpClientError):
                await transport.request("GET", f"http://127.0.0.1:{closed_port}/", timeout=1)
            with pytest.raises(BridgeTimeout) as info:
                await transport.request("GET", f"http://127.0.0.1:{port}/airnavx/slow", timeout=0.2)
            return info.value.to_wire()
        finally:
            await transport.close()
            await runner.cleanup()

    text = asyncio.run(_main())
    assert text.startswith("Timeout: Request timeout after 0.2s")


def test_transport_refuses_hosts_outside_allowlist(config_factory) -> None:
    pytest.importorskip("aiohttp")
    from bridges.airnavx.errors import HttpClientError
    from bridges.airnavx.http_client import AiohttpTransport

    cfg = config_factory(hosts=["127.0.0.1"])
    transport = AiohttpTransport(cfg)

    async def _main():
        try:
            for url in ("http://example.com/airnavx", "ftp://127.0.0.1/x"):
                with pytest.raises(HttpClientError):
                    await transport.request("GET", url, timeout=1)
        finally:
            await transport.close()

    asyncio.run(_main())


def test_end_to_end_discovery_and_fetch(config_factory) -> None:
    pytest.importorskip("aiohttp")
    from bridges.airnavx.channel import MessageChannel
    from bridges.airnavx.client import BridgeClient
    from bridges.airnavx.relay import ContentRelay

    port = free_port()
    dead = free_port()
    cfg = config_factory(hosts=["127.0.0.1"], ports=[dead, port], probe_timeout=1)

    async def _main():
        runner = await _fake_airnavx(port)
        channel = MessageChannel()
        relay = ContentRelay.create(channel, cfg)
        relay.start()
        try:
            async with BridgeClient(channel, call_timeout=10) as client:
                detect = await client.detect()
                fetch = await client.fetch_content("DMC-A320-00")
        finally:
            await relay.stop()
            await runner.cleanup()
        return detect, fetch

    detect, fetch = asyncio.run(_main())
    assert detect.success and detect.port == port
    assert fetch.success
    assert fetch.attempt == "pathSegment"
    assert fetch.data == {"id": "DMC-A320-00"}
