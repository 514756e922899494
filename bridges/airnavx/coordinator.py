from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from .config import BridgeConfig
from .discovery import CacheEntry, DiscoveryCache, Found
from .dispatch import MethodRegistry, create_default_registry
from .http_client import AiohttpTransport, HttpTransport
from .protocol import CallRequest
from .service import LocalServiceClient
from .status import StatusIndicator

logger = logging.getLogger("airnavx.bridge.coordinator")

COORDINATOR_PROTOCOL_VERSION = "2026-10-01"
COORDINATOR_WELL_KNOWN_PATH = "/.well-known/airnavx-bridge"


def _now_ms() -> int:
    return int(time.time() * 1000)


def hello_type(prefix: str) -> str:
    return prefix + "HELLO"


def hello_ack_type(prefix: str) -> str:
    return prefix + "HELLO_ACK"


class Coordinator:
    """Long-lived privileged context: the background worker of the bridge.

    Serves the bridge methods to any local context over a WebSocket. Each peer
    must open with a hello envelope; a socket that sends anything else first
    (or nothing within 2.5 s) is closed with code 1002. Owns the longer-lived
    discovery cache, mirrors every published detection into ``stored`` and the
    status badge, and re-probes on a timer.
    """

    def __init__(
        self,
        config: BridgeConfig | None = None,
        *,
        transport: HttpTransport | None = None,
        host: str | None = None,
        port: int | None = None,
    ) -> None:
        self.config = config or BridgeConfig.from_env()
        self.transport = transport or AiohttpTransport(self.config)
        self.cache = DiscoveryCache(
            self.transport,
            self.config,
            found_ttl=self.config.coordinator_ttl,
            not_found_ttl=self.config.coordinator_miss_ttl,
        )
        self.service = LocalServiceClient(self.config, self.transport, self.cache)
        self.indicator = StatusIndicator()
        self.stored: dict[str, Any] = {}
        self.host = host or self.config.coordinator_host
        self.port = int(self.config.coordinator_port if port is None else port)
        self._prefix = self.config.message_prefix
        self._started_at_ms = _now_ms()

        self.registry: MethodRegistry = create_default_registry()
        self.registry.register("getStatus", self._get_status)

        self._server: Server | None = None
        self._refresh_task: asyncio.Task[None] | None = None
        self._request_tasks: set[asyncio.Task[None]] = set()
        self._peers: dict[ServerConnection, dict[str, Any]] = {}

        self.cache.add_listener(self._on_publish)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self, *, initial_probe: bool = True) -> None:
        if self._server is not None:
            return
        self._server = await serve(
            self._handler,
            self.host,
            self.port,
            process_request=self._process_request,
            max_size=8_000_000,
            ping_interval=None,
        )
        sockets = list(self._server.sockets or [])
        if sockets:
            self.port = int(sockets[0].getsockname()[1])
        logger.info("AirNavX Bridge coordinator listening on %s:%s", self.host, self.port)

        if initial_probe:
            await self.cache.init()
        if self.config.refresh_interval > 0:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    async def stop(self) -> None:
        task = self._refresh_task
        self._refresh_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for t in list(self._request_tasks):
            t.cancel()
        if self._request_tasks:
            await asyncio.gather(*list(self._request_tasks), return_exceptions=True)
        srv = self._server
        self._server = None
        if srv is not None:
            srv.close()
            await srv.wait_closed()
        await self.cache.aclose()
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Future()
        finally:
            await self.stop()

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.refresh_interval)
            try:
                await self.cache.refresh()
            except Exception:  # noqa: BLE001
                logger.exception("periodic detection failed")

    # ─────────────────────────────────────────────────────────────────────────
    # Detection side effects
    # ─────────────────────────────────────────────────────────────────────────

    def _on_publish(self, entry: CacheEntry) -> None:
        if isinstance(entry.result, Found):
            ep = entry.result.endpoint
            self.stored = {"airnavx_host": ep.host, "airnavx_port": ep.port, "last_detection": entry.checked_at_ms}
        else:
            self.stored = {**self.stored, "last_detection": entry.checked_at_ms}
        self.indicator.update(entry)

    async def _get_status(self, service: LocalServiceClient, params: dict[str, Any]) -> dict[str, Any]:
        return self.status()

    def status(self) -> dict[str, Any]:
        return {
            **self.cache.status(),
            "indicator": self.indicator.badge.as_dict(),
            "stored": dict(self.stored),
            "peerCount": len(self._peers),
            "serverStartedAtMs": self._started_at_ms,
        }

    # ─────────────────────────────────────────────────────────────────────────
    # WebSocket surface
    # ─────────────────────────────────────────────────────────────────────────

    def _process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        if str(request.headers.get("Upgrade") or "").lower() == "websocket":
            return None
        headers = Headers()
        headers["Cache-Control"] = "no-store"
        if request.path != COORDINATOR_WELL_KNOWN_PATH:
            headers["Content-Type"] = "text/plain"
            return Response(404, "Not Found", headers, b"not found")
        payload = {
            "type": "airnavxBridgeCoordinator",
            "protocolVersion": COORDINATOR_PROTOCOL_VERSION,
            "pid": os.getpid(),
            **self.status(),
        }
        headers["Content-Type"] = "application/json"
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        return Response(200, "OK", headers, body)

    async def _handler(self, ws: ServerConnection) -> None:
        try:
            raw = await asyncio.wait_for(ws.recv(), timeout=2.5)
            hello = json.loads(raw)
        except (asyncio.TimeoutError, ConnectionClosed, ValueError, TypeError):
            logger.warning("peer hello missing or invalid")
            with contextlib.suppress(Exception):
                await ws.close(code=1002, reason="expected hello")
            return
        if not isinstance(hello, dict) or hello.get("type") != hello_type(self._prefix):
            with contextlib.suppress(Exception):
                await ws.close(code=1002, reason="expected hello")
            return

        peer_id = str(hello.get("peerId") or "").strip() or f"peer-{_now_ms()}"
        self._peers[ws] = {"peerId": peer_id, "connectedAtMs": _now_ms()}
        logger.info("peer connected: %s", peer_id)
        try:
            await ws.send(
                json.dumps(
                    {
                        "type": hello_ack_type(self._prefix),
                        "protocolVersion": COORDINATOR_PROTOCOL_VERSION,
                        "serverStartedAtMs": self._started_at_ms,
                    }
                )
            )
            async for raw_msg in ws:
                try:
                    msg = json.loads(raw_msg)
                except ValueError:
                    continue
                request = CallRequest.from_message(msg, self._prefix)
                if request is None:
                    continue
                task = asyncio.create_task(self._serve_request(ws, request))
                self._request_tasks.add(task)
                task.add_done_callback(self._request_tasks.discard)
        except ConnectionClosed:
            pass
        finally:
            self._peers.pop(ws, None)
            logger.info("peer disconnected: %s", peer_id)

    async def _serve_request(self, ws: ServerConnection, request: CallRequest) -> None:
        logger.info("Received request %s (id=%s)", request.method or "<missing>", request.correlation_id)
        reply = await self.registry.dispatch(self.service, request)
        try:
            await ws.send(json.dumps(reply.to_message(self._prefix), ensure_ascii=False))
        except ConnectionClosed:
            logger.warning("peer went away before reply id=%s", request.correlation_id)
