from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import time
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .client import EnvelopeCalls
from .config import BridgeConfig
from .coordinator import COORDINATOR_PROTOCOL_VERSION, hello_ack_type, hello_type
from .correlation import PendingCallTable
from .errors import BridgeError, HttpClientError
from .protocol import CallReply, CallRequest

logger = logging.getLogger("airnavx.bridge.peer")


class CoordinatorPeer(EnvelopeCalls):
    """Any local context talking to a running Coordinator.

    Same caller-facing operations as the page client; the transport is the
    coordinator's WebSocket instead of the page message channel.
    """

    def __init__(self, config: BridgeConfig | None = None, *, host: str | None = None, port: int | None = None) -> None:
        self.config = config or BridgeConfig.from_env()
        self.host = host or self.config.coordinator_host
        self.port = int(self.config.coordinator_port if port is None else port)
        self.call_timeout = self.config.call_timeout
        self._prefix = self.config.message_prefix
        self._peer_id = f"peer-{int(time.time() * 1000)}-{os.getpid()}"
        self._pending = PendingCallTable(name="peer")
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self.last_error: str | None = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def pending(self) -> PendingCallTable:
        return self._pending

    async def connect(self, *, timeout: float = 2.0) -> None:
        if self._ws is not None:
            return
        url = f"ws://{self.host}:{self.port}"
        try:
            ws = await connect(url, open_timeout=timeout, ping_interval=None, max_size=8_000_000)
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            self.last_error = str(exc) or exc.__class__.__name__
            raise HttpClientError(f"Coordinator not reachable at {url}: {self.last_error}") from exc

        try:
            await ws.send(
                json.dumps(
                    {
                        "type": hello_type(self._prefix),
                        "protocolVersion": COORDINATOR_PROTOCOL_VERSION,
                        "peerId": self._peer_id,
                        "pid": os.getpid(),
                    }
                )
            )
            ack = json.loads(await asyncio.wait_for(ws.recv(), timeout=timeout))
        except (asyncio.TimeoutError, ConnectionClosed, ValueError) as exc:
            await ws.close()
            raise HttpClientError(f"Coordinator hello failed: {exc}") from exc
        if not isinstance(ack, dict) or ack.get("type") != hello_ack_type(self._prefix):
            await ws.close()
            raise HttpClientError("Coordinator hello ack invalid")

        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws))
        logger.info("connected to coordinator %s", url)

    async def close(self) -> None:
        ws = self._ws
        reader = self._reader
        self._ws = None
        self._reader = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._pending.fail_all(BridgeError("Coordinator peer closed"))

    async def __aenter__(self) -> CoordinatorPeer:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        if self._ws is None:
            await self.connect()
        ws = self._ws
        if ws is None:
            raise HttpClientError("Coordinator peer is not connected")

        async def _send(request: CallRequest) -> None:
            try:
                await ws.send(json.dumps(request.to_message(self._prefix), ensure_ascii=False))
            except ConnectionClosed as exc:
                raise HttpClientError(f"Coordinator send failed: {exc}") from exc

        return await self._pending.call(_send, method, params, timeout=self.call_timeout)

    async def _read_loop(self, ws: ClientConnection) -> None:
        try:
            async for raw in ws:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    continue
                reply = CallReply.from_message(msg, self._prefix)
                if reply is not None:
                    self._pending.resolve(reply)
        except ConnectionClosed as exc:
            self.last_error = str(exc)
        finally:
            if self._ws is ws:
                self._ws = None
            self._pending.fail_all(HttpClientError("Coordinator disconnected"))
