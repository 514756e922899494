from __future__ import annotations

import asyncio
import logging
from typing import Any

from .channel import MessageChannel, MessageEvent, Subscription
from .config import MESSAGE_PREFIX
from .correlation import PendingCallTable
from .errors import BridgeError
from .protocol import BridgeEnvelope, CallReply, CallRequest

logger = logging.getLogger("airnavx.bridge.client")


class EnvelopeCalls:
    """Caller-facing operations shared by the page client and the coordinator peer.

    Subclasses provide ``_call``; every operation returns a BridgeEnvelope and
    never raises for bridge failures.
    """

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        raise NotImplementedError

    async def _envelope(self, method: str, params: dict[str, Any]) -> BridgeEnvelope:
        try:
            result = await self._call(method, params)
        except BridgeError as exc:
            return BridgeEnvelope.failure(exc.to_wire(), searched_ports=exc.details().get("searched_ports"))
        return BridgeEnvelope.from_result(result)

    async def detect(self, force_refresh: bool = False) -> BridgeEnvelope:
        return await self._envelope("detect", {"forceRefresh": bool(force_refresh)})

    async def search(self, query: str, page: int = 1) -> BridgeEnvelope:
        return await self._envelope("search", {"query": query, "page": page})

    async def fetch_content(self, data_module_id: str) -> BridgeEnvelope:
        return await self._envelope("fetchContent", {"dataModuleId": data_module_id})

    async def custom_call(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> BridgeEnvelope:
        payload: dict[str, Any] = {"endpoint": endpoint, "method": method}
        if params:
            payload["params"] = params
        if body is not None:
            payload["body"] = body
        return await self._envelope("customCall", payload)

    async def get_status(self) -> BridgeEnvelope:
        return await self._envelope("getStatus", {})


class BridgeClient(EnvelopeCalls):
    """Page-side API. Only posts messages; all network I/O happens in the relay."""

    def __init__(
        self,
        channel: MessageChannel,
        *,
        call_timeout: float = 30.0,
        prefix: str = MESSAGE_PREFIX,
        expected_source: object | None = None,
    ) -> None:
        self.channel = channel
        self.call_timeout = float(call_timeout)
        self._prefix = prefix
        self._expected_source = channel if expected_source is None else expected_source
        self._pending = PendingCallTable(name="page")
        self._subscription: Subscription | None = None
        self.ready = asyncio.Event()

    @property
    def pending(self) -> PendingCallTable:
        return self._pending

    def start(self) -> None:
        if self._subscription is not None:
            return
        self._subscription = self.channel.subscribe(self._on_message)
        self.ready.set()
        logger.info("AirNavX Bridge API ready")

    def close(self) -> None:
        sub = self._subscription
        self._subscription = None
        if sub is not None:
            sub.close()
        self.ready.clear()
        self._pending.fail_all(BridgeError("Bridge client closed"))

    async def __aenter__(self) -> BridgeClient:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        if self._subscription is None:
            self.start()

        def _send(request: CallRequest) -> None:
            self.channel.post(request.to_message(self._prefix), source=self._expected_source)

        return await self._pending.call(_send, method, params, timeout=self.call_timeout)

    def _on_message(self, event: MessageEvent) -> None:
        if event.source is not self._expected_source:
            return
        reply = CallReply.from_message(event.data, self._prefix)
        if reply is None:
            return
        self._pending.resolve(reply)
