from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .errors import BridgeError, BridgeTimeout
from .protocol import CallReply, CallRequest

logger = logging.getLogger("airnavx.bridge.correlation")


class RemoteCallError(BridgeError):
    """A reply carried an error string; the original exception stayed remote."""

    code = "RemoteError"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self._details = dict(details or {})

    def to_wire(self) -> str:
        return str(self)

    def details(self) -> dict[str, Any]:
        return dict(self._details)


@dataclass
class PendingCall:
    correlation_id: int
    method: str
    future: asyncio.Future[Any]
    deadline: float


class PendingCallTable:
    """Correlation ids -> futures for one issuing context.

    Ids come from a counter that only moves forward, so an id is never handed
    out twice for the lifetime of the table.
    """

    def __init__(self, *, name: str = "bridge") -> None:
        self._name = name
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingCall] = {}
        self.late_replies = 0

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._pending

    async def call(
        self,
        send: Callable[[CallRequest], Awaitable[None] | None],
        method: str,
        params: dict[str, Any] | None,
        *,
        timeout: float,
    ) -> Any:
        """Register, transmit and await one request; raises BridgeTimeout on deadline."""
        loop = asyncio.get_running_loop()
        req_id = next(self._ids)
        fut: asyncio.Future[Any] = loop.create_future()
        self._pending[req_id] = PendingCall(req_id, method, fut, time.monotonic() + timeout)
        request = CallRequest(method=method, correlation_id=req_id, params=dict(params or {}))
        logger.debug("%s: sending request %s %s", self._name, req_id, method)
        try:
            sent = send(request)
            if sent is not None:
                await sent
            return await asyncio.wait_for(fut, timeout=max(0.01, float(timeout)))
        except asyncio.TimeoutError as exc:
            logger.error("%s: request timeout (id=%s, method=%s)", self._name, req_id, method)
            raise BridgeTimeout(f"Request timeout after {timeout:g}s (method={method})") from exc
        finally:
            self._pending.pop(req_id, None)
            if not fut.done():
                fut.cancel()

    def resolve(self, reply: CallReply) -> bool:
        """Complete the matching pending call; False when the id is unknown."""
        pending = self._pending.pop(reply.correlation_id, None)
        if pending is None or pending.future.done():
            self.late_replies += 1
            logger.warning("%s: received response for unknown request: %s", self._name, reply.correlation_id)
            return False
        if reply.ok:
            pending.future.set_result(reply.result)
        else:
            pending.future.set_exception(RemoteCallError(reply.error or "Bridge request failed", reply.details))
        return True

    def fail_all(self, error: BridgeError) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            with contextlib.suppress(asyncio.InvalidStateError):
                if not call.future.done():
                    call.future.set_exception(error)
