"""
Method registry shared by the relay and the coordinator.

Maps every name of the closed bridge method set to a handler over a
LocalServiceClient and renders the outcome as exactly one reply.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .errors import BridgeError, InvalidArgument, UnknownMethod
from .protocol import BRIDGE_METHODS, CallReply, CallRequest
from .service import LocalServiceClient

logger = logging.getLogger("airnavx.bridge.dispatch")

Handler = Callable[[LocalServiceClient, dict[str, Any]], Awaitable[Any]]


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return bool(raw)


async def _detect(client: LocalServiceClient, params: dict[str, Any]) -> Any:
    return await client.detect(_as_bool(params.get("forceRefresh")))


async def _search(client: LocalServiceClient, params: dict[str, Any]) -> Any:
    result = await client.search(params.get("query") or "", params.get("page", 1))
    return result.as_dict()


async def _fetch_content(client: LocalServiceClient, params: dict[str, Any]) -> Any:
    result = await client.fetch_content(params.get("dataModuleId") or params.get("id") or "")
    return result.as_dict()


async def _custom_call(client: LocalServiceClient, params: dict[str, Any]) -> Any:
    query = params.get("params")
    if query is not None and not isinstance(query, dict):
        raise InvalidArgument("params must be an object")
    result = await client.custom_call(
        params.get("endpoint") or "",
        params.get("method") or "GET",
        query,
        params.get("body"),
    )
    return result.as_dict()


async def _get_status(client: LocalServiceClient, params: dict[str, Any]) -> Any:
    return client.status()


class MethodRegistry:
    """Registry for bridge handlers with O(1) lookup."""

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, name: str, handler: Handler) -> None:
        if name not in BRIDGE_METHODS:
            raise ValueError(f"{name!r} is not a bridge method")
        self._handlers[name] = handler

    def has(self, name: str) -> bool:
        return name in self._handlers

    async def dispatch(self, client: LocalServiceClient, request: CallRequest) -> CallReply:
        handler = self._handlers.get(request.method) if request.is_known_method else None
        try:
            if handler is None:
                raise UnknownMethod(request.method or "<missing>")
            result = await handler(client, request.params)
        except BridgeError as exc:
            logger.warning("%s (id=%s) failed: %s", request.method, request.correlation_id, exc.to_wire())
            return CallReply(correlation_id=request.correlation_id, error=exc.to_wire(), details=exc.details() or None)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s (id=%s) crashed", request.method, request.correlation_id)
            return CallReply(correlation_id=request.correlation_id, error=f"InternalError: {exc}")
        return CallReply(correlation_id=request.correlation_id, result=result)


def create_default_registry() -> MethodRegistry:
    registry = MethodRegistry()
    registry.register("detect", _detect)
    registry.register("search", _search)
    registry.register("fetchContent", _fetch_content)
    registry.register("customCall", _custom_call)
    registry.register("getStatus", _get_status)
    return registry
