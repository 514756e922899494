from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, get_args

from .config import MESSAGE_PREFIX

BridgeMethod = Literal["detect", "search", "fetchContent", "customCall", "getStatus"]
BRIDGE_METHODS: frozenset[str] = frozenset(get_args(BridgeMethod))


def request_type(prefix: str = MESSAGE_PREFIX) -> str:
    return prefix + "REQUEST"


def response_type(prefix: str = MESSAGE_PREFIX) -> str:
    return prefix + "RESPONSE"


def _correlation_id(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


@dataclass(frozen=True)
class CallRequest:
    method: str
    correlation_id: int
    params: dict[str, Any] = field(default_factory=dict)

    def to_message(self, prefix: str = MESSAGE_PREFIX) -> dict[str, Any]:
        return {
            "type": request_type(prefix),
            "method": self.method,
            "params": dict(self.params),
            "correlationId": self.correlation_id,
        }

    @classmethod
    def from_message(cls, msg: Any, prefix: str = MESSAGE_PREFIX) -> CallRequest | None:
        """Parse a request envelope; None for anything that is not one."""
        if not isinstance(msg, dict) or msg.get("type") != request_type(prefix):
            return None
        req_id = _correlation_id(msg.get("correlationId"))
        if req_id is None:
            return None
        raw_params = msg.get("params")
        params: dict[str, Any] = {}
        if isinstance(raw_params, dict):
            params = {k: v for k, v in raw_params.items() if isinstance(k, str)}
        method = msg.get("method")
        return cls(method=method if isinstance(method, str) else "", correlation_id=req_id, params=params)

    @property
    def is_known_method(self) -> bool:
        return self.method in BRIDGE_METHODS


@dataclass(frozen=True)
class CallReply:
    correlation_id: int
    result: Any = None
    error: str | None = None
    details: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_message(self, prefix: str = MESSAGE_PREFIX) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": response_type(prefix), "correlationId": self.correlation_id}
        if self.error is None:
            msg["result"] = self.result
        else:
            msg["error"] = self.error
            if self.details:
                msg["details"] = dict(self.details)
        return msg

    @classmethod
    def from_message(cls, msg: Any, prefix: str = MESSAGE_PREFIX) -> CallReply | None:
        if not isinstance(msg, dict) or msg.get("type") != response_type(prefix):
            return None
        req_id = _correlation_id(msg.get("correlationId"))
        if req_id is None:
            return None
        err = msg.get("error")
        if err is not None:
            details = msg.get("details")
            return cls(
                correlation_id=req_id,
                error=str(err) or "Bridge request failed",
                details=details if isinstance(details, dict) else None,
            )
        return cls(correlation_id=req_id, result=msg.get("result"))


@dataclass(frozen=True)
class BridgeEnvelope:
    """Caller-facing outcome; ``success`` is the only authoritative field."""

    success: bool
    data: Any = None
    error: str | None = None
    host: str | None = None
    port: int | None = None
    attempt: str | None = None
    searched_ports: list[int] | None = None

    @classmethod
    def from_result(cls, result: Any) -> BridgeEnvelope:
        if isinstance(result, dict) and "data" in result:
            return cls(
                success=True,
                data=result.get("data"),
                host=result.get("host"),
                port=result.get("port"),
                attempt=result.get("attempt"),
            )
        if isinstance(result, dict) and "host" in result and "port" in result:
            return cls(success=True, data=result, host=result.get("host"), port=result.get("port"))
        return cls(success=True, data=result)

    @classmethod
    def failure(cls, error: str, *, searched_ports: list[int] | None = None) -> BridgeEnvelope:
        return cls(success=False, error=error, searched_ports=list(searched_ports) if searched_ports else None)

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success}
        if self.success:
            out["data"] = self.data
        else:
            out["error"] = self.error
        if self.host is not None:
            out["host"] = self.host
        if self.port is not None:
            out["port"] = self.port
        if self.attempt is not None:
            out["attempt"] = self.attempt
        if self.searched_ports is not None:
            out["searched_ports"] = list(self.searched_ports)
        return out
