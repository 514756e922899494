"""Error taxonomy shared by every bridge context.

Errors never cross a context boundary as exceptions: the receiving side renders
them with ``to_wire()`` and the issuing side reports the string in an envelope.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class BridgeError(Exception):
    code = "BridgeError"

    def to_wire(self) -> str:
        return f"{self.code}: {self}"

    def details(self) -> dict[str, Any]:
        """Structured fields sent next to the wire string; empty for most errors."""
        return {}


class ConfigError(BridgeError):
    code = "ConfigError"


class ServiceUnavailable(BridgeError):
    code = "ServiceUnavailable"

    def __init__(
        self,
        message: str = "AirNavX not detected. Please ensure AirNavX is running.",
        *,
        searched_ports: list[int] | None = None,
    ) -> None:
        super().__init__(message)
        self.searched_ports = list(searched_ports or [])

    def details(self) -> dict[str, Any]:
        return {"searched_ports": list(self.searched_ports)} if self.searched_ports else {}


class InvalidArgument(BridgeError):
    code = "InvalidArgument"


class RequestFailed(BridgeError):
    code = "RequestFailed"

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @classmethod
    def from_status(cls, status: int, reason: str | None = None) -> RequestFailed:
        text = f"HTTP {int(status)}"
        if reason:
            text = f"{text}: {reason}"
        return cls(text, status=int(status))


class HttpClientError(RequestFailed):
    """Transport-level failure (refused, reset, host not allowed): no HTTP status."""


class BridgeTimeout(BridgeError):
    code = "Timeout"


class ParseError(BridgeError):
    code = "ParseError"


class UnknownMethod(BridgeError):
    code = "UnknownMethod"

    def __init__(self, method: str) -> None:
        super().__init__(f"Unknown method: {method}")
        self.method = method


@dataclass(frozen=True)
class AttemptFailure:
    attempt_name: str
    reason: str

    def as_dict(self) -> dict[str, str]:
        return {"attempt": self.attempt_name, "reason": self.reason}


class AggregateAttemptsFailed(BridgeError):
    code = "AggregateAttemptsFailed"

    def __init__(self, failures: list[AttemptFailure]) -> None:
        self.failures = list(failures)
        detail = "; ".join(f"{f.attempt_name}: {f.reason}" for f in self.failures)
        super().__init__(f"All {len(self.failures)} content fetch attempts failed ({detail})")
