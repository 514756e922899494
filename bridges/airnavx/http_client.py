from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from .config import BridgeConfig
from .errors import BridgeTimeout, HttpClientError, ParseError

logger = logging.getLogger("airnavx.bridge.http")

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class HttpResponse:
    status: int
    reason: str
    content_type: str
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def is_json(self) -> bool:
        ctype = (self.content_type or "").split(";", 1)[0].strip().lower()
        return ctype == "application/json" or ctype.endswith("+json")

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ParseError(f"Invalid JSON body: {exc}") from exc

    def payload(self) -> Any:
        """Decode by declared content type: JSON is structured, anything else is text."""
        if self.is_json():
            return self.json()
        return self.text()


class HttpTransport(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json_body: Any = None,
    ) -> HttpResponse: ...


def build_url(base: str, path: str, params: dict[str, Any] | None = None) -> str:
    url = f"{base}{path}"
    if params:
        url += "?" + urllib.parse.urlencode(params, doseq=True)
    return url


class AiohttpTransport:
    """Non-blocking HTTP over one shared aiohttp session.

    Every request carries its own total deadline; on timeout or cancellation
    the response context manager releases the connection.
    """

    def __init__(self, config: BridgeConfig, *, session: aiohttp.ClientSession | None = None) -> None:
        self._config = config
        self._session = session
        self._owns_session = session is None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": "airnavx-bridge/1.0"})
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        session = self._session
        self._session = None
        if session is not None and self._owns_session and not session.closed:
            await session.close()

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        json_body: Any = None,
    ) -> HttpResponse:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise HttpClientError("Only http/https are supported")
        if not self._config.is_host_allowed(parsed.hostname or ""):
            raise HttpClientError(f"Host {parsed.hostname} is not in allowlist")

        verb = (method or "GET").upper()
        kwargs: dict[str, Any] = {
            "headers": {"Accept": "application/json"},
            "timeout": aiohttp.ClientTimeout(total=max(0.05, float(timeout))),
            "allow_redirects": False,
        }
        if json_body is not None and verb in BODY_METHODS:
            kwargs["json"] = json_body

        session = await self._ensure_session()
        logger.debug("%s %s", verb, url)
        try:
            async with session.request(verb, url, **kwargs) as resp:
                body = await resp.read()
                return HttpResponse(
                    status=int(resp.status),
                    reason=str(resp.reason or ""),
                    content_type=resp.headers.get("Content-Type", ""),
                    body=body,
                )
        except asyncio.TimeoutError as exc:
            raise BridgeTimeout(f"Request timeout after {timeout:g}s - AirNavX not responding") from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise HttpClientError(str(exc) or exc.__class__.__name__) from exc
