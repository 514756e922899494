from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .attempts import AttemptSpec, FetchOutcome, resolve_attempts, run_attempts
from .config import BridgeConfig
from .discovery import DiscoveryCache, Endpoint, Found
from .errors import InvalidArgument, RequestFailed, ServiceUnavailable
from .http_client import BODY_METHODS, HttpTransport, build_url

logger = logging.getLogger("airnavx.bridge.service")

SEARCH_PATH = "/api/viewer/search"
SEARCH_AGGREGATIONS: tuple[str, ...] = ("ata2", "actype", "customization", "doctypebc")
ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"})


@dataclass(frozen=True)
class CallResult:
    """Payload of a successful local-service call plus where it came from."""

    data: Any
    endpoint: Endpoint
    attempt: str | None = None

    def as_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"data": self.data, "host": self.endpoint.host, "port": self.endpoint.port}
        if self.attempt:
            out["attempt"] = self.attempt
        return out


class LocalServiceClient:
    """The named-method surface every network-capable context offers.

    The relay and the coordinator each own one, with their own cache windows.
    """

    def __init__(
        self,
        config: BridgeConfig,
        transport: HttpTransport,
        cache: DiscoveryCache,
        *,
        attempts: Sequence[AttemptSpec] | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.cache = cache
        self.attempts = tuple(attempts) if attempts is not None else resolve_attempts(config.fetch_attempts)

    async def detect(self, force_refresh: bool = False) -> dict[str, Any]:
        result = await self.cache.probe(force_refresh)
        if isinstance(result, Found):
            ep = result.endpoint
            return {**ep.as_dict(), "message": f"AirNavX detected at {ep.host}:{ep.port}"}
        ports = ", ".join(str(p) for p in result.searched_ports)
        raise ServiceUnavailable(
            f"AirNavX not found. Please ensure it is running (searched ports: {ports}).",
            searched_ports=result.searched_ports,
        )

    async def _endpoint(self) -> Endpoint:
        result = await self.cache.probe(False)
        if not isinstance(result, Found):
            raise ServiceUnavailable(searched_ports=result.searched_ports)
        return result.endpoint

    async def search(self, query: str, page: int = 1) -> CallResult:
        text = str(query or "").strip()
        if not text:
            raise InvalidArgument("Query parameter required")
        try:
            page_no = int(1 if page is None else page)
        except (TypeError, ValueError) as exc:
            raise InvalidArgument(f"Invalid page: {page!r}") from exc
        if page_no < 1:
            raise InvalidArgument(f"Invalid page: {page_no}")

        endpoint = await self._endpoint()
        params = {
            "q": text,
            "page": str(page_no),
            "aggregationList": ",".join(SEARCH_AGGREGATIONS),
            "queryWithAggregation": "false",
        }
        url = build_url(endpoint.base_url, self.config.service_prefix + SEARCH_PATH, params)
        logger.info("Searching for %r (page %d)", text, page_no)
        resp = await self.transport.request("GET", url, timeout=self.config.request_timeout)
        if not resp.ok:
            raise RequestFailed.from_status(resp.status, f"Search failed ({resp.reason})" if resp.reason else None)
        data = resp.json()
        results = data.get("results") if isinstance(data, dict) else None
        logger.info("Search found %d results", len(results) if isinstance(results, list) else 0)
        return CallResult(data=data, endpoint=endpoint)

    async def fetch_content(self, data_module_id: str) -> CallResult:
        item_id = str(data_module_id or "").strip()
        if not item_id:
            raise InvalidArgument("dataModuleId is required")
        endpoint = await self._endpoint()
        logger.info("Fetching content for %s", item_id)
        outcome: FetchOutcome = await run_attempts(
            self.transport,
            self.attempts,
            base_url=endpoint.base_url,
            prefix=self.config.service_prefix,
            item_id=item_id,
            timeout=self.config.attempt_timeout,
        )
        return CallResult(data=outcome.payload, endpoint=endpoint, attempt=outcome.attempt_name)

    async def custom_call(
        self,
        endpoint_path: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> CallResult:
        path = str(endpoint_path or "").strip()
        if not path:
            raise InvalidArgument("endpoint required")
        if not path.startswith("/"):
            raise InvalidArgument(f"endpoint must be a path starting with '/': {path!r}")
        verb = str(method or "GET").strip().upper()
        if verb not in ALLOWED_METHODS:
            raise InvalidArgument(f"Unsupported HTTP method: {verb}")
        if params is not None and not isinstance(params, dict):
            raise InvalidArgument("params must be an object")

        endpoint = await self._endpoint()
        url = build_url(endpoint.base_url, path, params or None)
        json_body = body if (verb in BODY_METHODS and body) else None
        logger.info("Fetching: %s %s", verb, url)
        resp = await self.transport.request(verb, url, timeout=self.config.attempt_timeout, json_body=json_body)
        if not resp.ok:
            raise RequestFailed.from_status(resp.status, resp.reason)
        return CallResult(data=resp.payload(), endpoint=endpoint)

    def status(self) -> dict[str, Any]:
        return self.cache.status()
