from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from .config import BridgeConfig
from .errors import BridgeError
from .http_client import HttpTransport, build_url

logger = logging.getLogger("airnavx.bridge.discovery")

PROBE_PATH = "/api/viewer/search"
PROBE_PARAMS = {"q": "test", "page": "1"}


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: int

    @property
    def base_url(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"http://{host}:{int(self.port)}"

    def as_dict(self) -> dict[str, object]:
        return {"host": self.host, "port": int(self.port)}


@dataclass(frozen=True, slots=True)
class Found:
    endpoint: Endpoint


@dataclass(frozen=True, slots=True)
class NotFound:
    searched: tuple[tuple[str, int], ...] = ()

    @property
    def searched_ports(self) -> list[int]:
        ports: list[int] = []
        for _host, port in self.searched:
            if port not in ports:
                ports.append(port)
        return ports


DiscoveryResult = Found | NotFound


@dataclass(frozen=True, slots=True)
class CacheEntry:
    result: DiscoveryResult
    checked_at_ms: int
    ttl: float
    created_at: float  # monotonic clock

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    @property
    def expires_at_ms(self) -> int:
        return self.checked_at_ms + int(self.ttl * 1000)

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


async def probe_endpoint(transport: HttpTransport, config: BridgeConfig, host: str, port: int) -> bool:
    """Single low-cost GET against the search endpoint; True on HTTP 2xx."""
    endpoint = Endpoint(host, port)
    url = build_url(endpoint.base_url, config.service_prefix + PROBE_PATH, PROBE_PARAMS)
    try:
        resp = await transport.request("GET", url, timeout=config.probe_timeout)
    except BridgeError as exc:
        logger.debug("probe %s:%s failed: %s", host, port, exc)
        return False
    if not resp.ok:
        logger.debug("probe %s:%s answered HTTP %s", host, port, resp.status)
    return resp.ok


async def sweep(transport: HttpTransport, config: BridgeConfig) -> DiscoveryResult:
    """Probe hosts x ports in order; the first success ends the sweep."""
    searched: list[tuple[str, int]] = []
    for host in config.hosts:
        for port in config.ports:
            searched.append((host, port))
            if await probe_endpoint(transport, config, host, port):
                logger.info("AirNavX detected at %s:%s", host, port)
                return Found(Endpoint(host, port))
    logger.info("AirNavX not detected (%d candidates tried)", len(searched))
    return NotFound(tuple(searched))


PublishListener = Callable[[CacheEntry], None]


class DiscoveryCache:
    """Read-through cache over the probe sweep.

    The current entry is replaced by a single assignment, so concurrent readers
    either see the previous complete entry or the new one. Sweeps are numbered
    when they start and a sweep publishes only if no later one already has.
    """

    def __init__(
        self,
        transport: HttpTransport,
        config: BridgeConfig,
        *,
        found_ttl: float,
        not_found_ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._config = config
        self.found_ttl = max(0.0, float(found_ttl))
        self.not_found_ttl = min(max(0.0, float(not_found_ttl)), self.found_ttl)
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._inflight: asyncio.Task[CacheEntry] | None = None
        self._generations = itertools.count(1)
        self._published_generation = 0
        self._sweeps: set[asyncio.Task[CacheEntry]] = set()
        self._listeners: list[PublishListener] = []
        self.sweep_count = 0

    def add_listener(self, listener: PublishListener) -> None:
        self._listeners.append(listener)

    @property
    def current(self) -> CacheEntry | None:
        return self._entry

    async def init(self) -> DiscoveryResult:
        return await self.probe(force_refresh=True)

    async def refresh(self) -> DiscoveryResult:
        return await self.probe(force_refresh=True)

    async def probe(self, force_refresh: bool = False) -> DiscoveryResult:
        entry = self._entry
        if not force_refresh and entry is not None and entry.is_fresh(self._clock()):
            return entry.result

        task = self._inflight
        if force_refresh or task is None or task.done():
            # A forced refresh always runs its own sweep; later callers join the newest one.
            task = asyncio.create_task(self._sweep_and_publish(next(self._generations)))
            self._inflight = task
            self._sweeps.add(task)
            task.add_done_callback(self._sweeps.discard)
        published = await asyncio.shield(task)
        return published.result

    async def _sweep_and_publish(self, generation: int) -> CacheEntry:
        self.sweep_count += 1
        logger.info("Starting AirNavX detection (sweep %d)", generation)
        result = await sweep(self._transport, self._config)
        ttl = self.found_ttl if isinstance(result, Found) else self.not_found_ttl
        entry = CacheEntry(result=result, checked_at_ms=_now_ms(), ttl=ttl, created_at=self._clock())
        if self._entry is not None and generation < self._published_generation:
            # superseded by a sweep that started later
            logger.debug("discarding stale sweep %d (current %d)", generation, self._published_generation)
            return self._entry
        self._published_generation = generation
        self._entry = entry
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:  # noqa: BLE001
                logger.exception("discovery publish listener failed")
        return entry

    def status(self) -> dict[str, object]:
        entry = self._entry
        endpoint = entry.result.endpoint if entry is not None and isinstance(entry.result, Found) else None
        return {
            "detected": endpoint is not None,
            "host": endpoint.host if endpoint else None,
            "port": endpoint.port if endpoint else None,
            "lastCheck": entry.checked_at_ms if entry else None,
            "cacheExpiry": entry.expires_at_ms if entry else None,
            "fresh": bool(entry is not None and entry.is_fresh(self._clock())),
        }

    async def aclose(self) -> None:
        self._inflight = None
        pending = [t for t in self._sweeps if not t.done()]
        for task in pending:
            task.cancel()
        for task in pending:
            with contextlib.suppress(asyncio.CancelledError):
                await task
