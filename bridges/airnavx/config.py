from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_HOSTS: list[str] = ["127.0.0.1", "localhost"]

# Observed AirNavX listener ports, most common first.
DEFAULT_PORTS: list[int] = [59720, 51798, 54320, 52000, 51800, 50000, 53000]

DEFAULT_SERVICE_PREFIX = "/airnavx"
DEFAULT_ALLOW_HOSTS: list[str] = ["127.0.0.1", "localhost", "::1"]

MESSAGE_PREFIX = "AIRNAVX_BRIDGE_"


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name) or ""
    return [item.strip() for item in raw.split(",") if item.strip()]


def _parse_ports(values: list[str]) -> list[int]:
    ports: list[int] = []
    for raw in values:
        try:
            port = int(raw)
        except ValueError:
            continue
        if 1 <= port <= 65535 and port not in ports:
            ports.append(port)
    return ports


@dataclass
class BridgeConfig:
    hosts: list[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))
    ports: list[int] = field(default_factory=lambda: list(DEFAULT_PORTS))
    service_prefix: str = DEFAULT_SERVICE_PREFIX
    probe_timeout: float = 2.0
    request_timeout: float = 30.0
    attempt_timeout: float = 20.0
    call_timeout: float = 30.0
    relay_ttl: float = 60.0
    relay_miss_ttl: float = 15.0
    coordinator_ttl: float = 300.0
    coordinator_miss_ttl: float = 60.0
    refresh_interval: float = 300.0
    coordinator_host: str = "127.0.0.1"
    coordinator_port: int = 8766
    fetch_attempts: list[str] = field(default_factory=list)
    allow_hosts: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOW_HOSTS))
    message_prefix: str = MESSAGE_PREFIX

    def __post_init__(self) -> None:
        prefix = "/" + (self.service_prefix or "").strip().strip("/")
        self.service_prefix = "" if prefix == "/" else prefix
        # A cached miss must never outlive a cached hit.
        self.relay_miss_ttl = min(self.relay_miss_ttl, self.relay_ttl)
        self.coordinator_miss_ttl = min(self.coordinator_miss_ttl, self.coordinator_ttl)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        hosts = _env_list("AIRNAVX_BRIDGE_HOSTS") or list(DEFAULT_HOSTS)
        ports = _parse_ports(_env_list("AIRNAVX_BRIDGE_PORTS")) or list(DEFAULT_PORTS)
        allow_raw = _env_list("AIRNAVX_BRIDGE_ALLOW_HOSTS")
        allow_hosts = [h.lower() for h in allow_raw if h != "*"] if allow_raw else list(DEFAULT_ALLOW_HOSTS)
        if "*" in allow_raw:
            allow_hosts = []
        coordinator_port = _env_int("AIRNAVX_BRIDGE_COORDINATOR_PORT", 8766)
        if not 1 <= coordinator_port <= 65535:
            coordinator_port = 8766
        return cls(
            hosts=hosts,
            ports=ports,
            service_prefix=os.environ.get("AIRNAVX_BRIDGE_PREFIX", DEFAULT_SERVICE_PREFIX),
            probe_timeout=_env_float("AIRNAVX_BRIDGE_PROBE_TIMEOUT", 2.0),
            request_timeout=_env_float("AIRNAVX_BRIDGE_REQUEST_TIMEOUT", 30.0),
            attempt_timeout=_env_float("AIRNAVX_BRIDGE_ATTEMPT_TIMEOUT", 20.0),
            call_timeout=_env_float("AIRNAVX_BRIDGE_CALL_TIMEOUT", 30.0),
            relay_ttl=_env_float("AIRNAVX_BRIDGE_RELAY_TTL", 60.0),
            relay_miss_ttl=_env_float("AIRNAVX_BRIDGE_RELAY_MISS_TTL", 15.0),
            coordinator_ttl=_env_float("AIRNAVX_BRIDGE_COORDINATOR_TTL", 300.0),
            coordinator_miss_ttl=_env_float("AIRNAVX_BRIDGE_COORDINATOR_MISS_TTL", 60.0),
            refresh_interval=_env_float("AIRNAVX_BRIDGE_REFRESH_INTERVAL", 300.0),
            coordinator_host=(os.environ.get("AIRNAVX_BRIDGE_COORDINATOR_HOST") or "127.0.0.1").strip() or "127.0.0.1",
            coordinator_port=coordinator_port,
            fetch_attempts=_env_list("AIRNAVX_BRIDGE_FETCH_ATTEMPTS"),
            allow_hosts=allow_hosts,
        )

    def candidates(self) -> list[tuple[str, int]]:
        """Probe order: every port of the first host before the next host."""
        return [(host, port) for host in self.hosts for port in self.ports]

    def is_host_allowed(self, host: str) -> bool:
        host = (host or "").strip().lower().strip("[]").rstrip(".")
        if not self.allow_hosts:
            return True
        for raw_allowed in [*self.allow_hosts, *self.hosts]:
            allowed = (raw_allowed or "").strip().lower().strip("[]").rstrip(".")
            if allowed and host == allowed:
                return True
        return False
