"""Ordered request shapes for fetching one data module by id.

AirNavX has shipped several content routes over time. The bridge walks an
explicit priority list and keeps the first shape that answers with HTTP 2xx;
``AIRNAVX_BRIDGE_FETCH_ATTEMPTS`` reorders or subsets it by name.
"""

from __future__ import annotations

import logging
import urllib.parse
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import AggregateAttemptsFailed, AttemptFailure, BridgeError, ConfigError
from .http_client import HttpTransport, build_url

logger = logging.getLogger("airnavx.bridge.attempts")

ID_PLACEHOLDER = "{id}"


@dataclass(frozen=True)
class AttemptSpec:
    name: str
    path: str
    http_method: str = "GET"
    query: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | None = None

    def render(self, base_url: str, prefix: str, item_id: str) -> tuple[str, Any]:
        """Return (url, json_body) with the id substituted everywhere it appears."""
        path = self.path.replace(ID_PLACEHOLDER, urllib.parse.quote(item_id, safe=""))
        query = {k: (item_id if v == ID_PLACEHOLDER else v) for k, v in self.query.items()}
        body = None
        if self.body is not None:
            body = {k: (item_id if v == ID_PLACEHOLDER else v) for k, v in self.body.items()}
        return build_url(base_url, prefix + path, query), body


@dataclass(frozen=True)
class FetchOutcome:
    payload: Any
    attempt_name: str
    status: int


CONTENT_PATH = "/api/dataModule/content"

DEFAULT_FETCH_ATTEMPTS: tuple[AttemptSpec, ...] = (
    AttemptSpec("dataModuleId", CONTENT_PATH, query={"dataModuleId": ID_PLACEHOLDER}),
    AttemptSpec(
        "dataModuleIdWithFlags",
        CONTENT_PATH,
        query={"dataModuleId": ID_PLACEHOLDER, "forHatch": "false", "forPrint": "false"},
    ),
    AttemptSpec("dmCode", CONTENT_PATH, query={"dmCode": ID_PLACEHOLDER}),
    AttemptSpec("id", CONTENT_PATH, query={"id": ID_PLACEHOLDER}),
    AttemptSpec("pathSegment", "/api/dataModule/{id}/content"),
    AttemptSpec("viewerScoped", "/api/viewer/dataModule/{id}"),
    AttemptSpec(
        "postJsonBody",
        CONTENT_PATH,
        http_method="POST",
        body={"dataModuleId": ID_PLACEHOLDER, "forHatch": False, "forPrint": False},
    ),
)


def resolve_attempts(names: Sequence[str] | None = None) -> tuple[AttemptSpec, ...]:
    """Reorder (or subset) the built-in attempts by name."""
    if not names:
        return DEFAULT_FETCH_ATTEMPTS
    by_name = {a.name: a for a in DEFAULT_FETCH_ATTEMPTS}
    out: list[AttemptSpec] = []
    for raw in names:
        name = str(raw or "").strip()
        if not name:
            continue
        spec = by_name.get(name)
        if spec is None:
            known = ", ".join(by_name)
            raise ConfigError(f"Unknown fetch attempt {name!r} (known: {known})")
        if spec not in out:
            out.append(spec)
    return tuple(out) or DEFAULT_FETCH_ATTEMPTS


async def run_attempts(
    transport: HttpTransport,
    attempts: Sequence[AttemptSpec],
    *,
    base_url: str,
    prefix: str,
    item_id: str,
    timeout: float,
) -> FetchOutcome:
    failures: list[AttemptFailure] = []
    for attempt in attempts:
        url, body = attempt.render(base_url, prefix, item_id)
        logger.info("Trying %s: %s %s", attempt.name, attempt.http_method, url)
        try:
            resp = await transport.request(attempt.http_method, url, timeout=timeout, json_body=body)
            if not resp.ok:
                reason = f"HTTP {resp.status}" + (f": {resp.reason}" if resp.reason else "")
                failures.append(AttemptFailure(attempt.name, reason))
                logger.info("Attempt %s failed: %s", attempt.name, reason)
                continue
            payload = resp.payload()
        except BridgeError as exc:
            failures.append(AttemptFailure(attempt.name, exc.to_wire()))
            logger.warning("Attempt %s failed: %s", attempt.name, exc.to_wire())
            continue
        logger.info("Content fetched via %s (%d bytes)", attempt.name, len(resp.body))
        return FetchOutcome(payload=payload, attempt_name=attempt.name, status=resp.status)

    logger.error("All content fetch attempts failed for %s", item_id)
    raise AggregateAttemptsFailed(failures)
