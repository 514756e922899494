"""
AirNavX Bridge command line.

``serve`` runs the coordinator until interrupted. Every other command runs one
bridge operation and prints its envelope as JSON: in-process through a page
client and relay pair by default, or through a running coordinator with
``--via-coordinator``.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from .channel import MessageChannel
from .client import BridgeClient, EnvelopeCalls
from .config import BridgeConfig
from .coordinator import Coordinator
from .coordinator_peer import CoordinatorPeer
from .protocol import BridgeEnvelope
from .relay import ContentRelay

logger = logging.getLogger("airnavx.bridge")

Operation = Callable[[EnvelopeCalls], Awaitable[BridgeEnvelope]]


def _setup_logging() -> None:
    level = logging.DEBUG if os.environ.get("AIRNAVX_BRIDGE_TRACE") else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s", stream=sys.stderr)


def _parse_pairs(pairs: list[str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in pairs:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise SystemExit(f"invalid --param {raw!r} (expected key=value)")
        out[key.strip()] = value
    return out


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="airnavx-bridge", description="Bridge web callers to a local AirNavX.")
    parser.add_argument(
        "--via-coordinator",
        action="store_true",
        help="send the operation to a running coordinator instead of an in-process relay",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="run the coordinator")

    p_detect = sub.add_parser("detect", help="locate the local service")
    p_detect.add_argument("--force", action="store_true", help="ignore the discovery cache")

    p_search = sub.add_parser("search", help="keyword search")
    p_search.add_argument("query")
    p_search.add_argument("--page", type=int, default=1)

    p_fetch = sub.add_parser("fetch", help="fetch one data module by id")
    p_fetch.add_argument("data_module_id")

    p_call = sub.add_parser("call", help="arbitrary call against the local service")
    p_call.add_argument("endpoint")
    p_call.add_argument("--method", default="GET")
    p_call.add_argument("--param", action="append", default=[], metavar="KEY=VALUE")
    p_call.add_argument("--body", default=None, help="JSON request body")

    sub.add_parser("status", help="discovery status")
    sub.add_parser("test", help="detect, then run a test search")
    return parser


def _operation(args: argparse.Namespace) -> Operation:
    command = args.command
    if command == "detect":
        return lambda c: c.detect(force_refresh=bool(args.force))
    if command == "search":
        return lambda c: c.search(args.query, args.page)
    if command == "fetch":
        return lambda c: c.fetch_content(args.data_module_id)
    if command == "call":
        params = _parse_pairs(args.param)
        try:
            body = json.loads(args.body) if args.body else None
        except ValueError as exc:
            raise SystemExit(f"invalid --body JSON: {exc}") from exc
        return lambda c: c.custom_call(args.endpoint, method=args.method, params=params, body=body)
    if command == "status":
        return lambda c: c.get_status()
    if command == "test":
        return _self_test
    raise SystemExit(f"unknown command: {command}")


async def _self_test(client: EnvelopeCalls) -> BridgeEnvelope:
    detected = await client.detect(force_refresh=True)
    if not detected.success:
        return detected
    found = await client.search("test", 1)
    if not found.success:
        return found
    results = found.data.get("results") if isinstance(found.data, dict) else None
    count = len(results) if isinstance(results, list) else 0
    return BridgeEnvelope(
        success=True,
        data={"message": f"Connection working. Found {count} results for 'test'", "results": count},
        host=detected.host,
        port=detected.port,
    )


async def run_in_process(config: BridgeConfig, op: Operation) -> BridgeEnvelope:
    channel = MessageChannel()
    relay = ContentRelay.create(channel, config)
    relay.start()
    try:
        async with BridgeClient(channel, call_timeout=config.call_timeout, prefix=config.message_prefix) as client:
            return await op(client)
    finally:
        await relay.stop()
        channel.close()


async def run_via_coordinator(config: BridgeConfig, op: Operation) -> BridgeEnvelope:
    peer = CoordinatorPeer(config)
    try:
        await peer.connect()
    except Exception as exc:  # noqa: BLE001
        return BridgeEnvelope.failure(str(exc))
    try:
        return await op(peer)
    finally:
        await peer.close()


async def _serve(config: BridgeConfig) -> None:
    coordinator = Coordinator(config)
    coordinator.indicator.subscribe(lambda badge: logger.info("status badge: %s", badge.text))
    await coordinator.serve_forever()


def main(argv: list[str] | None = None) -> int:
    _setup_logging()
    args = build_parser().parse_args(argv)
    config = BridgeConfig.from_env()

    if args.command == "serve":
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(_serve(config))
        return 0

    op = _operation(args)
    runner = run_via_coordinator if args.via_coordinator else run_in_process
    envelope = asyncio.run(runner(config, op))
    sys.stdout.write(json.dumps(envelope.as_dict(), ensure_ascii=False, indent=2) + "\n")
    return 0 if envelope.success else 1


if __name__ == "__main__":
    raise SystemExit(main())
