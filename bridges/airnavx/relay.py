from __future__ import annotations

import logging

from .channel import MessageChannel, MessageEvent, Subscription
from .config import BridgeConfig
from .discovery import DiscoveryCache
from .dispatch import MethodRegistry, create_default_registry
from .http_client import AiohttpTransport, HttpTransport
from .protocol import CallRequest
from .service import LocalServiceClient

logger = logging.getLogger("airnavx.bridge.relay")


class ContentRelay:
    """Receiving side of the page bridge.

    Listens on the page's message channel, performs the network work the page
    cannot do, and answers every request with exactly one response envelope.
    """

    def __init__(
        self,
        channel: MessageChannel,
        service: LocalServiceClient,
        *,
        registry: MethodRegistry | None = None,
        expected_source: object | None = None,
    ) -> None:
        self.channel = channel
        self.service = service
        self.registry = registry or create_default_registry()
        self._prefix = service.config.message_prefix
        self._expected_source = channel if expected_source is None else expected_source
        self._subscription: Subscription | None = None
        self.handled = 0

    @classmethod
    def create(
        cls,
        channel: MessageChannel,
        config: BridgeConfig | None = None,
        *,
        transport: HttpTransport | None = None,
    ) -> ContentRelay:
        cfg = config or BridgeConfig.from_env()
        http = transport or AiohttpTransport(cfg)
        cache = DiscoveryCache(http, cfg, found_ttl=cfg.relay_ttl, not_found_ttl=cfg.relay_miss_ttl)
        return cls(channel, LocalServiceClient(cfg, http, cache))

    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active

    def start(self) -> None:
        if self.running:
            return
        self._subscription = self.channel.subscribe(self._on_message)
        logger.info("Message bridge setup complete")

    async def stop(self) -> None:
        sub = self._subscription
        self._subscription = None
        if sub is not None:
            sub.close()
        await self.service.cache.aclose()
        close = getattr(self.service.transport, "close", None)
        if close is not None:
            await close()

    async def _on_message(self, event: MessageEvent) -> None:
        if event.source is not self._expected_source:
            return
        request = CallRequest.from_message(event.data, self._prefix)
        if request is None:
            return
        logger.info("Received request %s (id=%s)", request.method or "<missing>", request.correlation_id)
        reply = await self.registry.dispatch(self.service, request)
        self.handled += 1
        if not self.running:
            logger.warning("Relay stopped before replying to id=%s", request.correlation_id)
            return
        logger.info("Sending response (id=%s, success=%s)", reply.correlation_id, reply.ok)
        self.channel.post(reply.to_message(self._prefix), source=self._expected_source)
