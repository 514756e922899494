from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger("airnavx.bridge.channel")


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    source: object


Listener = Callable[[MessageEvent], Awaitable[None] | None]


class Subscription:
    def __init__(self, channel: MessageChannel, listener: Listener) -> None:
        self._channel = channel
        self._listener = listener

    @property
    def active(self) -> bool:
        return self._listener in self._channel._listeners

    def close(self) -> None:
        self._channel._unsubscribe(self._listener)


class MessageChannel:
    """In-process structured-message channel shared by a page and its relay.

    ``post()`` never delivers synchronously: every listener sees a private deep
    copy of the message on a later loop iteration, tagged with the sender's
    identity, so the two sides share no mutable state.
    """

    def __init__(self, *, name: str = "window") -> None:
        self.name = name
        self._listeners: list[Listener] = []
        self._tasks: set[asyncio.Task[None]] = set()

    def subscribe(self, listener: Listener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post(self, message: Any, *, source: object | None = None) -> None:
        loop = asyncio.get_running_loop()
        origin = self if source is None else source
        for listener in list(self._listeners):
            event = MessageEvent(data=copy.deepcopy(message), source=origin)
            loop.call_soon(self._deliver, listener, event)

    def _deliver(self, listener: Listener, event: MessageEvent) -> None:
        if listener not in self._listeners:
            return
        try:
            res = listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("%s: listener failed", self.name)
            return
        if inspect.isawaitable(res):
            task = asyncio.ensure_future(res)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("%s: listener task failed: %s", self.name, exc)

    async def drain(self) -> None:
        """Wait for listener tasks started so far (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        self._listeners.clear()
        for task in list(self._tasks):
            task.cancel()
