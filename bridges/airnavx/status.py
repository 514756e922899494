from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from .discovery import CacheEntry, Found

logger = logging.getLogger("airnavx.bridge.status")

FOUND_BADGE = ("✓", "#10B981")
NOT_FOUND_BADGE = ("✗", "#DC2626")


@dataclass(frozen=True)
class Badge:
    text: str
    color: str

    def as_dict(self) -> dict[str, str]:
        return {"text": self.text, "color": self.color}


class StatusIndicator:
    """Observable detection badge (the toolbar icon of the coordinator)."""

    def __init__(self) -> None:
        self._badge = Badge("", "")
        self._listeners: list[Callable[[Badge], None]] = []

    @property
    def badge(self) -> Badge:
        return self._badge

    def subscribe(self, listener: Callable[[Badge], None]) -> None:
        self._listeners.append(listener)

    def update(self, entry: CacheEntry) -> None:
        text, color = FOUND_BADGE if isinstance(entry.result, Found) else NOT_FOUND_BADGE
        badge = Badge(text, color)
        if badge == self._badge:
            return
        self._badge = badge
        for listener in list(self._listeners):
            try:
                listener(badge)
            except Exception:  # noqa: BLE001
                logger.exception("status listener failed")
