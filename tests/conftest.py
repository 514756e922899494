from __future__ import annotations

import os
from typing import Any

import pytest


@pytest.fixture
def config_factory(monkeypatch: pytest.MonkeyPatch):
    for key in list(os.environ):
        if key.startswith("AIRNAVX_BRIDGE_"):
            monkeypatch.delenv(key, raising=False)

    def _make(**overrides: Any):
        from bridges.airnavx.config import BridgeConfig

        base: dict[str, Any] = {"hosts": ["127.0.0.1"], "ports": [59720, 51798]}
        base.update(overrides)
        return BridgeConfig(**base)

    return _make
