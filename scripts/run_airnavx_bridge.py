#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[airnavx-bridge] ports={os.environ.get('AIRNAVX_BRIDGE_PORTS', 'default')} | "
    f"prefix={os.environ.get('AIRNAVX_BRIDGE_PREFIX', '/airnavx')} | "
    f"coordinator={os.environ.get('AIRNAVX_BRIDGE_COORDINATOR_HOST', '127.0.0.1')}:"
    f"{os.environ.get('AIRNAVX_BRIDGE_COORDINATOR_PORT', '8766')}",
    file=sys.stderr,
)

from bridges.airnavx.main import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
