# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Bridge health check -- is a bridge's appservice reachable?"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any

import httpx

logger = logging.getLogger("dailyfix.bridge.health")

DEFAULT_HEALTH_TIMEOUT = 5.0


@dataclass
class BridgeHealth:
    url: str
    healthy: bool
    status_code: int | None = None
    latency_ms: float = 0.0
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


async def check_bridge_health(
    url: str,
    timeout: float = DEFAULT_HEALTH_TIMEOUT,
    client: httpx.AsyncClient | None = None,
) -> BridgeHealth:
    """GET ``{url}/health``. Never raises; failures come back as healthy=False."""
    target = url.rstrip("/") + "/health"
    own_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout)
    start = time.monotonic()
    try:
        resp = await client.get(target, timeout=timeout)
        latency = (time.monotonic() - start) * 1000
        healthy = resp.status_code == 200
        detail = resp.text[:200] if healthy else f"Unexpected status {resp.status_code}"
        if not healthy:
            logger.warning("Bridge at %s answered %d", url, resp.status_code)
        return BridgeHealth(
            url=url,
            healthy=healthy,
            status_code=resp.status_code,
            latency_ms=round(latency, 1),
            detail=detail,
        )
    except httpx.HTTPError as e:
        logger.warning("Bridge at %s unreachable: %s", url, e)
        return BridgeHealth(
            url=url,
            healthy=False,
            latency_ms=round((time.monotonic() - start) * 1000, 1),
            detail=str(e) or type(e).__name__,
        )
    finally:
        if own_client:
            await client.aclose()
