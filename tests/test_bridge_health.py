# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the bridge health check."""

from __future__ import annotations

import httpx
import pytest

from dailyfix.bridge.health import check_bridge_health


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestCheckBridgeHealth:
    @pytest.mark.asyncio
    async def test_healthy(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text="OK")

        async with client_for(handler) as client:
            result = await check_bridge_health("http://bridge.test:29318/", client=client)

        assert seen == ["http://bridge.test:29318/health"]
        assert result.healthy is True
        assert result.status_code == 200
        assert result.detail == "OK"

    @pytest.mark.asyncio
    async def test_unexpected_status(self):
        async with client_for(lambda req: httpx.Response(503)) as client:
            result = await check_bridge_health("http://bridge.test", client=client)
        assert result.healthy is False
        assert result.status_code == 503
        assert "503" in result.detail

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        async with client_for(refuse) as client:
            result = await check_bridge_health("http://bridge.test", client=client)
        assert result.healthy is False
        assert result.status_code is None
        assert "Connection refused" in result.detail
        assert result.to_dict()["url"] == "http://bridge.test"
