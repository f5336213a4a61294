"""Tests for CorrelationIdMiddleware on a bare Starlette app."""

from __future__ import annotations

import httpx
import pytest
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from google_calendar_mcp.servers.correlation import CorrelationIdMiddleware


async def _echo(request: Request) -> JSONResponse:
    return JSONResponse({"correlation_id": getattr(request.state, "correlation_id", None)})


@pytest.fixture
async def http():
    app = Starlette(routes=[Route("/open", _echo)], middleware=[Middleware(CorrelationIdMiddleware)])
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://localhost:3000") as client:
        yield client


@pytest.mark.anyio
async def test_correlation_id_generated(http) -> None:
    resp = await http.get("/open")
    generated = resp.headers["X-Correlation-ID"]
    assert len(generated) == 32
    assert resp.json()["correlation_id"] == generated


@pytest.mark.anyio
@pytest.mark.parametrize("supplied, echoed", [("req-42", True), ("bad id with spaces!", False)])
async def test_correlation_id_supplied(http, supplied, echoed) -> None:
    resp = await http.get("/open", headers={"X-Correlation-ID": supplied})
    assert (resp.headers["X-Correlation-ID"] == supplied) is echoed
