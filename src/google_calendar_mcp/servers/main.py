"""Main FastMCP server setup for Google Calendar with the embedded OAuth server."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from google_calendar_mcp.config import ServerConfig, ensure_storage_dir, storage_path
from google_calendar_mcp.mcp_oauth.accounts import TOKENS_FILENAME, FileAccountCredentials
from google_calendar_mcp.mcp_oauth.clients import ClientRegistry
from google_calendar_mcp.mcp_oauth.models import Clock, system_clock
from google_calendar_mcp.mcp_oauth.service import McpOAuthService
from google_calendar_mcp.mcp_oauth.store import CLIENTS_FILENAME, TOKENS_FILENAME as LEDGER_FILENAME
from google_calendar_mcp.mcp_oauth.store import JsonFileSnapshot
from google_calendar_mcp.mcp_oauth.tokens import TokenFactory, TokenLedger, default_token_factory
from google_calendar_mcp.mcp_oauth.upstream import GoogleOAuthClient, UpstreamOAuthClient
from google_calendar_mcp.mcp_oauth.worker import BackgroundWorker

from .accounts import AccountSummaryCache, register_account_tools
from .context import MainAppContext
from .correlation import CorrelationIdMiddleware
from .oauth import CalendarOAuthProvider, register_callback_route

logger = logging.getLogger("google-calendar-mcp.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def _make_lifespan(app_context: MainAppContext):
    @asynccontextmanager
    async def main_lifespan(app: FastMCP[MainAppContext]) -> AsyncIterator[dict]:
        logger.info("Google Calendar MCP server lifespan starting...")
        try:
            yield {"app_lifespan_context": app_context}
        except Exception as e:
            logger.error(f"Error during lifespan: {e}", exc_info=True)
            raise
        finally:
            logger.info("Google Calendar MCP server lifespan shutdown complete.")

    return main_lifespan


class CalendarMCP(FastMCP[MainAppContext]):
    """Custom FastMCP server class carrying the embedded OAuth service."""

    def __init__(
        self,
        *args: Any,
        oauth_service: McpOAuthService | None = None,
        app_config: ServerConfig | None = None,
        app_context: MainAppContext | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.oauth_service = oauth_service
        self.app_config = app_config or ServerConfig()
        self.app_context = app_context

    def http_app(
        self,
        path: str | None = None,
        middleware: list[Middleware] | None = None,
        transport: Literal["streamable-http", "sse"] = "streamable-http",
        **kwargs: Any,
    ) -> "Starlette":
        final_middleware_list = [Middleware(CorrelationIdMiddleware)]
        if middleware:
            final_middleware_list.extend(middleware)
        app = super().http_app(
            path=path or self.app_config.mcp_path,
            middleware=final_middleware_list,
            transport=transport,
            **kwargs,
        )
        if self.oauth_service is not None:
            _bind_service_lifecycle(app, self.oauth_service)
        return app


def _bind_service_lifecycle(app: Starlette, service: McpOAuthService) -> None:
    """Run the OAuth service for as long as the HTTP app is up."""
    inner = app.router.lifespan_context

    @asynccontextmanager
    async def lifespan(asgi_app: Starlette) -> AsyncIterator[Any]:
        service.start()
        try:
            async with inner(asgi_app) as state:
                yield state
        finally:
            await service.shutdown()

    app.router.lifespan_context = lifespan


def build_oauth_service(
    config: ServerConfig,
    accounts: FileAccountCredentials,
    *,
    upstream: UpstreamOAuthClient | None = None,
    clock: Clock = system_clock,
    token_factory: TokenFactory = default_token_factory,
    credential_hooks: tuple[Callable[[], None], ...] = (),
) -> McpOAuthService:
    """Wire the registry, ledger and orchestrator for *config*."""
    worker = BackgroundWorker("mcp-oauth")
    clients = ClientRegistry(
        JsonFileSnapshot(storage_path(config, CLIENTS_FILENAME)),
        clock=clock,
        token_factory=token_factory,
    )
    tokens = TokenLedger(
        JsonFileSnapshot(storage_path(config, LEDGER_FILENAME)),
        clock=clock,
        token_factory=token_factory,
        worker=worker,
        timings=config.timings,
    )
    return McpOAuthService(
        issuer_url=config.public_url,
        clients=clients,
        tokens=tokens,
        upstream=upstream or GoogleOAuthClient(clock=clock),
        accounts=accounts,
        scopes=config.scopes,
        account_id=config.account_id,
        callback_path=config.callback_path,
        clock=clock,
        token_factory=token_factory,
        worker=worker,
        timings=config.timings,
        max_pending_sessions=config.max_pending_sessions,
        credential_hooks=credential_hooks,
    )


def create_server(
    config: ServerConfig,
    *,
    upstream: UpstreamOAuthClient | None = None,
    clock: Clock = system_clock,
    token_factory: TokenFactory = default_token_factory,
) -> CalendarMCP:
    """Build the MCP server for *config*.

    The OAuth provider, and with it the bearer check on the MCP endpoint,
    is only installed when the HTTP transport runs with OAuth enabled.
    """
    ensure_storage_dir(config)
    accounts = FileAccountCredentials(
        storage_path(config, TOKENS_FILENAME), account=config.account_id
    )
    summaries = AccountSummaryCache(accounts, clock=clock)
    service: McpOAuthService | None = None
    provider: CalendarOAuthProvider | None = None
    if config.oauth_active:
        service = build_oauth_service(
            config,
            accounts,
            upstream=upstream,
            clock=clock,
            token_factory=token_factory,
            credential_hooks=(summaries.invalidate,),
        )
        provider = CalendarOAuthProvider(service, base_url=config.public_url)

    app_context = MainAppContext(
        config=config,
        accounts=accounts,
        account_summaries=summaries,
        oauth_enabled=service is not None,
    )
    server = CalendarMCP(
        name="Google Calendar MCP",
        lifespan=_make_lifespan(app_context),
        auth=provider,
        oauth_service=service,
        app_config=config,
        app_context=app_context,
    )
    register_account_tools(server)
    if service is not None:
        register_callback_route(server, service, config)
        logger.info("MCP OAuth authorization server enabled at %s", config.public_url)

    @server.custom_route("/healthz", methods=["GET"], include_in_schema=False)
    async def _health_check_route(request: Request) -> JSONResponse:
        return await health_check(request)

    return server
