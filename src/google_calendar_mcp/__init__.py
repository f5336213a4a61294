"""Google Calendar MCP server with an embedded OAuth 2.0 authorization server."""

from __future__ import annotations

import argparse
import logging
import os

from google_calendar_mcp.config import ServerConfig
from google_calendar_mcp.utils.environment import env_flag
from google_calendar_mcp.utils.logging import setup_logging

__version__ = "0.1.0"

logger = logging.getLogger("google-calendar-mcp")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="google-calendar-mcp",
        description="Google Calendar MCP server",
    )
    parser.add_argument("--transport", choices=("stdio", "http"), help="MCP transport")
    parser.add_argument("--host", help="HTTP bind address")
    parser.add_argument("--port", type=int, help="HTTP port")
    parser.add_argument("--issuer-url", help="Public base URL of the OAuth server")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Console entry point."""
    args = _parse_args(argv)
    config = ServerConfig.from_env().with_overrides(
        transport=args.transport,
        host=args.host,
        port=args.port,
        issuer_url=args.issuer_url,
        log_level=logging.DEBUG if args.debug else None,
    )
    if args.transport and os.getenv("MCP_OAUTH_ENABLE") is None:
        config = config.with_overrides(
            enable_oauth=env_flag("MCP_OAUTH_ENABLE", default=config.transport == "http")
        )
    setup_logging(config.log_level)

    from google_calendar_mcp.servers.main import create_server

    server = create_server(config)
    if config.transport == "http":
        logger.info("Starting HTTP transport on %s:%s%s", config.host, config.port, config.mcp_path)
        server.run(
            transport="streamable-http",
            host=config.host,
            port=config.port,
            path=config.mcp_path,
        )
    else:
        server.run(transport="stdio")


__all__ = ["main", "__version__"]
