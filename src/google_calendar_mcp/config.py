"""Server configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Literal

from google_calendar_mcp.mcp_oauth.accounts import DEFAULT_ACCOUNT, validate_account_id
from google_calendar_mcp.mcp_oauth.models import OAuthTimings
from google_calendar_mcp.mcp_oauth.upstream import required_scopes
from google_calendar_mcp.utils.environment import env_flag, env_int, env_str

logger = logging.getLogger("google-calendar-mcp.config")

Transport = Literal["stdio", "http"]

DEFAULT_STORAGE_DIR = "~/.config/google-calendar-mcp"


@dataclass(frozen=True)
class ServerConfig:
    """
    Runtime configuration for the Google Calendar MCP server.

    The embedded OAuth server is only meaningful for the HTTP transport; with
    stdio the client is the local process owner and no bearer check applies.
    """

    transport: Transport = "stdio"
    host: str = "127.0.0.1"
    port: int = 3000
    issuer_url: str | None = None
    enable_oauth: bool = False
    storage_dir: Path = field(default_factory=lambda: Path(DEFAULT_STORAGE_DIR).expanduser())
    account_id: str = DEFAULT_ACCOUNT
    enable_tasks: bool = False
    max_pending_sessions: int = 1024
    mcp_path: str = "/mcp"
    callback_path: str = "/oauth2callback"
    log_level: int = logging.WARNING
    timings: OAuthTimings = field(default_factory=OAuthTimings)

    @property
    def public_url(self) -> str:
        """Externally visible base URL; the OAuth issuer."""
        return (self.issuer_url or f"http://{self.host}:{self.port}").rstrip("/")

    @property
    def scopes(self) -> tuple[str, ...]:
        return required_scopes(self.enable_tasks)

    @property
    def oauth_active(self) -> bool:
        return self.transport == "http" and self.enable_oauth

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        Returns:
            ServerConfig with values from the environment

        Raises:
            ValueError: If TRANSPORT or GOOGLE_ACCOUNT_MODE hold invalid values
        """
        transport = (env_str("TRANSPORT", "stdio") or "stdio").lower()
        if transport not in ("stdio", "http"):
            raise ValueError(f"Unsupported TRANSPORT {transport!r}; use 'stdio' or 'http'")

        account_id = validate_account_id(env_str("GOOGLE_ACCOUNT_MODE", DEFAULT_ACCOUNT) or DEFAULT_ACCOUNT)

        if env_flag("DEBUG"):
            log_level = logging.DEBUG
        else:
            level_name = (env_str("LOG_LEVEL", "WARNING") or "WARNING").upper()
            log_level = logging.getLevelName(level_name)
            if not isinstance(log_level, int):
                logger.warning("Unknown LOG_LEVEL %s, using WARNING", level_name)
                log_level = logging.WARNING

        storage_dir = Path(
            env_str("GOOGLE_CALENDAR_MCP_STORAGE_DIR", DEFAULT_STORAGE_DIR) or DEFAULT_STORAGE_DIR
        ).expanduser()

        return cls(
            transport=transport,  # type: ignore[arg-type]
            host=env_str("HOST", "127.0.0.1") or "127.0.0.1",
            port=env_int("PORT", 3000),
            issuer_url=env_str("MCP_OAUTH_ISSUER_URL"),
            enable_oauth=env_flag("MCP_OAUTH_ENABLE", default=transport == "http"),
            storage_dir=storage_dir,
            account_id=account_id,
            enable_tasks=env_flag("ENABLE_TASKS"),
            max_pending_sessions=max(1, env_int("MCP_OAUTH_MAX_PENDING_SESSIONS", 1024)),
            log_level=log_level,
        )

    def with_overrides(self, **changes: object) -> "ServerConfig":
        """Return a copy with command-line overrides applied (``None`` skipped)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def storage_path(config: ServerConfig, filename: str) -> Path:
    return config.storage_dir / filename


def ensure_storage_dir(config: ServerConfig) -> Path:
    """Create the storage directory with owner-only permissions."""
    config.storage_dir.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(config.storage_dir, 0o700)
    except OSError as exc:
        logger.warning("Could not restrict permissions on %s: %s", config.storage_dir, exc)
    return config.storage_dir
