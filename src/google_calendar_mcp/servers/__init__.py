"""FastMCP server, OAuth provider wiring and middleware."""

from .main import CalendarMCP, create_server

__all__ = ["CalendarMCP", "create_server"]
