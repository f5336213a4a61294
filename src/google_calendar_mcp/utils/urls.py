"""URL utilities for google-calendar-mcp."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


def is_absolute_url(url: str) -> bool:
    """
    Return True if the URL has a scheme and no embedded whitespace.

    Custom schemes (``cursor://…``, ``com.example.app:/cb``) are accepted;
    native MCP clients register those as redirect URIs.
    """
    if not url or any(ch.isspace() for ch in url):
        return False
    return bool(urlsplit(url).scheme)


def append_query(url: str, **params: str | None) -> str:
    """
    Return the URL with params appended to its query string.

    Existing query parameters are kept; ``None`` values are skipped.

    Raises:
        ValueError: If the URL is not absolute
    """
    if not is_absolute_url(url):
        raise ValueError("redirect_uri is not an absolute URL")
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))
