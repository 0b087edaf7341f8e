"""Request and response header policies shared by all upstreams."""

from typing import Iterable, Mapping, MutableMapping

# Forwarded to every upstream; targets may allow more
DEFAULT_ALLOWED_HEADERS = frozenset(["accept", "content-type", "authorization", "user-agent"])

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}

# HTTP hop-by-hop headers that must not be relayed
HOP_BY_HOP_HEADERS = frozenset(
    [
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    ]
)


def filter_headers(
    headers: Iterable[tuple[str, str]] | Mapping[str, str],
    allowed: Iterable[str] = (),
) -> dict[str, str]:
    """Copy the allow-listed headers into a new dict.

    Names are compared case-insensitively against the default allow-list
    plus `allowed`. Everything else (cookies, forwarded-for, internal routing
    headers) is dropped.
    """
    permitted = DEFAULT_ALLOWED_HEADERS | {name.lower() for name in allowed}
    items = headers.items() if isinstance(headers, Mapping) else headers
    return {name: value for name, value in items if name.lower() in permitted}


def response_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Upstream response headers minus hop-by-hop ones, duplicates kept."""
    return [
        (name, value) for name, value in headers if name.lower() not in HOP_BY_HOP_HEADERS
    ]


def apply_security_headers(headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
    """Stamp the hardening headers, overwriting any upstream values."""
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
    return headers
