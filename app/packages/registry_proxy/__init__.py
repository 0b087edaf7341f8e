"""Registry proxy package for Docker Registry v2 API and plain HTTP APIs.

This package provides routing, header policies, the Bearer challenge relay
and streaming utilities for proxying requests to upstream services.
"""

from .challenge import (
    normalize_image_path,
    normalize_repository,
    normalize_scope,
    parse_challenge,
    parse_scope,
)
from .exceptions import (
    AuthDiscoveryFailure,
    GatewayError,
    RouteNotFound,
    UpstreamProtocolViolation,
    UpstreamUnreachable,
)
from .gateway import TOKEN_PATH, RegistryGateway
from .headers import SECURITY_HEADERS, apply_security_headers, filter_headers
from .proxy import proxy_request, stream_request_body, stream_response
from .routing import RouteTable
from .types import AuthChallenge, RouteEntry, RouteMatch, ScopeTriple

__all__ = [
    # Gateway
    "RegistryGateway",
    "TOKEN_PATH",
    # Types
    "AuthChallenge",
    "RouteEntry",
    "RouteMatch",
    "RouteTable",
    "ScopeTriple",
    # Errors
    "GatewayError",
    "RouteNotFound",
    "UpstreamUnreachable",
    "UpstreamProtocolViolation",
    "AuthDiscoveryFailure",
    # Utilities
    "SECURITY_HEADERS",
    "apply_security_headers",
    "filter_headers",
    "normalize_image_path",
    "normalize_repository",
    "normalize_scope",
    "parse_challenge",
    "parse_scope",
    "proxy_request",
    "stream_request_body",
    "stream_response",
]
