"""Generic HTTP proxy utilities.

This module provides the streaming building blocks shared by the generic
forwarder and the registry gateway.
No dependencies on app.* modules to maintain independence and reusability.
"""

from typing import AsyncIterator, Mapping, Optional

import httpx
import structlog
from fastapi import Request
from fastapi.responses import StreamingResponse

from .exceptions import UpstreamUnreachable
from .headers import apply_security_headers, filter_headers, response_headers
from .types import RouteEntry

logger = structlog.stdlib.get_logger(__name__)

# Methods whose request body is streamed upstream
BODY_METHODS = frozenset(["POST", "PUT", "PATCH"])


async def stream_request_body(request: Request) -> AsyncIterator[bytes]:
    """Stream request body from client in chunks.

    Args:
        request: FastAPI request object

    Yields:
        Chunks of request body data
    """
    async for chunk in request.stream():
        yield chunk


def build_target_url(base_url: str, path: str, query: str = "") -> str:
    """Join base URL and path with exactly one slash, then append the query."""
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    if query:
        url = f"{url}?{query}"
    return url


async def send_upstream(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    headers: Optional[Mapping[str, str]] = None,
    content: Optional[AsyncIterator[bytes]] = None,
    params: Optional[list[tuple[str, str]]] = None,
    follow_redirects: bool = False,
) -> httpx.Response:
    """Send a request upstream and return the response with its body unread.

    The caller owns the response and must close it, either directly or by
    handing it to `stream_response`.

    Raises:
        UpstreamUnreachable: on connection errors and timeouts
    """
    upstream_request = client.build_request(
        method=method,
        url=url,
        headers=headers,
        content=content,
        params=params,
    )
    # Query strings may carry credentials
    target_url = str(upstream_request.url.copy_with(query=None))
    try:
        return await client.send(
            upstream_request, stream=True, follow_redirects=follow_redirects
        )
    except httpx.TimeoutException as e:
        logger.error("Timeout while contacting upstream", error=str(e), target_url=target_url)
        raise UpstreamUnreachable("Upstream timed out") from e
    except httpx.TransportError as e:
        logger.error("Upstream unreachable", error=str(e), target_url=target_url)
        raise UpstreamUnreachable() from e


def stream_response(upstream: httpx.Response) -> StreamingResponse:
    """Relay an upstream response to the client without buffering it.

    Raw bytes are relayed so Content-Encoding and Content-Length stay valid.
    The upstream connection is released when the body is exhausted or the
    client goes away.
    """

    async def generate():
        try:
            async for chunk in upstream.aiter_raw(chunk_size=65536):
                yield chunk
        except httpx.TransportError as e:
            logger.error(
                "Upstream failed mid-stream",
                error=str(e),
                target_url=str(upstream.url.copy_with(query=None)),
            )
            raise
        finally:
            await upstream.aclose()

    response = StreamingResponse(content=generate(), status_code=upstream.status_code)
    response.raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in response_headers(upstream.headers.multi_items())
    ]
    apply_security_headers(response.headers)
    return response


async def proxy_request(
    request: Request,
    client: httpx.AsyncClient,
    entry: RouteEntry,
    remainder: str,
) -> StreamingResponse:
    """Forward a request to a generic upstream API.

    Only allow-listed headers are sent; the response is passed through with
    the security headers stamped on it.

    Args:
        request: Original FastAPI request from client
        client: Shared HTTP client
        entry: Matched upstream route
        remainder: Path left after the route prefix (e.g., "/v1/messages")

    Returns:
        StreamingResponse with the upstream's response

    Raises:
        UpstreamUnreachable: If the upstream cannot be reached
    """
    target_url = build_target_url(entry.base_url, remainder)
    headers = filter_headers(request.headers, entry.allowed_headers)

    logger.info(
        "Proxying request",
        method=request.method,
        prefix=entry.prefix,
        target_url=target_url,
        forwarded_headers=sorted(name.lower() for name in headers),
    )

    content = stream_request_body(request) if request.method in BODY_METHODS else None
    upstream = await send_upstream(
        client,
        request.method,
        build_target_url(entry.base_url, remainder, request.url.query),
        headers=headers,
        content=content,
    )

    logger.info(
        "Proxy response received",
        status_code=upstream.status_code,
        target_url=target_url,
    )
    return stream_response(upstream)
